# backend/wsgi.py
from warung import create_app

app = create_app()
