"""
Invoice numbering tests.

Verifies:
- Format {prefix}-{YYYYMMDD}-{00001}
- Counter is per calendar month in the business timezone
- A rolled-back sale gives its number back
"""

import re
from datetime import datetime

from warung.extensions import db
from warung.models import InvoiceSequence
from warung.services.invoice_service import issue_invoice_number, next_sequence_number, period_key


INVOICE_RE = re.compile(r"^INV-\d{8}-\d{5}$")


def test_format_and_increment(db_session):
    first = issue_invoice_number(datetime(2025, 3, 10, 2, 0))
    second = issue_invoice_number(datetime(2025, 3, 10, 3, 0))

    assert INVOICE_RE.match(first)
    assert first == "INV-20250310-00001"
    assert second == "INV-20250310-00002"


def test_counter_is_shared_across_days_of_a_month(db_session):
    issue_invoice_number(datetime(2025, 3, 1, 5, 0))
    later = issue_invoice_number(datetime(2025, 3, 20, 5, 0))
    assert later == "INV-20250320-00002"


def test_new_month_starts_at_one(db_session):
    issue_invoice_number(datetime(2025, 3, 10, 2, 0))
    issue_invoice_number(datetime(2025, 3, 11, 2, 0))
    april = issue_invoice_number(datetime(2025, 4, 2, 2, 0))
    assert april == "INV-20250402-00001"

    periods = {row.period: row.last_number for row in db.session.query(InvoiceSequence).all()}
    assert periods == {"202503": 2, "202504": 1}


def test_month_follows_business_timezone(db_session):
    # 18:00 UTC on March 31 is 01:00 on April 1 in Asia/Jakarta
    number = issue_invoice_number(datetime(2025, 3, 31, 18, 0))
    assert number == "INV-20250401-00001"


def test_prefix_is_configurable(app, db_session):
    app.config["INVOICE_PREFIX"] = "WRG"
    try:
        assert issue_invoice_number(datetime(2025, 5, 5, 5, 0)) == "WRG-20250505-00001"
    finally:
        app.config["INVOICE_PREFIX"] = "INV"


def test_rolled_back_increment_is_reissued(db_session):
    assert next_sequence_number("202506") == 1
    db.session.commit()

    assert next_sequence_number("202506") == 2
    db.session.rollback()

    assert next_sequence_number("202506") == 2


def test_period_key():
    assert period_key(datetime(2025, 12, 31, 23, 59)) == "202512"
