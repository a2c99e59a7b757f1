from .catalog import Category, Product
from .customers import Customer
from .sales import PaymentStatus, TransactionType, Transaction, TransactionItem, InvoiceSequence
from .debts import Debt, DebtPayment
from .auth import User, SessionToken

__all__ = [
    'Category', 'Product',
    'Customer',
    'PaymentStatus', 'TransactionType', 'Transaction', 'TransactionItem', 'InvoiceSequence',
    'Debt', 'DebtPayment',
    'User', 'SessionToken',
]
