from .auth import User, SessionToken
from .catalog import Branch, Product, ProductStock
from .customers import Client
from .registers import CashSession, CashMovement
from .sales import Sale, SaleItem, SalePayment
from .payments import PaymentTransaction, TransactionStatus

__all__ = [
    'User', 'SessionToken',
    'Branch', 'Product', 'ProductStock',
    'Client',
    'CashSession', 'CashMovement',
    'Sale', 'SaleItem', 'SalePayment',
    'PaymentTransaction', 'TransactionStatus',
]
