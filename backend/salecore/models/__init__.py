from .catalog import Product, ProductBatch
from .customers import Customer, LoyaltyLog
from .sales import Sale, SaleItem, SalePayment
from .shifts import ShiftSession, CashTransaction
from .promotions import Promotion
from .inventory import StockMovement
from .returns import ReturnRequest, ReturnRequestItem
from .documents import ReceiptSequence, AuditEvent

__all__ = [
    'Product', 'ProductBatch',
    'Customer', 'LoyaltyLog',
    'Sale', 'SaleItem', 'SalePayment',
    'ShiftSession', 'CashTransaction',
    'Promotion',
    'StockMovement',
    'ReturnRequest', 'ReturnRequestItem',
    'ReceiptSequence', 'AuditEvent',
]
