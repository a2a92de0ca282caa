from .catalog import Product, PaymentType
from .orders import Order, OrderLine, OrderTransition
from .inventory import StockMovement
from .receivables import Receivable, ReceivableInstallment, ReceivablePayment
from .documents import DocumentSequence

__all__ = [
    'Product', 'PaymentType',
    'Order', 'OrderLine', 'OrderTransition',
    'StockMovement',
    'Receivable', 'ReceivableInstallment', 'ReceivablePayment',
    'DocumentSequence',
]
