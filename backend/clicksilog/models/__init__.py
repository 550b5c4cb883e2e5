from .orders import Order, OrderItem, new_document_id
from .payments import PaymentRecord, WebhookEvent
from .discounts import Discount
from .auth import User
from .security import SecurityEvent
from .settings import Setting

__all__ = [
    'Order', 'OrderItem', 'new_document_id',
    'PaymentRecord', 'WebhookEvent',
    'Discount',
    'User',
    'SecurityEvent',
    'Setting',
]
