# Database models package

from .base import Base
from .user import User, UserRole
from .order import Order, OrderType, OrderStatus, PaymentStatus, InvoiceStatus
from .subscription import Subscription, SubscriptionStatus, MetalType, WeightUnit
from .withdrawal_request import WithdrawalRequest, WithdrawalStatus
from .cancellation_request import CancellationRequest, CancellationStatus
from .metal_price import MetalPrice

__all__ = [
    'Base',
    'User',
    'UserRole',
    'Order',
    'OrderType',
    'OrderStatus',
    'PaymentStatus',
    'InvoiceStatus',
    'Subscription',
    'SubscriptionStatus',
    'MetalType',
    'WeightUnit',
    'WithdrawalRequest',
    'WithdrawalStatus',
    'CancellationRequest',
    'CancellationStatus',
    'MetalPrice'
]
