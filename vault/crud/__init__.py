# CRUD operations package

from .order import order_crud
from .subscription import subscription_crud
from .withdrawal_request import withdrawal_request_crud
from .cancellation_request import cancellation_request_crud
from .metal_price import metal_price_crud

__all__ = [
    'order_crud',
    'subscription_crud',
    'withdrawal_request_crud',
    'cancellation_request_crud',
    'metal_price_crud'
]
