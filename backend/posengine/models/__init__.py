from .auth import User
from .catalog import Product, ProductVariant
from .inventory import StockAdjustment
from .customers import Customer, LoyaltyTransaction
from .sales import Sale, SaleItem, SalePayment, Refund
from .promotions import Coupon, CouponUsage
from .registers import RegisterSession, RegisterMovement
from .settings import Setting
from .communications import Notification, AuditLog

__all__ = [
    'User',
    'Product', 'ProductVariant', 'StockAdjustment',
    'Customer', 'LoyaltyTransaction',
    'Sale', 'SaleItem', 'SalePayment', 'Refund',
    'Coupon', 'CouponUsage',
    'RegisterSession', 'RegisterMovement',
    'Setting',
    'Notification', 'AuditLog',
]
