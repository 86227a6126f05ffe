from .tenancy import Store
from .auth import User, SessionToken
from .inventory import Category, Product, StockLog, UNIT_TYPES
from .sales import Sale, SaleItem, PAYMENT_METHODS, PAYMENT_STATUSES, SALE_STATUSES
from .customers import Customer, LoyaltyPoints, LoyaltyTransaction, LOYALTY_TIERS
from .stock_takes import StockTakeSession, StockTakeItem
from .expenses import Expense
from .notifications import Notification, NOTIFICATION_TYPES

__all__ = [
    'Store',
    'User', 'SessionToken',
    'Category', 'Product', 'StockLog', 'UNIT_TYPES',
    'Sale', 'SaleItem', 'PAYMENT_METHODS', 'PAYMENT_STATUSES', 'SALE_STATUSES',
    'Customer', 'LoyaltyPoints', 'LoyaltyTransaction', 'LOYALTY_TIERS',
    'StockTakeSession', 'StockTakeItem',
    'Expense',
    'Notification', 'NOTIFICATION_TYPES',
]
