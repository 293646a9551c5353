from .tenancy import Practice, Location, User, PracticeMembership
from .inventory import Item, InventoryRecord, StockAdjustment
from .stock_counts import StockCountSession, StockCountLine, StockCountStatus, TERMINAL_STATUSES
from .audit import AuditLog, SecurityEvent
from .notifications import InAppNotification

__all__ = [
    'Practice', 'Location', 'User', 'PracticeMembership',
    'Item', 'InventoryRecord', 'StockAdjustment',
    'StockCountSession', 'StockCountLine', 'StockCountStatus', 'TERMINAL_STATUSES',
    'AuditLog', 'SecurityEvent',
    'InAppNotification',
]
