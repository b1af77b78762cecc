from .auth import User, UserPermission, SessionToken, UserActivity
from .catalog import Partner, Category, Item
from .inventory import InventoryRecord, InventoryHistoryEntry
from .transactions import Transaction, TransactionItem, DocumentSequence
from .accounting import Account, Voucher, VoucherItem, Payment, TaxInvoice

__all__ = [
    'User', 'UserPermission', 'SessionToken', 'UserActivity',
    'Partner', 'Category', 'Item',
    'InventoryRecord', 'InventoryHistoryEntry',
    'Transaction', 'TransactionItem', 'DocumentSequence',
    'Account', 'Voucher', 'VoucherItem', 'Payment', 'TaxInvoice',
]
