from .catalog import Branch, Category, Supplier
from .items import Item, ItemSequence, KARATS, ITEM_STATUSES
from .auth import Role, User
from .audit import AuthEvent, UserTaskLog

__all__ = [
    'Branch', 'Category', 'Supplier',
    'Item', 'ItemSequence', 'KARATS', 'ITEM_STATUSES',
    'Role', 'User',
    'AuthEvent', 'UserTaskLog',
]
