from .shifts import Shift, CLOSE_REASON_NORMAL, CLOSE_REASON_FORCED_BY_ADMIN
from .transactions import TransactionRecord

__all__ = [
    'Shift', 'CLOSE_REASON_NORMAL', 'CLOSE_REASON_FORCED_BY_ADMIN',
    'TransactionRecord',
]
