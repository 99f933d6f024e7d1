from .db import OrderDatabase, is_code_collision
from .ledger import ResponseLedger

__all__ = ["OrderDatabase", "ResponseLedger", "is_code_collision"]
