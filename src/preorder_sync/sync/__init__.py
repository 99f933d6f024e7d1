from .engine import FormSyncEngine, SyncReport
from .scheduler import AutoSyncScheduler

__all__ = ["AutoSyncScheduler", "FormSyncEngine", "SyncReport"]
