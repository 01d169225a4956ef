from .box_client import BoxClient
from .sync_engine import SyncEngine, fetch, push

__all__ = ["BoxClient", "SyncEngine", "fetch", "push"]
