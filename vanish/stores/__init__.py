"""
Storage backends for shares.
Content stores hold immutable blobs; ledgers hold the download counters.
"""

from vanish.stores.base import ContentStore, ConsumptionLedger, content_id
from vanish.stores.memory import MemoryStore, MemoryLedger
from vanish.stores.filesystem import FileSystemStore, FileLedger
from vanish.stores.pinata import PinataStore

__all__ = [
    "ContentStore",
    "ConsumptionLedger",
    "content_id",
    "MemoryStore",
    "MemoryLedger",
    "FileSystemStore",
    "FileLedger",
    "PinataStore",
]
