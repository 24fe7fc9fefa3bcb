from foliochat.storage.blob_store import BlobStore, MemoryBlobStore, SQLiteBlobStore, StorageError
from foliochat.storage.history import PersistedHistory
from foliochat.storage.models import ConversationState, HistoryItem, Message

__all__ = [
    "BlobStore",
    "MemoryBlobStore",
    "SQLiteBlobStore",
    "StorageError",
    "PersistedHistory",
    "ConversationState",
    "HistoryItem",
    "Message",
]
