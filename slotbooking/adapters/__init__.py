from .http_transfer_client import HttpTransferClient
from .memory_repository import InMemoryRepository, JsonFileRepository
from .mock_transfer_client import MockTransferClient

__all__ = [
    "HttpTransferClient",
    "InMemoryRepository",
    "JsonFileRepository",
    "MockTransferClient",
]
