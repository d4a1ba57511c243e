from typing import Protocol, Any, Optional

class KeyValueStore(Protocol):
    """Protocol for the async document store the ledger persists into"""

    async def get(self, key: str) -> Optional[Any]:
        """Return the JSON document stored under key, or None if it does not exist"""
        ...

    async def set(self, key: str, value: Any) -> None:
        """Overwrite the document stored under key"""
        ...

    async def exists(self, key: str) -> bool:
        """Check whether a document is stored under key"""
        ...
