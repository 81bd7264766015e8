"""StorageBackend Protocol for durable cache persistence.

Any key/value store with this shape can back the result cache.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for durable key/value storage.

    Values are opaque strings (the cache stores JSON).
    """

    def get_item(self, key: str) -> str | None:
        """Return the stored value, or None when the key is absent."""
        ...

    def set_item(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""
        ...

    def remove_item(self, key: str) -> None:
        """Delete *key*. Missing keys are not an error."""
        ...
