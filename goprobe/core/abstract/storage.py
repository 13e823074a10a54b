from __future__ import annotations

import abc


class ArtifactStore(abc.ABC):
    """
    A key/value blob store for capture artifacts.

    Keys are `/`-separated paths, e.g. `<cluster>/<namespace>/<pod>_<millis>/heap_flame.svg`.
    Writes under disjoint keys must not interfere with each other.
    Every method raises `StorageError` on failure.
    """

    @abc.abstractmethod
    def get_bytes(self, key: str) -> bytes:
        pass

    @abc.abstractmethod
    def put_bytes(self, key: str, data: bytes) -> None:
        pass

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abc.abstractmethod
    def list(self, key: str) -> list[str]:
        """Return the names of the immediate children under `key`."""

        pass
