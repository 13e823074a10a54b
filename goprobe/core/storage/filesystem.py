import logging
import os
import shutil
import tempfile

from goprobe.core.abstract.storage import ArtifactStore
from goprobe.core.exceptions import StorageError

logger = logging.getLogger("goprobe")


class FilesystemArtifactStore(ArtifactStore):
    """Stores every artifact as a file below `base_path`."""

    def __init__(self, base_path: str) -> None:
        self.base_path = os.path.abspath(base_path)
        try:
            os.makedirs(self.base_path, mode=0o755, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create storage directory {self.base_path}: {e}") from e

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.base_path, key.strip("/")))
        if path != self.base_path and not path.startswith(self.base_path + os.sep):
            raise StorageError(f"Key '{key}' points outside of the storage directory")
        return path

    def get_bytes(self, key: str) -> bytes:
        path = self._path(key)
        try:
            with open(path, "rb") as file:
                return file.read()
        except FileNotFoundError as e:
            raise StorageError(f"Artifact '{key}' does not exist") from e
        except OSError as e:
            raise StorageError(f"Could not read artifact '{key}': {e}") from e

    def put_bytes(self, key: str, data: bytes) -> None:
        path = self._path(key)
        if path == self.base_path:
            raise StorageError("Cannot write to the storage root")

        directory = os.path.dirname(path)
        try:
            os.makedirs(directory, mode=0o755, exist_ok=True)
            # NOTE: readers never see a half written file, the rename is atomic on POSIX
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as file:
                    file.write(data)
                os.replace(tmp_path, path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Could not write artifact '{key}': {e}") from e

        logger.debug(f"Stored {len(data)} bytes at {key}")

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path == self.base_path:
            raise StorageError("Cannot delete the storage root")

        try:
            if os.path.isdir(path):
                shutil.rmtree(path)
            else:
                os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Could not delete artifact '{key}': {e}") from e

    def list(self, key: str) -> list[str]:
        path = self._path(key)
        try:
            return sorted(name for name in os.listdir(path) if not name.startswith(".tmp-"))
        except (FileNotFoundError, NotADirectoryError):
            return []
        except OSError as e:
            raise StorageError(f"Could not list artifacts under '{key}': {e}") from e
