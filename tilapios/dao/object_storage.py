"""Object storage adapter used for catch photos."""

from pathlib import Path, PurePosixPath
from typing import Protocol

from loguru import logger

from tilapios.core.exceptions import StorageError


class ObjectStorage(Protocol):
    async def upload_file(self, path: str, data: bytes) -> str: ...

    async def delete_file(self, path: str) -> None: ...


class LocalObjectStorage:
    """Stores files below a directory and serves them from a base URL."""

    def __init__(self, base_dir: str | Path, base_url: str = "/uploads") -> None:
        self.base_dir = Path(base_dir)
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise StorageError(
                message=f"Invalid storage path: {path}", details={"path": path}
            )
        return self.base_dir.joinpath(*relative.parts)

    async def upload_file(self, path: str, data: bytes) -> str:
        """Write the bytes to path and return the public URL."""
        target = self._resolve(path)
        logger.info(f"Saving file to: {target}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as buffer:
                buffer.write(data)
        except OSError as e:
            logger.error(f"Failed to save file {path}: {e!s}")
            raise StorageError(
                message=f"Failed to save file: {e!s}", details={"path": path}
            ) from e
        logger.success(f"File saved successfully: {path}")
        return f"{self.base_url}/{PurePosixPath(path)}"

    async def delete_file(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete file {path}: {e!s}")
            raise StorageError(
                message=f"Failed to delete file: {e!s}", details={"path": path}
            ) from e
        logger.debug(f"Deleted file: {path}")
