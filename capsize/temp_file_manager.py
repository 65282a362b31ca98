# temp_file_manager.py
import logging
import os
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

logger = logging.getLogger(__name__)


class TempFileManager:
    """Manages temporary files and ensures cleanup."""
    _temp_files = set()

    @classmethod
    def register(cls, file_path):
        """Register a temporary file for cleanup."""
        cls._temp_files.add(Path(file_path))

    @classmethod
    def unregister(cls, file_path):
        """Unregister a temporary file (if it was moved or already cleaned)."""
        cls._temp_files.discard(Path(file_path))

    @classmethod
    def remove(cls, file_path) -> None:
        """Delete a single registered file now."""
        path = Path(file_path)
        try:
            if path.exists():
                path.unlink()
                logger.debug(f"Cleaned up temporary file: {path}")
        except OSError as e:
            logger.error(f"Failed to clean up temporary file {path}: {e}")
        finally:
            cls.unregister(path)

    @classmethod
    @contextmanager
    def temp_path(cls, directory: Union[str, Path], suffix: str = '',
                  prefix: str = 'capsize_') -> Iterator[Path]:
        """Yield a fresh temporary path owned by the caller's scope.

        The file is removed when the scope exits unless the caller has moved
        it away (a missing file is not an error).
        """
        Path(directory).mkdir(parents=True, exist_ok=True)
        path = Path(directory) / f"{prefix}{uuid.uuid4().hex}{suffix}"
        cls.register(path)
        try:
            yield path
        finally:
            cls.remove(path)

    @classmethod
    def persist(cls, source, destination) -> Path:
        """Move a temporary file to its final location and stop tracking it."""
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(destination))
        cls.unregister(source)
        return destination

    @classmethod
    def cleanup(cls):
        """Clean up all registered temporary files."""
        for file_path in cls._temp_files.copy():
            cls.remove(file_path)

    @classmethod
    def get_temp_count(cls):
        """Get count of registered temporary files."""
        return len(cls._temp_files)

    @classmethod
    def list_temp_files(cls, directory: Optional[Union[str, Path]] = None):
        """List registered temporary files, optionally limited to one directory."""
        if directory is None:
            return list(cls._temp_files)
        root = Path(directory)
        return [p for p in cls._temp_files if p.parent == root]
