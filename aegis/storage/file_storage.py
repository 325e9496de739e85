# aegis/storage/file_storage.py
import os
import json
import logging
import tempfile
from typing import Dict, Any, Optional

from aegis.core.interfaces.storage import IStorage


class StorageError(Exception):
    """Raised when a persisted file exists but cannot be read or written"""


class FileStorage(IStorage):
    def __init__(self, path: str):
        """
        Baseline storage backed by a single JSON file

        Args:
            path: Location of the baseline file; parent directories are
                created on the first save
        """
        self.path = os.path.abspath(path)
        self.logger = logging.getLogger(__name__)

    def save_baseline(self, record: Dict[str, Any]) -> None:
        """Write the record atomically: temp file in the same directory, then rename"""
        directory = os.path.dirname(self.path)
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix='.baseline-', suffix='.tmp', dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(record, f, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to save baseline to {self.path}: {e}") from e

        self.logger.debug(f"Baseline saved to {self.path}")

    def load_baseline(self) -> Optional[Dict[str, Any]]:
        """
        Load the persisted baseline

        Returns:
            The decoded record, or None when no file exists yet

        Raises:
            StorageError: the file exists but is unreadable or not a JSON object
        """
        if not os.path.exists(self.path):
            self.logger.info(f"No baseline file at {self.path}, starting fresh")
            return None

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                record = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to load baseline from {self.path}: {e}") from e

        if not isinstance(record, dict):
            raise StorageError(f"Baseline file {self.path} does not contain a JSON object")

        self.logger.info(f"Baseline loaded from {self.path}")
        return record
