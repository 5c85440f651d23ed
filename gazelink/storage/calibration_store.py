"""
Calibration persistence in a small JSON key-value store.

The store file holds named records; the calibration model is one of them.
A missing record is the normal unfitted state, not an error.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from gazelink.core.config import StorageConfig
from gazelink.storage.schema import CalibrationModel
from gazelink.utils.logger import get_logger

logger = get_logger(__name__)


class CalibrationStoreError(Exception):
    """Calibration storage errors."""

    pass


class CalibrationStore:
    """
    Durable storage for the calibration model.

    - Writes go to a temporary file first and replace the store atomically
    - Records other than the calibration key are preserved
    - Models are validated before save and after load
    """

    def __init__(self, config: StorageConfig):
        """
        Initialize calibration store.

        Args:
            config: Storage configuration

        Raises:
            CalibrationStoreError: If storage path is invalid
        """
        self._config = config
        self._key = config.calibration_key

        try:
            self._data_dir = config.data_dir.resolve(strict=False)
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except (RuntimeError, OSError) as e:
            raise CalibrationStoreError(f"Invalid storage path: {e}")

        self._store_path = self._data_dir / config.store_filename

        if not self._is_safe_path(self._store_path):
            raise CalibrationStoreError("Path traversal detected")

        logger.info(f"CalibrationStore initialized: {self._store_path}")

    def save(self, model: CalibrationModel) -> bool:
        """
        Save the calibration model, replacing any previous one.

        Returns:
            True if successful

        Raises:
            CalibrationStoreError: If save fails
        """
        try:
            model.validate()

            records = self._read_records()
            records[self._key] = model.to_dict()
            self._write_records(records)

            logger.info(
                f"Calibration saved: scale=({model.scale_x:.3f}, {model.scale_y:.3f}) "
                f"offset=({model.offset_x:.1f}, {model.offset_y:.1f})"
            )
            return True

        except Exception as e:
            error_msg = f"Failed to save calibration: {e}"
            logger.error(error_msg)
            raise CalibrationStoreError(error_msg) from e

    def load(self) -> Optional[CalibrationModel]:
        """
        Load the calibration model.

        Returns:
            CalibrationModel if a record exists, None otherwise

        Raises:
            CalibrationStoreError: If the store or the record is corrupted
        """
        data = self._read_records().get(self._key)
        if data is None:
            logger.info("No calibration data found")
            return None

        try:
            model = CalibrationModel.from_dict(data)
            model.validate()
        except (AttributeError, TypeError, ValueError) as e:
            error_msg = f"Invalid calibration data: {e}"
            logger.error(error_msg)
            raise CalibrationStoreError(error_msg) from e

        logger.info(f"Calibration loaded (fitted at {model.fitted_at or 'never'})")
        return model

    def load_or_identity(self) -> CalibrationModel:
        """
        Load the saved model, falling back to the identity when there is none
        or when the stored record cannot be read.
        """
        try:
            model = self.load()
        except CalibrationStoreError as e:
            logger.warning(f"Ignoring unreadable calibration: {e}")
            return CalibrationModel.identity()
        return model if model is not None else CalibrationModel.identity()

    def delete(self) -> bool:
        """
        Delete the calibration record.

        Returns:
            True if deleted, False if there was no record
        """
        try:
            records = self._read_records()
            if self._key not in records:
                logger.info("No calibration data to delete")
                return False

            del records[self._key]
            self._write_records(records)
            logger.info("Calibration data deleted")
            return True

        except OSError as e:
            logger.error(f"Failed to delete calibration: {e}")
            raise CalibrationStoreError(f"Failed to delete calibration: {e}")

    def exists(self) -> bool:
        """Check if a calibration record exists."""
        try:
            return self._key in self._read_records()
        except CalibrationStoreError:
            return False

    @property
    def path(self) -> Path:
        return self._store_path

    def _read_records(self) -> Dict[str, Any]:
        if not self._store_path.exists():
            return {}

        try:
            with open(self._store_path, "r", encoding="utf-8") as f:
                records = json.load(f)
        except json.JSONDecodeError as e:
            error_msg = f"Corrupted store file: {e}"
            logger.error(error_msg)
            raise CalibrationStoreError(error_msg) from e
        except OSError as e:
            raise CalibrationStoreError(f"Failed to read store: {e}") from e

        if not isinstance(records, dict):
            raise CalibrationStoreError("Store file does not contain a record mapping")
        return records

    def _write_records(self, records: Dict[str, Any]):
        temp_path = self._store_path.with_suffix(".tmp")

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2, ensure_ascii=False)

        temp_path.replace(self._store_path)

    def _is_safe_path(self, path: Path) -> bool:
        """Check that path stays inside the data directory."""
        try:
            resolved = path.resolve(strict=False)
            return resolved.parent == self._data_dir
        except (RuntimeError, OSError):
            return False
