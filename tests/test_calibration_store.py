"""
Tests for calibration persistence.
"""

import json

import pytest

from gazelink.core.config import StorageConfig
from gazelink.storage.calibration_store import CalibrationStore, CalibrationStoreError
from gazelink.storage.schema import CalibrationModel


class TestCalibrationStore:
    """Tests for CalibrationStore."""

    @pytest.fixture
    def storage_config(self, tmp_path):
        return StorageConfig(data_dir=tmp_path)

    @pytest.fixture
    def store(self, storage_config):
        return CalibrationStore(storage_config)

    def test_missing_record_loads_none(self, store):
        """Test that a fresh store has no calibration."""
        assert store.load() is None
        assert store.exists() is False

    def test_missing_record_is_identity(self, store):
        assert store.load_or_identity() == CalibrationModel.identity()

    def test_save_and_load(self, store):
        """Test persistence roundtrip."""
        model = CalibrationModel.from_fit(1.1, 0.95, -3.0, 7.5)

        assert store.save(model) is True
        assert store.exists() is True
        assert store.load() == model

    def test_record_key(self, store, storage_config):
        """The model is stored under the calibration record key."""
        store.save(CalibrationModel.from_fit(1.0, 1.0, 2.0, 3.0))

        with open(storage_config.store_path, "r", encoding="utf-8") as f:
            records = json.load(f)

        assert "EyeTrackingCalibrationData" in records

    def test_other_records_preserved(self, store, storage_config):
        """Saving does not drop unrelated records."""
        storage_config.store_path.write_text(json.dumps({"other": 42}), encoding="utf-8")

        store.save(CalibrationModel.from_fit(1.0, 1.0, 0.0, 0.0))

        records = json.loads(storage_config.store_path.read_text(encoding="utf-8"))
        assert records["other"] == 42

    def test_save_replaces_previous(self, store):
        store.save(CalibrationModel.from_fit(1.0, 1.0, 0.0, 0.0))
        second = CalibrationModel.from_fit(2.0, 2.0, 1.0, 1.0)

        store.save(second)

        assert store.load() == second

    def test_no_temp_file_left(self, store, storage_config):
        store.save(CalibrationModel.from_fit(1.0, 1.0, 0.0, 0.0))

        assert not storage_config.store_path.with_suffix(".tmp").exists()

    def test_delete(self, store):
        """Test that delete clears the record."""
        store.save(CalibrationModel.from_fit(1.0, 1.0, 0.0, 0.0))

        assert store.delete() is True
        assert store.load() is None
        assert store.delete() is False

    def test_invalid_model_not_saved(self, store):
        """Test that an inconsistent model is rejected."""
        with pytest.raises(CalibrationStoreError):
            store.save(CalibrationModel(scale_x=3.0))

        assert store.exists() is False

    def test_corrupted_file(self, store, storage_config):
        """Test that unreadable JSON raises."""
        storage_config.store_path.write_text("{not json", encoding="utf-8")

        with pytest.raises(CalibrationStoreError, match="Corrupted"):
            store.load()

        assert store.load_or_identity() == CalibrationModel.identity()

    def test_invalid_record(self, store, storage_config):
        """Test that a record failing validation raises."""
        record = {"EyeTrackingCalibrationData": {"scale_x": 2.0, "fitted": False}}
        storage_config.store_path.write_text(json.dumps(record), encoding="utf-8")

        with pytest.raises(CalibrationStoreError, match="Invalid calibration data"):
            store.load()
