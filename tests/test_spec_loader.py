"""Tests for manifest loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from gemctl.config import MAX_MANIFEST_FILE_SIZE_BYTES
from gemctl.spec_loader import SpecLoadError, load_manifest

MANIFEST = {
    "dataStores": [{"id": "ds1", "displayName": "Docs", "sourceUri": "gs://bucket/docs/*"}],
    "engines": [{"id": "eng1", "displayName": "Search", "dataStoreIds": ["ds1"]}],
}


def _write(tmp_path: Path, data: object) -> Path:
    path = tmp_path / "resources.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadManifest:
    """Tests for load_manifest()."""

    def test_flat_manifest(self, tmp_path: Path) -> None:
        manifest = load_manifest(_write(tmp_path, MANIFEST))

        assert [ds.id for ds in manifest.data_stores] == ["ds1"]
        assert manifest.engines[0].data_store_ids == ["ds1"]

    def test_wrapped_manifest(self, tmp_path: Path) -> None:
        wrapped = {
            "apiVersion": "gemctl/v1",
            "kind": "SearchResources",
            "metadata": {"name": "search"},
            "spec": MANIFEST,
        }

        manifest = load_manifest(_write(tmp_path, wrapped))

        assert manifest.engines[0].id == "eng1"

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")

        manifest = load_manifest(path)

        assert manifest.data_stores == []
        assert manifest.engines == []

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError) as exc_info:
            load_manifest(tmp_path / "nope.yaml")

        assert "not found" in str(exc_info.value)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("dataStores: [unclosed")

        with pytest.raises(SpecLoadError) as exc_info:
            load_manifest(path)

        assert "Invalid YAML" in str(exc_info.value)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(SpecLoadError):
            load_manifest(_write(tmp_path, ["ds1"]))

    def test_validation_errors_listed(self, tmp_path: Path) -> None:
        bad = {"dataStores": [{"id": "DS1", "displayName": "Docs", "sourceUri": "bucket"}]}

        with pytest.raises(SpecLoadError) as exc_info:
            load_manifest(_write(tmp_path, bad))

        message = str(exc_info.value)
        assert "Validation failed" in message
        assert "  - dataStores.0.id:" in message
        assert "  - dataStores.0.sourceUri:" in message

    def test_size_limit(self, tmp_path: Path) -> None:
        path = tmp_path / "big.yaml"
        path.write_text("#" * (MAX_MANIFEST_FILE_SIZE_BYTES + 1))

        with pytest.raises(SpecLoadError) as exc_info:
            load_manifest(path)

        assert "maximum size" in str(exc_info.value)

    def test_dangling_reference_allowed(self, tmp_path: Path) -> None:
        data = {"engines": [{"id": "eng1", "displayName": "Search", "dataStoreIds": ["elsewhere"]}]}

        manifest = load_manifest(_write(tmp_path, data))

        assert manifest.engines[0].data_store_ids == ["elsewhere"]
