"""Tests for configuration loading."""

import json
from pathlib import Path

import pytest

from couchodm.core.config import FlushConfig, ODMConfig, StoreConfig
from couchodm.core.constants import ConflictPolicy, get_config_path
from couchodm.core.exceptions import ConfigurationError


class TestODMConfig:
    """Tests for ODMConfig."""

    def test_defaults(self):
        config = ODMConfig()

        assert config.store.url == "http://127.0.0.1:5984"
        assert config.store.database == "couchodm"
        assert config.flush.force is False
        assert config.flush.conflict_policy == ConflictPolicy.FAIL
        assert config.flush.reconcile_in_doubt is True
        assert config.logging.level == "warning"

    def test_load_missing_file_uses_defaults(self, tmp_path: Path):
        assert ODMConfig.load(tmp_path) == ODMConfig()

    def test_save_and_load(self, tmp_path: Path):
        config = ODMConfig(
            store=StoreConfig(url="http://db:5984", database="app", username="admin"),
            flush=FlushConfig(force=True, conflict_policy=ConflictPolicy.LAST_WRITE_WINS),
        )

        path = config.save(tmp_path)

        assert path == tmp_path / ".couchodm" / "odm.config.json"
        assert ODMConfig.load(tmp_path) == config

    def test_partial_file(self, odm_root: Path):
        (odm_root / "odm.config.json").write_text(
            json.dumps({"flush": {"conflict_policy": "first_write_wins"}})
        )

        config = ODMConfig.load(odm_root.parent)

        assert config.flush.conflict_policy == ConflictPolicy.FIRST_WRITE_WINS
        assert config.store.database == "couchodm"

    def test_invalid_json(self, odm_root: Path):
        (odm_root / "odm.config.json").write_text("{not json")

        with pytest.raises(ConfigurationError) as exc_info:
            ODMConfig.load(odm_root.parent)

        assert "path" in exc_info.value.details

    @pytest.mark.parametrize(
        "data",
        [
            {"flush": {"conflict_policy": "whoever_is_louder"}},
            {"store": {"port": 5984}},
        ],
    )
    def test_invalid_values(self, odm_root: Path, data):
        (odm_root / "odm.config.json").write_text(json.dumps(data))

        with pytest.raises(ConfigurationError):
            ODMConfig.load(odm_root.parent)

    def test_to_dict_uses_policy_value(self):
        data = ODMConfig().to_dict()

        assert data["flush"]["conflict_policy"] == "fail"
        assert json.loads(json.dumps(data)) == data


class TestStoreConfig:

    def test_database_url(self):
        assert StoreConfig(url="http://x:1/", database="db").database_url == "http://x:1/db"


def test_config_path_defaults_to_cwd(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    assert get_config_path() == tmp_path / ".couchodm" / "odm.config.json"
