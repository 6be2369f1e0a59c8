"""Unit tests — Settings.load, get_settings, override_settings."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from lumos_memory.config import (
    ManagerConfig,
    PruneConfig,
    Settings,
    StoreConfig,
    get_settings,
    override_settings,
)


@pytest.mark.unit
class TestSettingsLoad:
    def test_load_defaults_when_no_files(self) -> None:
        with patch.object(Path, "exists", return_value=False):
            settings = Settings.load()
        assert settings.store.journal_mode == "wal"
        assert settings.store.busy_timeout_seconds == 5.0
        assert settings.manager.agent_id == "default-agent"
        assert settings.manager.default_ttl_seconds is None
        assert settings.manager.default_limit == 50
        assert settings.prune.enabled is False

    def test_load_from_custom_config_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "store:\n"
            f"  db_path: {tmp_path / 'custom.db'}\n"
            "manager:\n"
            "  agent_id: support-bot\n"
            "  default_ttl_seconds: 86400\n"
            "prune:\n"
            "  enabled: true\n"
            "  interval_seconds: 600\n"
        )
        settings = Settings.load(config_file=config_file)
        assert settings.store.db_path == tmp_path / "custom.db"
        assert settings.manager.agent_id == "support-bot"
        assert settings.manager.default_ttl_seconds == 86400
        assert settings.prune.enabled is True
        assert settings.prune.interval_seconds == 600

    def test_empty_config_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")
        settings = Settings.load(config_file=config_file)
        assert isinstance(settings, Settings)

    def test_env_fills_unset_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LUMOS_MEMORY_MANAGER__DEFAULT_USER_ID", "env-user")
        with patch.object(Path, "exists", return_value=False):
            settings = Settings.load()
        assert settings.manager.default_user_id == "env-user"


@pytest.mark.unit
class TestSubConfigs:
    def test_db_path_is_expanded(self) -> None:
        config = StoreConfig(db_path=Path("~/memory.db"))
        assert "~" not in str(config.db_path)

    def test_invalid_journal_mode(self) -> None:
        with pytest.raises(ValidationError):
            StoreConfig(journal_mode="memory")

    def test_empty_agent_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ManagerConfig(agent_id="")

    def test_non_positive_ttl_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ManagerConfig(default_ttl_seconds=0)

    def test_prune_interval_bounds(self) -> None:
        with pytest.raises(ValidationError):
            PruneConfig(interval_seconds=0.5)


@pytest.mark.unit
class TestGetSettings:
    def test_get_settings_returns_settings_instance(self) -> None:
        import lumos_memory.config as cfg_module

        original = cfg_module._settings
        try:
            cfg_module._settings = None
            with patch.object(Path, "exists", return_value=False):
                settings = get_settings()
            assert isinstance(settings, Settings)
        finally:
            cfg_module._settings = original

    def test_override_sets_singleton(self) -> None:
        import lumos_memory.config as cfg_module

        original = cfg_module._settings
        try:
            custom = Settings(manager={"agent_id": "override-agent"})
            override_settings(custom)
            assert get_settings() is custom
        finally:
            cfg_module._settings = original
