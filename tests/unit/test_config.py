"""Configuration loading tests for the marketplace service."""

from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from marketplace_service.config import (
    REDACTION_MARKER,
    Settings,
    clear_settings_cache,
    get_safe_config,
    get_settings,
    load_settings,
)
from tests.helpers import config_yaml


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """Write a config file and point CONFIG_PATH at it."""

    def _write(content: str):
        path = tmp_path / "config.yaml"
        path.write_text(content)
        monkeypatch.setenv("CONFIG_PATH", str(path))
        clear_settings_cache()
        return path

    return _write


@pytest.mark.unit
def test_config_loads_from_yaml(config_file, tmp_path):
    """Valid config loads without error."""
    config_file(config_yaml(str(tmp_path / "m.db"), admin_id="u-root"))

    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service.name == "marketplace"
    assert settings.server.port == 8010
    assert settings.platform.admin_id == "u-root"
    assert settings.payout.commission_rate == Decimal("0.15")
    assert settings.payout.default_service_fee == Decimal("50")
    assert settings.offers.max_amount_multiplier == Decimal("2")
    assert settings.earnings.timezone == "Asia/Manila"
    assert settings.earnings.scheduler_enabled is False
    assert settings.logging.directory is None


@pytest.mark.unit
def test_settings_are_cached(config_file, tmp_path):
    config_file(config_yaml(str(tmp_path / "m.db")))
    assert get_settings() is get_settings()


@pytest.mark.unit
def test_config_rejects_extra_fields(config_file, tmp_path):
    """Extra keys raise ValidationError (extra='forbid')."""
    config_file(config_yaml(str(tmp_path / "m.db"), extra="unknown_section:\n  flag: true\n"))

    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.unit
def test_config_missing_required_section(config_file):
    """Missing required sections raise ValidationError."""
    config_file('service:\n  name: "marketplace"\n  version: "0.1.0"\n')

    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.unit
def test_config_rejects_commission_rate_above_one(config_file, tmp_path):
    content = config_yaml(str(tmp_path / "m.db")).replace(
        'commission_rate: "0.15"', 'commission_rate: "1.5"'
    )
    config_file(content)

    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.unit
def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "absent.yaml")


@pytest.mark.unit
def test_non_mapping_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ValueError, match="mapping"):
        load_settings(path)


@pytest.mark.unit
def test_safe_config_redacts_admin_id(config_file, tmp_path):
    config_file(config_yaml(str(tmp_path / "m.db"), admin_id="u-secret-admin"))

    safe = get_safe_config()

    assert safe["platform"]["admin_id"] == REDACTION_MARKER
    assert safe["service"]["name"] == "marketplace"
    assert "u-secret-admin" not in str(safe)
