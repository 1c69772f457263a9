"""Tests for configuration settings."""
import pytest
from pydantic import ValidationError
from unittest.mock import patch

from config.settings import Settings

pytestmark = pytest.mark.unit


def test_defaults(monkeypatch):
    """Settings should fall back to safe production defaults."""
    for name in ("IDENTITY_DB_PATH", "IDENTITY_PORT", "IDENTITY_ENV", "IDENTITY_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.port == 8000
    assert settings.environment == "production"
    assert settings.is_development is False
    assert str(settings.database_path).endswith("contacts.db")
    assert settings.service_name == "identity-reconciliation"


def test_environment_overrides(monkeypatch, tmp_path):
    """IDENTITY_* environment variables override defaults."""
    monkeypatch.setenv("IDENTITY_PORT", "9100")
    monkeypatch.setenv("IDENTITY_ENV", "development")
    monkeypatch.setenv("IDENTITY_DB_PATH", str(tmp_path / "other.db"))
    monkeypatch.setenv("IDENTITY_CORS_ORIGINS", '["https://example.com"]')

    settings = Settings(_env_file=None)

    assert settings.port == 9100
    assert settings.is_development is True
    assert settings.database_path == tmp_path / "other.db"
    assert settings.cors_origins == ["https://example.com"]


@pytest.mark.parametrize("port", ["0", "70000", "not-a-port"])
def test_invalid_port_rejected(monkeypatch, port):
    monkeypatch.setenv("IDENTITY_PORT", port)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_unknown_environment_rejected(monkeypatch):
    monkeypatch.setenv("IDENTITY_ENV", "staging")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_contacts_db_path_creates_parent(tmp_path):
    """The database directory is created on first use."""
    from api.utils.db_paths import get_contacts_db_path

    db_file = tmp_path / "nested" / "data" / "contacts.db"
    with patch("api.utils.db_paths.settings", Settings(_env_file=None, database_path=db_file)):
        path = get_contacts_db_path()

    assert path == str(db_file)
    assert db_file.parent.is_dir()
