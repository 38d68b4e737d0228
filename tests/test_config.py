import pytest

from mentalspace.config import ConfigurationError, get_settings


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_development_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv('ENVIRONMENT', 'development')
    monkeypatch.setenv('MENTALSPACE_DATA_DIR', str(tmp_path / 'data'))
    monkeypatch.delenv('MENTALSPACE_API_URL', raising=False)
    monkeypatch.delenv('MENTALSPACE_REQUEST_TIMEOUT', raising=False)

    settings = get_settings()
    assert settings.api_url == 'http://localhost:5000/api'
    assert settings.request_timeout == 30.0
    assert settings.session_timeout_minutes == 30
    assert settings.data_dir == tmp_path / 'data'
    assert settings.data_dir.is_dir()
    assert not settings.is_production


def test_production_requires_secrets(monkeypatch):
    monkeypatch.setenv('ENVIRONMENT', 'production')
    monkeypatch.delenv('JWT_SECRET', raising=False)
    with pytest.raises(ConfigurationError):
        get_settings()


def test_invalid_numbers_rejected(monkeypatch):
    monkeypatch.setenv('MENTALSPACE_REQUEST_TIMEOUT', 'soon')
    with pytest.raises(ConfigurationError):
        get_settings()
