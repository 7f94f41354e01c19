"""
Configuration Tests

Tests environment loading and the component configs built from it.
"""

import pytest

from kitchenoff.errors import ConfigurationError
from kitchenoff.utils.config import SAMEDAY_BASE_URL, load_settings


ENV_VARS = [
    "SMARTBILL_USERNAME", "SMARTBILL_TOKEN", "SMARTBILL_COMPANY_VAT", "SMARTBILL_ENABLED",
    "SMARTBILL_DEFAULT_SERIES", "SAMEDAY_USERNAME", "SAMEDAY_PASSWORD", "SAMEDAY_AUTH_COOLDOWN",
    "HTTP_TIMEOUT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    """Test settings loaded from the environment"""

    def test_defaults(self):
        settings = load_settings(env_file=None)

        assert settings.SMARTBILL_ENABLED is False
        assert settings.SMARTBILL_DEFAULT_SERIES == "KTO"
        assert settings.SAMEDAY_AUTH_COOLDOWN == 300.0
        assert settings.SAMEDAY_BASE_URL == SAMEDAY_BASE_URL

    def test_invoice_service_config(self, monkeypatch):
        monkeypatch.setenv("SMARTBILL_ENABLED", "true")
        monkeypatch.setenv("SMARTBILL_USERNAME", "billing@kitchenoff.ro")
        monkeypatch.setenv("SMARTBILL_TOKEN", "sb-token")
        monkeypatch.setenv("SMARTBILL_COMPANY_VAT", "RO40123456")
        monkeypatch.setenv("HTTP_TIMEOUT", "5")

        config = load_settings(env_file=None).invoice_service_config()

        assert config.enable_smartbill is True
        assert config.smartbill.company_vat == "RO40123456"
        assert config.smartbill.timeout == 5.0

    def test_enabled_without_credentials(self, monkeypatch):
        monkeypatch.setenv("SMARTBILL_ENABLED", "1")
        monkeypatch.setenv("SMARTBILL_USERNAME", "billing@kitchenoff.ro")

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(env_file=None).invoice_service_config()
        assert "SMARTBILL_TOKEN" in str(exc_info.value)

    def test_disabled_without_credentials(self):
        config = load_settings(env_file=None).invoice_service_config()
        assert config.enable_smartbill is False

    def test_sameday_config(self, monkeypatch):
        monkeypatch.setenv("SAMEDAY_USERNAME", "kitchenoff")
        monkeypatch.setenv("SAMEDAY_PASSWORD", "secret")
        monkeypatch.setenv("SAMEDAY_AUTH_COOLDOWN", "60")

        config = load_settings(env_file=None).sameday_config()

        assert config.auth_cooldown == 60.0
        assert config.username == "kitchenoff"

    def test_sameday_requires_credentials(self):
        with pytest.raises(ConfigurationError):
            load_settings(env_file=None).sameday_config()

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("SMARTBILL_DEFAULT_SERIES=KTX\nSAMEDAY_AUTH_COOLDOWN=120\n")

        settings = load_settings(env_file=str(env_file))

        assert settings.SMARTBILL_DEFAULT_SERIES == "KTX"
        assert settings.SAMEDAY_AUTH_COOLDOWN == 120.0
