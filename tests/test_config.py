from pathlib import Path

import pytest

from config import DEV_TOKEN_SECRET, ConfigurationError, Settings

STRONG_SECRET = "b7f1c0d9e8a24f6b9c3d5e7f0a1b2c3d4e5f6a7b"


def production(**overrides):
    values = {
        "environment": "production",
        "stripe_secret_key": "sk_live_realkey",
        "stripe_webhook_secret": "whsec_realsecret",
        "download_token_secret": STRONG_SECRET,
    }
    values.update(overrides)
    return Settings(**values)


def test_development_defaults_are_accepted():
    settings = Settings().validate_secrets()

    assert settings.environment == "development"
    assert settings.download_token_secret == DEV_TOKEN_SECRET
    assert settings.max_downloads == 10
    assert settings.download_token_ttl_seconds == 86400


def test_production_with_real_secrets_is_accepted():
    assert production().validate_secrets().environment == "production"


@pytest.mark.parametrize("overrides,needle", [
    ({"download_token_secret": DEV_TOKEN_SECRET}, "DOWNLOAD_TOKEN_SECRET"),
    ({"download_token_secret": "short"}, "DOWNLOAD_TOKEN_SECRET"),
    ({"stripe_webhook_secret": "whsec_YOUR_SECRET"}, "STRIPE_WEBHOOK_SECRET"),
    ({"stripe_webhook_secret": ""}, "STRIPE_WEBHOOK_SECRET"),
    ({"stripe_secret_key": ""}, "STRIPE_SECRET_KEY"),
    ({"asset_backend": "s3"}, "S3_BUCKET"),
])
def test_production_fails_fast_on_unsafe_material(overrides, needle):
    with pytest.raises(ConfigurationError, match=needle):
        production(**overrides).validate_secrets()


def test_staging_is_held_to_production_rules():
    with pytest.raises(ConfigurationError):
        production(environment="staging", download_token_secret=DEV_TOKEN_SECRET).validate_secrets()


def test_from_env(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("CORS_ORIGINS", "https://stone.example,https://admin.stone.example")
    monkeypatch.setenv("MAX_DOWNLOADS", "5")
    monkeypatch.setenv("ASSET_ROOT", "/srv/public")
    monkeypatch.setenv("LEDGER_BACKEND", "postgres")
    monkeypatch.delenv("LOG_JSON", raising=False)

    settings = Settings.from_env()

    assert settings.environment == "production"
    assert settings.port == 9000
    assert settings.cors_origins == ["https://stone.example", "https://admin.stone.example"]
    assert settings.max_downloads == 5
    assert settings.asset_root == Path("/srv/public")
    assert settings.ledger_backend == "postgres"
    assert settings.log_json is True


def test_from_env_rejects_unknown_backends(monkeypatch):
    monkeypatch.setenv("ASSET_BACKEND", "ftp")
    with pytest.raises(ValueError):
        Settings.from_env()
