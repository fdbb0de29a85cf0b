from decimal import Decimal

from app.core.config import Settings


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("PLATFORM_FEE_RATE", "0.15")
    monkeypatch.setenv("CHAPA_WEBHOOK_SECRET", "whsec_env")

    config = Settings(_env_file=None)

    assert Settings.model_config["env_file"] == ".env"
    assert config.PLATFORM_FEE_RATE == Decimal("0.15")
    assert config.CHAPA_WEBHOOK_SECRET == "whsec_env"
    assert config.ESCROW_CURRENCY == "ETB"
