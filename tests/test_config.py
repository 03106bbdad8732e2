from core.config import DEFAULT_ORACLE_URL, Settings


def test_settings_defaults(monkeypatch):
    for name in ("ORACLE_API_URL", "ORACLE_DAILY_LIMIT", "PURCHASES_API_KEY", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.oracle_url == DEFAULT_ORACLE_URL
    assert settings.oracle_daily_limit == 5
    assert settings.log_level == "INFO"
    assert settings.demo_mode is True


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("ORACLE_API_URL", "https://oracle.test/predict")
    monkeypatch.setenv("ORACLE_TIMEOUT_S", "7.5")
    monkeypatch.setenv("ORACLE_DAILY_LIMIT", "10")
    monkeypatch.setenv("ENTITLEMENT_MAX_RETRIES", "1")
    monkeypatch.setenv("PURCHASES_API_KEY", "appl_live_key")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.oracle_url == "https://oracle.test/predict"
    assert settings.oracle_timeout_s == 7.5
    assert settings.oracle_daily_limit == 10
    assert settings.entitlement_max_retries == 1
    assert settings.log_level == "DEBUG"
    assert settings.demo_mode is False


def test_placeholder_key_keeps_demo_mode(monkeypatch):
    monkeypatch.setenv("PURCHASES_API_KEY", "YOUR_REVENUECAT_KEY")

    assert Settings.from_env().demo_mode is True
