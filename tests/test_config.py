import dataclasses

from topupstore.config import Settings


def test_from_env_reads_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("APP_BASE_URL", "https://shop.example/")
    monkeypatch.setenv("PAYMENT_BACKEND", "MOCK")
    monkeypatch.setenv("MIDTRANS_IS_PRODUCTION", "yes")
    monkeypatch.setenv("PRICECACHE_TTL_SECONDS", "60")
    monkeypatch.setenv("FULFILLMENT_CALLBACK_POLICY", "Ignore_Terminal")
    monkeypatch.setenv("BANNER_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_LEVEL", "debug")

    s = Settings.from_env()
    assert s.app_base_url == "https://shop.example"
    assert s.payment_backend == "mock"
    assert s.midtrans_is_production
    assert s.pricecache_ttl_seconds == 60.0
    assert s.fulfillment_callback_policy == "ignore_terminal"
    assert s.banner_dir == tmp_path
    assert s.log_level == "DEBUG"


def test_from_env_defaults(monkeypatch):
    for f in dataclasses.fields(Settings):
        monkeypatch.delenv(f.name.upper(), raising=False)

    s = Settings.from_env()
    assert s == Settings()
    # only the server key signs gateway traffic
    assert [f.name for f in dataclasses.fields(Settings)
            if f.name.startswith("midtrans_")] == [
        "midtrans_server_key", "midtrans_is_production",
    ]


def test_with_overrides_returns_copy():
    base = Settings()
    s = base.with_overrides(payment_backend="mock")
    assert s.payment_backend == "mock"
    assert base.payment_backend == "midtrans"
