from __future__ import annotations
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

PACKAGE_DIR = Path(__file__).resolve().parent


def _env_bool(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in (
        "1", "true", "yes", "on"
    )


# ----------------------------
# Config & Constants
# ----------------------------
@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./topupstore.db"
    app_base_url: str = "http://localhost:8000"

    session_secret: str = "dev-secret-change-me"
    admin_username: str = "admin"
    admin_password: str = "supasecret"

    # 'midtrans' | 'mock'
    payment_backend: str = "midtrans"
    midtrans_server_key: str = ""
    midtrans_is_production: bool = False
    mock_secret: str = "supersecret"
    mock_webhook_url: str = "http://localhost:8000/midtrans-notification"

    digiflazz_username: str = ""
    digiflazz_dev_key: str = ""
    digiflazz_base_url: str = "https://api.digiflazz.com/v1"
    digiflazz_webhook_secret: str = ""

    # 'memory' | 'redis'
    pricecache_backend: str = "memory"
    pricecache_ttl_seconds: float = 300.0
    redis_url: str = "redis://127.0.0.1:6379"

    # 'overwrite' | 'ignore_terminal'
    fulfillment_callback_policy: str = "overwrite"

    fonnte_token: str = ""
    wablas_token: str = ""
    wablas_base_url: str = "https://solo.wablas.com"
    notify_country_code: str = "62"

    http_timeout_seconds: float = 10.0
    banner_dir: Path = field(
        default_factory=lambda: PACKAGE_DIR / "static" / "banners"
    )
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        d = cls()
        return cls(
            database_url=os.environ.get("DATABASE_URL", d.database_url),
            app_base_url=os.environ.get(
                "APP_BASE_URL", d.app_base_url
            ).rstrip("/"),
            session_secret=os.environ.get("SESSION_SECRET", d.session_secret),
            admin_username=os.environ.get("ADMIN_USERNAME", d.admin_username),
            admin_password=os.environ.get("ADMIN_PASSWORD", d.admin_password),
            payment_backend=os.environ.get(
                "PAYMENT_BACKEND", d.payment_backend
            ).lower(),
            midtrans_server_key=os.environ.get("MIDTRANS_SERVER_KEY", ""),
            midtrans_is_production=_env_bool("MIDTRANS_IS_PRODUCTION"),
            mock_secret=os.environ.get("MOCK_SECRET", d.mock_secret),
            mock_webhook_url=os.environ.get(
                "MOCK_WEBHOOK_URL", d.mock_webhook_url
            ),
            digiflazz_username=os.environ.get("DIGIFLAZZ_USERNAME", ""),
            digiflazz_dev_key=os.environ.get("DIGIFLAZZ_DEV_KEY", ""),
            digiflazz_base_url=os.environ.get(
                "DIGIFLAZZ_BASE_URL", d.digiflazz_base_url
            ).rstrip("/"),
            digiflazz_webhook_secret=os.environ.get(
                "DIGIFLAZZ_WEBHOOK_SECRET", ""
            ),
            pricecache_backend=os.environ.get(
                "PRICECACHE_BACKEND", d.pricecache_backend
            ).lower(),
            pricecache_ttl_seconds=float(
                os.environ.get("PRICECACHE_TTL_SECONDS", "300")
            ),
            redis_url=os.environ.get("REDIS_URL", d.redis_url),
            fulfillment_callback_policy=os.environ.get(
                "FULFILLMENT_CALLBACK_POLICY", d.fulfillment_callback_policy
            ).lower(),
            fonnte_token=os.environ.get("FONNTE_TOKEN", ""),
            wablas_token=os.environ.get("WABLAS_TOKEN", ""),
            wablas_base_url=os.environ.get(
                "WABLAS_BASE_URL", d.wablas_base_url
            ).rstrip("/"),
            notify_country_code=os.environ.get("NOTIFY_COUNTRY_CODE", "62"),
            http_timeout_seconds=float(
                os.environ.get("HTTP_TIMEOUT_SECONDS", "10")
            ),
            banner_dir=Path(os.environ["BANNER_DIR"])
            if os.environ.get("BANNER_DIR") else d.banner_dir,
            log_level=os.environ.get("LOG_LEVEL", d.log_level).upper(),
            log_json=_env_bool("LOG_JSON"),
        )

    def with_overrides(self, **kw) -> "Settings":
        return replace(self, **kw)
