import os
from dataclasses import dataclass
from datetime import timedelta

from .crypto import Keyring

DEFAULT_DATABASE_URL = "sqlite:///./giftcodes.db"
DEFAULT_SECRET = "dev_secret_change_me"


@dataclass(frozen=True)
class Settings:
    keyring: Keyring
    database_url: str = DEFAULT_DATABASE_URL
    fingerprint_secret: str = DEFAULT_SECRET
    admin_token_secret: str = DEFAULT_SECRET
    default_ttl: timedelta = timedelta(days=365)
    redis_url: str = "redis://localhost:6379/0"
    sweep_interval_seconds: float = 300.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        # GIFT_CODE_KEYS has no default
        keyring = Keyring.parse(
            os.environ["GIFT_CODE_KEYS"],
            os.environ.get("GIFT_CODE_ACTIVE_KEY") or None,
        )
        return cls(
            keyring=keyring,
            database_url=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            fingerprint_secret=os.environ.get("GIFT_CODE_FINGERPRINT_SECRET", DEFAULT_SECRET),
            admin_token_secret=os.environ.get("ADMIN_TOKEN_SECRET", DEFAULT_SECRET),
            default_ttl=timedelta(days=int(os.environ.get("GIFT_CODE_DEFAULT_TTL_DAYS", "365"))),
            redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
            sweep_interval_seconds=float(os.environ.get("SWEEP_INTERVAL_SECONDS", "300")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
