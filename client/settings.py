import os
from dataclasses import dataclass
from typing import Optional


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, default))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


@dataclass
class Settings:
    """Client configuration, read from the environment by from_env()."""

    api_url: str = "http://localhost:8000/api"
    fallback_api_url: Optional[str] = None
    read_timeout: float = 10.0
    write_timeout: float = 15.0
    fetch_retries: int = 2
    retry_backoff: float = 1.0
    settle_delay: float = 0.5
    poll_interval: float = 5.0
    notification_log: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_url=os.getenv("INVENTORY_API_URL", cls.api_url),
            fallback_api_url=os.getenv("INVENTORY_FALLBACK_API_URL") or None,
            read_timeout=_float("INVENTORY_READ_TIMEOUT", cls.read_timeout),
            write_timeout=_float("INVENTORY_WRITE_TIMEOUT", cls.write_timeout),
            fetch_retries=_int("INVENTORY_FETCH_RETRIES", cls.fetch_retries),
            retry_backoff=_float("INVENTORY_RETRY_BACKOFF", cls.retry_backoff),
            settle_delay=_float("INVENTORY_SETTLE_DELAY", cls.settle_delay),
            poll_interval=_float("INVENTORY_POLL_INTERVAL", cls.poll_interval),
            notification_log=os.getenv("INVENTORY_NOTIFICATION_LOG") or None,
        )

    @property
    def endpoints(self) -> list:
        urls = [self.api_url]
        if self.fallback_api_url and self.fallback_api_url != self.api_url:
            urls.append(self.fallback_api_url)
        return urls
