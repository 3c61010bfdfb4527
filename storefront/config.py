"""Runtime settings, read from environment variables."""
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_DATA_DIR = Path.home() / ".config" / "storefront"


@dataclass
class StorefrontConfig:
    backend_url: str | None
    backend_key: str
    data_dir: Path
    cart_key: str
    emailjs_service_id: str | None
    emailjs_template_id: str | None
    emailjs_public_key: str | None
    log_level: str
    debug_dir: Path
    http_timeout: float

    @property
    def store_file(self) -> Path:
        return self.data_dir / "local_storage.json"

    @property
    def email_enabled(self) -> bool:
        return bool(self.emailjs_service_id and self.emailjs_template_id and self.emailjs_public_key)


def load_config() -> StorefrontConfig:
    data_dir = Path(os.environ.get("STOREFRONT_DATA_DIR", str(DEFAULT_DATA_DIR))).expanduser()
    timeout = os.environ.get("STOREFRONT_HTTP_TIMEOUT", "10")
    try:
        http_timeout = float(timeout)
    except ValueError:
        raise ValueError(f"STOREFRONT_HTTP_TIMEOUT must be a number of seconds, got {timeout!r}")
    return StorefrontConfig(
        backend_url=(os.environ.get("STOREFRONT_BACKEND_URL") or None),
        backend_key=os.environ.get("STOREFRONT_BACKEND_KEY", ""),
        data_dir=data_dir,
        cart_key=os.environ.get("STOREFRONT_CART_KEY", "cart"),
        emailjs_service_id=os.environ.get("EMAILJS_SERVICE_ID") or None,
        emailjs_template_id=os.environ.get("EMAILJS_TEMPLATE_ID") or None,
        emailjs_public_key=os.environ.get("EMAILJS_PUBLIC_KEY") or None,
        log_level=os.environ.get("STOREFRONT_LOG_LEVEL", "INFO").upper(),
        debug_dir=Path(os.environ.get("STOREFRONT_DEBUG_DIR", str(data_dir / "debug"))).expanduser(),
        http_timeout=http_timeout,
    )
