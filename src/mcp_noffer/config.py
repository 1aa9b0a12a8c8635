"""Configuration loading and management."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

try:
    import tomli
except ImportError:  # pragma: no cover
    import tomllib as tomli  # Python 3.11+


CONFIG_DIR = Path.home() / ".config" / "mcp-noffer"
DEFAULT_IDENTITY_PATH = CONFIG_DIR / "identity.json"

# Exchange deadline, measured from publication
RESPONSE_TIMEOUT = 30.0


def normalize_relay_url(url: str) -> str:
    """Strip whitespace and a trailing slash so one relay maps to one socket."""
    url = url.strip()
    if url.endswith("/"):
        url = url[:-1]
    return url


def unique_relays(relays: list[str]) -> list[str]:
    """Normalized relay URLs in first-seen order, without duplicates."""
    result = []
    for relay in relays:
        relay = normalize_relay_url(relay)
        if relay and relay not in result:
            result.append(relay)
    return result


@dataclass
class Config:
    """Client configuration."""

    # Relays published to and listened on in addition to the pointer's own
    extra_relays: list[str] = field(default_factory=list)

    # Exchange settings
    response_timeout: float = RESPONSE_TIMEOUT
    publish_timeout: float = 10.0
    connect_timeout: float = 10.0
    attach_zap_request: bool = True

    # Discovery settings
    discovery_timeout: float = 10.0

    # Identity settings
    identity_path: Path = DEFAULT_IDENTITY_PATH

    def relays_for(self, relays: list[str]) -> list[str]:
        """Combine pointer relays with configured extras, without duplicates."""
        return unique_relays(list(relays) + self.extra_relays)


def load_config(path: Path) -> Config:
    """Load configuration from TOML file.

    Args:
        path: Path to config file

    Returns:
        Loaded configuration, merged with defaults
    """
    if not path.exists():
        return Config()

    with open(path, "rb") as f:
        data = tomli.load(f)

    relays = data.get("relays", {})
    exchange = data.get("exchange", {})
    discovery = data.get("discovery", {})
    identity = data.get("identity", {})

    identity_path: Optional[str] = identity.get("path")

    return Config(
        extra_relays=list(relays.get("extra", [])),
        response_timeout=float(exchange.get("response_timeout", RESPONSE_TIMEOUT)),
        publish_timeout=float(exchange.get("publish_timeout", 10.0)),
        connect_timeout=float(exchange.get("connect_timeout", 10.0)),
        attach_zap_request=exchange.get("attach_zap_request", True),
        discovery_timeout=float(discovery.get("timeout", 10.0)),
        identity_path=(
            Path(identity_path).expanduser() if identity_path else DEFAULT_IDENTITY_PATH
        ),
    )
