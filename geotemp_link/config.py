"""Configuration loader for geotemp-link."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants

GEO_PROVIDERS = ("none", "static", "http")
BROKER_TRANSPORTS = ("websockets", "tcp")


class ConfigurationError(ValueError):
    """Raised when the configuration file holds an unusable value."""


@dataclass(slots=True)
class BrokerConfig:
    host: str = constants.DEFAULT_BROKER_HOST
    port: int = constants.DEFAULT_BROKER_PORT
    transport: str = constants.DEFAULT_BROKER_TRANSPORT
    path: str = constants.DEFAULT_BROKER_PATH
    use_tls: bool = True
    username: Optional[str] = None
    password: Optional[str] = None
    keepalive: int = 60


@dataclass(slots=True)
class SessionConfig:
    shared_topic: str = constants.DEFAULT_SHARED_TOPIC
    topic_prefix: str = constants.DEFAULT_TOPIC_PREFIX
    retry_delay_seconds: float = constants.DEFAULT_RETRY_DELAY_SECONDS
    share_interval_seconds: float = 0.0  # 0 disables periodic sharing


@dataclass(slots=True)
class GeolocationConfig:
    provider: str = "none"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    url: Optional[str] = None
    interval_seconds: float = constants.DEFAULT_GEO_INTERVAL_SECONDS


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class LinkConfig:
    broker: BrokerConfig
    session: SessionConfig
    geolocation: GeolocationConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


def _optional_float(parser: ConfigParser, section: str, option: str) -> Optional[float]:
    value = parser.get(section, option, fallback="").strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"[{section}] {option} must be a number") from exc


def load_config(path: Optional[Path] = None) -> LinkConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "broker": {
                "host": constants.DEFAULT_BROKER_HOST,
                "port": str(constants.DEFAULT_BROKER_PORT),
                "transport": constants.DEFAULT_BROKER_TRANSPORT,
                "path": constants.DEFAULT_BROKER_PATH,
                "use_tls": "true",
                "keepalive": "60",
            },
            "session": {
                "shared_topic": constants.DEFAULT_SHARED_TOPIC,
                "topic_prefix": constants.DEFAULT_TOPIC_PREFIX,
                "retry_delay_seconds": str(constants.DEFAULT_RETRY_DELAY_SECONDS),
                "share_interval_seconds": "0",
            },
            "geolocation": {
                "provider": "none",
                "interval_seconds": str(constants.DEFAULT_GEO_INTERVAL_SECONDS),
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    host_value = parser.get("broker", "host")
    port_value = parser.getint("broker", "port", fallback=constants.DEFAULT_BROKER_PORT)

    if ":" in host_value:
        host_part, port_part = host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            host_value = host_part
            port_value = parsed_port
            parser.set("broker", "host", host_part)
            parser.set("broker", "port", str(parsed_port))

    transport = parser.get("broker", "transport").strip().lower()
    if transport not in BROKER_TRANSPORTS:
        raise ConfigurationError(
            f"[broker] transport must be one of {', '.join(BROKER_TRANSPORTS)}"
        )

    broker = BrokerConfig(
        host=host_value,
        port=port_value,
        transport=transport,
        path=parser.get("broker", "path"),
        use_tls=parser.getboolean("broker", "use_tls", fallback=True),
        username=parser.get("broker", "username", fallback=None),
        password=parser.get("broker", "password", fallback=None),
        keepalive=max(5, parser.getint("broker", "keepalive", fallback=60)),
    )

    session = SessionConfig(
        shared_topic=parser.get("session", "shared_topic"),
        topic_prefix=parser.get("session", "topic_prefix").rstrip("/"),
        retry_delay_seconds=max(
            0.0,
            parser.getfloat(
                "session",
                "retry_delay_seconds",
                fallback=constants.DEFAULT_RETRY_DELAY_SECONDS,
            ),
        ),
        share_interval_seconds=max(
            0.0, parser.getfloat("session", "share_interval_seconds", fallback=0.0)
        ),
    )

    provider = parser.get("geolocation", "provider").strip().lower()
    if provider not in GEO_PROVIDERS:
        raise ConfigurationError(
            f"[geolocation] provider must be one of {', '.join(GEO_PROVIDERS)}"
        )

    geolocation = GeolocationConfig(
        provider=provider,
        latitude=_optional_float(parser, "geolocation", "latitude"),
        longitude=_optional_float(parser, "geolocation", "longitude"),
        url=parser.get("geolocation", "url", fallback=None) or None,
        interval_seconds=max(
            0.5,
            parser.getfloat(
                "geolocation",
                "interval_seconds",
                fallback=constants.DEFAULT_GEO_INTERVAL_SECONDS,
            ),
        ),
    )

    if provider == "static" and (
        geolocation.latitude is None or geolocation.longitude is None
    ):
        raise ConfigurationError(
            "[geolocation] static provider requires latitude and longitude"
        )
    if provider == "http" and not geolocation.url:
        raise ConfigurationError("[geolocation] http provider requires url")

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return LinkConfig(
        broker=broker,
        session=session,
        geolocation=geolocation,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def save_config(config: LinkConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
