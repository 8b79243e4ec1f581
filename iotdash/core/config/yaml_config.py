from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from iotdash.core.liveness import DEFAULT_OFFLINE_TIMEOUT_MS
from iotdash.core.state.alert_store import DEFAULT_COOLDOWN_MS
from iotdash.core.state.telemetry_buffer import DEFAULT_CAPACITY
from iotdash.core.state.threshold_store import DEFAULT_THRESHOLD
from iotdash.domain.models import Threshold

CONFIG_ENV_VAR = "IOTDASH_CONFIG"


@dataclass(frozen=True)
class DefaultThresholdConfig:
    """Fallback bounds applied to devices without a custom threshold."""
    temperature_max: Optional[float] = DEFAULT_THRESHOLD.temperature_max
    temperature_min: Optional[float] = DEFAULT_THRESHOLD.temperature_min
    humidity_max: Optional[float] = DEFAULT_THRESHOLD.humidity_max
    humidity_min: Optional[float] = DEFAULT_THRESHOLD.humidity_min
    enabled: bool = True

    def to_threshold(self) -> Threshold:
        return Threshold(
            device_id="*",
            temperature_max=self.temperature_max,
            temperature_min=self.temperature_min,
            humidity_max=self.humidity_max,
            humidity_min=self.humidity_min,
            enabled=self.enabled,
        )


@dataclass(frozen=True)
class EngineConfigData:
    """State engine tunables plus the liveness sweep interval."""
    buffer_capacity: int = DEFAULT_CAPACITY
    offline_timeout_ms: int = DEFAULT_OFFLINE_TIMEOUT_MS
    liveness_interval_ms: int = 1_000
    alert_cooldown_ms: int = DEFAULT_COOLDOWN_MS
    default_threshold: DefaultThresholdConfig = field(default_factory=DefaultThresholdConfig)


@dataclass(frozen=True)
class MqttConfig:
    """MQTT broker settings used by the bridge."""
    enabled: bool = True
    broker_url: str = "mqtt://localhost:1883"
    client_id: str = "iot-dashboard-server"
    username: Optional[str] = None
    password: Optional[str] = None
    keepalive_s: int = 30
    qos: int = 1


@dataclass(frozen=True)
class HttpConfig:
    """Bind address and allowed CORS origins of the HTTP query API."""
    host: str = "localhost"
    port: int = 3001
    cors_origins: Tuple[str, ...] = ("http://localhost:5173",)


@dataclass(frozen=True)
class SimulatorConfig:
    """Mock device traffic generator."""
    enabled: bool = False
    interval_ms: int = 2_000
    seed: Optional[int] = None


@dataclass(frozen=True)
class WebhookConfigData:
    """Webhook notifier configuration (URL + auth). No URL disables delivery."""
    url: Optional[str] = None
    auth_header: Optional[str] = None
    timeout_s: float = 3.0
    verify_tls: bool = True


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    """
    Root application configuration loaded from YAML.

    Every section is optional; a missing file yields the all-default config.
    """
    engine: EngineConfigData = field(default_factory=EngineConfigData)
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)
    webhook: WebhookConfigData = field(default_factory=WebhookConfigData)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("config.yaml must contain a YAML mapping at the root")
    return data


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    s = raw.get(name) or {}
    if not isinstance(s, dict):
        raise ValueError(f"config section '{name}' must be a mapping")
    return s


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a positive integer")
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a positive integer") from None
    if n < 1:
        raise ValueError(f"{name} must be a positive integer")
    return n


def _optional_float(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number")
    try:
        f = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"{name} must be a number") from None
    if not math.isfinite(f):
        raise ValueError(f"{name} must be a finite number")
    return f


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _origins(value: Any) -> Tuple[str, ...]:
    # "a,b" from the environment, or a YAML list
    items = value.split(",") if isinstance(value, str) else list(value or [])
    origins = tuple(str(o).strip() for o in items if str(o).strip())
    if not origins:
        raise ValueError("http.cors_origins must name at least one origin")
    return origins


def _resolve_default_config_path() -> Path:
    """
    Resolve config.yaml location.

    Priority:
    1) IOTDASH_CONFIG env var if provided
    2) ./config.yaml in current working directory
    """
    env = os.getenv(CONFIG_ENV_VAR)
    if env:
        return Path(env).expanduser().resolve()
    return Path("config.yaml").resolve()


def _load_default_threshold(d: Dict[str, Any]) -> DefaultThresholdConfig:
    base = DefaultThresholdConfig()
    th = DefaultThresholdConfig(
        temperature_max=_optional_float(d.get("temperature_max", base.temperature_max), "temperature_max"),
        temperature_min=_optional_float(d.get("temperature_min", base.temperature_min), "temperature_min"),
        humidity_max=_optional_float(d.get("humidity_max", base.humidity_max), "humidity_max"),
        humidity_min=_optional_float(d.get("humidity_min", base.humidity_min), "humidity_min"),
        enabled=bool(d.get("enabled", True)),
    )
    if th.temperature_max is not None and th.temperature_min is not None:
        if th.temperature_max <= th.temperature_min:
            raise ValueError("default_threshold: temperature_max must be greater than temperature_min")
    if th.humidity_max is not None and th.humidity_min is not None:
        if th.humidity_max <= th.humidity_min:
            raise ValueError("default_threshold: humidity_max must be greater than humidity_min")
    return th


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """
    Load application configuration from YAML and convert into typed config objects.

    A few deployment values can be overridden from the environment
    (``SERVER_HOST``, ``SERVER_PORT``, ``MQTT_BROKER_URL``, ``MQTT_CLIENT_ID``,
    ``MQTT_USERNAME``, ``MQTT_PASSWORD``, ``WEBHOOK_URL``, ``LOG_LEVEL``).

    Parameters
    ----------
    path
        Explicit path to config.yaml. If None, uses default resolution.

    Returns
    -------
    AppConfig
        Parsed and validated configuration.

    Raises
    ------
    FileNotFoundError
        If an explicitly given config file does not exist.
    ValueError
        If a value is missing or invalid.
    """
    if path:
        cfg_path = Path(path).expanduser().resolve()
        if not cfg_path.exists():
            raise FileNotFoundError(f"Config not found: {cfg_path}")
    else:
        cfg_path = _resolve_default_config_path()

    raw = _read_yaml(cfg_path) if cfg_path.exists() else {}

    # ---- engine ----
    e = _section(raw, "engine")
    engine = EngineConfigData(
        buffer_capacity=_positive_int(e.get("buffer_capacity", DEFAULT_CAPACITY), "buffer_capacity"),
        offline_timeout_ms=_positive_int(e.get("offline_timeout_ms", DEFAULT_OFFLINE_TIMEOUT_MS), "offline_timeout_ms"),
        liveness_interval_ms=_positive_int(e.get("liveness_interval_ms", 1_000), "liveness_interval_ms"),
        alert_cooldown_ms=_positive_int(e.get("alert_cooldown_ms", DEFAULT_COOLDOWN_MS), "alert_cooldown_ms"),
        default_threshold=_load_default_threshold(_section(e, "default_threshold")),
    )

    # ---- mqtt ----
    m = _section(raw, "mqtt")
    mqtt = MqttConfig(
        enabled=bool(m.get("enabled", True)),
        broker_url=str(os.getenv("MQTT_BROKER_URL") or m.get("broker_url", "mqtt://localhost:1883")),
        client_id=str(os.getenv("MQTT_CLIENT_ID") or m.get("client_id", "iot-dashboard-server")),
        username=_optional_str(os.getenv("MQTT_USERNAME") or m.get("username")),
        password=_optional_str(os.getenv("MQTT_PASSWORD") or m.get("password")),
        keepalive_s=_positive_int(m.get("keepalive_s", 30), "keepalive_s"),
        qos=int(m.get("qos", 1)),
    )
    if mqtt.qos not in (0, 1, 2):
        raise ValueError("mqtt.qos must be 0, 1 or 2")

    # ---- http ----
    h = _section(raw, "http")
    http = HttpConfig(
        host=str(os.getenv("SERVER_HOST") or h.get("host", "localhost")),
        port=_positive_int(os.getenv("SERVER_PORT") or h.get("port", 3001), "port"),
        cors_origins=_origins(os.getenv("CORS_ORIGIN") or h.get("cors_origins", "http://localhost:5173")),
    )

    # ---- simulator ----
    s = _section(raw, "simulator")
    seed = s.get("seed")
    simulator = SimulatorConfig(
        enabled=bool(s.get("enabled", False)),
        interval_ms=_positive_int(s.get("interval_ms", 2_000), "interval_ms"),
        seed=int(seed) if seed is not None else None,
    )

    # ---- webhook ----
    w = _section(raw, "webhook")
    webhook = WebhookConfigData(
        url=_optional_str(os.getenv("WEBHOOK_URL") or w.get("url")),
        auth_header=_optional_str(w.get("auth_header")),
        timeout_s=float(w.get("timeout_s", 3.0)),
        verify_tls=bool(w.get("verify_tls", True)),
    )

    # ---- logging ----
    lg = _section(raw, "logging")
    level = str(os.getenv("LOG_LEVEL") or lg.get("level", "INFO")).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ValueError(f"Unknown log level: {level}")

    return AppConfig(
        engine=engine,
        mqtt=mqtt,
        http=http,
        simulator=simulator,
        webhook=webhook,
        logging=LoggingConfig(level=level),
    )
