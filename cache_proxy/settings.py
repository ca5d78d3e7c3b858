"""Runtime settings for the cache proxy.

Layering: dataclass defaults <- proxy_config.yaml <- GEOPROXY_* environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

import yaml

from cache_proxy.constants import (
    AIRCRAFT_TTL_SECONDS,
    FLUSH_DELAY_SECONDS,
    FUZZY_RADIUS_M_DEFAULT,
    OPENSKY_SAFETY_MARGIN,
    OVERPASS_MIN_INTERVAL_SECONDS,
    OVERPASS_RESULT_LIMIT,
    OVERPASS_TTL_SECONDS,
)

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_PATH = os.environ.get("GEOPROXY_CONFIG", os.path.join(SCRIPT_DIR, "proxy_config.yaml"))


@dataclass
class Settings:
    data_dir: str = os.path.join(SCRIPT_DIR, "..", "data")
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    overpass_url: str = "https://overpass-api.de/api/interpreter"
    overpass_min_interval: float = OVERPASS_MIN_INTERVAL_SECONDS
    overpass_ttl: int = OVERPASS_TTL_SECONDS
    overpass_cap: int = OVERPASS_RESULT_LIMIT

    opensky_url: str = "https://opensky-network.org/api/states/all"
    opensky_token_url: str = (
        "https://auth.opensky-network.org/auth/realms/opensky-network/protocol/openid-connect/token"
    )
    opensky_client_id: str = ""
    opensky_client_secret: str = ""
    opensky_safety_margin: float = OPENSKY_SAFETY_MARGIN
    opensky_daily_quota: Optional[int] = None  # None -> derived from credentials
    aircraft_ttl: int = AIRCRAFT_TTL_SECONDS

    earthquakes_url: str = "https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary/2.5_week.geojson"
    nws_alerts_url: str = "https://api.weather.gov/alerts/active?status=actual&message_type=alert"
    metar_url: str = "https://aviationweather.gov/api/data/metar"
    webcams_url: str = "https://api.windy.com/webcams/api/v3/webcams"
    webcams_api_key: str = ""
    user_agent: str = "cache-proxy/1.0 (contact@example.com)"

    fuzzy_radius_m: float = FUZZY_RADIUS_M_DEFAULT
    flush_delay: float = FLUSH_DELAY_SECONDS
    connect_timeout: float = 15.0
    read_timeout: float = 60.0

    @property
    def opensky_configured(self) -> bool:
        return bool(self.opensky_client_id and self.opensky_client_secret)

    @property
    def http_timeout(self) -> tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)


def _coerce(value: Any, current: Any) -> Any:
    if isinstance(current, bool):
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if current is None and value not in (None, ""):
        return int(value)
    return value


def load_yaml_config(path: str = CONFIG_PATH) -> Dict[str, Any]:
    """Load the optional YAML overrides; a missing or malformed file is treated as empty."""
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(config_path: str = CONFIG_PATH, env: Optional[Dict[str, str]] = None, **overrides) -> Settings:
    env = os.environ if env is None else env
    settings = Settings()
    known = {f.name for f in fields(Settings)}

    for k, v in load_yaml_config(config_path).items():
        if k in known and v is not None:
            setattr(settings, k, _coerce(v, getattr(settings, k)))

    for name in known:
        raw = env.get(f"GEOPROXY_{name.upper()}")
        if raw is not None and raw != "":
            setattr(settings, name, _coerce(raw, getattr(settings, name)))

    # Upstream credentials keep their documented names
    if env.get("OPENSKY_CLIENT_ID"):
        settings.opensky_client_id = env["OPENSKY_CLIENT_ID"]
    if env.get("OPENSKY_CLIENT_SECRET"):
        settings.opensky_client_secret = env["OPENSKY_CLIENT_SECRET"]
    if env.get("WINDY_API_KEY"):
        settings.webcams_api_key = env["WINDY_API_KEY"]

    for k, v in overrides.items():
        if k not in known:
            raise TypeError(f"Unknown setting: {k}")
        setattr(settings, k, v)

    settings.data_dir = os.path.abspath(settings.data_dir)
    return settings
