"""Shared constants for the cache proxy.

Keep radius-controller tuning, quota ladders and cache TTLs in one place.
"""

from __future__ import annotations

# Grid cells: lat/lon rounded to 3 decimals (~111 m)
GRID_DECIMALS: int = 3
GRID_STEP_DEG: float = 0.001

# Radius controller
DEFAULT_RADIUS_M: int = 3000
MIN_RADIUS_M: int = 100
MAX_RADIUS_M: int = 15000
RADIUS_CAPPED_FACTOR: float = 0.5
RADIUS_ERROR_FACTOR: float = 0.7
RADIUS_GROW_FACTOR: float = 1.3
MIN_USEFUL_POI: int = 5

# Fuzzy hint lookup range. Historically 1 mile; 20 km lets one capped downtown
# search seed a whole metro area.
ONE_MILE_M: float = 1609.344
FUZZY_RADIUS_M_DEFAULT: float = 20000.0

# Meters per degree of latitude (equirectangular approximation)
METERS_PER_DEG: float = 111320.0

# Overpass
OVERPASS_RESULT_LIMIT: int = 500
OVERPASS_TTL_SECONDS: int = 365 * 24 * 3600
OVERPASS_MIN_INTERVAL_SECONDS: float = 10.0
DEFAULT_POI_TAGS: list[str] = ["amenity", "shop", "tourism", "historic", "leisure", "office"]

# OpenSky quota + backoff
OPENSKY_DAILY_QUOTA_AUTH: int = 4000
OPENSKY_DAILY_QUOTA_ANON: int = 100
OPENSKY_SAFETY_MARGIN: float = 0.9
QUOTA_WINDOW_SECONDS: float = 24 * 3600.0
BACKOFF_SECONDS: tuple[int, ...] = (10, 20, 40, 80, 160, 300)
AIRCRAFT_TTL_SECONDS: int = 15

# Feed passthrough TTLs
EARTHQUAKES_TTL_SECONDS: int = 2 * 3600
NWS_ALERTS_TTL_SECONDS: int = 3600
METAR_TTL_SECONDS: int = 3600
# Windy preview image URLs expire after ~10 minutes
WEBCAMS_TTL_SECONDS: int = 600
WEBCAMS_LIMIT: int = 50

# Debounced disk snapshots
FLUSH_DELAY_SECONDS: float = 2.0
