from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from cache_proxy.cache_store import PersistentCache
from cache_proxy.constants import OPENSKY_DAILY_QUOTA_ANON, OPENSKY_DAILY_QUOTA_AUTH
from cache_proxy.poi_cache import PoiCache
from cache_proxy.quota_limiter import QuotaLimiter
from cache_proxy.radius_hints import RadiusHintStore
from cache_proxy.search_client import GatedOverpass, SearchClient
from cache_proxy.settings import Settings
from cache_proxy.upstream import HttpFetcher, OpenSkyClient
from cache_proxy.upstream_gate import UpstreamGate


def resolve_daily_quota(settings: Settings) -> int:
    if settings.opensky_daily_quota:
        return int(settings.opensky_daily_quota)
    return OPENSKY_DAILY_QUOTA_AUTH if settings.opensky_configured else OPENSKY_DAILY_QUOTA_ANON


@dataclass
class ProxyState:
    settings: Settings
    cache: PersistentCache
    hints: RadiusHintStore
    pois: PoiCache
    fetcher: HttpFetcher
    gate: UpstreamGate
    limiter: QuotaLimiter
    opensky: OpenSkyClient

    # request accounting (middleware)
    api_error_counters: Dict[str, int] = field(default_factory=lambda: {"4xx": 0, "5xx": 0})
    loaded: bool = False

    @classmethod
    def from_settings(cls, settings: Settings, fetcher: Optional[HttpFetcher] = None) -> "ProxyState":
        cache = PersistentCache(settings.data_dir, flush_delay=settings.flush_delay)
        pois = PoiCache(settings.data_dir, flush_delay=settings.flush_delay)
        fetcher = fetcher or HttpFetcher(timeout=settings.http_timeout, user_agent=settings.user_agent)
        gate = UpstreamGate(
            cache,
            ttl=settings.overpass_ttl,
            min_interval=settings.overpass_min_interval,
            on_success=pois.ingest,
        )
        return cls(
            settings=settings,
            cache=cache,
            hints=RadiusHintStore(settings.data_dir, fuzzy_radius_m=settings.fuzzy_radius_m, flush_delay=settings.flush_delay),
            pois=pois,
            fetcher=fetcher,
            gate=gate,
            limiter=QuotaLimiter(resolve_daily_quota(settings), safety_margin=settings.opensky_safety_margin),
            opensky=OpenSkyClient(
                fetcher,
                settings.opensky_url,
                settings.opensky_token_url,
                settings.opensky_client_id,
                settings.opensky_client_secret,
            ),
        )

    def load(self):
        if self.loaded:
            return
        self.cache.load()
        self.hints.load()
        self.pois.load()
        self.gate.start()
        self.loaded = True

    def close(self):
        self.gate.close()
        self.cache.close()
        self.hints.close()
        self.pois.close()
        self.fetcher.close()
        self.loaded = False

    def search_client(self) -> SearchClient:
        """In-process SearchClient sharing this proxy's hints, gate and cache."""
        overpass = GatedOverpass(self.gate, self.fetcher, self.settings.overpass_url)
        return SearchClient(self.hints, overpass, cap_threshold=self.settings.overpass_cap)
