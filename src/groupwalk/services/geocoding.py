"""Address geocoding against a Nominatim-compatible HTTP API."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, Generic, Optional, TypeVar

import httpx

from ..config import settings
from ..models.domain import Location

T = TypeVar("T")


class GeocodingCache(Generic[T]):
    """Thread-safe key/value cache whose entries expire ``ttl_seconds`` after being stored.

    Owned by whoever builds the geocoder; pass a fake ``clock`` in tests.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] | None = None) -> None:
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.geocoding_cache_ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[str, tuple[float, T]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass(frozen=True, slots=True)
class Address:
    street: str
    postal_code: str
    city: str
    house_number: str = ""
    country: str = ""

    def query(self, default_country: str) -> str:
        street = f"{self.street} {self.house_number}".strip()
        return ", ".join(part for part in (street, f"{self.postal_code} {self.city}".strip(), self.country or default_country) if part)


@dataclass(frozen=True, slots=True)
class GeocodingResult:
    location: Location
    display_name: str
    postal_code: Optional[str] = None


def _cache_key(query: str) -> str:
    return " ".join(query.lower().split())


class NominatimGeocoder:
    def __init__(
        self,
        base_url: str | None = None,
        user_agent: str | None = None,
        country: str | None = None,
        cache: GeocodingCache[Optional[GeocodingResult]] | None = None,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = (base_url or settings.geocoding_base_url).rstrip("/")
        if not self.base_url:
            raise ValueError("Geocoding base URL is not configured.")
        self.user_agent = user_agent or settings.geocoding_user_agent
        self.country = country or settings.geocoding_country
        self.cache = cache if cache is not None else GeocodingCache()
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout, connect=5.0),
            headers={"User-Agent": self.user_agent},
        )

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: dict) -> object:
        """Single request; HTTP and transport errors propagate to the caller."""

        response = self._client.get(f"{self.base_url}/{path}", params=params, headers={"User-Agent": self.user_agent})
        response.raise_for_status()
        return response.json()

    def geocode(self, address: Address | str) -> Optional[GeocodingResult]:
        """Resolve an address to coordinates. ``None`` when nothing matches."""

        query = address.query(self.country) if isinstance(address, Address) else address.strip()
        if not query:
            raise ValueError("Address must not be empty")
        key = _cache_key(query)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        data = self._get("search", {"q": query, "format": "json", "limit": 1, "addressdetails": 1})
        result = None
        if isinstance(data, list) and data:
            top = data[0]
            result = GeocodingResult(
                location=Location(float(top["lat"]), float(top["lon"])),
                display_name=top.get("display_name", query),
                postal_code=(top.get("address") or {}).get("postcode"),
            )
            self.cache.set(key, result)
        else:
            logging.info(f"No geocoding match for '{query}'")
        return result

    def reverse_geocode(self, location: Location) -> Optional[GeocodingResult]:
        if not location.is_valid:
            raise ValueError("Cannot reverse geocode an invalid location")
        key = f"reverse:{location.latitude:.6f},{location.longitude:.6f}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        data = self._get(
            "reverse",
            {"lat": location.latitude, "lon": location.longitude, "format": "json", "addressdetails": 1},
        )
        if not isinstance(data, dict) or "error" in data:
            return None
        result = GeocodingResult(
            location=location,
            display_name=data.get("display_name", ""),
            postal_code=(data.get("address") or {}).get("postcode"),
        )
        self.cache.set(key, result)
        return result


@lru_cache
def get_geocoder() -> Optional[NominatimGeocoder]:
    """Shared geocoder for the API process, or ``None`` when geocoding is switched off."""

    if not settings.geocoding_enabled:
        logging.info("Geocoding disabled; bookings without coordinates will be skipped")
        return None
    return NominatimGeocoder(cache=GeocodingCache())
