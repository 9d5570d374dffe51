"""Address geocoding with a cascading provider chain.

Resolution order for one address:

1. US Census one-line geocoder, full address.
2. OpenStreetMap Nominatim, full address, restricted to one country.
3. US Census again with only "city, state" (approximate, city-level).

Every provider call is sequential and separated by a fixed delay because
Nominatim's usage policy allows at most one request per second from a client.
A provider error never aborts the chain; it only counts as a miss.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import httpx
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app import models
from app.addresses import CleanAddress, build_address_string, clean_address
from app.config import Settings

logger = logging.getLogger(__name__)

SOURCE_CENSUS = "US Census"
SOURCE_NOMINATIM = "Nominatim"
SOURCE_CENSUS_CITY = "US Census (city-level)"

REASON_NO_PHYSICAL_ADDRESS = "no physical address"
REASON_NO_RESULTS = "no results from any geocoder"


@dataclass(frozen=True)
class GeocodeMatch:
    """First candidate returned by a provider."""

    latitude: float
    longitude: float
    display_name: Optional[str] = None


class Geocoder(Protocol):
    def geocode(self, query: str) -> Optional[GeocodeMatch]:
        """Return the provider's first candidate, or None when nothing matched."""
        ...


class _HttpGeocoder:
    """Shared HTTP plumbing: fixed User-Agent and a per-call timeout."""

    name = "geocoder"

    def __init__(
        self,
        url: str,
        *,
        user_agent: str,
        timeout: float,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._url = url
        self._headers = {"User-Agent": user_agent}
        self._timeout = timeout
        self._transport = transport

    def _get_json(self, params: dict):
        with httpx.Client(timeout=self._timeout, headers=self._headers, transport=self._transport) as client:
            resp = client.get(self._url, params=params)
            resp.raise_for_status()
            return resp.json()


class CensusGeocoder(_HttpGeocoder):
    name = SOURCE_CENSUS

    def __init__(self, url: str, *, benchmark: str = "Public_AR_Current", **kwargs):
        super().__init__(url, **kwargs)
        self._benchmark = benchmark

    def geocode(self, query: str) -> Optional[GeocodeMatch]:
        body = self._get_json({"address": query, "benchmark": self._benchmark, "format": "json"})
        result = body.get("result") if isinstance(body, dict) else None
        matches = result.get("addressMatches") if isinstance(result, dict) else None
        if not isinstance(matches, list) or not matches:
            return None
        m = matches[0]
        return GeocodeMatch(
            latitude=float(m["coordinates"]["y"]),
            longitude=float(m["coordinates"]["x"]),
            display_name=m.get("matchedAddress"),
        )


class NominatimGeocoder(_HttpGeocoder):
    name = SOURCE_NOMINATIM

    def __init__(self, url: str, *, country_code: str = "us", **kwargs):
        super().__init__(url, **kwargs)
        self._country_code = country_code

    def geocode(self, query: str) -> Optional[GeocodeMatch]:
        results = self._get_json(
            {
                "q": query,
                "format": "json",
                "limit": 1,
                "addressdetails": 1,
                "countrycodes": self._country_code,
            }
        )
        if not isinstance(results, list) or not results:
            return None
        r = results[0]
        return GeocodeMatch(
            latitude=float(r["lat"]),
            longitude=float(r["lon"]),
            display_name=r.get("display_name"),
        )


@dataclass(frozen=True)
class GeocodeOutcome:
    found: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source: Optional[str] = None
    approximate: bool = False
    display_name: Optional[str] = None
    reason: Optional[str] = None


QueryBuilder = Callable[[CleanAddress], Optional[str]]


def full_address_query(address: CleanAddress) -> Optional[str]:
    return build_address_string(address) or None


def city_state_query(address: CleanAddress) -> Optional[str]:
    if address.city and address.state:
        return f"{address.city}, {address.state}"
    return None


@dataclass(frozen=True)
class GeocodeStrategy:
    """One step of the fallback chain."""

    label: str
    geocoder: Geocoder
    query: QueryBuilder
    approximate: bool = False
    delay_before: bool = False


class GeocodingResolver:
    def __init__(
        self,
        strategies: list[GeocodeStrategy],
        *,
        delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.strategies = strategies
        self._delay = delay_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: Optional[httpx.BaseTransport] = None) -> "GeocodingResolver":
        common = dict(
            user_agent=settings.geocoder_user_agent,
            timeout=settings.geocode_timeout_seconds,
            transport=transport,
        )
        census = CensusGeocoder(settings.census_url, benchmark=settings.census_benchmark, **common)
        nominatim = NominatimGeocoder(settings.nominatim_url, country_code=settings.geocode_country, **common)
        return cls(
            [
                GeocodeStrategy(SOURCE_CENSUS, census, full_address_query),
                GeocodeStrategy(SOURCE_NOMINATIM, nominatim, full_address_query, delay_before=True),
                GeocodeStrategy(SOURCE_CENSUS_CITY, census, city_state_query, approximate=True, delay_before=True),
            ],
            delay_seconds=settings.geocode_delay_seconds,
        )

    def resolve(self, address) -> GeocodeOutcome:
        cleaned = clean_address(address)
        if cleaned is None:
            return GeocodeOutcome(found=False, reason=REASON_NO_PHYSICAL_ADDRESS)

        for strategy in self.strategies:
            query = strategy.query(cleaned)
            if not query:
                continue
            if strategy.delay_before:
                self._sleep(self._delay)
            try:
                match = strategy.geocoder.geocode(query)
            except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
                # timeouts, transport errors, non-2xx and unparseable bodies all count as a miss
                logger.warning("%s lookup failed for %r: %s", strategy.label, query, e)
                continue
            if match is not None:
                return GeocodeOutcome(
                    found=True,
                    latitude=match.latitude,
                    longitude=match.longitude,
                    source=strategy.label,
                    approximate=strategy.approximate,
                    display_name=match.display_name,
                )

        return GeocodeOutcome(found=False, reason=REASON_NO_RESULTS)


@dataclass
class GeocodeRunSummary:
    total: int = 0
    succeeded: int = 0
    approximate: int = 0
    failed: int = 0
    by_source: Counter = field(default_factory=Counter)
    failures: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "approximate": self.approximate,
            "failed": self.failed,
            "by_source": dict(self.by_source),
            "failures": list(self.failures),
        }


def addresses_missing_coordinates(db: Session) -> list[models.FarmAddress]:
    return (
        db.query(models.FarmAddress)
        .filter(or_(models.FarmAddress.latitude.is_(None), models.FarmAddress.longitude.is_(None)))
        .order_by(models.FarmAddress.id)
        .all()
    )


def geocode_missing_addresses(db: Session, resolver: GeocodingResolver) -> GeocodeRunSummary:
    """Geocode every address without coordinates, one at a time, committing each hit."""
    summary = GeocodeRunSummary()
    addresses = addresses_missing_coordinates(db)
    summary.total = len(addresses)
    logger.info("Found %d addresses to geocode", summary.total)

    for i, addr in enumerate(addresses, start=1):
        # read before any rollback expires the row
        addr_id, street, city, state = addr.id, addr.street, addr.city, addr.state
        address_text = build_address_string(addr)
        try:
            outcome = resolver.resolve(addr)
            if outcome.found:
                addr.latitude = outcome.latitude
                addr.longitude = outcome.longitude
                db.commit()
        except Exception as e:
            db.rollback()
            logger.exception("[%d/%d] %s, %s - geocoding failed", i, summary.total, city, state)
            outcome = GeocodeOutcome(found=False, reason=str(e))

        if not outcome.found:
            summary.failed += 1
            summary.failures.append(
                {
                    "id": addr_id,
                    "address": address_text,
                    "street": street,
                    "reason": outcome.reason,
                }
            )
            logger.info("[%d/%d] %s, %s - %s", i, summary.total, city, state, outcome.reason)
            continue

        summary.succeeded += 1
        summary.by_source[outcome.source] += 1
        if outcome.approximate:
            summary.approximate += 1
        logger.info(
            "[%d/%d] %s, %s -> %s, %s [%s]",
            i, summary.total, city, state, outcome.latitude, outcome.longitude, outcome.source,
        )

    return summary
