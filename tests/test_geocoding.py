from __future__ import annotations

import httpx
import pytest

from app import models
from app.config import Settings
from app.geocoding import (
    REASON_NO_PHYSICAL_ADDRESS,
    REASON_NO_RESULTS,
    SOURCE_CENSUS,
    SOURCE_CENSUS_CITY,
    SOURCE_NOMINATIM,
    CensusGeocoder,
    GeocodeMatch,
    GeocodeStrategy,
    GeocodingResolver,
    NominatimGeocoder,
    city_state_query,
    full_address_query,
    geocode_missing_addresses,
)

STREET_MATCH = GeocodeMatch(latitude=43.98521, longitude=-90.50419, display_name="100 BOG RD, TOMAH, WI, 54660")
CITY_MATCH = GeocodeMatch(latitude=43.98, longitude=-90.50, display_name="TOMAH, WI")


class FakeGeocoder:
    """Answers from a query -> result map; exceptions in the map are raised."""

    def __init__(self, answers: dict | None = None):
        self.answers = answers or {}
        self.queries: list[str] = []

    def geocode(self, query):
        self.queries.append(query)
        answer = self.answers.get(query)
        if isinstance(answer, Exception):
            raise answer
        return answer


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds):
        self.calls.append(seconds)


def mk_resolver(primary: FakeGeocoder, secondary: FakeGeocoder, sleep: SleepRecorder) -> GeocodingResolver:
    return GeocodingResolver(
        [
            GeocodeStrategy(SOURCE_CENSUS, primary, full_address_query),
            GeocodeStrategy(SOURCE_NOMINATIM, secondary, full_address_query, delay_before=True),
            GeocodeStrategy(SOURCE_CENSUS_CITY, primary, city_state_query, approximate=True, delay_before=True),
        ],
        delay_seconds=1.0,
        sleep=sleep,
    )


ADDRESS = {
    "street": "100 Bog Rd",
    "street2": None,
    "city": "Tomah",
    "state": "WI",
    "postal_code": "54660",
    "country": "US",
}
FULL = "100 Bog Rd, Tomah, WI, 54660"


def test_primary_match_never_calls_secondary():
    primary, secondary, sleep = FakeGeocoder({FULL: STREET_MATCH}), FakeGeocoder(), SleepRecorder()

    outcome = mk_resolver(primary, secondary, sleep).resolve(ADDRESS)

    assert outcome.found
    assert outcome.source == SOURCE_CENSUS
    assert outcome.approximate is False
    assert (outcome.latitude, outcome.longitude) == (43.98521, -90.50419)
    assert secondary.queries == []
    assert sleep.calls == []


def test_secondary_is_tried_after_delay_when_primary_misses():
    primary = FakeGeocoder()
    secondary = FakeGeocoder({FULL: STREET_MATCH})
    sleep = SleepRecorder()

    outcome = mk_resolver(primary, secondary, sleep).resolve(ADDRESS)

    assert outcome.source == SOURCE_NOMINATIM
    assert outcome.approximate is False
    assert primary.queries == [FULL]
    assert secondary.queries == [FULL]
    assert sleep.calls == [1.0]


def test_city_level_fallback_is_approximate():
    primary = FakeGeocoder({"Tomah, WI": CITY_MATCH})
    secondary = FakeGeocoder()
    sleep = SleepRecorder()

    outcome = mk_resolver(primary, secondary, sleep).resolve(ADDRESS)

    assert outcome.found
    assert outcome.approximate is True
    assert outcome.source == SOURCE_CENSUS_CITY
    assert outcome.source != SOURCE_CENSUS
    assert (outcome.latitude, outcome.longitude) == (CITY_MATCH.latitude, CITY_MATCH.longitude)
    assert (outcome.latitude, outcome.longitude) != (STREET_MATCH.latitude, STREET_MATCH.longitude)
    assert primary.queries == [FULL, "Tomah, WI"]
    assert sleep.calls == [1.0, 1.0]


def test_provider_errors_do_not_abort_the_chain():
    primary = FakeGeocoder({FULL: httpx.ConnectTimeout("timed out")})
    secondary = FakeGeocoder({FULL: STREET_MATCH})

    outcome = mk_resolver(primary, secondary, SleepRecorder()).resolve(ADDRESS)

    assert outcome.found
    assert outcome.source == SOURCE_NOMINATIM


def test_undeliverable_address_skips_every_provider():
    primary, secondary = FakeGeocoder(), FakeGeocoder()

    outcome = mk_resolver(primary, secondary, SleepRecorder()).resolve({**ADDRESS, "street": "PO Box 9"})

    assert not outcome.found
    assert outcome.reason == REASON_NO_PHYSICAL_ADDRESS
    assert primary.queries == [] and secondary.queries == []


def test_all_misses_is_not_found():
    outcome = mk_resolver(FakeGeocoder(), FakeGeocoder(), SleepRecorder()).resolve(ADDRESS)

    assert not outcome.found
    assert outcome.reason == REASON_NO_RESULTS


def test_city_level_step_is_skipped_without_city_and_state():
    primary, sleep = FakeGeocoder(), SleepRecorder()

    mk_resolver(primary, FakeGeocoder(), sleep).resolve({**ADDRESS, "city": None})

    assert primary.queries == ["100 Bog Rd, WI, 54660"]
    assert sleep.calls == [1.0]


# ---------- HTTP providers ----------

def test_census_geocoder_takes_first_match_and_sends_user_agent():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["ua"] = request.headers["user-agent"]
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={
                "result": {
                    "addressMatches": [
                        {"coordinates": {"x": -90.50419, "y": 43.98521}, "matchedAddress": "100 BOG RD, TOMAH, WI, 54660"},
                        {"coordinates": {"x": 0, "y": 0}, "matchedAddress": "other"},
                    ]
                }
            },
        )

    census = CensusGeocoder(
        "https://census.test/onelineaddress",
        user_agent="GrowerBedDatabase/1.0",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )

    match = census.geocode(FULL)

    assert match == STREET_MATCH
    assert seen["ua"] == "GrowerBedDatabase/1.0"
    assert seen["params"]["address"] == FULL
    assert seen["params"]["format"] == "json"


def test_census_geocoder_no_match_returns_none():
    census = CensusGeocoder(
        "https://census.test/onelineaddress",
        user_agent="ua",
        timeout=5,
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"result": {"addressMatches": []}})),
    )

    assert census.geocode(FULL) is None


def test_nominatim_geocoder_restricts_country():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json=[{"lat": "43.9852", "lon": "-90.5042", "display_name": "Tomah"}])

    nominatim = NominatimGeocoder(
        "https://nominatim.test/search",
        country_code="us",
        user_agent="ua",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )

    match = nominatim.geocode(FULL)

    assert match.latitude == pytest.approx(43.9852)
    assert match.longitude == pytest.approx(-90.5042)
    assert seen["countrycodes"] == "us"
    assert seen["limit"] == "1"


def test_resolver_from_settings_falls_through_http_error_to_nominatim():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "census.test":
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json=[{"lat": "44.0", "lon": "-90.0", "display_name": "x"}])

    settings = Settings(
        census_url="https://census.test/onelineaddress",
        nominatim_url="https://nominatim.test/search",
        geocode_delay_seconds=0,
    )
    resolver = GeocodingResolver.from_settings(settings, transport=httpx.MockTransport(handler))

    outcome = resolver.resolve(ADDRESS)

    assert outcome.source == SOURCE_NOMINATIM
    assert (outcome.latitude, outcome.longitude) == (44.0, -90.0)


@pytest.mark.parametrize(
    "census_body",
    [
        {"result": "service unavailable"},
        "service unavailable",
        [1, 2, 3],
        {"result": {"addressMatches": "none"}},
    ],
)
def test_wrongly_shaped_census_body_falls_through_to_nominatim(census_body):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "census.test":
            return httpx.Response(200, json=census_body)
        return httpx.Response(200, json=[{"lat": "44.0", "lon": "-90.0", "display_name": "x"}])

    settings = Settings(
        census_url="https://census.test/onelineaddress",
        nominatim_url="https://nominatim.test/search",
        geocode_delay_seconds=0,
    )
    resolver = GeocodingResolver.from_settings(settings, transport=httpx.MockTransport(handler))

    outcome = resolver.resolve(ADDRESS)

    assert outcome.found
    assert outcome.source == SOURCE_NOMINATIM


def test_census_match_missing_coordinates_is_a_miss():
    primary = CensusGeocoder(
        "https://census.test/onelineaddress",
        user_agent="ua",
        timeout=5,
        transport=httpx.MockTransport(
            lambda r: httpx.Response(200, json={"result": {"addressMatches": [{"coordinates": "n/a"}]}})
        ),
    )
    resolver = GeocodingResolver(
        [GeocodeStrategy(SOURCE_CENSUS, primary, full_address_query)],
        delay_seconds=0,
        sleep=SleepRecorder(),
    )

    outcome = resolver.resolve(ADDRESS)

    assert not outcome.found
    assert outcome.reason == REASON_NO_RESULTS


# ---------- batch driver ----------

def test_geocode_missing_addresses_persists_hits_and_counts(db_session):
    farm = models.Farm()
    db_session.add(farm)
    db_session.flush()
    done = models.FarmAddress(farm_id=farm.id, street="1 Done St", city="Tomah", state="WI", latitude=1.0, longitude=2.0)
    good = models.FarmAddress(farm_id=farm.id, street="100 Bog Rd", city="Tomah", state="WI", postal_code="54660")
    pobox = models.FarmAddress(farm_id=farm.id, street="PO Box 4", city="Tomah", state="WI", postal_code="54660")
    city_only = models.FarmAddress(farm_id=farm.id, street="7 Unknown Way", city="Warrens", state="WI")
    db_session.add_all([done, good, pobox, city_only])
    db_session.commit()

    primary = FakeGeocoder({FULL: STREET_MATCH, "Warrens, WI": CITY_MATCH})
    resolver = mk_resolver(primary, FakeGeocoder(), SleepRecorder())

    summary = geocode_missing_addresses(db_session, resolver)

    assert summary.total == 3
    assert summary.succeeded == 2
    assert summary.approximate == 1
    assert summary.failed == 1
    assert summary.by_source == {SOURCE_CENSUS: 1, SOURCE_CENSUS_CITY: 1}
    assert summary.failures[0]["id"] == pobox.id
    assert summary.failures[0]["reason"] == REASON_NO_PHYSICAL_ADDRESS

    db_session.expire_all()
    assert db_session.get(models.FarmAddress, good.id).latitude == pytest.approx(43.98521)
    assert db_session.get(models.FarmAddress, pobox.id).latitude is None
    assert db_session.get(models.FarmAddress, done.id).latitude == 1.0


class ExplodingResolver:
    """Delegates to a real resolver but blows up on one street."""

    def __init__(self, inner: GeocodingResolver, street: str):
        self.inner = inner
        self.street = street

    def resolve(self, address):
        if address.street == self.street:
            raise RuntimeError("unexpected provider reply")
        return self.inner.resolve(address)


def test_geocode_run_keeps_going_after_an_unexpected_error(db_session):
    farm = models.Farm()
    db_session.add(farm)
    db_session.flush()
    broken = models.FarmAddress(farm_id=farm.id, street="5 Broken Rd", city="Tomah", state="WI", postal_code="54660")
    good = models.FarmAddress(farm_id=farm.id, street="100 Bog Rd", city="Tomah", state="WI", postal_code="54660")
    db_session.add_all([broken, good])
    db_session.commit()

    inner = mk_resolver(FakeGeocoder({FULL: STREET_MATCH}), FakeGeocoder(), SleepRecorder())

    summary = geocode_missing_addresses(db_session, ExplodingResolver(inner, "5 Broken Rd"))

    assert summary.total == 2
    assert summary.succeeded == 1
    assert summary.failed == 1
    assert summary.failures == [
        {
            "id": broken.id,
            "address": "5 Broken Rd, Tomah, WI, 54660",
            "street": "5 Broken Rd",
            "reason": "unexpected provider reply",
        }
    ]
    db_session.expire_all()
    assert db_session.get(models.FarmAddress, good.id).latitude == pytest.approx(43.98521)
    assert db_session.get(models.FarmAddress, broken.id).latitude is None
