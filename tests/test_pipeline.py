from __future__ import annotations

import asyncio
import sqlite3

import httpx
import pytest

from pinintel.core.contracts import Place
from pinintel.core.errors import ProviderError
from pinintel.services.pin_intel import PinIntelFailed
from pinintel.services.place_cache import PlaceCache
from pinintel.services.providers.geoapify import Geoapify
from pinintel.services.providers.unsplash import StockPhoto, Unsplash
from pinintel.services.providers.website_meta import WebsiteMeta
from pinintel.services.providers.wikidata import KnowledgeMatch
from pinintel.services.quota import QuotaGuard

from fakes import (
    FakeGeoapify,
    FakeGoogle,
    FakeScraper,
    FakeSerper,
    FakeUnsplash,
    FakeWikidata,
    build_service,
    google_candidate,
    google_details,
)

PIN = (-33.9068, 18.4201)


def run(svc, lat=PIN[0], lon=PIN[1], hint=None, key="a:test"):
    return asyncio.run(svc.run(lat, lon, hint, key))


def geo_place(**kw):
    base = dict(lat=0.0, lon=0.0, name="Unknown Place", source="geoapify", source_id="geo-1", confidence=0.5)
    base.update(kw)
    return Place(**base)


@pytest.mark.parametrize("lat,lon", [(90.0, 180.0), (-90.0, -180.0), (0.0, 0.0), PIN])
def test_every_valid_pin_gets_at_least_one_image(conn, clock, lat, lon):
    res = run(build_service(conn, clock), lat, lon)

    assert len(res.images) >= 1
    assert res.images[-1].source == "static-map"
    assert res.place.source == "unknown"
    assert res.title == res.place.name
    assert res.diagnostics.fallbacks_used == [
        "paid_disabled",
        "no_geoapify_key",
        "coordinate_fallback",
        "no_search_key",
        "no_cached_photos",
        "no_provider_photos",
        "no_website",
        "skip_knowledge_graph",
        "no_stock_key",
        "static_map_image",
    ]


def test_paid_path_hosts_photos_and_second_request_is_served_from_cache(conn, clock):
    google = FakeGoogle(candidate=google_candidate(), details=google_details())
    svc = build_service(conn, clock, google=google, paid_enabled=True)

    first = run(svc)
    assert first.place.source == "google"
    assert first.place.locality == "Cape Town"
    assert first.place.website_provenance == "provider"
    assert [img.source for img in first.images] == ["provider-photo"] * 3
    assert sorted(google.photo_calls) == ["ref-a", "ref-b", "ref-c"]
    assert first.diagnostics.quota.allowed

    second = run(svc, PIN[0] + 0.000001, PIN[1])
    assert google.nearby_calls == 1
    assert second.diagnostics.cache_hit
    assert second.place.source_id == first.place.source_id
    assert [img.url for img in second.images] == [img.url for img in first.images]
    assert "cached_provider_photos" in second.diagnostics.fallbacks_used
    assert second.diagnostics.quota is None


def test_same_place_from_another_bucket_reuses_hosted_photos(conn, clock):
    google = FakeGoogle(candidate=google_candidate(), details=google_details())
    svc = build_service(conn, clock, google=google, paid_enabled=True)

    first = run(svc)
    # ~110 m north: another bucket, still within the paid distance check
    second = run(svc, PIN[0] + 0.001, PIN[1])

    assert google.nearby_calls == 2
    assert not second.diagnostics.cache_hit
    assert "source_id_cache_hit" in second.diagnostics.fallbacks_used
    assert "cached_provider_photos" in second.diagnostics.fallbacks_used
    assert len(google.photo_calls) == 3
    assert [img.url for img in second.images] == [img.url for img in first.images]


def test_provider_photos_stop_the_waterfall(conn, clock):
    google = FakeGoogle(candidate=google_candidate(), details=google_details())
    scraper = FakeScraper(WebsiteMeta(final_url="https://www.waterfront.co.za/", images=["https://www.waterfront.co.za/a.jpg"]))
    unsplash = FakeUnsplash()
    res = run(build_service(conn, clock, google=google, scraper=scraper, unsplash=unsplash, paid_enabled=True))

    calls = res.diagnostics.provider_calls
    assert calls["photo_fetch"] == 3
    for later in ("website_scrape", "knowledge_graph", "stock_search", "static_map"):
        assert later not in calls
    assert scraper.calls == [] and unsplash.queries == []
    assert res.diagnostics.fallbacks_used[-1] == "provider_photos"


def test_far_paid_candidate_falls_through_to_secondary_lookup(conn, clock):
    google = FakeGoogle(candidate=google_candidate(), details=google_details(lat=PIN[0] + 0.01, lon=PIN[1]))
    geoapify = FakeGeoapify(geo_place(name="Bo-Kaap Museum", locality="Cape Town"))
    res = run(build_service(conn, clock, google=google, geoapify=geoapify, paid_enabled=True))

    fallbacks = res.diagnostics.fallbacks_used
    assert fallbacks.index("reject_far_candidate") < fallbacks.index("geoapify_place")
    assert res.place.source == "geoapify"
    assert geoapify.calls == 1
    assert google.photo_calls == []
    # Only paid identities are cached
    assert PlaceCache(conn, clock=clock).get(*PIN, ttl_days=30) is None


def test_quota_exhaustion_skips_the_paid_tier(conn, clock):
    google = FakeGoogle(candidate=None)
    geoapify = FakeGeoapify(geo_place(name="Bo-Kaap Museum", locality="Cape Town"))
    svc = build_service(conn, clock, google=google, geoapify=geoapify, paid_enabled=True, daily_limit=2)

    for _ in range(2):
        res = run(svc, key="a:1.2.3.4:ua")
        assert "paid_no_candidate" in res.diagnostics.fallbacks_used

    res = run(svc, key="a:1.2.3.4:ua")
    assert google.nearby_calls == 2
    assert "quota_exhausted" in res.diagnostics.fallbacks_used
    assert res.diagnostics.quota.allowed is False
    assert res.place.name == "Bo-Kaap Museum"
    assert len(res.images) >= 1

    # Another client still has budget
    run(svc, key="a:5.6.7.8:ua")
    assert google.nearby_calls == 3


def test_quota_storage_failure_fails_closed(conn, clock, tmp_path):
    # No schema: every counter statement raises sqlite3.OperationalError
    broken = sqlite3.connect(str(tmp_path / "no-tables.db"), isolation_level=None)
    google = FakeGoogle(candidate=google_candidate(), details=google_details())
    geoapify = FakeGeoapify(geo_place(name="Bo-Kaap Museum", locality="Cape Town"))
    svc = build_service(
        conn,
        clock,
        google=google,
        geoapify=geoapify,
        paid_enabled=True,
        quota=QuotaGuard(broken, daily_limit=5, clock=clock),
    )

    res = run(svc)
    broken.close()

    assert google.nearby_calls == 0
    assert "quota_storage_error" in res.diagnostics.fallbacks_used
    assert res.diagnostics.quota.allowed is False
    assert res.diagnostics.quota.remaining == 0
    assert res.place.source == "geoapify"
    assert len(res.images) >= 1


def test_generic_hint_skips_search_and_uses_category_locality_stock_query(conn, clock):
    geoapify = FakeGeoapify(geo_place(category="natural.beach", locality="Paternoster"))
    serper = FakeSerper(url="https://should-not-be-used.example/")
    photo = StockPhoto(
        image_url="https://images.unsplash.com/photo-1?utm_source=pinit&utm_medium=referral",
        page_url="https://unsplash.com/photos/1?utm_source=pinit&utm_medium=referral",
        attribution="Photo by Jane Doe on Unsplash",
    )
    unsplash = FakeUnsplash({"beach Paternoster landscape": [photo]})

    res = run(build_service(conn, clock, geoapify=geoapify, serper=serper, unsplash=unsplash), hint="Nature Spot")

    assert "skip_search_generic_hint" in res.diagnostics.fallbacks_used
    assert serper.queries == []
    assert unsplash.queries == ["beach Paternoster landscape"]
    assert [img.source for img in res.images] == ["stock"]
    assert res.images[0].attribution == "Photo by Jane Doe on Unsplash"
    assert res.images[0].originating_url == photo.page_url
    assert res.title == "Nature spot near Paternoster"


def test_address_like_name_skips_search_and_named_stock_queries(conn, clock):
    geoapify = FakeGeoapify(geo_place(name="123 Main Street", category="accommodation.guest_house", locality="Knysna"))
    serper = FakeSerper(url="https://should-not-be-used.example/")
    unsplash = FakeUnsplash()

    res = run(build_service(conn, clock, geoapify=geoapify, serper=serper, unsplash=unsplash))

    assert "skip_search_street_address" in res.diagnostics.fallbacks_used
    assert serper.queries == []
    assert unsplash.queries[0] == "guest house Knysna landscape"
    assert all("Main" not in q for q in unsplash.queries)
    assert "no_stock_images" in res.diagnostics.fallbacks_used
    assert res.title == "Guest house near Knysna"
    assert [img.source for img in res.images] == ["static-map"]


def test_short_brand_skips_stock_photos(conn, clock):
    geoapify = FakeGeoapify(geo_place(name="KFC", category="catering.fast_food", locality="Worcester"))
    unsplash = FakeUnsplash()
    res = run(build_service(conn, clock, geoapify=geoapify, unsplash=unsplash))

    assert "skip_stock_short_brand" in res.diagnostics.fallbacks_used
    assert unsplash.queries == []


def test_failed_website_image_does_not_block_the_others(conn, clock):
    site = "https://www.example-venue.co.za/"
    geoapify = FakeGeoapify(geo_place(name="Example Venue", website=site, website_provenance="provider", locality="Franschhoek"))
    meta = WebsiteMeta(final_url=site, og_title="Example Venue", images=[site + "1.jpg", site + "2.jpg", site + "3.jpg"])
    scraper = FakeScraper(meta)

    res = run(build_service(conn, clock, geoapify=geoapify, scraper=scraper, failing_urls={site + "1.jpg"}))

    assert [img.source for img in res.images] == ["website", "website"]
    assert all(img.originating_url == site for img in res.images)
    (failure,) = res.diagnostics.upload_failures
    assert failure.stage == "download"
    assert failure.url == site + "1.jpg"
    assert failure.source == "website"
    assert "website_images" in res.diagnostics.fallbacks_used


def test_searched_website_is_validated_then_reused(conn, clock):
    site = "https://www.thepotluckclub.co.za/"
    geoapify = FakeGeoapify(geo_place(name="The Pot Luck Club", category="catering.restaurant", locality="Cape Town"))
    wikidata = FakeWikidata(None)
    serper = FakeSerper(url=site)
    meta = WebsiteMeta(
        final_url=site,
        og_title="The Pot Luck Club",
        meta_description="Small plates and big views from the top of the silo at the Old Biscuit Mill.",
        images=[site + "hero.jpg"],
    )
    scraper = FakeScraper(meta)

    res = run(build_service(conn, clock, geoapify=geoapify, wikidata=wikidata, serper=serper, scraper=scraper))

    assert res.place.website == site
    assert res.place.website_provenance == "search"
    assert "search_official_website" in res.diagnostics.fallbacks_used
    assert scraper.calls == [site]
    assert wikidata.calls == 1
    assert [img.source for img in res.images] == ["website"]
    assert res.title == "The Pot Luck Club"
    assert res.description.startswith("Small plates")


def test_search_result_with_foreign_title_is_rejected(conn, clock):
    geoapify = FakeGeoapify(geo_place(name="Kloof Street House", locality="Cape Town"))
    serper = FakeSerper(url="https://www.tablebayhotel.example/")
    scraper = FakeScraper(WebsiteMeta(final_url="https://www.tablebayhotel.example/", og_title="Table Bay Hotel"))

    res = run(build_service(conn, clock, geoapify=geoapify, serper=serper, scraper=scraper))

    assert res.place.website is None
    assert "reject_unofficial_website" in res.diagnostics.fallbacks_used
    assert "no_website" in res.diagnostics.fallbacks_used


def test_title_containing_the_token_inside_another_word_is_rejected(conn, clock):
    site = "https://party-hire.example/"
    geoapify = FakeGeoapify(geo_place(name="Art House", locality="Cape Town"))
    serper = FakeSerper(url=site)
    scraper = FakeScraper(WebsiteMeta(final_url=site, og_title="Party Hire Cape Town"))

    res = run(build_service(conn, clock, geoapify=geoapify, serper=serper, scraper=scraper))

    assert res.place.website is None
    assert res.place.website_provenance is None
    assert "reject_unofficial_website" in res.diagnostics.fallbacks_used
    assert "search_official_website" not in res.diagnostics.fallbacks_used


def test_denylisted_search_result_is_not_scraped(conn, clock):
    geoapify = FakeGeoapify(geo_place(name="Kloof Street House", locality="Cape Town"))
    serper = FakeSerper(url="https://www.capetown.gov.za/venues/kloof")
    scraper = FakeScraper()

    res = run(build_service(conn, clock, geoapify=geoapify, serper=serper, scraper=scraper))

    assert "reject_denylisted_domain" in res.diagnostics.fallbacks_used
    assert scraper.calls == []
    assert res.place.website is None


def test_search_provider_error_is_recorded(conn, clock):
    geoapify = FakeGeoapify(geo_place(name="Kloof Street House", locality="Cape Town"))
    res = run(build_service(conn, clock, geoapify=geoapify, serper=FakeSerper(error=True)))
    assert "search_error" in res.diagnostics.fallbacks_used


def test_knowledge_graph_supplies_website_and_images(conn, clock):
    geoapify = FakeGeoapify(geo_place(name="Bo-Kaap Museum", category="entertainment.museum", locality="Cape Town"))
    commons = "https://commons.wikimedia.org/wiki/Special:FilePath/Bo_Kaap_Museum.jpg"
    wikidata = FakeWikidata(KnowledgeMatch(wikidata_id="Q1", official_website="https://www.iziko.org.za/", image_urls=[commons]))
    scraper = FakeScraper(None)

    res = run(build_service(conn, clock, geoapify=geoapify, wikidata=wikidata, scraper=scraper))

    assert res.place.website == "https://www.iziko.org.za/"
    assert res.place.website_provenance == "knowledge_graph"
    assert res.place.wikidata_id == "Q1"
    assert wikidata.calls == 1
    fallbacks = res.diagnostics.fallbacks_used
    assert "wikidata_official_website" in fallbacks
    assert fallbacks.index("no_website_images") < fallbacks.index("knowledge_graph_images")
    assert [img.source for img in res.images] == ["knowledge-graph"]
    assert res.images[0].attribution == "Wikimedia Commons"


def test_secondary_provider_error_falls_back_to_coordinates(conn, clock):
    geoapify = FakeGeoapify(error=ProviderError("geoapify", "HTTP 500"))
    res = run(build_service(conn, clock, geoapify=geoapify))

    assert res.place.source == "unknown"
    assert res.place.name == "-33.90680, 18.42010"
    assert res.diagnostics.fallbacks_used[:3] == ["paid_disabled", "geoapify_error", "coordinate_fallback"]


def test_malformed_provider_payloads_still_yield_an_image(conn, clock):
    def handler(request):
        if "unsplash" in request.url.host:
            return httpx.Response(200, json={"results": ["oops"]})
        if request.url.path.endswith("/geocode/reverse"):
            return httpx.Response(200, json={"results": ["oops"]})
        return httpx.Response(200, json={"features": ["oops"]})

    api = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    svc = build_service(
        conn, clock, geoapify=Geoapify(api, api_key="k"), unsplash=Unsplash(api, access_key="k")
    )

    res = run(svc)
    assert res.place.source == "unknown"
    assert [img.source for img in res.images] == ["static-map"]
    fallbacks = res.diagnostics.fallbacks_used
    assert "geoapify_no_candidate" in fallbacks
    assert "no_stock_images" in fallbacks


def test_unexpected_error_carries_diagnostics(conn, clock):
    geoapify = FakeGeoapify(error=RuntimeError("kaboom"))
    svc = build_service(conn, clock, geoapify=geoapify)

    with pytest.raises(PinIntelFailed) as exc_info:
        run(svc)

    assert "kaboom" in str(exc_info.value)
    diag = exc_info.value.diagnostics
    assert diag.fallbacks_used == ["paid_disabled"]
    assert diag.provider_calls == {"secondary_lookup": 1}
    assert "total_ms" in diag.timings_ms
