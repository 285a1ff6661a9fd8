import copy
import json
from pathlib import Path

import pytest

from store_locator import config
from store_locator.classifier import BaseCategoryClassifier, ClassificationResult
from store_locator.pipeline import StoreSearch, drive_session
from store_locator.places_client import GeocodingError, PlacesApiError
from store_locator.session import InputError, next_request

CENTER = {"lat": 34.09, "lng": -118.4}
ZERO_RESULTS = {"status": "ZERO_RESULTS", "results": []}


def load_fixture(name):
    path = Path(__file__).parent / "fixtures" / name
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class FakePlacesClient:
    def __init__(self, nearby=(), pages=(), text=None, details=None, failing_details=(), geocode_error=None):
        self.nearby = list(nearby)
        self.pages = list(pages)
        self.text = text or ZERO_RESULTS
        self.details = details if details is not None else load_fixture("place_details_90210.json")
        self.failing_details = set(failing_details)
        self.geocode_error = geocode_error
        self.budget = None
        self.calls = []
        self.bound_budgets = []

    def with_budget(self, budget):
        self.bound_budgets.append(budget)
        view = copy.copy(self)
        view.budget = budget
        return view

    def _consume(self, kind):
        if self.budget is not None:
            self.budget.consume(kind)

    def geocode(self, postal_code):
        self._consume("geocode")
        self.calls.append(("geocode", postal_code))
        if self.geocode_error:
            raise self.geocode_error
        return dict(CENTER)

    def nearby_search(self, keyword, center, radius_m, place_type=None):
        self._consume("search")
        self.calls.append(("nearby", keyword, radius_m, place_type))
        return self.nearby.pop(0) if self.nearby else ZERO_RESULTS

    def next_page(self, page_token):
        self._consume("search")
        self.calls.append(("next_page", page_token))
        return self.pages.pop(0)

    def text_search(self, query, center, radius_m, place_type="store"):
        self._consume("search")
        self.calls.append(("text", query))
        return self.text

    def find_place(self, text, center, radius_m):
        self._consume("search")
        self.calls.append(("find", text))
        return {"status": "ZERO_RESULTS", "candidates": []}

    def place_details(self, place_id):
        self._consume("details")
        if place_id in self.failing_details:
            raise PlacesApiError("place_details", "NOT_FOUND")
        return dict(self.details.get(place_id, {}))

    def photo_url(self, photo_reference):
        return f"https://photos.test/{photo_reference}"

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


class FakeClassifier(BaseCategoryClassifier):
    def __init__(self, category="vacuum store", status="ok"):
        self.category = category
        self.status = status
        self.calls = []

    def classify(self, product):
        self.calls.append(product)
        if self.status != "ok":
            return ClassificationResult(status=self.status, category=None, model="fake", error="boom")
        return ClassificationResult(status="ok", category=self.category, model="fake")


def make_search(places_client, classifier=None, sleeps=None, **settings):
    sleeps = sleeps if sleeps is not None else []
    return StoreSearch(
        config.SearchConfig(**settings),
        places_client=places_client,
        classifier=classifier or FakeClassifier(),
        sleep=sleeps.append,
    )


def first_request(**extra):
    payload = {"product": "vacuum cleaner", "postalCode": "90210", "page": 1}
    payload.update(extra)
    return payload


def test_first_call_returns_nearest_stores_in_first_range():
    client = FakePlacesClient(nearby=[load_fixture("nearby_search_90210.json")])
    classifier = FakeClassifier()
    response = make_search(client, classifier).handle_request(first_request())

    assert classifier.calls == ["vacuum cleaner"]
    assert client.calls[:2] == [
        ("geocode", "90210"),
        ("nearby", "vacuum store", 5000, "store"),
    ]
    assert [r["placeId"] for r in response["results"]] == ["p_near", "p_mid"]
    assert response["results"][0]["distanceKm"] == pytest.approx(2.224, abs=1e-3)
    assert response["results"][0]["email"] == "contact@vacuumworld.com"
    assert response["results"][0]["photoUrl"] == "https://photos.test/ref-near"
    assert response["results"][1]["email"] == "N/A"
    assert all(r["distanceKm"] < 5.0 for r in response["results"])

    assert response["category"] == "vacuum store"
    assert response["searchQuery"] == "vacuum store"
    assert response["location"] == CENTER
    assert response["searchStrategy"] == "primary"
    assert response["currentDistanceRange"] == 1
    assert response["hasMore"] is True
    assert response["nextPageToken"] is None
    assert set(response["seenIds"]) == {"p_far", "p_near", "p_mid"}
    assert response["page"] == 1
    assert response["debug"]["requests"] == {"search": 1, "details": 2, "geocode": 1}
    assert response["debug"]["afterDistanceFilter"] == 2


def test_same_request_gives_same_response():
    responses = []
    for _ in range(2):
        client = FakePlacesClient(nearby=[load_fixture("nearby_search_90210.json")])
        responses.append(make_search(client).handle_request(first_request()))
    assert responses[0] == responses[1]


def test_malformed_request_makes_no_provider_calls():
    client = FakePlacesClient()
    classifier = FakeClassifier()
    with pytest.raises(InputError):
        make_search(client, classifier).handle_request({"postalCode": "90210"})
    assert client.calls == []
    assert classifier.calls == []


def test_geocoding_failure_is_fatal():
    client = FakePlacesClient(geocode_error=GeocodingError("geocode", "ZERO_RESULTS", "Geocoding error: ZERO_RESULTS"))
    with pytest.raises(GeocodingError):
        make_search(client).handle_request(first_request())
    assert client.count("nearby") == 0


def test_search_failure_is_fatal():
    client = FakePlacesClient(nearby=[{"status": "REQUEST_DENIED", "results": []}])
    with pytest.raises(PlacesApiError):
        make_search(client).handle_request(first_request())


def test_classification_failure_falls_back_to_product():
    client = FakePlacesClient()
    response = make_search(client, FakeClassifier(status="http_error")).handle_request(first_request())
    assert response["category"] == "vacuum cleaner"
    assert client.calls[1] == ("nearby", "vacuum cleaner", 5000, "store")


def test_later_pages_never_classify():
    client = FakePlacesClient()
    classifier = FakeClassifier()
    response = make_search(client, classifier).handle_request(first_request(page=2, location=CENTER))
    assert classifier.calls == []
    assert client.count("geocode") == 0
    assert response["category"] == "vacuum cleaner"


def test_retail_store_only_search_uses_store_name():
    client = FakePlacesClient()
    classifier = FakeClassifier()
    response = make_search(client, classifier).handle_request({"retailStore": "Target", "postalCode": "90210"})
    assert classifier.calls == []
    assert response["searchQuery"] == "Target"
    assert client.calls[1] == ("nearby", "Target", 5000, "store")


def test_contact_duplicates_keep_nearest_store():
    details = load_fixture("place_details_90210.json")
    details["p_mid"]["formatted_phone_number"] = details["p_near"]["formatted_phone_number"]
    client = FakePlacesClient(nearby=[load_fixture("nearby_search_90210.json")], details=details)

    response = make_search(client).handle_request(first_request())

    assert [r["placeId"] for r in response["results"]] == ["p_near"]
    assert response["debug"]["uniqueStoresCount"] == 1
    assert "p_mid" in response["seenIds"]


def test_failed_details_keep_store_unverified():
    client = FakePlacesClient(nearby=[load_fixture("nearby_search_90210.json")], failing_details={"p_mid"})
    response = make_search(client).handle_request(first_request())

    by_id = {r["placeId"]: r for r in response["results"]}
    assert by_id["p_near"]["verified"] is True
    assert by_id["p_mid"]["verified"] is False
    assert by_id["p_mid"]["phone"] == "N/A"


def test_not_ready_token_is_retried_and_early_exhaustion_escalates():
    client = FakePlacesClient(
        pages=[{"status": "INVALID_REQUEST", "results": []}, load_fixture("nearby_search_90210.json")]
    )
    sleeps = []
    request = first_request(
        page=2,
        category="vacuum store",
        location=CENTER,
        nextPageToken="tok",
        seenIds=["p_near"],
    )

    response = make_search(client, sleeps=sleeps).handle_request(request)

    assert sleeps == [2.0]
    assert client.count("next_page") == 2
    assert client.count("nearby") == 0
    assert [r["placeId"] for r in response["results"]] == ["p_mid"]
    assert response["debug"]["tokenRetries"] == 1
    assert response["debug"]["advance"] == "early_token_exhaustion"
    assert response["debug"]["keyword"] is None
    assert response["hasMore"] is True
    assert response["currentDistanceRange"] == 2
    assert response["nextPageToken"] is None


def test_primary_exhaustion_walks_every_range_then_switches_to_grid():
    client = FakePlacesClient()
    classifier = FakeClassifier()
    run = drive_session(make_search(client, classifier), first_request(), max_calls=15)

    assert len(run.responses) == 15
    assert all(r["hasMore"] for r in run.responses)
    assert [r["currentDistanceRange"] for r in run.responses[:14]] == list(range(2, 16))
    assert run.last_response["searchStrategy"] == "grid"
    assert run.last_response["currentDistanceRange"] == 1
    radii = [call[2] for call in client.calls if call[0] == "nearby"]
    assert radii == [r * 5000 for r in range(1, 16)]
    assert classifier.calls == ["vacuum cleaner"]
    assert client.count("geocode") == 1


def test_seen_ids_only_grow_and_no_store_repeats():
    client = FakePlacesClient(
        nearby=[load_fixture("nearby_search_90210.json"), load_fixture("nearby_search_90210.json")]
    )
    run = drive_session(make_search(client), first_request(), max_calls=4)

    previous = set()
    for response in run.responses:
        current = set(response["seenIds"])
        assert previous <= current
        previous = current
    place_ids = [store["placeId"] for store in run.stores]
    assert len(place_ids) == len(set(place_ids))
    assert place_ids == ["p_near", "p_mid"]


def test_drive_session_stops_at_min_results():
    client = FakePlacesClient(nearby=[load_fixture("nearby_search_90210.json")])
    run = drive_session(make_search(client), first_request(), max_calls=5, min_results=2)
    assert len(run.responses) == 1
    assert len(run.stores) == 2


def test_extended_search_adopts_text_search_places():
    text = {
        "status": "OK",
        "results": [
            {
                "place_id": f"x{i}",
                "name": f"Store {i}",
                "geometry": {"location": {"lat": 34.09 + 0.1 * (i + 1), "lng": -118.4}},
            }
            for i in range(6)
        ],
    }
    client = FakePlacesClient(text=text, details={})
    sleeps = []
    request = first_request(
        page=41,
        category="vacuum store",
        location=CENTER,
        searchStrategy="type",
        currentDistanceRange=9,
    )

    response = make_search(client, sleeps=sleeps).handle_request(request)

    assert client.calls[0] == ("nearby", "vacuum store", 45000, "shopping_mall")
    assert client.calls[1] == ("text", "vacuum store")
    assert [r["placeId"] for r in response["results"]] == [f"x{i}" for i in range(6)]
    assert response["searchStrategy"] == "extended"
    assert response["currentDistanceRange"] == 9
    assert response["hasMore"] is True
    assert response["debug"]["extendedSearch"] == "text_search"
    assert sleeps == [1.0]
    assert set(response["seenIds"]) == {f"x{i}" for i in range(6)}


def test_extended_call_keeps_main_search_token():
    client = FakePlacesClient(
        nearby=[{"status": "OK", "results": [], "next_page_token": "primary-tok"}],
        text={
            "status": "OK",
            "results": [{"place_id": "x0", "name": "Store 0", "geometry": {"location": {"lat": 34.2, "lng": -118.4}}}],
        },
        details={},
    )
    request = first_request(
        page=41,
        category="vacuum store",
        location=CENTER,
        searchStrategy="type",
        currentDistanceRange=9,
    )

    response = make_search(client).handle_request(request)

    assert response["debug"]["extendedSearch"] == "text_search"
    assert response["searchStrategy"] == "extended"
    assert [r["placeId"] for r in response["results"]] == ["x0"]
    assert response["debug"]["hasNextPageToken"] is True
    assert response["nextPageToken"] == "primary-tok"
    assert next_request(response, request)["nextPageToken"] == "primary-tok"


def test_each_call_charges_its_own_budget():
    client = FakePlacesClient(nearby=[load_fixture("nearby_search_90210.json")])
    search = make_search(client)

    first = search.handle_request(first_request())
    second = search.handle_request(first_request(page=2, category="vacuum store", location=CENTER))

    assert client.budget is None
    assert len(client.bound_budgets) == 2
    assert client.bound_budgets[0] is not client.bound_budgets[1]
    assert first["debug"]["requests"] == {"search": 1, "details": 2, "geocode": 1}
    assert second["debug"]["requests"] == {"search": 1, "details": 0, "geocode": 0}


def test_overlapping_sessions_keep_separate_budgets(monkeypatch):
    client = FakePlacesClient(nearby=[load_fixture("nearby_search_90210.json")])
    search = make_search(client)
    nested = []
    lookup_details = FakePlacesClient.place_details

    def place_details(self, place_id):
        # another session starts while this call's details are in flight
        if place_id == "p_near" and not nested:
            nested.append(search.handle_request({"retailStore": "Target", "postalCode": "10001"}))
        return lookup_details(self, place_id)

    monkeypatch.setattr(FakePlacesClient, "place_details", place_details)

    response = search.handle_request(first_request())

    assert [r["placeId"] for r in response["results"]] == ["p_near", "p_mid"]
    assert response["debug"]["requests"] == {"search": 1, "details": 2, "geocode": 1}
    assert nested[0]["debug"]["requests"] == {"search": 1, "details": 0, "geocode": 1}


def test_type_search_past_range_three_keeps_places_outside_the_ring():
    client = FakePlacesClient(nearby=[load_fixture("nearby_search_90210.json")])
    request = first_request(
        page=42,
        category="vacuum store",
        location=CENTER,
        searchStrategy="type",
        currentDistanceRange=5,
    )

    response = make_search(client).handle_request(request)

    assert client.calls[0] == ("nearby", "vacuum store", 25000, "department_store")
    assert [r["placeId"] for r in response["results"]] == ["p_near", "p_mid", "p_far"]
    assert all(r["distanceKm"] < 20.0 for r in response["results"])
    assert response["debug"]["afterDistanceFilter"] == 3


def ring_payload(**extra):
    payload = {
        "status": "OK",
        "results": [
            {"place_id": "inner", "name": "Inner", "geometry": {"location": {"lat": 34.134067, "lng": -118.4}}},
            {"place_id": "outer", "name": "Outer", "geometry": {"location": {"lat": 34.152953, "lng": -118.4}}},
        ],
    }
    payload.update(extra)
    return payload


def test_continuation_page_is_held_to_the_current_ring():
    request = first_request(
        page=3,
        category="vacuum store",
        location=CENTER,
        searchStrategy="fallback",
        currentDistanceRange=2,
    )

    unfiltered = make_search(FakePlacesClient(nearby=[ring_payload()], details={})).handle_request(request)
    assert [r["placeId"] for r in unfiltered["results"]] == ["inner", "outer"]

    client = FakePlacesClient(pages=[ring_payload()], details={})
    paged = make_search(client).handle_request(dict(request, nextPageToken="tok"))

    assert client.calls == [("next_page", "tok")]
    assert [r["placeId"] for r in paged["results"]] == ["outer"]
    assert paged["results"][0]["distanceKm"] == pytest.approx(7.0, abs=0.01)
    assert paged["debug"]["afterDistanceFilter"] == 1
    assert set(paged["seenIds"]) == {"inner", "outer"}
