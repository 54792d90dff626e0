import pytest
import requests
import responses

from errors import InvalidAddress, InvalidCoordinates, NetworkError, NoResults
from geocoding import NOMINATIM_SEARCH_URL, GeoLocation, NominatimGeocoder


def build_payload(latitude: str = "31.2322758", longitude: str = "121.4692071") -> list:
    return [
        {
            "place_id": 1,
            "lat": latitude,
            "lon": longitude,
            "display_name": "Shanghai, Huangpu District, Shanghai, 200001, China",
        }
    ]


@pytest.fixture
def geocoder() -> NominatimGeocoder:
    return NominatimGeocoder(min_interval=0)


def test_lookup_returns_trimmed_address_and_display_name(geocoder):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, NOMINATIM_SEARCH_URL, json=build_payload(), status=200)
        location = geocoder.lookup("  Shanghai  ")
        request = mock.calls[0].request
        assert request.url.startswith(NOMINATIM_SEARCH_URL)
        assert "q=Shanghai" in request.url
        assert "format=jsonv2" in request.url
        assert request.headers["User-Agent"].startswith("SunSwitch/")

    assert location.address == "Shanghai"
    assert location.display_name.startswith("Shanghai, Huangpu")
    assert location.latitude == pytest.approx(31.2322758)
    assert location.longitude == pytest.approx(121.4692071)


def test_lookup_caches_per_exact_address(geocoder):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, NOMINATIM_SEARCH_URL, json=build_payload(), status=200)
        first = geocoder.lookup("Shanghai")
        second = geocoder.lookup("Shanghai ")
        call_count = len(mock.calls)

    assert call_count == 1
    assert first == second


@pytest.mark.parametrize("address", ["", "   ", None])
def test_blank_address_is_rejected_without_a_request(geocoder, address):
    with responses.RequestsMock():
        with pytest.raises(InvalidAddress):
            geocoder.lookup(address)


def test_empty_result_list_raises_no_results(geocoder):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, NOMINATIM_SEARCH_URL, json=[], status=200)
        with pytest.raises(NoResults) as excinfo:
            geocoder.lookup("Atlantis")

    assert excinfo.value.params["address"] == "Atlantis"


def test_unparsable_coordinates_raise_no_results(geocoder):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, NOMINATIM_SEARCH_URL, json=build_payload(latitude="north"), status=200)
        with pytest.raises(NoResults):
            geocoder.lookup("Somewhere")


def test_http_error_raises_network_error(geocoder):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, NOMINATIM_SEARCH_URL, body="slow down", status=429)
        with pytest.raises(NetworkError) as excinfo:
            geocoder.lookup("Shanghai")

    assert excinfo.value.params["status"] == "429"


@pytest.mark.parametrize("failure", [requests.ConnectionError("offline"), requests.Timeout("too slow")])
def test_transport_failures_raise_network_error_after_one_attempt(geocoder, failure):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, NOMINATIM_SEARCH_URL, body=failure)
        with pytest.raises(NetworkError):
            geocoder.lookup("Shanghai")
        call_count = len(mock.calls)

    assert call_count == 1


def test_failed_lookups_are_not_cached(geocoder):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, NOMINATIM_SEARCH_URL, json=[], status=200)
        mock.add(responses.GET, NOMINATIM_SEARCH_URL, json=build_payload(), status=200)
        with pytest.raises(NoResults):
            geocoder.lookup("Shanghai")
        location = geocoder.lookup("Shanghai")

    assert location.display_name.startswith("Shanghai")


def test_geo_location_validates_range():
    with pytest.raises(InvalidCoordinates):
        GeoLocation(address="x", display_name="x", latitude=95.0, longitude=0.0)

    location = GeoLocation(address="Home", display_name="Home, Earth", latitude=-90.0, longitude=180.0)
    assert GeoLocation.from_dict(location.to_dict()) == location
