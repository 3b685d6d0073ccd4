from unittest import mock

import pytest
import requests

from imsakiyah.prayer.errors import LocationUnavailable
from imsakiyah.prayer.location import (
    BigDataCloudGeocoder,
    ConfiguredLocationSource,
    IPLocationSource,
    get_location_source,
)


@pytest.fixture
def get():
    with mock.patch("imsakiyah.prayer.location.requests.get") as get:
        yield get


class TestConfiguredLocationSource:
    def test_locate(self):
        location = ConfiguredLocationSource({"latitude": "-6.9175", "longitude": 107.6191, "city": "Bandung"}).locate()
        assert (location.latitude, location.longitude, location.label) == (-6.9175, 107.6191, "Bandung")

    def test_missing_coordinates(self):
        with pytest.raises(LocationUnavailable):
            ConfiguredLocationSource({"city": "Bandung"}).locate()

    def test_out_of_range(self):
        with pytest.raises(LocationUnavailable):
            ConfiguredLocationSource({"latitude": 120, "longitude": 0}).locate()


class TestIPLocationSource:
    def test_locate_leaves_label_to_geocoder(self, get):
        get.return_value.json.return_value = {"status": "success", "lat": -7.25, "lon": 112.75, "city": "Surabaya"}
        location = IPLocationSource({"timeout": 5}).locate()
        assert (location.latitude, location.longitude) == (-7.25, 112.75)
        assert location.label is None
        assert get.call_args[1]["timeout"] == 5

    def test_lookup_failed(self, get):
        get.return_value.json.return_value = {"status": "fail", "message": "reserved range"}
        with pytest.raises(LocationUnavailable, match="reserved range"):
            IPLocationSource().locate()

    def test_timeout(self, get):
        get.side_effect = requests.exceptions.Timeout()
        with pytest.raises(LocationUnavailable, match="timed out"):
            IPLocationSource().locate()

    def test_network_error(self, get):
        get.side_effect = requests.exceptions.ConnectionError("offline")
        with pytest.raises(LocationUnavailable):
            IPLocationSource().locate()

    def test_factory(self):
        assert isinstance(get_location_source("ip"), IPLocationSource)
        assert isinstance(get_location_source("config", {}), ConfiguredLocationSource)
        assert get_location_source("gps") is None


class TestBigDataCloudGeocoder:
    def test_city(self, get):
        get.return_value.json.return_value = {"city": "Bandung", "locality": "Coblong"}
        assert BigDataCloudGeocoder().city_label(-6.9, 107.6) == "Bandung"
        assert get.call_args[1]["params"]["localityLanguage"] == "id"

    def test_locality_when_no_city(self, get):
        get.return_value.json.return_value = {"city": "", "locality": "Menteng"}
        assert BigDataCloudGeocoder("en").city_label(-6.2, 106.8) == "Menteng"

    @pytest.mark.parametrize("locale,placeholder", [("id", "Lokasi Anda"), ("en", "Your location")])
    def test_placeholder_on_failure(self, get, locale, placeholder):
        get.side_effect = requests.exceptions.ConnectionError("offline")
        assert BigDataCloudGeocoder(locale).city_label(0, 0) == placeholder

    def test_placeholder_on_empty_response(self, get):
        get.return_value.json.return_value = {}
        assert BigDataCloudGeocoder().city_label(0, 0) == "Lokasi Anda"
