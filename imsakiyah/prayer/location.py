"""
Location sources and reverse geocoding.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from .errors import LocationUnavailable
from .schedule import DEFAULT_LOCALE, Location, placeholder_label


class LocationSource(ABC):
    """Yields the device position or raises LocationUnavailable."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.timeout = self.config.get('timeout', 10)
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def locate(self) -> Location:
        pass


class ConfiguredLocationSource(LocationSource):
    """Coordinates (and optionally the city) from the location config section."""

    def locate(self) -> Location:
        lat = self.config.get('latitude')
        lon = self.config.get('longitude')
        if lat is None or lon is None:
            raise LocationUnavailable("Latitude and longitude must be configured")
        try:
            return Location(float(lat), float(lon), self.config.get('city'))
        except (TypeError, ValueError) as e:
            raise LocationUnavailable(f"Invalid configured coordinates: {e}")


class IPLocationSource(LocationSource):
    """Approximate position from the public IP address (ip-api.com)."""

    URL = "http://ip-api.com/json"

    def locate(self) -> Location:
        try:
            response = requests.get(self.URL, params={'fields': 'status,message,lat,lon,city'},
                                    timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout:
            raise LocationUnavailable(f"Location lookup timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            raise LocationUnavailable(f"Network error during location lookup: {e}")
        except ValueError as e:
            raise LocationUnavailable(f"Invalid location response: {e}")

        if data.get('status') != 'success':
            raise LocationUnavailable(f"Location lookup failed: {data.get('message', 'unknown error')}")
        try:
            # city is left to the reverse geocoder
            return Location(float(data['lat']), float(data['lon']))
        except (KeyError, TypeError, ValueError) as e:
            raise LocationUnavailable(f"Location response missing coordinates: {e}")


_SOURCES = {
    "config": ConfiguredLocationSource,
    "ip": IPLocationSource,
}


def get_location_source(source_type: str, config: Optional[Dict[str, Any]] = None) -> Optional[LocationSource]:
    """Factory: return location source for given type."""
    cls = _SOURCES.get((source_type or "").lower())
    if not cls:
        return None
    return cls(config)


class BigDataCloudGeocoder:
    """Reverse geocoding through BigDataCloud's client endpoint. Never raises."""

    URL = "https://api.bigdatacloud.net/data/reverse-geocode-client"

    def __init__(self, locale: str = DEFAULT_LOCALE, timeout: float = 10):
        self.locale = locale
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)

    def city_label(self, latitude: float, longitude: float) -> str:
        params = {
            'latitude': latitude,
            'longitude': longitude,
            'localityLanguage': self.locale,
        }
        try:
            response = requests.get(self.URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            label = data.get('city') or data.get('locality')
        except Exception as e:
            self.logger.warning(f"Reverse geocoding failed for {latitude},{longitude}: {e}")
            label = None
        return label or placeholder_label(self.locale)
