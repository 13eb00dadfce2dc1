"""Geocoding and directions provider backed by the Google Maps web services."""

import logging
import re
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel, Field

from transitnav.core.exceptions import ProviderUnavailable
from transitnav.models.route import TransportMode
from transitnav.services.distance import ServiceArea

logger = logging.getLogger(__name__)

# Provider travel mode per transport mode; every road vehicle is routed as driving
PROVIDER_TRAVEL_MODES = {
    TransportMode.WALK: "walking",
    TransportMode.BUS: "transit",
    TransportMode.TAXI: "driving",
    TransportMode.KEKE: "driving",
    TransportMode.OKADA: "driving",
    TransportMode.UNKNOWN: "driving",
}

_HTML_TAG = re.compile(r"<[^>]+>")


class AddressComponent(BaseModel):
    long_name: str
    short_name: str = ""
    types: List[str] = Field(default_factory=list)


class GeocodeResult(BaseModel):
    """One geocoder match."""

    latitude: float
    longitude: float
    formatted_address: str = ""
    place_id: Optional[str] = None
    types: List[str] = Field(default_factory=list)
    address_components: List[AddressComponent] = Field(default_factory=list)


class DirectionsStep(BaseModel):
    instruction: str
    distance_meters: float
    duration_seconds: float
    travel_mode: str = ""


class DirectionsResult(BaseModel):
    """First leg of the provider's best route."""

    distance_meters: float
    duration_seconds: float
    steps: List[DirectionsStep] = Field(default_factory=list)
    summary: str = ""


class GeocodingProvider(Protocol):
    """Contract the planner depends on. Every call may raise ProviderUnavailable."""

    async def geocode(self, address: str) -> List[GeocodeResult]:
        ...

    async def reverse_geocode(self, latitude: float, longitude: float) -> List[GeocodeResult]:
        ...

    async def directions(
        self,
        origin: tuple,
        destination: tuple,
        mode: TransportMode,
    ) -> Optional[DirectionsResult]:
        ...


def strip_html(text: str) -> str:
    return re.sub(r"\s+", " ", _HTML_TAG.sub(" ", text or "")).strip()


class GoogleMapsProvider:
    """Async client for the Geocoding and Directions APIs.

    Requests are biased to the service area (``region`` plus ``bounds``).
    ``ZERO_RESULTS`` is an empty answer, not an error. Transport failures,
    timeouts and any other non-OK status raise ProviderUnavailable.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://maps.googleapis.com/maps/api",
        region: str = "ng",
        service_area: Optional[ServiceArea] = None,
        timeout: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.region = region
        self.service_area = service_area or ServiceArea()
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Dict[str, Any], operation: str) -> Dict[str, Any]:
        if not self.api_key:
            raise ProviderUnavailable(operation, "no API key configured")

        query = dict(params)
        query["key"] = self.api_key
        url = f"{self.base_url}/{path}/json"

        try:
            response = await self._client.get(url, params=query)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"{operation} timed out: {e}")
            raise ProviderUnavailable(operation, "timeout") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"{operation} HTTP {e.response.status_code}")
            raise ProviderUnavailable(operation, f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"{operation} failed: {type(e).__name__}: {e}")
            raise ProviderUnavailable(operation, type(e).__name__) from e

        status = payload.get("status", "UNKNOWN_ERROR")
        if status not in ("OK", "ZERO_RESULTS"):
            message = payload.get("error_message", "")
            logger.warning(f"{operation} returned {status} {message}".strip())
            raise ProviderUnavailable(operation, status)
        return payload

    async def geocode(self, address: str) -> List[GeocodeResult]:
        """Forward-geocode an address, restricted to the service country."""
        payload = await self._get(
            "geocode",
            {
                "address": address,
                "region": self.region,
                "components": f"country:{self.region.upper()}",
                "bounds": self.service_area.bias_bounds(),
            },
            "geocode",
        )
        return [self._parse_geocode(item) for item in payload.get("results", [])]

    async def reverse_geocode(self, latitude: float, longitude: float) -> List[GeocodeResult]:
        payload = await self._get(
            "geocode",
            {"latlng": f"{latitude},{longitude}", "region": self.region},
            "reverse_geocode",
        )
        return [self._parse_geocode(item) for item in payload.get("results", [])]

    async def directions(
        self,
        origin: tuple,
        destination: tuple,
        mode: TransportMode = TransportMode.UNKNOWN,
    ) -> Optional[DirectionsResult]:
        """Directions between two ``(lat, lng)`` points; None when there is no route."""
        payload = await self._get(
            "directions",
            {
                "origin": f"{origin[0]},{origin[1]}",
                "destination": f"{destination[0]},{destination[1]}",
                "mode": PROVIDER_TRAVEL_MODES.get(mode, "driving"),
                "region": self.region,
            },
            "directions",
        )
        routes = payload.get("routes", [])
        if not routes or not routes[0].get("legs"):
            return None

        route = routes[0]
        leg = route["legs"][0]
        steps = [
            DirectionsStep(
                instruction=strip_html(step.get("html_instructions", "")),
                distance_meters=float(step.get("distance", {}).get("value", 0)),
                duration_seconds=float(step.get("duration", {}).get("value", 0)),
                travel_mode=str(step.get("travel_mode", "")).lower(),
            )
            for step in leg.get("steps", [])
        ]
        return DirectionsResult(
            distance_meters=float(leg.get("distance", {}).get("value", 0)),
            duration_seconds=float(leg.get("duration", {}).get("value", 0)),
            steps=steps,
            summary=route.get("summary", ""),
        )

    @staticmethod
    def _parse_geocode(item: Dict[str, Any]) -> GeocodeResult:
        location = item.get("geometry", {}).get("location", {})
        return GeocodeResult(
            latitude=float(location.get("lat", 0.0)),
            longitude=float(location.get("lng", 0.0)),
            formatted_address=item.get("formatted_address", ""),
            place_id=item.get("place_id"),
            types=item.get("types", []),
            address_components=[
                AddressComponent(
                    long_name=c.get("long_name", ""),
                    short_name=c.get("short_name", ""),
                    types=c.get("types", []),
                )
                for c in item.get("address_components", [])
            ],
        )
