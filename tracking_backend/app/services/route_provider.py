"""
Route planning for tracked trips.

Every provider satisfies
`plan_route(origin, destination, waypoints, driver_location) -> Route`.
The planned route always spans origin to destination; `driver_location` only
tells the remote provider where the vehicle is approaching from.

The Google Directions provider is best-effort and the fallback provider is a
deterministic great-circle estimate. The resilient provider composes them so
callers never see a route planning failure.
"""

import asyncio
import logging
from typing import Optional, Sequence

import httpx

from tracking_backend.app.core.exceptions import RouteProviderError
from tracking_backend.app.core.reliability import CircuitBreaker
from tracking_backend.app.domain.tracking import geo
from tracking_backend.app.domain.tracking.state import Coordinates, Route
from tracking_backend.app.models.tracking_enums import RouteSource

logger = logging.getLogger("tracking.routes")


class RouteProvider:
    """Contract shared by all route providers."""

    async def plan_route(
        self,
        origin: Coordinates,
        destination: Coordinates,
        waypoints: Sequence[Coordinates] = (),
        driver_location: Optional[Coordinates] = None,
    ) -> Route:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class FallbackRouteProvider(RouteProvider):
    """Direct great-circle distance origin -> destination. Waypoints are kept as metadata."""

    def __init__(self, default_speed_kmh: float = geo.DEFAULT_SPEED_KMH, eta_buffer_pct: float = geo.DEFAULT_ETA_BUFFER_PCT):
        self.default_speed_kmh = default_speed_kmh
        self.eta_buffer_pct = eta_buffer_pct

    async def plan_route(self, origin, destination, waypoints=(), driver_location=None):
        distance = geo.haversine_km(
            origin.latitude, origin.longitude, destination.latitude, destination.longitude
        )
        return Route(
            polyline=None,
            distance_km=geo.round_half_up(distance, 3),
            duration_min=geo.eta_minutes(
                distance,
                default_speed_kmh=self.default_speed_kmh,
                buffer_pct=self.eta_buffer_pct,
            ),
            waypoints=list(waypoints),
            source=RouteSource.FALLBACK,
        )


class GoogleDirectionsRouteProvider(RouteProvider):
    """Google Directions API client (driving, metric)."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://maps.googleapis.com/maps/api/directions/json",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @staticmethod
    def _format(point: Coordinates) -> str:
        return f"{point.latitude},{point.longitude}"

    async def plan_route(self, origin, destination, waypoints=(), driver_location=None):
        if not self.api_key:
            raise RouteProviderError("GOOGLE_MAPS_API_KEY not configured")

        start = origin
        stops = [wp for wp in waypoints if wp != origin]
        if driver_location is not None:
            # Directions start at the driver and pass through the trip origin
            start = driver_location
            stops.insert(0, origin)

        params = {
            "origin": self._format(start),
            "destination": self._format(destination),
            "mode": "driving",
            "units": "metric",
            "key": self.api_key,
        }
        if stops:
            params["waypoints"] = "|".join(self._format(wp) for wp in stops)

        try:
            response = await self.client.get(self.base_url, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RouteProviderError(f"Directions request failed: {exc}") from exc

        if data.get("status") != "OK" or not data.get("routes"):
            raise RouteProviderError(f"Directions API error: {data.get('status', 'UNKNOWN')}")

        try:
            route = data["routes"][0]
            # One leg per waypoint hop
            distance_m = sum(leg["distance"]["value"] for leg in route["legs"])
            duration_s = sum(leg["duration"]["value"] for leg in route["legs"])
            polyline = route.get("overview_polyline", {}).get("points")
        except (KeyError, TypeError) as exc:
            raise RouteProviderError("Unexpected response format from Directions API") from exc

        return Route(
            polyline=polyline,
            distance_km=geo.round_half_up(distance_m / 1000, 3),
            duration_min=int(geo.round_half_up(duration_s / 60)),
            waypoints=list(waypoints),
            source=RouteSource.EXTERNAL,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class ResilientRouteProvider(RouteProvider):
    """
    Primary provider under a hard timeout and a circuit breaker; any failure
    returns the fallback route instead.
    """

    def __init__(
        self,
        primary: RouteProvider,
        fallback: RouteProvider,
        timeout: float = 5.0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.primary = primary
        self.fallback = fallback
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker("route_provider", failure_threshold=3, reset_timeout=30)

    async def _call_primary(self, origin, destination, waypoints, driver_location):
        return await asyncio.wait_for(
            self.primary.plan_route(origin, destination, waypoints, driver_location),
            timeout=self.timeout,
        )

    async def plan_route(self, origin, destination, waypoints=(), driver_location=None):
        try:
            return await self.breaker.call(
                self._call_primary, origin, destination, list(waypoints), driver_location
            )
        except Exception as exc:
            logger.warning(
                "Route provider unavailable, using fallback route",
                extra={"error": repr(exc), "error_type": type(exc).__name__}
            )
            return await self.fallback.plan_route(origin, destination, waypoints, driver_location)

    async def aclose(self) -> None:
        await self.primary.aclose()
        await self.fallback.aclose()


def build_route_provider(settings) -> RouteProvider:
    """Provider chain for the configured environment."""
    fallback = FallbackRouteProvider(
        default_speed_kmh=settings.default_speed_kmh,
        eta_buffer_pct=settings.eta_buffer_pct,
    )
    if not settings.google_maps_api_key:
        logger.warning("Google Maps API key not configured, routes use the great-circle fallback")
        return fallback

    primary = GoogleDirectionsRouteProvider(
        api_key=settings.google_maps_api_key,
        base_url=settings.directions_api_url,
        timeout=settings.route_timeout_seconds,
    )
    return ResilientRouteProvider(
        primary,
        fallback,
        timeout=settings.route_timeout_seconds,
        breaker=CircuitBreaker(
            "route_provider",
            failure_threshold=settings.route_circuit_failure_threshold,
            reset_timeout=settings.route_circuit_reset_timeout,
        ),
    )
