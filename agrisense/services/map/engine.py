"""Interactive map engine built on folium (Leaflet).

``MapEngine`` owns at most one live :class:`MapInstance`. Each instance is
bound to one :class:`MapContainer` and owns its tile layer, its markers and
every click listener registered through it; all of them are released when
the instance is destroyed, so repeated initialize/destroy cycles on the same
container never accumulate layers or listeners.

Click events are dispatched from the host UI bridge through
``dispatch_map_click`` / ``dispatch_marker_click``.
"""

import itertools
import logging
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

import folium
from folium.map import FitBounds

from agrisense.core.config import get_settings
from agrisense.core.events import EventChannel, Subscription
from agrisense.core.exceptions import MapContainerNotReadyError
from agrisense.core.models import LocationResult, Position
from agrisense.core.utils import distance_km
from agrisense.services.geocoding import NominatimGeocoder
from agrisense.services.map.bounds import LatLngBounds, Viewport
from agrisense.services.map.container import MapContainer
from agrisense.services.map.geolocation import GeolocationService

logger = logging.getLogger(__name__)

# Metres per degree of latitude
_METRES_PER_DEGREE = 111_320.0

_CIRCLE_STYLE = {"color": "#22c55e", "fill_color": "#22c55e", "fill_opacity": 0.3, "weight": 2}
_POLYGON_STYLE = {"color": "#16a34a", "fill_color": "#22c55e", "fill_opacity": 0.2, "weight": 3}

_marker_ids = itertools.count(1)


@dataclass(frozen=True)
class MapMarker:
    """Handle for a marker or shape drawn on a map.

    Popup, tooltip and title are fixed at creation; remove and re-add the
    marker to change them.
    """

    id: str
    latitude: float
    longitude: float
    popup_content: str | None = None
    tooltip: str | None = None
    title: str | None = None
    kind: str = "marker"  # "marker", "circle" or "polygon"
    radius: float | None = None  # metres, circles only
    points: tuple[tuple[float, float], ...] = field(default_factory=tuple)  # polygons only


@dataclass(frozen=True)
class MapClickEvent:
    latitude: float
    longitude: float


def _marker_extent(marker: MapMarker) -> list[tuple[float, float]]:
    """Points a marker covers, used to compute fit bounds."""
    if marker.kind == "polygon" and marker.points:
        return list(marker.points)
    if marker.kind == "circle" and marker.radius:
        d_lat = marker.radius / _METRES_PER_DEGREE
        cos_lat = max(math.cos(math.radians(marker.latitude)), 1e-6)
        d_lng = marker.radius / (_METRES_PER_DEGREE * cos_lat)
        return [
            (marker.latitude - d_lat, marker.longitude - d_lng),
            (marker.latitude + d_lat, marker.longitude + d_lng),
        ]
    return [(marker.latitude, marker.longitude)]


class MapInstance:
    """One folium map bound to one container.

    Args:
        container: The region this map is drawn into.
        center: Initial ``(lat, lng)``.
        zoom: Initial zoom level.
        settings: Settings providing tile source and zoom limits.
    """

    def __init__(
        self,
        container: MapContainer,
        center: tuple[float, float],
        zoom: int,
        settings,
    ) -> None:
        self.container = container
        self._map = folium.Map(
            location=list(center),
            zoom_start=zoom,
            tiles=None,
            zoom_control=True,
            min_zoom=settings.map_min_zoom,
            max_zoom=settings.map_max_zoom,
        )
        # Tile fetches happen in the renderer; a failed tile shows blank, never raises here
        self.tile_layer = folium.TileLayer(
            tiles=settings.map_tile_url,
            attr=settings.map_tile_attribution,
            name="OpenStreetMap",
            min_zoom=settings.map_min_zoom,
            max_zoom=settings.map_max_zoom,
        )
        self.tile_layer.add_to(self._map)
        self.viewport = Viewport(latitude=center[0], longitude=center[1], zoom=zoom)
        self.map_clicks: EventChannel[MapClickEvent] = EventChannel("map-click")
        self._markers: dict[str, MapMarker] = {}
        self._layers: dict[str, folium.Element] = {}
        self._marker_clicks: dict[str, EventChannel[MapMarker]] = {}
        self._fit: FitBounds | None = None
        self.live = True

    # -- layers --

    @property
    def markers(self) -> list[MapMarker]:
        """Live markers in insertion order."""
        return list(self._markers.values())

    @property
    def tile_layer_count(self) -> int:
        if self._map is None:
            return 0
        return sum(isinstance(child, folium.TileLayer) for child in self._map._children.values())

    @property
    def listener_count(self) -> int:
        return len(self.map_clicks) + sum(len(ch) for ch in self._marker_clicks.values())

    def add_layer(self, marker: MapMarker, layer: folium.Element) -> None:
        layer.add_to(self._map)
        self._markers[marker.id] = marker
        self._layers[marker.id] = layer
        self._marker_clicks[marker.id] = EventChannel(f"marker-click:{marker.id}")

    def remove_layer(self, marker_id: str) -> bool:
        marker = self._markers.pop(marker_id, None)
        if marker is None:
            return False
        layer = self._layers.pop(marker_id)
        # branca keeps children in an ordered dict keyed by element name
        self._map._children.pop(layer.get_name(), None)
        self._marker_clicks.pop(marker_id).clear()
        return True

    def marker_clicks(self, marker_id: str) -> EventChannel[MapMarker] | None:
        return self._marker_clicks.get(marker_id)

    # -- viewport --

    def set_view(self, lat: float, lng: float, zoom: int) -> None:
        self._drop_fit()
        self._map.location = [lat, lng]
        self._map.options["zoom"] = zoom
        self.viewport = Viewport(latitude=lat, longitude=lng, zoom=zoom)

    def fit(self, bounds: LatLngBounds) -> None:
        self._drop_fit()
        self._fit = FitBounds(bounds.as_corners())
        self._map.add_child(self._fit)
        lat, lng = bounds.center
        self.viewport = Viewport(latitude=lat, longitude=lng, zoom=self.viewport.zoom, bounds=bounds)

    def _drop_fit(self) -> None:
        if self._fit is not None:
            self._map._children.pop(self._fit.get_name(), None)
            self._fit = None

    def render(self) -> str:
        """Standalone HTML document for the current map state."""
        return self._map.get_root().render()

    # -- teardown --

    def destroy(self) -> None:
        """Release markers, listeners, the tile layer and the folium map.

        Always leaves the instance dead and the container free, even when a
        step fails; the first failure is re-raised after cleanup completes.
        """
        if not self.live:
            return
        self.live = False
        try:
            for marker_id in list(self._markers):
                self.remove_layer(marker_id)
            self._drop_fit()
            if self._map is not None:
                self._map._children.pop(self.tile_layer.get_name(), None)
        finally:
            self._map = None
            if self.container.instance is self:
                self.container.instance = None
            channels = [self.map_clicks, *self._marker_clicks.values()]
            self._markers.clear()
            self._layers.clear()
            self._marker_clicks.clear()
            for channel in channels:
                channel.clear()


class MapEngine:
    """Owns the active map surface, its tiles, markers and click listeners.

    Args:
        geocoder: Geocoding client used by ``search``; a Nominatim client is
            created (and owned) when omitted.
        geolocation: Current-position service used by ``show_current_location``.
        settings: Optional Settings instance (defaults to get_settings()).
    """

    def __init__(
        self,
        geocoder: NominatimGeocoder | None = None,
        geolocation: GeolocationService | None = None,
        settings=None,
    ) -> None:
        self._settings = settings or get_settings()
        self._owns_geocoder = geocoder is None
        self._geocoder = geocoder or NominatimGeocoder(settings=self._settings)
        self._geolocation = geolocation or GeolocationService(settings=self._settings)
        self._instance: MapInstance | None = None

    @property
    def default_center(self) -> tuple[float, float]:
        return (self._settings.map_default_latitude, self._settings.map_default_longitude)

    @property
    def instance(self) -> MapInstance | None:
        """The live instance, or None (never initialized, destroyed, or taken over)."""
        if self._instance is not None and not self._instance.live:
            self._instance = None
        return self._instance

    @property
    def is_initialized(self) -> bool:
        return self.instance is not None

    # -- lifecycle --

    def initialize(
        self,
        container: MapContainer,
        center: Sequence[float] | None = None,
        zoom: int | None = None,
    ) -> MapInstance:
        """Create a map on ``container``, tearing down any previous one first.

        Both this engine's current instance and any instance another engine
        left on the same container are destroyed before the new one exists.

        Raises:
            MapContainerNotReadyError: If the container has not been attached.
        """
        if not container.is_attached:
            raise MapContainerNotReadyError(container.container_id)

        self.destroy()
        stale = container.instance
        if stale is not None:
            self._safe_destroy(stale)
            container.instance = None

        center = tuple(center) if center is not None else self.default_center
        zoom = zoom if zoom is not None else self._settings.map_default_zoom
        instance = MapInstance(container, (center[0], center[1]), zoom, self._settings)
        container.instance = instance
        self._instance = instance
        logger.info(
            "Map initialized on %s at (%s, %s) zoom %s",
            container.container_id,
            center[0],
            center[1],
            zoom,
        )
        return instance

    async def initialize_when_attached(
        self,
        container: MapContainer,
        center: Sequence[float] | None = None,
        zoom: int | None = None,
    ) -> MapInstance:
        """Wait for the container's attached signal, then ``initialize``."""
        await container.wait_attached()
        return self.initialize(container, center, zoom)

    def destroy(self) -> None:
        """Release the current map. Never raises; a second call is a no-op."""
        instance, self._instance = self._instance, None
        if instance is not None:
            self._safe_destroy(instance)

    async def aclose(self) -> None:
        """Destroy the map and close the geocoder if this engine created it."""
        self.destroy()
        if self._owns_geocoder:
            await self._geocoder.aclose()

    @staticmethod
    def _safe_destroy(instance: MapInstance) -> None:
        try:
            instance.destroy()
        except Exception:
            logger.warning(
                "Error during map cleanup on %s", instance.container.container_id, exc_info=True
            )
        else:
            logger.debug("Map destroyed on %s", instance.container.container_id)

    # -- markers --

    @property
    def markers(self) -> list[MapMarker]:
        instance = self.instance
        return instance.markers if instance is not None else []

    def _require_instance(self, action: str) -> MapInstance | None:
        instance = self.instance
        if instance is None:
            logger.error("Map not initialized; cannot %s", action)
        return instance

    def add_marker(
        self,
        lat: float,
        lng: float,
        *,
        popup: str | None = None,
        tooltip: str | None = None,
        title: str | None = None,
    ) -> MapMarker | None:
        """Place a marker; returns None (and logs) when no map is initialized."""
        instance = self._require_instance("add marker")
        if instance is None:
            return None

        marker = MapMarker(
            id=f"marker-{next(_marker_ids)}",
            latitude=lat,
            longitude=lng,
            popup_content=popup,
            tooltip=tooltip,
            title=title,
        )
        try:
            extra = {"title": title} if title else {}
            layer = folium.Marker(
                location=[lat, lng],
                popup=popup or None,
                tooltip=tooltip or None,
                **extra,
            )
            instance.add_layer(marker, layer)
        except Exception:
            logger.exception("Failed to add marker at (%s, %s)", lat, lng)
            return None
        return marker

    def add_circle_marker(
        self,
        lat: float,
        lng: float,
        radius: float = 100.0,
        *,
        popup: str | None = None,
        **style,
    ) -> MapMarker | None:
        """Draw a circle of ``radius`` metres, e.g. to outline a farm."""
        instance = self._require_instance("add circle")
        if instance is None:
            return None

        marker = MapMarker(
            id=f"circle-{next(_marker_ids)}",
            latitude=lat,
            longitude=lng,
            popup_content=popup,
            kind="circle",
            radius=radius,
        )
        layer = folium.Circle(
            location=[lat, lng],
            radius=radius,
            popup=popup or None,
            **{**_CIRCLE_STYLE, **style},
        )
        instance.add_layer(marker, layer)
        return marker

    def add_polygon(
        self,
        points: Sequence[Sequence[float]],
        *,
        popup: str | None = None,
        **style,
    ) -> MapMarker | None:
        """Draw a closed field boundary from ``(lat, lng)`` vertices."""
        instance = self._require_instance("add polygon")
        if instance is None:
            return None
        if len(points) < 3:
            logger.error("A polygon needs at least 3 points, got %d", len(points))
            return None

        vertices = tuple((float(lat), float(lng)) for lat, lng in points)
        lat, lng = LatLngBounds.from_points(vertices).center
        marker = MapMarker(
            id=f"polygon-{next(_marker_ids)}",
            latitude=lat,
            longitude=lng,
            popup_content=popup,
            kind="polygon",
            points=vertices,
        )
        layer = folium.Polygon(
            locations=[list(v) for v in vertices],
            popup=popup or None,
            **{**_POLYGON_STYLE, **style},
        )
        instance.add_layer(marker, layer)
        return marker

    def remove_marker(self, marker: MapMarker) -> bool:
        instance = self.instance
        if instance is None:
            return False
        return instance.remove_layer(marker.id)

    def clear_markers(self) -> None:
        """Remove every marker and shape; safe on an empty map."""
        instance = self.instance
        if instance is None:
            return
        for marker in instance.markers:
            instance.remove_layer(marker.id)

    # -- viewport --

    @property
    def viewport(self) -> Viewport | None:
        instance = self.instance
        return instance.viewport if instance is not None else None

    def get_bounds(self) -> LatLngBounds | None:
        viewport = self.viewport
        return viewport.bounds if viewport is not None else None

    def set_view(self, lat: float, lng: float, zoom: int | None = None) -> None:
        instance = self.instance
        if instance is None:
            return
        instance.set_view(lat, lng, zoom if zoom is not None else self._settings.map_search_zoom)

    def fit_bounds(self) -> None:
        """Frame all markers with padding; needs at least two markers."""
        instance = self.instance
        if instance is None:
            return
        markers = instance.markers
        if len(markers) < 2:
            return
        points = [point for marker in markers for point in _marker_extent(marker)]
        bounds = LatLngBounds.from_points(points).pad(self._settings.map_fit_padding)
        instance.fit(bounds)

    def to_html(self) -> str | None:
        instance = self.instance
        return instance.render() if instance is not None else None

    @staticmethod
    def distance(a: Sequence[float], b: Sequence[float]) -> float:
        """Great-circle distance in kilometres between two ``(lat, lng)`` points."""
        return distance_km(a[0], a[1], b[0], b[1])

    # -- events --

    def on_map_click(self, callback: Callable[[MapClickEvent], None]) -> Subscription | None:
        """Register a click listener; it lives until cancelled or the map is destroyed."""
        instance = self.instance
        if instance is None:
            return None
        return instance.map_clicks.subscribe(callback)

    def on_marker_click(
        self, marker: MapMarker, callback: Callable[[MapMarker], None]
    ) -> Subscription | None:
        instance = self.instance
        if instance is None:
            return None
        channel = instance.marker_clicks(marker.id)
        if channel is None:
            return None
        return channel.subscribe(callback)

    def dispatch_map_click(self, lat: float, lng: float) -> None:
        instance = self.instance
        if instance is not None:
            instance.map_clicks.emit(MapClickEvent(latitude=lat, longitude=lng))

    def dispatch_marker_click(self, marker: MapMarker) -> None:
        instance = self.instance
        if instance is None:
            return
        channel = instance.marker_clicks(marker.id)
        if channel is not None:
            channel.emit(marker)

    # -- UI flows --

    def show_locations(
        self,
        locations: Iterable[LocationResult],
        on_select: Callable[[LocationResult], None] | None = None,
    ) -> list[MapMarker]:
        """Replace the marker set with ``locations`` and frame them.

        ``fit_bounds`` runs once, after the whole batch has been added.
        """
        if self.instance is None:
            logger.error("Map not initialized; cannot show locations")
            return []

        self.clear_markers()
        added = []
        for location in locations:
            marker = self.add_marker(
                location.latitude,
                location.longitude,
                popup=location.display_name,
                title=location.display_name,
            )
            if marker is None:
                continue
            added.append(marker)
            if on_select is not None:
                self.on_marker_click(marker, lambda _m, loc=location: on_select(loc))

        if len(added) > 1:
            self.fit_bounds()
        return added

    async def search(
        self,
        query: str,
        limit: int = 10,
        country_code: str | None = None,
    ) -> list[LocationResult]:
        """Geocode ``query`` and show the best hit on the map."""
        results = await self._geocoder.forward_search(query, limit=limit, country_code=country_code)
        if results:
            first = results[0]
            self.set_view(first.latitude, first.longitude, self._settings.map_search_zoom)
            self.add_marker(
                first.latitude,
                first.longitude,
                popup=f"<strong>{first.display_name}</strong><br/>{first.full_address}",
                title=first.display_name,
            )
        return results

    def select_location(self, location: LocationResult) -> MapMarker | None:
        """Focus the map on one chosen suggestion."""
        self.set_view(location.latitude, location.longitude, self._settings.map_focus_zoom)
        self.clear_markers()
        return self.add_marker(
            location.latitude,
            location.longitude,
            popup=f"<strong>{location.display_name}</strong><br/>{location.full_address}",
            title=location.display_name,
        )

    async def show_current_location(self) -> tuple[Position, LocationResult | None]:
        """Center on the device position and describe it.

        The reverse lookup is best-effort; its absence does not fail the call.

        Raises:
            GeolocationError: When the position cannot be obtained.
        """
        position = await self._geolocation.get_current_position()
        self.set_view(position.latitude, position.longitude, self._settings.map_focus_zoom)
        self.add_marker(
            position.latitude,
            position.longitude,
            popup="Your Current Location",
            title="Current Location",
        )
        address = await self._geocoder.reverse_lookup(position.latitude, position.longitude)
        if address is not None:
            logger.info("Current address: %s", address.full_address)
        return position, address

