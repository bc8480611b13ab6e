"""Latitude/longitude bounding boxes and viewport state."""

from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class LatLngBounds:
    """Axis-aligned box given by its south-west and north-east corners."""

    south: float
    west: float
    north: float
    east: float

    @classmethod
    def from_points(cls, points: Iterable[tuple[float, float]]) -> "LatLngBounds":
        """Smallest box containing every ``(lat, lng)`` point.

        Raises:
            ValueError: If ``points`` is empty.
        """
        points = list(points)
        if not points:
            raise ValueError("Cannot build bounds from an empty point set")
        lats = [lat for lat, _ in points]
        lngs = [lng for _, lng in points]
        return cls(south=min(lats), west=min(lngs), north=max(lats), east=max(lngs))

    @property
    def center(self) -> tuple[float, float]:
        return ((self.south + self.north) / 2, (self.west + self.east) / 2)

    def pad(self, ratio: float) -> "LatLngBounds":
        """Grow the box by ``ratio`` of its height/width on every side."""
        lat_buffer = abs(self.north - self.south) * ratio
        lng_buffer = abs(self.east - self.west) * ratio
        return LatLngBounds(
            south=self.south - lat_buffer,
            west=self.west - lng_buffer,
            north=self.north + lat_buffer,
            east=self.east + lng_buffer,
        )

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def as_corners(self) -> list[list[float]]:
        """``[[south, west], [north, east]]`` as expected by Leaflet/folium."""
        return [[self.south, self.west], [self.north, self.east]]


@dataclass(frozen=True)
class Viewport:
    """What the map currently shows.

    ``bounds`` is set after ``fit_bounds`` and cleared by ``set_view``.
    """

    latitude: float
    longitude: float
    zoom: int
    bounds: LatLngBounds | None = None
