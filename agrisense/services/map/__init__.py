"""
Map module - Map surface, marker lifecycle and current-position services.
"""

from .bounds import LatLngBounds, Viewport
from .container import MapContainer
from .engine import MapClickEvent, MapEngine, MapInstance, MapMarker
from .geolocation import GeolocationProvider, GeolocationService

__all__ = [
    "GeolocationProvider",
    "GeolocationService",
    "LatLngBounds",
    "MapClickEvent",
    "MapContainer",
    "MapEngine",
    "MapInstance",
    "MapMarker",
    "Viewport",
]
