"""
Geocoding module - Place name <-> coordinate lookups.
"""

from .nominatim import NominatimGeocoder

__all__ = ["NominatimGeocoder"]
