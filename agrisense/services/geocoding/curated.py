"""Hard-coded one-click location suggestions for Kerala."""

from agrisense.core.models import LocationResult


def _place(name: str, lat: float, lng: float, place_type: str) -> LocationResult:
    return LocationResult(
        latitude=lat,
        longitude=lng,
        display_name=name,
        full_address=f"{name}, Kerala, India",
        place_type=place_type,
        bounding_box=(lat, lat, lng, lng),
    )


CURATED_LOCATIONS: tuple[LocationResult, ...] = (
    _place("Thiruvananthapuram", 8.5241, 76.9366, "city"),
    _place("Kochi", 9.9312, 76.2673, "city"),
    _place("Kozhikode", 11.2588, 75.7804, "city"),
    _place("Thrissur", 10.5276, 76.2144, "city"),
    _place("Kollam", 8.8932, 76.6141, "city"),
    _place("Palakkad", 10.7867, 76.6548, "city"),
    _place("Alappuzha", 9.4981, 76.3388, "city"),
    _place("Kottayam", 9.5916, 76.5222, "city"),
    _place("Kannur", 11.8745, 75.3704, "city"),
    _place("Wayanad", 11.6854, 76.1320, "district"),
)
