from .provider import CelestialPositionProvider, get_provider, to_utc
from .lowprecision import LowPrecisionPositionProvider

__all__ = [
    "CelestialPositionProvider",
    "LowPrecisionPositionProvider",
    "get_provider",
    "to_utc",
]
