from __future__ import annotations


class SatelliteCacheError(Exception):
    """Base class for every recoverable failure of the satellite cache."""


class ProviderError(SatelliteCacheError):
    """Imagery acquisition failed upstream (network, HTTP status, provider error body)."""


class EmptyResultError(SatelliteCacheError):
    """The provider answered but returned no usable image."""


class DecodeError(SatelliteCacheError):
    """Stored or received image bytes could not be decoded."""


class EncodeError(SatelliteCacheError):
    """Pixels could not be encoded to JPEG."""


class CacheIOError(SatelliteCacheError, OSError):
    """Reading or writing cache files failed."""


class NotFoundError(SatelliteCacheError):
    """Missing large image, cache record, or per-hole crop."""


class CropBoundsError(SatelliteCacheError):
    """Crop rectangle is invalid or does not fit the source image."""


class ChannelError(SatelliteCacheError):
    """The messaging channel refused a handoff."""
