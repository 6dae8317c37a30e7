"""pagefetch: synchronous HTTP fetching with streaming charset detection."""

from .workflows import (
    DetectionMode,
    FetchConfig,
    FetchError,
    FetchResult,
    WebSession,
)

__version__ = "0.1.0"

__all__ = [
    "DetectionMode",
    "FetchConfig",
    "FetchError",
    "FetchResult",
    "WebSession",
    "__version__",
]
