"""
Size-based routing between the record store and the streamed file store.
"""

from typing import Optional

from csvhub.config import get_settings
from csvhub.storage.records import BackendKind

BYTES_PER_MB = 1024 * 1024


def size_bytes_to_mb(size_bytes: int) -> float:
    """Convert a byte count to megabytes."""
    return size_bytes / BYTES_PER_MB


def choose_backend(estimated_size_mb: float, threshold_mb: Optional[float] = None) -> BackendKind:
    """
    Pick the backend for a file of the given size.

    Sizes at or below the threshold go to the record store, larger ones to the
    streamed store. Pure: callers may ask once with 0 for metadata work and again
    with the real size right before ingestion.

    Args:
        estimated_size_mb: Declared or measured file size in MB
        threshold_mb: Override for ``settings.size_threshold_mb``

    Returns:
        BackendKind for the file
    """
    if threshold_mb is None:
        threshold_mb = get_settings().size_threshold_mb
    if estimated_size_mb <= threshold_mb:
        return BackendKind.RECORD_STORE
    return BackendKind.STREAMED_STORE
