"""
Unit tests for size-based backend selection.
"""

import pytest

from csvhub.storage.records import BackendKind
from csvhub.storage.selector import BYTES_PER_MB, choose_backend, size_bytes_to_mb


@pytest.mark.parametrize(
    "size_mb, expected",
    [
        (0, BackendKind.RECORD_STORE),
        (49, BackendKind.RECORD_STORE),
        (50, BackendKind.RECORD_STORE),
        (50.0001, BackendKind.STREAMED_STORE),
        (51, BackendKind.STREAMED_STORE),
        (2000, BackendKind.STREAMED_STORE),
    ],
)
def test_threshold_boundaries(size_mb, expected):
    assert choose_backend(size_mb, threshold_mb=50) == expected


def test_choice_is_idempotent():
    first = choose_backend(51, threshold_mb=50)
    assert all(choose_backend(51, threshold_mb=50) == first for _ in range(5))


def test_custom_threshold():
    assert choose_backend(10, threshold_mb=5) == BackendKind.STREAMED_STORE
    assert choose_backend(5, threshold_mb=5) == BackendKind.RECORD_STORE


def test_default_threshold_comes_from_settings():
    assert choose_backend(50) == BackendKind.RECORD_STORE
    assert choose_backend(51) == BackendKind.STREAMED_STORE


def test_size_bytes_to_mb():
    assert size_bytes_to_mb(0) == 0
    assert size_bytes_to_mb(BYTES_PER_MB * 3) == 3


def test_backend_kind_is_a_string_enum():
    assert BackendKind.RECORD_STORE == "record_store"
    assert BackendKind("streamed_store") == BackendKind.STREAMED_STORE
