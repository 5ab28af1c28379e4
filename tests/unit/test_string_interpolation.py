"""
Unit tests for ${VAR} interpolation.
"""
import pytest

from svcenv.UTILS.string_interpolation import (
    MISSING_EMPTY,
    MISSING_KEEP,
    interpolate,
    placeholders,
)


class TestInterpolate:
    """Tests for interpolate."""

    def test_simple(self):
        assert interpolate("host=${HOST}:${PORT}", {"HOST": "localhost", "PORT": "9092"}) == "host=localhost:9092"

    def test_default(self):
        assert interpolate("${PASSWORD:-test}", {}) == "test"
        assert interpolate("${PASSWORD:-test}", {"PASSWORD": ""}) == "test"
        assert interpolate("${PASSWORD:-test}", {"PASSWORD": "s3cret"}) == "s3cret"

    def test_alternative(self):
        assert interpolate("${TLS:+--ssl}", {"TLS": "1"}) == "--ssl"
        assert interpolate("${TLS:+--ssl}", {}) == ""

    def test_missing(self):
        with pytest.raises(KeyError):
            interpolate("${NOPE}", {})
        assert interpolate("a${NOPE}b", {}, missing=MISSING_EMPTY) == "ab"
        assert interpolate("a${NOPE}b", {}, missing=MISSING_KEEP) == "a${NOPE}b"

    def test_placeholders(self):
        assert placeholders("${A} ${B:-x} $C ${HOST_PORT_9092}") == ["A", "B", "HOST_PORT_9092"]
