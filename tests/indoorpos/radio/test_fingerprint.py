"""
Unit tests for fingerprints.
"""

import numpy as np
import pytest

from indoorpos.exceptions import InvalidArgumentError
from indoorpos.radio.fingerprint import Fingerprint, FingerprintLocated, as_fingerprint
from indoorpos.radio.readings import RangingAndRssiReading, RangingReading, RssiReading
from indoorpos.radio.sources import RadioSource


class TestFingerprint:
    """Test fingerprint container behavior."""

    def setup_method(self):
        self.a = RadioSource("a")
        self.b = RadioSource("b")
        self.readings = [
            RangingReading(self.a, 1.0),
            RssiReading(self.b, -60.0),
            RangingAndRssiReading(self.a, distance=1.1, rssi=-40.0),
        ]

    def test_sequence_protocol(self):
        fp = Fingerprint(self.readings)
        assert len(fp) == 3
        assert fp[1] is self.readings[1]
        assert list(fp) == self.readings

    def test_readings_are_immutable(self):
        fp = Fingerprint(self.readings)
        self.readings.append(RangingReading(self.b, 2.0))
        assert len(fp) == 3
        assert isinstance(fp.readings, tuple)

    def test_filters(self):
        fp = Fingerprint(self.readings)
        assert len(fp.ranging_readings()) == 2
        assert len(fp.rssi_readings()) == 2
        assert len(fp.readings_for("a")) == 2
        assert fp.source_identifiers == ["a", "b"]

    def test_invalid_readings(self):
        with pytest.raises(InvalidArgumentError):
            Fingerprint([1.0, 2.0])
        with pytest.raises(InvalidArgumentError):
            Fingerprint(None)

    def test_as_fingerprint(self):
        fp = Fingerprint(self.readings)
        assert as_fingerprint(fp) is fp
        assert len(as_fingerprint(self.readings)) == 3

    def test_located(self):
        fp = FingerprintLocated(self.readings, position=[2.0, 3.0])
        np.testing.assert_allclose(fp.position, [2.0, 3.0])
        with pytest.raises(InvalidArgumentError):
            FingerprintLocated(self.readings)
