"""
Unit tests for RSSI fingerprint distances, k-nearest search and weighted k-NN.
"""

import numpy as np
import pytest

from indoorpos.exceptions import InvalidArgumentError, LockedError, NotReadyError
from indoorpos.fingerprinting import (
    WeightedKNearestNeighboursPositionSolver,
    find_k_nearest,
    find_nearest,
    no_mean_squared_rssi_distance,
    squared_rssi_distance,
    weighted_knn_position,
)
from indoorpos.radio import (
    Fingerprint,
    FingerprintLocated,
    RadioSource,
    RangingAndRssiReading,
    RangingReading,
    RssiReading,
)

APS = [RadioSource(f"ap{i}") for i in range(3)]
LONELY = RadioSource("lonely")


def _fingerprint(rssi, sources=APS):
    return Fingerprint([RssiReading(s, v) for s, v in zip(sources, rssi)])


def _located(rssi, position, sources=APS):
    return FingerprintLocated(
        [RssiReading(s, v) for s, v in zip(sources, rssi)], position=position
    )


RADIO_MAP = [
    _located([-50.0, -60.0, -70.0], [0.0, 0.0]),
    _located([-55.0, -55.0, -65.0], [4.0, 0.0]),
    _located([-65.0, -50.0, -60.0], [8.0, 0.0]),
    _located([-70.0, -60.0, -50.0], [8.0, 6.0]),
]


class TestRssiDistances:
    """Test the fingerprint distances."""

    def test_squared_distance(self):
        a = _fingerprint([-50.0, -60.0, -70.0])
        b = _fingerprint([-52.0, -58.0, -72.0])
        assert squared_rssi_distance(a, b) == pytest.approx(12.0)
        assert squared_rssi_distance(a, a) == 0.0

    def test_only_shared_sources_count(self):
        a = _fingerprint([-50.0, -60.0])
        b = Fingerprint([RssiReading(APS[0], -53.0), RssiReading(LONELY, -20.0)])
        assert squared_rssi_distance(a, b) == pytest.approx(9.0)

    def test_ranging_only_readings_ignored(self):
        a = Fingerprint([RangingReading(APS[0], 2.0), RangingAndRssiReading(APS[1], 3.0, -60.0)])
        b = _fingerprint([-40.0, -62.0])
        assert squared_rssi_distance(a, b) == pytest.approx(4.0)

    def test_no_shared_source_is_infinite(self):
        a = _fingerprint([-50.0])
        b = Fingerprint([RssiReading(LONELY, -50.0)])
        assert squared_rssi_distance(a, b) == np.inf
        assert no_mean_squared_rssi_distance(a, b) == np.inf

    def test_mean_removal_cancels_offset(self):
        a = _fingerprint([-50.0, -60.0, -70.0])
        b = _fingerprint([-45.0, -55.0, -65.0])
        assert squared_rssi_distance(a, b) == pytest.approx(75.0)
        assert no_mean_squared_rssi_distance(a, b) == pytest.approx(0.0, abs=1e-12)

    def test_mean_removal_keeps_shape_difference(self):
        a = _fingerprint([-50.0, -60.0])
        b = _fingerprint([-60.0, -50.0])
        # Means are equal, so the no-mean distance equals the plain one
        assert no_mean_squared_rssi_distance(a, b) == pytest.approx(200.0)


class TestFindNearest:
    """Test k-nearest search over a radio map."""

    def test_k_nearest_sorted(self):
        query = _fingerprint([-54.0, -56.0, -66.0])
        nearest = find_k_nearest(query, RADIO_MAP, 2, mean_removed=False)

        assert len(nearest) == 2
        assert nearest.fingerprints[0] is RADIO_MAP[1]
        np.testing.assert_array_equal(nearest.indices, [1, 0])
        assert nearest.squared_distances[0] == pytest.approx(3.0)
        assert np.all(np.diff(nearest.squared_distances) >= 0)
        np.testing.assert_allclose(nearest.distances, np.sqrt(nearest.squared_distances))
        np.testing.assert_array_equal(nearest.positions, [[4.0, 0.0], [0.0, 0.0]])

    def test_k_larger_than_map(self):
        query = _fingerprint([-54.0, -56.0, -66.0])
        assert len(find_k_nearest(query, RADIO_MAP, 10)) == len(RADIO_MAP)

    def test_incomparable_fingerprints_skipped(self):
        radio_map = RADIO_MAP + [_located([-40.0], [1.0, 1.0], sources=[LONELY])]
        query = _fingerprint([-54.0, -56.0, -66.0])
        nearest = find_k_nearest(query, radio_map, 10)
        assert len(nearest) == len(RADIO_MAP)
        assert 4 not in nearest.indices

    def test_nearest(self):
        query = _fingerprint([-69.0, -61.0, -51.0])
        assert find_nearest(query, RADIO_MAP) is RADIO_MAP[3]
        assert find_nearest(Fingerprint([RssiReading(LONELY, -40.0)]), RADIO_MAP) is None

    def test_invalid_k(self):
        with pytest.raises(InvalidArgumentError):
            find_k_nearest(_fingerprint([-50.0]), RADIO_MAP, 0)


class TestWeightedKNearestNeighbours:
    """Test the weighted k-NN position solver."""

    def test_inverse_distance_weighting(self):
        solver = WeightedKNearestNeighboursPositionSolver(RADIO_MAP[:2], [1.0, 3.0])
        position = solver.solve()
        # Weights 1 and 1/3
        np.testing.assert_allclose(position, [1.0, 0.0])
        np.testing.assert_array_equal(solver.estimated_position, position)

    def test_equal_distances_average(self):
        solver = WeightedKNearestNeighboursPositionSolver(RADIO_MAP, np.full(4, 2.0))
        np.testing.assert_allclose(solver.solve(), [5.0, 1.5])

    def test_zero_distance_dominates(self):
        solver = WeightedKNearestNeighboursPositionSolver(RADIO_MAP[:3], [0.0, 5.0, 5.0])
        np.testing.assert_allclose(solver.solve(), [0.0, 0.0], atol=1e-6)

    def test_single_fingerprint(self):
        solver = WeightedKNearestNeighboursPositionSolver(RADIO_MAP[2:3], [7.0])
        np.testing.assert_array_equal(solver.solve(), [8.0, 0.0])

    def test_returned_position_is_a_copy(self):
        solver = WeightedKNearestNeighboursPositionSolver(RADIO_MAP[:1], [1.0])
        position = solver.solve()
        position[:] = -1.0
        np.testing.assert_array_equal(solver.estimated_position, [0.0, 0.0])

    def test_not_ready(self):
        solver = WeightedKNearestNeighboursPositionSolver()
        assert not solver.is_ready
        with pytest.raises(NotReadyError):
            solver.solve()

    def test_invalid_inputs(self):
        with pytest.raises(InvalidArgumentError):
            WeightedKNearestNeighboursPositionSolver(RADIO_MAP[:2], [1.0])
        with pytest.raises(InvalidArgumentError):
            WeightedKNearestNeighboursPositionSolver([], [])
        with pytest.raises(InvalidArgumentError):
            WeightedKNearestNeighboursPositionSolver(RADIO_MAP[:2], [1.0, -1.0])
        with pytest.raises(InvalidArgumentError):
            WeightedKNearestNeighboursPositionSolver(
                [_fingerprint([-50.0])], [1.0]
            )
        with pytest.raises(InvalidArgumentError):
            WeightedKNearestNeighboursPositionSolver(epsilon=0.0)

    def test_listener_and_lock(self):
        events = []

        class Listener:
            def on_solve_start(self, solver):
                events.append(("start", solver.is_locked))
                with pytest.raises(LockedError):
                    solver.epsilon = 1.0

            def on_solve_end(self, solver):
                events.append(("end", solver.estimated_position is not None))

        solver = WeightedKNearestNeighboursPositionSolver(
            RADIO_MAP[:2], [1.0, 1.0], listener=Listener()
        )
        solver.solve()

        assert events == [("start", True), ("end", True)]
        assert not solver.is_locked

    def test_end_to_end(self):
        query = _fingerprint([-54.0, -56.0, -66.0])
        position = weighted_knn_position(query, RADIO_MAP, k=2, mean_removed=False)
        nearest = find_k_nearest(query, RADIO_MAP, 2, mean_removed=False)
        weights = 1.0 / nearest.distances
        expected = (weights[:, None] * nearest.positions).sum(axis=0) / weights.sum()
        np.testing.assert_allclose(position, expected)

    def test_end_to_end_without_comparable_fingerprints(self):
        with pytest.raises(NotReadyError):
            weighted_knn_position(Fingerprint([RssiReading(LONELY, -40.0)]), RADIO_MAP)
