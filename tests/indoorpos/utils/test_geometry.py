"""
Unit tests for geometry utilities.
"""

import numpy as np
import pytest

from indoorpos.exceptions import NonSymmetricPositiveDefiniteMatrixError
from indoorpos.utils.geometry import (
    check_source_geometry,
    check_symmetric_positive_definite,
    normalize_jacobian_singularities,
)


class TestJacobianSingularities:
    """Test normalized Jacobian computation."""

    def test_regular_rows(self):
        diff = np.array([[3.0, 4.0], [0.0, 2.0]])
        H = normalize_jacobian_singularities(diff, np.linalg.norm(diff, axis=1))
        np.testing.assert_allclose(H, [[0.6, 0.8], [0.0, 1.0]])

    def test_singular_row_zeroed_with_warning(self):
        diff = np.array([[1.0, 0.0], [1e-12, 0.0]])
        with pytest.warns(RuntimeWarning):
            H = normalize_jacobian_singularities(diff, np.array([1.0, 1e-12]))
        np.testing.assert_allclose(H[1], [0.0, 0.0])


class TestSourceGeometry:
    """Test source geometry checks."""

    def test_good_geometry(self):
        ok, msg = check_source_geometry(np.array([[0, 0], [10, 0], [0, 10]]))
        assert ok
        assert msg == ""

    def test_colinear_2d(self):
        with pytest.warns(RuntimeWarning):
            ok, msg = check_source_geometry(np.array([[0, 0], [5, 0], [10, 0]]))
        assert not ok
        assert "colinear" in msg.lower()

    def test_coplanar_3d(self):
        positions = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [1, 1, 0]])
        ok, msg = check_source_geometry(positions, warn_degenerate=False)
        assert not ok
        assert "coplanar" in msg.lower()

    def test_too_few_sources(self):
        ok, msg = check_source_geometry(np.array([[0, 0], [1, 1]]))
        assert not ok
        assert "insufficient" in msg.lower()


class TestSymmetricPositiveDefinite:
    """Test SPD validation."""

    def test_spd_returns_cholesky_factor(self):
        A = np.array([[4.0, 2.0], [2.0, 3.0]])
        L = check_symmetric_positive_definite(A)
        np.testing.assert_allclose(L @ L.T, A)

    def test_not_positive_definite(self):
        with pytest.raises(NonSymmetricPositiveDefiniteMatrixError):
            check_symmetric_positive_definite(np.array([[1.0, 2.0], [2.0, 1.0]]))

    def test_not_symmetric(self):
        with pytest.raises(NonSymmetricPositiveDefiniteMatrixError):
            check_symmetric_positive_definite(np.array([[1.0, 0.0], [0.5, 1.0]]))

    def test_not_square(self):
        with pytest.raises(NonSymmetricPositiveDefiniteMatrixError):
            check_symmetric_positive_definite(np.ones((2, 3)))
