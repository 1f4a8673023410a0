"""Geometry utilities shared by the lateration solvers and estimators."""

from indoorpos.utils.geometry import (
    EPSILON_COLINEAR,
    EPSILON_RANGE,
    check_source_geometry,
    check_symmetric_positive_definite,
    normalize_jacobian_singularities,
)

__all__ = [
    "EPSILON_RANGE",
    "EPSILON_COLINEAR",
    "normalize_jacobian_singularities",
    "check_source_geometry",
    "check_symmetric_positive_definite",
]
