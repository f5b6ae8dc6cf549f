"""
Euclidean projections onto the supported cones

Every projection is a pure function of its input and is idempotent. The
second-order cone stores the scalar bound first: x = (t, v) with ||v|| <= t.
"""

import numpy as np

from .types import ConeType


def project_zero(x: np.ndarray) -> np.ndarray:
    """Zero cone {0}: equality constraints"""
    return np.zeros_like(x)


def project_negative_orthant(x: np.ndarray) -> np.ndarray:
    """Negative orthant {c : c <= 0}: inequality constraints"""
    return np.minimum(x, 0)


def project_second_order(x: np.ndarray) -> np.ndarray:
    """Second-order cone {(t, v) : ||v|| <= t}"""
    t = x[0]
    v = x[1:]
    v_norm = np.linalg.norm(v)
    if v_norm <= t:
        return x.copy()
    if v_norm <= -t:
        return np.zeros_like(x)
    t_proj = 0.5 * (v_norm + t)
    out = np.empty_like(x)
    out[0] = t_proj
    out[1:] = (t_proj / v_norm) * v
    return out


_PROJECTIONS = {
    ConeType.ZERO: project_zero,
    ConeType.NEGATIVE_ORTHANT: project_negative_orthant,
    ConeType.SECOND_ORDER: project_second_order,
}


def project(cone: ConeType, x: np.ndarray) -> np.ndarray:
    return _PROJECTIONS[cone](x)


def in_cone(cone: ConeType, x: np.ndarray, tol: float = 0.0) -> bool:
    """Membership test with an absolute tolerance"""
    if cone == ConeType.ZERO:
        return bool(np.all(np.abs(x) <= tol))
    if cone == ConeType.NEGATIVE_ORTHANT:
        return bool(np.all(x <= tol))
    return bool(np.linalg.norm(x[1:]) <= x[0] + tol)
