"""Shared numeric helpers: Richardson differences, Jacobians, Hessians, trapezoid AUC."""

from __future__ import annotations

from typing import Any, Callable, Optional

import numpy as np
from scipy.integrate import trapezoid

from .config import DEFAULT_NUMERIC_POLICY, NumericPolicy


def _richardson(estimates: list, v: float) -> np.ndarray:
    """Extrapolate a sequence of O(h^2) estimates taken at steps h, h/v, h/v^2..."""
    a = [np.asarray(e, dtype=float) for e in estimates]
    m = 1
    while len(a) > 1:
        f = v ** (2 * m)
        a = [(f * a[k + 1] - a[k]) / (f - 1.0) for k in range(len(a) - 1)]
        m += 1
    return a[0]


def richardson_derivative(
    func: Callable[[np.ndarray], Any],
    x: Any,
    *,
    order: int = 1,
    policy: Optional[NumericPolicy] = None,
) -> np.ndarray:
    """Derivative of a vectorised function with respect to its argument.

    ``func`` must map an array of x values elementwise. ``order`` is 1 or 2.
    Returns an array shaped like ``x``; trailing axes of ``func``'s output
    (one row per x) are carried through.
    """
    if order not in (1, 2):
        raise ValueError(f"order must be 1 or 2, got {order!r}.")
    policy = policy or DEFAULT_NUMERIC_POLICY
    x = np.asarray(x, dtype=float)
    h = policy.initial_step(x)
    f0 = np.asarray(func(x), dtype=float) if order == 2 else None

    estimates = []
    for _ in range(int(policy.r)):
        fp = np.asarray(func(x + h), dtype=float)
        fm = np.asarray(func(x - h), dtype=float)
        hb = h.reshape(h.shape + (1,) * (fp.ndim - h.ndim))
        if order == 1:
            estimates.append((fp - fm) / (2.0 * hb))
        else:
            estimates.append((fp - 2.0 * f0 + fm) / (hb * hb))
        h = h / policy.v
    return _richardson(estimates, policy.v)


def numeric_jacobian(
    func: Callable[[np.ndarray], Any],
    theta: Any,
    *,
    policy: Optional[NumericPolicy] = None,
) -> np.ndarray:
    """Richardson-extrapolated Jacobian of ``func`` at ``theta``.

    ``func`` maps a parameter vector (P,) to a scalar or a vector (M,).
    Returns an array of shape (M, P); scalar outputs give (1, P).
    Non-finite entries are returned as-is.
    """
    policy = policy or DEFAULT_NUMERIC_POLICY
    theta = np.asarray(theta, dtype=float).reshape(-1)
    npar = theta.shape[0]
    f0 = np.atleast_1d(np.asarray(func(theta), dtype=float)).reshape(-1)
    jac = np.empty((f0.shape[0], npar), dtype=float)

    steps = policy.initial_step(theta)
    for j in range(npar):
        h = float(steps[j])
        estimates = []
        for _ in range(int(policy.r)):
            tp = theta.copy()
            tm = theta.copy()
            tp[j] += h
            tm[j] -= h
            fp = np.atleast_1d(np.asarray(func(tp), dtype=float)).reshape(-1)
            fm = np.atleast_1d(np.asarray(func(tm), dtype=float)).reshape(-1)
            estimates.append((fp - fm) / (2.0 * h))
            h = h / policy.v
        jac[:, j] = _richardson(estimates, policy.v)
    return jac


def numdiff_hessian(
    func: Callable[[np.ndarray], float],
    x0: Any,
    *,
    lower: Optional[np.ndarray] = None,
    upper: Optional[np.ndarray] = None,
    step: Optional[float] = None,
) -> Optional[np.ndarray]:
    """Central-difference Hessian of a scalar function.

    Steps are shrunk to stay inside finite bounds. Returns None when a
    parameter sits exactly on a bound.
    """
    x0 = np.asarray(x0, dtype=float)
    npar = int(x0.shape[0])
    step = 1e-4 if step is None else float(step)
    eps = step * (np.abs(x0) + 1.0)

    lo = np.full(npar, -np.inf) if lower is None else np.asarray(lower, dtype=float)
    hi = np.full(npar, np.inf) if upper is None else np.asarray(upper, dtype=float)
    for i in range(npar):
        if np.isfinite(lo[i]):
            eps[i] = min(eps[i], 0.5 * max(0.0, x0[i] - lo[i]))
        if np.isfinite(hi[i]):
            eps[i] = min(eps[i], 0.5 * max(0.0, hi[i] - x0[i]))
        if eps[i] <= 0.0:
            return None

    f0 = float(func(x0))
    hess = np.zeros((npar, npar), dtype=float)
    for i in range(npar):
        ei = np.zeros(npar, dtype=float)
        ei[i] = eps[i]
        fpp = float(func(x0 + ei))
        fmm = float(func(x0 - ei))
        hess[i, i] = (fpp - 2.0 * f0 + fmm) / (eps[i] ** 2)
        for j in range(i + 1, npar):
            ej = np.zeros(npar, dtype=float)
            ej[j] = eps[j]
            fpp = float(func(x0 + ei + ej))
            fpm = float(func(x0 + ei - ej))
            fmp = float(func(x0 - ei + ej))
            fmm = float(func(x0 - ei - ej))
            hij = (fpp - fpm - fmp + fmm) / (4.0 * eps[i] * eps[j])
            hess[i, j] = hij
            hess[j, i] = hij
    return hess


def trapezoid_nodes(x_lo: float, x_hi: float, n_points: int) -> np.ndarray:
    """Equally spaced integration nodes, endpoints included."""
    return np.linspace(float(x_lo), float(x_hi), int(n_points))


def trapezoid_auc(
    func: Callable[[np.ndarray], Any], x_lo: float, x_hi: float, n_points: int
) -> float:
    """Trapezoidal approximation of the integral of ``func`` over [x_lo, x_hi]."""
    nodes = trapezoid_nodes(x_lo, x_hi, n_points)
    values = np.asarray(func(nodes), dtype=float)
    values = np.broadcast_to(values, nodes.shape)
    return float(trapezoid(values, nodes))
