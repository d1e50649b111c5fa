"""Built-in growth curve catalog.

Each function is registered in the default registry under the name given to
``register_curve``. Piecewise curves are 0 before ``t1``.
"""

from __future__ import annotations

import numpy as np

from .registry import register_curve


@register_curve(name="linear")
def linear(t, m, b):
    """Straight line y = m*t + b."""
    return m * t + b


@register_curve(name="quadratic")
def quadratic(t, a, b, c):
    """Quadratic y = a*t^2 + b*t + c."""
    return a * t**2 + b * t + c


@register_curve(name="logistic")
def logistic(t, a, t0, k):
    """Logistic y = k / (1 + exp(-a*(t - t0)))."""
    with np.errstate(over="ignore"):
        return k / (1.0 + np.exp(-a * (t - t0)))


@register_curve(name="linear_plateau")
def linear_plateau(t, t1=45.0, t2=80.0, k=0.9):
    """Linear ramp from 0 at t1 to k at t2, constant k afterwards."""
    with np.errstate(divide="ignore", invalid="ignore"):
        ramp = k / (t2 - t1) * (t - t1)
    return np.where(t < t1, 0.0, np.where(t <= t2, ramp, k))


@register_curve(name="linear_logistic")
def linear_logistic(t, t1, t2, k):
    """Linear ramp to k/2 at t2 followed by a logistic approach to k."""
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        ramp = k / 2.0 / (t2 - t1) * (t - t1)
        tail = k / (1.0 + np.exp(-2.0 * (t - t2) / (t2 - t1)))
    return np.where(t < t1, 0.0, np.where((t > t1) & (t < t2), ramp, tail))


@register_curve(name="quadratic_plateau")
def quadratic_plateau(t, t1=45.0, t2=80.0, b=1.0, k=100.0):
    """Quadratic rise with initial slope b reaching k at t2, then constant."""
    with np.errstate(divide="ignore", invalid="ignore"):
        c = (k - b * (t2 - t1)) / (t2 - t1) ** 2
        rise = b * (t - t1) + c * (t - t1) ** 2
    return np.where(t < t1, 0.0, np.where(t <= t2, rise, k))


@register_curve(name="quadratic_plateau_smooth")
def quadratic_plateau_smooth(t, t1, t2, k):
    """Quadratic rise meeting the plateau k at t2 with zero slope."""
    with np.errstate(divide="ignore", invalid="ignore"):
        span = t2 - t1
        rise = (-k / span**2) * (t - t1) ** 2 + (2.0 * k / span) * (t - t1)
    return np.where(t < t1, 0.0, np.where(t <= t2, rise, k))


@register_curve(name="linear_plateau_linear")
def linear_plateau_linear(t, t1, t2, t3, k, beta):
    """Ramp to k at t2, plateau until t3, then linear change with slope beta."""
    with np.errstate(divide="ignore", invalid="ignore"):
        ramp = k / (t2 - t1) * (t - t1)
    after = np.where(t <= t3, k, k + beta * (t - t3))
    return np.where(t < t1, 0.0, np.where(t <= t2, ramp, after))


@register_curve(name="linear_plateau_linear_dt")
def linear_plateau_linear_dt(t, t1, t2, dt, k, beta):
    """As linear_plateau_linear with the plateau length dt instead of its end."""
    return linear_plateau_linear(t, t1, t2, t2 + dt, k, beta)


@register_curve(name="exp_linear")
def exp_linear(t, t1, t2, alpha, beta):
    """Exponential rise exp(alpha*(t - t1)) - 1 until t2, then linear with slope beta."""
    with np.errstate(over="ignore", invalid="ignore"):
        rise = np.exp(alpha * (t - t1)) - 1.0
        tail = beta * (t - t2) + (np.exp(alpha * (t2 - t1)) - 1.0)
    return np.where(t < t1, 0.0, np.where(t <= t2, rise, tail))


@register_curve(name="exp2_linear")
def exp2_linear(t, t1, t2, alpha, beta):
    """Rise exp(alpha*(t - t1)^2) - 1 until t2, then linear with slope beta."""
    with np.errstate(over="ignore", invalid="ignore"):
        rise = np.exp(alpha * (t - t1) ** 2) - 1.0
        tail = np.exp(alpha * (t2 - t1) ** 2) - 1.0 + beta * (t - t2)
    return np.where(t < t1, 0.0, np.where(t <= t2, rise, tail))


@register_curve(name="exp_exp")
def exp_exp(t, t1, t2, alpha, beta):
    """Exponential rise until t2, then exponential change at rate beta."""
    with np.errstate(over="ignore", invalid="ignore"):
        rise = np.exp(alpha * (t - t1)) - 1.0
        tail = (np.exp(alpha * (t2 - t1)) - 1.0) * np.exp(beta * (t - t2))
    return np.where(t < t1, 0.0, np.where(t <= t2, rise, tail))


@register_curve(name="exp2_exp")
def exp2_exp(t, t1, t2, alpha, beta):
    with np.errstate(over="ignore", invalid="ignore"):
        rise = np.exp(alpha * (t - t1) ** 2) - 1.0
        tail = (np.exp(alpha * (t2 - t1) ** 2) - 1.0) * np.exp(beta * (t - t2))
    return np.where(t < t1, 0.0, np.where(t <= t2, rise, tail))


__all__ = [
    "linear",
    "quadratic",
    "logistic",
    "linear_plateau",
    "linear_logistic",
    "quadratic_plateau",
    "quadratic_plateau_smooth",
    "linear_plateau_linear",
    "linear_plateau_linear_dt",
    "exp_linear",
    "exp2_linear",
    "exp_exp",
    "exp2_exp",
]
