"""> CPO Analyzer: Statistical methods for pole figure densities."""

import numba as nb
import numpy as np

from cpoanalyzer import geometry as _geo


def normalised_weights(weights, n_grains):
    """Return per-grain weights rescaled to sum to `n_grains`.

    Missing weights (`None`) give every grain the same weight of one, which is
    equivalent to a weight of 1/n before rescaling. Raises a `ValueError` for negative
    or non-finite weights, or if the total weight is zero.

    >>> normalised_weights([1, 3], 2).tolist()
    [0.5, 1.5]

    """
    if weights is None:
        return np.ones(n_grains)
    _weights = np.asarray(weights, dtype=np.float64)
    if _weights.shape != (n_grains,):
        raise ValueError(
            f"expected {n_grains} weights, got array of shape {_weights.shape}"
        )
    if not np.all(np.isfinite(_weights)) or np.any(_weights < 0):
        raise ValueError("weights must be finite and non-negative")
    total = _weights.sum()
    if total <= 0:
        raise ValueError("weights must not sum to zero")
    return _weights * (n_grains / total)


def gaussian_kernel_width(n_grains):
    """Get the spherical Gaussian width `k` and counting standard deviation.

    Width `k` follows option 3 in table 3 of
    [Robin & Jowett 1986](https://doi.org/10.1016/0040-1951(86)90023-X),
    i.e. k = 2 (1 + n/9), but is capped at 100 for large aggregates. The standard
    deviation of the counts expected for a uniform distribution is given by their
    eq. 13b.

    """
    k = min(2 * (1 + n_grains / 9), 100.0)
    std_dev = np.sqrt(n_grains * (k / 2 - 1) / k**2)
    return k, std_dev


@nb.njit(fastmath=True)
def _axial_gaussian_sum(data, counters, weights, k):
    # Sum of weighted axial spherical Gaussians centered on the data, at each counter.
    totals = np.zeros(counters.shape[0])
    for j in range(counters.shape[0]):
        total = 0.0
        for i in range(data.shape[0]):
            cosα = abs(
                data[i, 0] * counters[j, 0]
                + data[i, 1] * counters[j, 1]
                + data[i, 2] * counters[j, 2]
            )
            total += weights[i] * np.exp(k * (cosα - 1.0))
        totals[j] = total
    return totals


def gaussian_orientation_counts(xvals, yvals, zvals, counters, weights=None):
    """Count axial orientation data around spherical counters using Gaussian kernels.

    Expects the Cartesian components of the data (see `cpoanalyzer.geometry.poles`)
    and an (M, 3) array of `counters` (see `cpoanalyzer.geometry.lambert_grid`).
    Returns the M counts, normalised so that each multiple of uniform density (MUD)
    is 3 standard deviations from the value expected for a uniform distribution.

    Optional `weights` (e.g. grain volume fractions) are rescaled to a mean of one
    before counting, see `normalised_weights`.

    """
    data = np.column_stack([xvals, yvals, zvals]).astype(np.float64)
    n_grains = len(data)
    if n_grains == 0:
        raise ValueError("cannot compute orientation counts for an empty aggregate")
    _weights = normalised_weights(weights, n_grains)
    k, std_dev = gaussian_kernel_width(n_grains)
    totals = _axial_gaussian_sum(
        data, np.ascontiguousarray(counters, dtype=np.float64), _weights, k
    )
    return totals / (3 * std_dev)


def point_density(xvals, yvals, zvals, sphere_points=301, weights=None):
    """Estimate point density of axial orientation data on the unit sphere.

    Counts are computed at each point of a Lambert equal area counting grid with
    `sphere_points` points along each side, see `cpoanalyzer.geometry.lambert_grid`.
    Returns the 2D grid coordinates and the counts, each with shape
    (`sphere_points`, `sphere_points`). Counts at grid points outside of the
    projection disk are set to `numpy.nan`.

    """
    X, Y, counters = _geo.lambert_grid(sphere_points)
    counts = gaussian_orientation_counts(xvals, yvals, zvals, counters, weights)
    counts = counts.reshape(X.shape)
    counts[X**2 + Y**2 > 2 + 1e-9] = np.nan
    return X, Y, counts
