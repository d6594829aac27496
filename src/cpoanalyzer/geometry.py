r"""> CPO Analyzer: Functions for rotation conversions and pole figure projections.

.. note::
    Orientation matrices $R$ returned by this module (and stored in
    `cpoanalyzer.records.Grain`) represent *active* rotations from the crystal frame
    into the sample (global) frame, so that the direction of a crystallographic axis
    $\hat{a}$ in the sample frame is $R \hat{a}$. The Euler angles and direction cosine
    matrices written by the geodynamic code describe the *passive* rotation $a = R^T$,
    where a[i, j] is the cosine of the angle between the i-th grain axis and the j-th
    external axis. The decoder takes care of the transposition.

"""

import numpy as np

_POLAR_EPS = 1e-16
"""Squared horizontal radius below which poles project onto the centre of the disk."""


def euler_to_matrix(angles, degrees=True):
    r"""Compute direction cosine matrices from extrinsic ZXZ (Bunge) Euler angles.

    Expects `angles` to be an array with shape (N, 3) containing the angles
    $ϕ_1, θ, ϕ_2$ for N orientations. Returns the (N, 3, 3) passive rotation matrices
    $a$ with

    $$
    a = \begin{bmatrix}
            \cosϕ_2\cosϕ_1 - \cosθ\sinϕ_1\sinϕ_2 & -\cosϕ_2\sinϕ_1 - \cosθ\cosϕ_1\sinϕ_2 & -\sinϕ_2\sinθ \cr
            \sinϕ_2\cosϕ_1 + \cosθ\sinϕ_1\cosϕ_2 & -\sinϕ_2\sinϕ_1 + \cosθ\cosϕ_1\cosϕ_2 & \cosϕ_2\sinθ \cr
            -\sinθ\sinϕ_1 & -\sinθ\cosϕ_1 & \cosθ
        \end{bmatrix}
    $$

    >>> a = euler_to_matrix([[0, 0, 0]])
    >>> a.shape
    (1, 3, 3)
    >>> bool(np.allclose(a[0], np.eye(3)))
    True

    """
    _angles = np.atleast_2d(np.asarray(angles, dtype=np.float64))
    if _angles.shape[-1] != 3:
        raise ValueError(f"expected Euler angle triplets, got shape {_angles.shape}")
    if degrees:
        _angles = np.deg2rad(_angles)
    s1, st, s2 = np.sin(_angles).transpose()
    c1, ct, c2 = np.cos(_angles).transpose()
    matrices = np.empty((len(_angles), 3, 3))
    matrices[:, 0, 0] = c2 * c1 - ct * s1 * s2
    matrices[:, 0, 1] = -c2 * s1 - ct * c1 * s2
    matrices[:, 0, 2] = -s2 * st
    matrices[:, 1, 0] = s2 * c1 + ct * s1 * c2
    matrices[:, 1, 1] = -s2 * s1 + ct * c1 * c2
    matrices[:, 1, 2] = c2 * st
    matrices[:, 2, 0] = -st * s1
    matrices[:, 2, 1] = -st * c1
    matrices[:, 2, 2] = ct
    return matrices


def quaternion_to_matrix(quaternions):
    """Compute rotation matrices from scalar-last (x, y, z, w) quaternions.

    Unlike `scipy.spatial.transform.Rotation.from_quat`, the quaternions are not
    normalised first, so that invalid input data remains detectable by
    `is_orthonormal`. Returns an (N, 3, 3) array of active rotation matrices.

    >>> m = quaternion_to_matrix([[0, 0, np.sin(np.pi / 4), np.cos(np.pi / 4)]])
    >>> bool(np.allclose(m[0] @ [1, 0, 0], [0, 1, 0]))
    True

    """
    _quats = np.atleast_2d(np.asarray(quaternions, dtype=np.float64))
    if _quats.shape[-1] != 4:
        raise ValueError(f"expected quaternions of length 4, got shape {_quats.shape}")
    x, y, z, w = _quats.transpose()
    matrices = np.empty((len(_quats), 3, 3))
    matrices[:, 0, 0] = 1 - 2 * (y**2 + z**2)
    matrices[:, 0, 1] = 2 * (x * y - z * w)
    matrices[:, 0, 2] = 2 * (x * z + y * w)
    matrices[:, 1, 0] = 2 * (x * y + z * w)
    matrices[:, 1, 1] = 1 - 2 * (x**2 + z**2)
    matrices[:, 1, 2] = 2 * (y * z - x * w)
    matrices[:, 2, 0] = 2 * (x * z - y * w)
    matrices[:, 2, 1] = 2 * (y * z + x * w)
    matrices[:, 2, 2] = 1 - 2 * (x**2 + y**2)
    return matrices


def is_orthonormal(matrix, atol=1e-6):
    """Check that the rows (and therefore columns) of a 3x3 matrix are orthonormal.

    >>> is_orthonormal(np.eye(3))
    True
    >>> is_orthonormal(2 * np.eye(3))
    False

    """
    _matrix = np.asarray(matrix, dtype=np.float64)
    if _matrix.shape != (3, 3) or not np.all(np.isfinite(_matrix)):
        return False
    return bool(
        np.allclose(_matrix @ _matrix.transpose(), np.eye(3), rtol=0, atol=atol)
    )


def poles(orientations, hkl=(1, 0, 0), ref_axes="xy"):
    """Extract 3D vectors of crystallographic directions from orientation matrices.

    Expects `orientations` to be an array with shape (N, 3, 3) of active rotation
    matrices (see module docstring). The optional arguments `hkl` and `ref_axes`
    can be used to change the crystallographic direction and the global reference
    axes respectively. The reference axes should be given as a string of two letters,
    e.g. "xy" (default), which become the horizontal and vertical axes of the pole
    figure. The remaining letter of the set "xyz" is the 'upward' axis of the
    projection. Returns a tuple of arrays with the horizontal, vertical and upward
    components of the directions.

    The directions are not renormalised, they are unit vectors if and only if the
    orientation matrices are orthonormal.

    >>> x, y, z = poles(np.eye(3).reshape(1, 3, 3), hkl=(0, 0, 1), ref_axes="xz")
    >>> float(x[0]), float(y[0]), float(z[0])
    (0.0, 1.0, 0.0)

    """
    _ref_axes = ref_axes.lower()
    if len(_ref_axes) != 2 or len(set(_ref_axes)) != 2 or not set(_ref_axes) < set("xyz"):
        raise ValueError(f"invalid reference axes: '{ref_axes}'")
    upward_axis = (set("xyz") - set(_ref_axes)).pop()
    axes_map = {"x": 0, "y": 1, "z": 2}

    _orientations = np.asarray(orientations, dtype=np.float64).reshape(-1, 3, 3)
    _hkl = np.asarray(hkl, dtype=np.float64)
    directions = np.tensordot(_orientations, _hkl, axes=(2, 0))

    xvals = directions[:, axes_map[_ref_axes[0]]]
    yvals = directions[:, axes_map[_ref_axes[1]]]
    zvals = directions[:, axes_map[upward_axis]]
    return xvals, yvals, zvals


def lambert_equal_area(xvals, yvals, zvals):
    r"""Project axial data from the unit sphere onto a 2D disk of radius $\sqrt{2}$.

    Project points from a 3D sphere of radius 1, given in Cartesian coordinates,
    to points on a 2D disk using a Lambert (Schmidt) equal area azimuthal projection
    with `zvals` as the upward component. Returns arrays of the X and Y coordinates.

    Crystallographic poles are axial, so vectors in the lower hemisphere are first
    negated, which maps antipodal vectors onto the same point. On the equator, the
    vector with positive `yvals` (or positive `xvals` if `yvals` is zero) is chosen.
    Vertical vectors are projected onto the centre of the disk.

    >>> X, Y = lambert_equal_area([1, 0, -1], [0, 0, 0], [0, 1, 0])
    >>> np.round(X, 12).tolist()
    [1.414213562373, 0.0, 1.414213562373]
    >>> bool(np.allclose(Y, 0))
    True

    """
    xvals = np.atleast_1d(xvals).astype(float)
    yvals = np.atleast_1d(yvals).astype(float)
    zvals = np.atleast_1d(zvals).astype(float)
    # Fold the lower hemisphere onto the upper one, see e.g. page 186 of
    # Snyder 1987 (Map Projections: A Working Manual).
    flip = (zvals < 0) | (
        (zvals == 0) & ((yvals < 0) | ((yvals == 0) & (xvals < 0)))
    )
    sign = np.where(flip, -1.0, 1.0)
    xvals = sign * xvals
    yvals = sign * yvals
    zvals = sign * zvals
    # Eq. 9.1.1 in Mardia & Jupp 2009 (Directional Statistics) in Cartesian form.
    # Clip guards against tiny negative values for slightly non-unit input.
    radius = np.sqrt(2 * np.clip(1 - zvals, 0, None))
    horizontal_sq = xvals**2 + yvals**2
    polar = horizontal_sq <= _POLAR_EPS
    prefactor = np.divide(
        radius,
        np.sqrt(horizontal_sq),
        out=np.zeros_like(radius),
        where=~polar,
    )
    return prefactor * xvals, prefactor * yvals


def lambert_grid(sphere_points, hemisphere="upper"):
    """Create a grid of evenly spaced counters for contouring pole figures.

    Returns the 2D coordinates `(X, Y)` of a square `sphere_points` × `sphere_points`
    grid spanning [-√2, √2] (the area of the projection disk and its corners) and an
    (N, 3) array of unit vectors obtained by inverting the Lambert equal area
    projection at each grid point. Columns of the array follow the component order
    of `poles`, i.e. horizontal, vertical and upward. Grid points outside the disk map
    onto the opposite hemisphere and should be masked when plotting.

    >>> X, Y, counters = lambert_grid(3)
    >>> counters.shape
    (9, 3)
    >>> np.round(counters[4], 12).tolist()
    [0.0, 0.0, 1.0]

    """
    r_plane = np.sqrt(2)
    X, Y = np.meshgrid(
        np.linspace(-r_plane, r_plane, sphere_points),
        np.linspace(-r_plane, r_plane, sphere_points),
    )
    radius_sq = X**2 + Y**2
    scale = np.sqrt(np.abs(1 - radius_sq / 4))
    up = 1 - radius_sq / 2
    match hemisphere:
        case "upper":
            counters = np.stack([scale * X, scale * Y, up], axis=-1).reshape(-1, 3)
        case "lower":
            counters = np.stack([scale * X, -scale * Y, -up], axis=-1).reshape(-1, 3)
        case _:
            raise ValueError(f"unsupported hemisphere: '{hemisphere}'")
    return X, Y, counters
