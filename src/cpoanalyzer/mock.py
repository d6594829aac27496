"""> CPO Analyzer: Synthetic experiment output for testing and reproducibility.

The functions in this module write experiment directories that look like the output of
the geodynamic code, i.e. a time data file and per-rank grain and particle data files
for each output snapshot. The random grain orientations that were written are returned,
so that decoded values can be compared against them.

"""

import pathlib
import zlib

import numpy as np
from scipy.spatial.transform import Rotation

from cpoanalyzer import core as _core
from cpoanalyzer import index as _index
from cpoanalyzer import records as _records


def random_orientations(n_grains, rng):
    """Get an (N, 3, 3) array of uniformly distributed active rotation matrices."""
    return Rotation.random(n_grains, rng).as_matrix()


def matrix_to_quaternion(matrix):
    """Get the scalar-last unit quaternion of an active rotation matrix.

    >>> q = matrix_to_quaternion(np.eye(3))
    >>> q.tolist()
    [0.0, 0.0, 0.0, 1.0]

    """
    return Rotation.from_matrix(matrix).as_quat()


def matrix_to_euler(matrix, degrees=True):
    """Get Euler angles of an active rotation matrix.

    The inverse of `cpoanalyzer.geometry.euler_to_matrix` (after transposition).
    The passive matrix of the angles $ϕ_1, θ, ϕ_2$ is $R_z(ϕ_2) R_x(-θ) R_z(ϕ_1)$, so
    the active matrix is the intrinsic ZXZ rotation by $-ϕ_1, θ, -ϕ_2$.

    """
    alpha, theta, gamma = Rotation.from_matrix(matrix).as_euler("ZXZ", degrees=degrees)
    return np.array([-alpha, theta, -gamma])


def orientation_fields(orientation, fmt):
    """Get the values of the orientation columns of one grain in record format `fmt`."""
    match fmt.representation:
        case _core.Representation.euler:
            return matrix_to_euler(orientation, degrees=fmt.angle_unit == "degrees")
        case _core.Representation.matrix:
            return np.asarray(orientation).transpose().ravel()
        case _core.Representation.quaternion:
            return matrix_to_quaternion(orientation)
        case _:
            raise ValueError(f"unsupported representation: {fmt.representation}")


def _format(value):
    return f"{float(value):.17g}"


def write_time_data(path, times, marker=_core.DefaultParams.time_data_marker):
    """Write a time data file with one output snapshot for each of the `times`.

    Time steps without output (not containing the `marker`) are written in between.

    """
    lines = [
        "# 1: Time step number\n",
        "# 2: Time (years)\n",
        "# 3: Visualization file name\n",
    ]
    step = 0
    for timestep, time in enumerate(times):
        if timestep > 0:
            lines.append(f"{step} {_format(time - 0.5)} \"\"\n")
            step += 1
        lines.append(f"{step} {_format(time)} output/{marker}/{marker}-{timestep:05d}\n")
        step += 1
    pathlib.Path(path).write_text("".join(lines))


def _write_data_file(path, text, compressed):
    path.parent.mkdir(parents=True, exist_ok=True)
    data = text.encode("utf-8")
    if compressed:
        data = zlib.compress(data)
    path.write_bytes(data)


def write_grain_file(path, grains, fmt, with_fractions=True):
    """Write a grain data file for the particles in `grains`.

    The `grains` dictionary maps particle IDs to a dictionary with the (N, 3, 3) active
    orientations (key "orientations") and the N volume fractions (key "fractions")
    of each mineral of the record format `fmt`. An empty dictionary writes an empty
    file (as for ranks without particles).

    """
    path = pathlib.Path(path)
    if len(grains) == 0:
        _write_data_file(path, "", compressed=False)
        return
    columns = ["id"]
    for slot in range(len(fmt.minerals)):
        columns.extend(fmt.orientation_columns(slot))
        if with_fractions:
            columns.append(fmt.fraction_column(slot))
    lines = [" ".join(columns) + "\n"]
    for particle_id, phases in grains.items():
        n_grains = len(phases[fmt.minerals[0]]["orientations"])
        for g in range(n_grains):
            fields = [str(particle_id)]
            for mineral in fmt.minerals:
                fields.extend(
                    _format(v)
                    for v in orientation_fields(phases[mineral]["orientations"][g], fmt)
                )
                if with_fractions:
                    fields.append(_format(phases[mineral]["fractions"][g]))
            lines.append(" ".join(fields) + "\n")
    _write_data_file(path, "".join(lines), fmt.compressed)


def write_particle_file(path, particle_ids, rng):
    """Write a particle data file with random positions and elasticity information."""
    columns = [
        "id",
        "x",
        "y",
        "z",
        "olivine_deformation_type",
        "full_norm_square",
        "isotropic_norm_square",
    ]
    for name in _records.SYMMETRY_CLASSES:
        # Files written by the geodynamic code use this spelling.
        prefix = "orthohombic" if name == "orthorhombic" else name
        columns.extend(f"{prefix}_norm_square_p{i}" for i in (1, 2, 3))
    lines = [" ".join(columns) + "\n"]
    for particle_id in particle_ids:
        norms = rng.uniform(0, 0.1, size=3 * len(_records.SYMMETRY_CLASSES))
        values = [
            *rng.uniform(0, 1e5, size=3),
            float(rng.integers(0, 5)),
            1.0,
            1 - norms[::3].sum(),
            *norms,
        ]
        lines.append(" ".join([str(particle_id), *(_format(v) for v in values)]) + "\n")
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines))


def write_experiment(
    directory,
    times,
    particles,
    fmt=None,
    params=None,
    n_ranks=1,
    with_fractions=True,
    seed=8816,
):
    """Write synthetic output of an experiment to `directory`.

    Writes one output snapshot for each of the `times`. The `particles` dictionary maps
    particle IDs to the number of grains of each particle, which are distributed over
    `n_ranks` rank files per snapshot in a round-robin fashion. The record format `fmt`
    defaults to `cpoanalyzer.core.RecordFormat()` and `params` to
    `cpoanalyzer.core.DefaultParams`.

    Returns a dictionary mapping (timestep, particle ID, mineral) to a tuple of the
    written (N, 3, 3) active orientations and the N volume fractions.

    """
    fmt = _core.RecordFormat() if fmt is None else fmt
    _params = _core.DefaultParams().as_dict()
    if params is not None:
        _params.update(params)
    rng = np.random.default_rng(seed=seed)
    directory = pathlib.Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    write_time_data(
        directory / _params["time_data_file"], times, _params["time_data_marker"]
    )

    written = {}
    for timestep in range(len(times)):
        for rank in range(n_ranks):
            grains = {}
            for i, (particle_id, n_grains) in enumerate(particles.items()):
                if i % n_ranks != rank:
                    continue
                grains[particle_id] = {}
                for mineral in fmt.minerals:
                    fractions = rng.uniform(0.5, 1.5, size=n_grains)
                    fractions /= fractions.sum()
                    orientations = random_orientations(n_grains, rng)
                    grains[particle_id][mineral] = {
                        "orientations": orientations,
                        "fractions": fractions,
                    }
                    written[(timestep, particle_id, mineral)] = (orientations, fractions)
            write_grain_file(
                _index.rank_file(
                    directory, _params["grain_data_file_prefix"], timestep, rank
                ),
                grains,
                fmt,
                with_fractions=with_fractions,
            )
            write_particle_file(
                _index.rank_file(
                    directory, _params["particle_data_file_prefix"], timestep, rank
                ),
                grains.keys(),
                rng,
            )
    return written


def _toml_value(value):
    match value:
        case bool():
            return "true" if value else "false"
        case int() | float():
            return repr(value)
        case pathlib.Path():
            return f'"{value.as_posix()}"'
        case str():
            return f'"{value}"'
        case list() | tuple():
            return "[" + ", ".join(_toml_value(v) for v in value) + "]"
        case _:
            raise TypeError(f"cannot write value of type {type(value)} to TOML")


def write_config(path, base_dir, experiment_dirs, compressed=False, fmt=None, **params):
    """Write a TOML configuration file for `cpoanalyzer.io.parse_config`.

    Keyword arguments are written to the `[pole_figures]` section and `fmt` (a
    dictionary) to the `[format]` section.

    """
    lines = [
        f"base_dir = {_toml_value(base_dir)}",
        f"experiment_dirs = {_toml_value(experiment_dirs)}",
        f"compressed = {_toml_value(compressed)}",
        "",
        "[pole_figures]",
        *(f"{k} = {_toml_value(v)}" for k, v in params.items()),
    ]
    if fmt:
        lines.extend(["", "[format]"])
        lines.extend(f"{k} = {_toml_value(v)}" for k, v in fmt.items())
    path = pathlib.Path(path)
    path.write_text("\n".join(lines) + "\n")
    return path
