"""> CPO Analyzer: Pole figure selections, projection of grains and aggregation.

A pole figure shows the directions of one crystallographic axis of the grains of one
mineral phase in one particle, at one output time. Such a combination is represented by
a `PoleFigureSelection`. The selections requested in the configuration are enumerated by
`expand_requests`, and each one is turned into a `PoleFigureDataset` by `aggregate`.

The high level visualisation functions can be found in `cpoanalyzer.visualisation`.

"""

import itertools as it
from dataclasses import dataclass

import numpy as np

from cpoanalyzer import core as _core
from cpoanalyzer import exceptions as _err
from cpoanalyzer import geometry as _geo
from cpoanalyzer import logger as _log
from cpoanalyzer import records as _records


@dataclass(frozen=True)
class PoleFigureSelection:
    """Unit of work that produces one pole figure dataset."""

    experiment: str
    time: float
    """Requested time, resolved to the nearest output snapshot by the index."""
    particle_id: int
    mineral: _core.Mineral
    axis: _core.CrystalAxis

    def __str__(self):
        return (
            f"{self.experiment}: time={self.time}, particle={self.particle_id},"
            + f" {self.mineral.label} {self.axis.label}"
        )


@dataclass(frozen=True, eq=False)
class PoleFigureDataset:
    """Projected poles of the grains matching one `PoleFigureSelection`.

    Points are stored in decode order, which carries no meaning.

    """

    selection: PoleFigureSelection
    snapshot: object
    """Resolved `cpoanalyzer.index.Snapshot` (output number and model time)."""
    poles: np.ndarray
    """Nx3 array of pole directions, columns ordered as horizontal, vertical and up."""
    points: np.ndarray
    """Nx2 array of projected pole coordinates in the disk of radius √2."""
    weights: np.ndarray
    """Volume fraction of each grain."""
    ref_axes: str = "xy"
    particle_info: _records.ParticleRecord | None = None

    def __post_init__(self):
        for array in (self.poles, self.points, self.weights):
            array.setflags(write=False)

    @property
    def n_grains(self):
        return len(self.weights)

    @property
    def total_weight(self):
        return float(self.weights.sum())

    @property
    def time(self):
        """Model time of the resolved output snapshot."""
        return self.snapshot.time


def project(orientations, axis, ref_axes="xy"):
    """Project a crystallographic axis of a stack of orientations into a pole figure.

    Expects `orientations` to be an (N, 3, 3) array of active rotation matrices, see
    `cpoanalyzer.geometry`. Returns the Nx3 pole directions (horizontal, vertical and
    up components, see `cpoanalyzer.geometry.poles`) and the Nx2 coordinates of their
    Lambert equal area projections.

    >>> vectors, points = project(np.eye(3).reshape(1, 3, 3), _core.CrystalAxis.a)
    >>> np.round(points, 12).tolist()
    [[1.414213562373, 0.0]]

    """
    _orientations = np.asarray(orientations, dtype=np.float64).reshape(-1, 3, 3)
    xvals, yvals, zvals = _geo.poles(_orientations, hkl=axis.vector, ref_axes=ref_axes)
    X, Y = _geo.lambert_equal_area(xvals, yvals, zvals)
    return np.column_stack([xvals, yvals, zvals]), np.column_stack([X, Y])


def aggregate(selection, index, ref_axes="xy", elasticity=False):
    """Create the `PoleFigureDataset` for a selection using an experiment index.

    Looks up the record block of the selected particle in the
    `cpoanalyzer.index.ExperimentIndex`, decodes the grains of the selected mineral and
    projects the selected crystallographic axis of each grain. Each point is weighted by
    the volume fraction of the grain, or by 1/N (for N grains) if the data files don't
    store volume fractions. If `elasticity` is True, the companion particle record is
    attached to the dataset.

    Raises `cpoanalyzer.exceptions.NotFoundError` if the time or particle is absent,
    `cpoanalyzer.exceptions.FormatError` or `cpoanalyzer.exceptions.CompressionError`
    for invalid data and `OSError` if a file can't be read.

    """
    snapshot, location = index.lookup(selection.time, selection.particle_id)
    grains = list(_records.decode(location, index.fmt, minerals=(selection.mineral,)))
    if len(grains) == 0:
        raise _err.NotFoundError(
            f"no {selection.mineral.label} grains stored for particle"
            + f" {selection.particle_id} at timestep {snapshot.timestep}"
        )

    orientations = np.stack([g.orientation for g in grains])
    fractions = [g.volume_fraction for g in grains]
    if any(f is None for f in fractions):
        weights = np.full(len(grains), 1 / len(grains))
    else:
        weights = np.array(fractions, dtype=np.float64)

    poles, points = project(orientations, selection.axis, ref_axes=ref_axes)

    particle_info = None
    if elasticity:
        particle_info = _records.read_particle_record(
            location.particle_file, selection.particle_id
        )
        if particle_info is None:
            _log.warning(
                "particle %d not found in particle data file '%s'",
                selection.particle_id,
                location.particle_file,
            )

    _log.debug(
        "aggregated %d grains for %s (timestep %d)",
        len(grains),
        selection,
        snapshot.timestep,
    )
    return PoleFigureDataset(
        selection=selection,
        snapshot=snapshot,
        poles=poles,
        points=points,
        weights=weights,
        ref_axes=ref_axes,
        particle_info=particle_info,
    )


def expand_requests(experiment_dirs, times, particle_ids, axes, minerals):
    """Enumerate the pole figure selections requested in the configuration.

    Returns a tuple of `PoleFigureSelection` values for the cartesian product of the
    inputs, ordered by experiment, time, particle, axis and mineral (the last varies
    fastest). An empty input sequence yields no selections.

    >>> selections = expand_requests(
    ...     ["exp"], [1.0, 5.0], [1, 10], [_core.CrystalAxis.a, _core.CrystalAxis.b],
    ...     [_core.Mineral.olivine],
    ... )
    >>> len(selections)
    8
    >>> str(selections[1])
    'exp: time=1.0, particle=1, Olivine BAxis'

    """
    return tuple(
        PoleFigureSelection(
            experiment=experiment,
            time=time,
            particle_id=particle_id,
            mineral=mineral,
            axis=axis,
        )
        for experiment, time, particle_id, axis, mineral in it.product(
            experiment_dirs, times, particle_ids, axes, minerals
        )
    )
