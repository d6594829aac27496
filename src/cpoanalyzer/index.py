"""> CPO Analyzer: Experiment index mapping (time, particle) to grain record locations.

An experiment directory contains a time data file (the `statistics` file written by the
geodynamic code), which relates output snapshot numbers ("timesteps") to model time, and
per-rank grain and particle data files for each snapshot:

    <experiment>/statistics
    <experiment>/<grain_data_file_prefix>-<timestep:05d>.<rank:04d>.dat
    <experiment>/<particle_data_file_prefix>-<timestep:05d>.<rank:04d>.dat

Ranks are numbered from zero, the first missing rank ends the sequence of files.

"""

from dataclasses import dataclass
import pathlib

import numpy as np

from cpoanalyzer import core as _core
from cpoanalyzer import exceptions as _err
from cpoanalyzer import logger as _log
from cpoanalyzer import records as _records


@dataclass(frozen=True)
class Snapshot:
    """Output snapshot of an experiment."""

    timestep: int
    """Output number, used in data file names."""
    time: float
    """Model time of the output."""


def read_time_data(path, marker=_core.DefaultParams.time_data_marker):
    """Read snapshot times from a time data file.

    Lines that start with '#' are ignored. Every other line that contains `marker`
    defines the next output snapshot, and its second (whitespace delimited) column
    gives the snapshot time. Returns a tuple of `Snapshot` objects.

    Raises `OSError` if the file can't be read and `cpoanalyzer.exceptions.FormatError`
    if a time value can't be parsed or if times are decreasing.

    """
    snapshots = []
    with open(path) as file:
        for lineno, line in enumerate(file, start=1):
            line = line.strip()
            if line.startswith("#") or marker not in line:
                continue
            columns = line.split()
            try:
                time = float(columns[1])
            except (IndexError, ValueError):
                raise _err.FormatError(
                    f"cannot parse time on line {lineno} of '{path}'"
                ) from None
            if snapshots and time < snapshots[-1].time:
                raise _err.FormatError(
                    f"time on line {lineno} of '{path}' is smaller than previous time"
                )
            snapshots.append(Snapshot(timestep=len(snapshots), time=time))
    return tuple(snapshots)


def nearest_snapshot(snapshots, time):
    """Find the snapshot with the time closest to `time`.

    Ties are resolved to the later snapshot, and times outside of the recorded range
    are clamped to the first or last snapshot. Raises a
    `cpoanalyzer.exceptions.NotFoundError` if there are no snapshots.

    >>> snapshots = [Snapshot(0, 0.0), Snapshot(1, 1.0), Snapshot(2, 2.0)]
    >>> nearest_snapshot(snapshots, 1.4).timestep
    1
    >>> nearest_snapshot(snapshots, 1.5).timestep
    2
    >>> nearest_snapshot(snapshots, 10).timestep
    2

    """
    if len(snapshots) == 0:
        raise _err.NotFoundError("experiment does not contain any output snapshots")
    times = np.array([s.time for s in snapshots])
    after = min(int(np.searchsorted(times, time, side="right")), len(times) - 1)
    before = max(after - 1, 0)
    if abs(time - times[before]) < abs(time - times[after]):
        return snapshots[before]
    return snapshots[after]


def rank_file(directory, prefix, timestep, rank):
    """Get the path to the data file of a given snapshot and rank.

    >>> rank_file("exp", "particle_CPO/weighted_CPO", 3, 12).as_posix()
    'exp/particle_CPO/weighted_CPO-00003.0012.dat'

    """
    return pathlib.Path(directory) / f"{prefix}-{timestep:05d}.{rank:04d}.dat"


def scan_grain_file(path, fmt, particle_file=None):
    """Scan a grain data file and locate the record block of each particle.

    Returns a dictionary mapping particle IDs to `cpoanalyzer.records.RecordLocation`
    objects. Raises a `cpoanalyzer.exceptions.HeaderError` if the header is unparsable,
    a `cpoanalyzer.exceptions.FormatError` if a record has no valid particle ID or the
    records of one particle are not stored contiguously, and a
    `cpoanalyzer.exceptions.CompressionError` for corrupt compressed files.

    """
    locations = {}
    layout = None
    offset = 0
    current = None  # [particle_id, start offset, end offset] of the open block.

    def _close(block):
        particle_id, start, end = block
        if particle_id in locations:
            raise _err.FormatError(
                f"records of particle {particle_id} are not contiguous in '{path}'"
            )
        locations[particle_id] = _records.RecordLocation(
            path=path,
            offset=start,
            length=end - start,
            particle_id=particle_id,
            layout=layout,
            particle_file=particle_file,
        )

    for line in _records.iter_lines(path, fmt.compressed):
        start = offset
        offset += len(line)
        if layout is None:
            if line.strip():
                layout = _records.parse_header(line, fmt)
            continue
        fields = line.split()
        if not fields:
            continue
        try:
            particle_id = int(fields[layout.id_column])
        except (IndexError, ValueError):
            raise _err.FormatError(
                f"invalid particle id in record at byte {start} of '{path}'"
            ) from None
        if current is not None and current[0] == particle_id:
            current[2] = offset
            continue
        if current is not None:
            _close(current)
        current = [particle_id, start, offset]
    if current is not None:
        _close(current)
    return locations


class ExperimentIndex:
    """Read-only index of the grain records of one experiment.

    Use `ExperimentIndex.build` to create an index from an experiment directory.
    Only the snapshots resolved from the requested `times` are scanned. The index is
    not modified after construction, and can be shared between worker processes.

    """

    def __init__(self, directory, fmt, snapshots, locations, damaged=None):
        self.directory = pathlib.Path(directory)
        self.fmt = fmt
        self._snapshots = tuple(snapshots)
        # Mapping of timestep to {particle_id: RecordLocation}, only for scanned steps.
        self._locations = {k: dict(v) for k, v in locations.items()}
        # Mapping of timestep to [(path, error)] for rank files that couldn't be read.
        self._damaged = {k: list(v) for k, v in (damaged or {}).items()}

    def __repr__(self):
        return (
            f"{self.__class__.__qualname__}('{self.directory}',"
            + f" snapshots={len(self._snapshots)}, indexed={sorted(self._locations)})"
        )

    @classmethod
    def build(cls, directory, fmt, params=None, times=None):
        """Build the index for an experiment directory.

        The `params` dictionary provides the time data file name and marker and the
        data file prefixes (see `cpoanalyzer.core.DefaultParams`). If `times` is given,
        only the snapshots nearest to those times are scanned, otherwise all snapshots
        are scanned.

        Raises `OSError` if the directory or the time data file are missing, and
        `cpoanalyzer.exceptions.FormatError` if the time data file is unparsable or
        `cpoanalyzer.exceptions.HeaderError` if a grain data file header is
        unparsable. Rank files with malformed records or corrupt compressed data are
        skipped, the error is raised again by `lookup` for particles that can't be
        found at that timestep.

        """
        _params = _core.DefaultParams().as_dict()
        if params is not None:
            _params.update(params)
        directory = pathlib.Path(directory)
        if not directory.exists():
            raise FileNotFoundError(f"experiment directory '{directory}' does not exist")
        if not directory.is_dir():
            raise NotADirectoryError(f"experiment path '{directory}' is not a directory")

        snapshots = read_time_data(
            directory / _params["time_data_file"], _params["time_data_marker"]
        )
        _log.debug("found %d output snapshots in '%s'", len(snapshots), directory)
        if times is None:
            to_scan = snapshots
        elif len(snapshots) == 0:
            to_scan = ()
        else:
            to_scan = sorted(
                {nearest_snapshot(snapshots, t) for t in times}, key=lambda s: s.timestep
            )

        locations = {}
        damaged = {}
        for snapshot in to_scan:
            particles, failures = cls._scan_snapshot(
                directory, snapshot.timestep, fmt, _params
            )
            locations[snapshot.timestep] = particles
            if failures:
                damaged[snapshot.timestep] = failures
            _log.info(
                "indexed %d particles at time %s (timestep %d) in '%s'",
                len(particles),
                snapshot.time,
                snapshot.timestep,
                directory,
            )
        return cls(directory, fmt, snapshots, locations, damaged)

    @staticmethod
    def _scan_snapshot(directory, timestep, fmt, params):
        particles = {}
        failures = []
        rank = 0
        while True:
            grain_file = rank_file(
                directory, params["grain_data_file_prefix"], timestep, rank
            )
            if not grain_file.exists():
                break
            rank += 1
            if grain_file.stat().st_size == 0:
                continue
            particle_file = rank_file(
                directory, params["particle_data_file_prefix"], timestep, rank - 1
            )
            try:
                found = scan_grain_file(grain_file, fmt, particle_file)
            except _err.HeaderError:
                raise
            except (_err.FormatError, _err.CompressionError) as e:
                _log.error("skipping damaged grain data file '%s': %s", grain_file, e)
                failures.append((grain_file, e))
                continue
            for particle_id, location in found.items():
                if particle_id in particles:
                    _log.warning(
                        "particle %d appears in multiple rank files of timestep %d,"
                        + " using '%s'",
                        particle_id,
                        timestep,
                        particles[particle_id].path,
                    )
                    continue
                particles[particle_id] = location
        if rank == 0:
            _log.warning(
                "no grain data files found for timestep %d in '%s'", timestep, directory
            )
        return particles, failures

    @property
    def snapshots(self):
        """All output snapshots listed in the time data file."""
        return self._snapshots

    def resolve_time(self, time):
        """Get the `Snapshot` nearest to `time`, see `nearest_snapshot`."""
        return nearest_snapshot(self._snapshots, time)

    def particle_ids(self, time):
        """Get the sorted IDs of the particles indexed at the snapshot nearest `time`."""
        snapshot = self.resolve_time(time)
        return tuple(sorted(self._locations.get(snapshot.timestep, {})))

    def lookup(self, time, particle_id):
        """Get the record location of a particle at the snapshot nearest to `time`.

        Returns a tuple of the resolved `Snapshot` and the
        `cpoanalyzer.records.RecordLocation`. Raises a
        `cpoanalyzer.exceptions.NotFoundError` if the snapshot was not indexed or the
        particle is absent. If a grain data file of the snapshot could not be scanned,
        the particle may have been stored in it, and the error from scanning that file
        (`cpoanalyzer.exceptions.FormatError` or
        `cpoanalyzer.exceptions.CompressionError`) is raised instead.

        """
        snapshot = self.resolve_time(time)
        particles = self._locations.get(snapshot.timestep)
        if particles is None:
            raise _err.NotFoundError(
                f"time {time} (timestep {snapshot.timestep}) was not indexed"
                + f" for experiment '{self.directory}'"
            )
        try:
            return snapshot, particles[particle_id]
        except KeyError:
            damaged = self._damaged.get(snapshot.timestep)
            if damaged:
                path, error = damaged[0]
                raise type(error)(
                    f"particle {particle_id} not found at timestep {snapshot.timestep},"
                    + f" unreadable grain data file '{path}': {error.message}"
                ) from None
            raise _err.NotFoundError(
                f"particle {particle_id} not found at time {snapshot.time}"
                + f" (timestep {snapshot.timestep}) in '{self.directory}'"
            ) from None
