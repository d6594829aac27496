"""> CPO Analyzer: Tests for time resolution and the experiment index."""

import numpy as np
import pytest

from cpoanalyzer import core as _core
from cpoanalyzer import exceptions as _err
from cpoanalyzer import index as _index
from cpoanalyzer import mock as _mock
from cpoanalyzer import records as _records


def test_read_time_data(tmp_path):
    path = tmp_path / "statistics"
    _mock.write_time_data(path, [0.0, 2.5e5, 1e6])
    snapshots = _index.read_time_data(path)
    assert snapshots == (
        _index.Snapshot(0, 0.0),
        _index.Snapshot(1, 2.5e5),
        _index.Snapshot(2, 1e6),
    )


def test_read_time_data_custom_marker(tmp_path):
    path = tmp_path / "statistics"
    path.write_text(
        "# 1: Time step number\n"
        + "0 0.0 visualization\n"
        + "1 1.5 particles\n"
        + "# 2 3.0 particles\n"
        + "2 4.0 particles\n"
    )
    snapshots = _index.read_time_data(path, marker="particles")
    assert [s.time for s in snapshots] == [1.5, 4.0]
    assert [s.timestep for s in snapshots] == [0, 1]


def test_read_time_data_invalid(tmp_path):
    path = tmp_path / "statistics"
    path.write_text("0 abc particle_LPO\n")
    with pytest.raises(_err.FormatError):
        _index.read_time_data(path)
    path.write_text("0 2.0 particle_LPO\n1 1.0 particle_LPO\n")
    with pytest.raises(_err.FormatError):
        _index.read_time_data(path)


def test_nearest_snapshot():
    snapshots = [_index.Snapshot(i, t) for i, t in enumerate([0.0, 1.0, 5.0])]
    assert _index.nearest_snapshot(snapshots, -3.0).timestep == 0
    assert _index.nearest_snapshot(snapshots, 0.4).timestep == 0
    assert _index.nearest_snapshot(snapshots, 0.5).timestep == 1
    assert _index.nearest_snapshot(snapshots, 2.9).timestep == 1
    assert _index.nearest_snapshot(snapshots, 3.0).timestep == 2
    assert _index.nearest_snapshot(snapshots, 5.0).timestep == 2
    assert _index.nearest_snapshot(snapshots, 1e9).timestep == 2
    with pytest.raises(_err.NotFoundError):
        _index.nearest_snapshot([], 1.0)


def test_scan_grain_file_offsets(tmp_path):
    path = tmp_path / "grains.dat"
    header = "id mineral_0_EA_phi mineral_0_EA_theta mineral_0_EA_z\n"
    lines = ["5 1 2 3\n", "5 4 5 6\n", "\n", "8 7 8 9\n"]
    path.write_text(header + "".join(lines))
    locations = _index.scan_grain_file(path, _core.RecordFormat())
    assert sorted(locations) == [5, 8]
    data = path.read_bytes()
    five = locations[5]
    assert data[five.offset : five.offset + five.length] == b"5 1 2 3\n5 4 5 6\n"
    eight = locations[8]
    assert data[eight.offset : eight.offset + eight.length] == b"8 7 8 9\n"


def test_scan_grain_file_not_contiguous(tmp_path):
    path = tmp_path / "grains.dat"
    path.write_text(
        "id mineral_0_EA_phi mineral_0_EA_theta mineral_0_EA_z\n"
        + "5 1 2 3\n8 1 2 3\n5 1 2 3\n"
    )
    with pytest.raises(_err.FormatError):
        _index.scan_grain_file(path, _core.RecordFormat())


def test_scan_grain_file_invalid_id(tmp_path):
    path = tmp_path / "grains.dat"
    path.write_text("id mineral_0_EA_phi mineral_0_EA_theta mineral_0_EA_z\nx 1 2 3\n")
    with pytest.raises(_err.FormatError):
        _index.scan_grain_file(path, _core.RecordFormat())


class TestExperimentIndex:
    """Tests for building and querying the experiment index."""

    def test_build(self, experiment):
        directory, _ = experiment
        index = _index.ExperimentIndex.build(directory, _core.RecordFormat())
        assert [s.time for s in index.snapshots] == [0.0, 1.0, 5.0]
        for time in (0.0, 1.0, 5.0):
            assert index.particle_ids(time) == (1, 10)
        snapshot, location = index.lookup(1.2, 10)
        assert snapshot == _index.Snapshot(1, 1.0)
        assert location.particle_id == 10
        # Particles are distributed round-robin over two ranks.
        assert location.path.name == "weighted_CPO-00001.0001.dat"
        assert location.particle_file.name == "particles-00001.0001.dat"

    def test_lookup_decodes_written_grains(self, experiment):
        directory, written = experiment
        fmt = _core.RecordFormat()
        index = _index.ExperimentIndex.build(directory, fmt, times=[5.0])
        snapshot, location = index.lookup(5.0, 1)
        grains = list(
            _records.decode(location, fmt, minerals=(_core.Mineral.olivine,))
        )
        orientations, fractions = written[(snapshot.timestep, 1, _core.Mineral.olivine)]
        np.testing.assert_allclose(
            [g.orientation for g in grains], orientations, atol=1e-9
        )
        np.testing.assert_allclose(
            [g.volume_fraction for g in grains], fractions, rtol=1e-12
        )

    def test_only_requested_times_indexed(self, experiment):
        directory, _ = experiment
        index = _index.ExperimentIndex.build(directory, _core.RecordFormat(), times=[0.9])
        assert index.particle_ids(1.0) == (1, 10)
        assert index.particle_ids(0.0) == ()
        with pytest.raises(_err.NotFoundError):
            index.lookup(0.0, 1)

    def test_missing_particle(self, experiment):
        directory, _ = experiment
        index = _index.ExperimentIndex.build(directory, _core.RecordFormat())
        with pytest.raises(_err.NotFoundError):
            index.lookup(1.0, 999)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            _index.ExperimentIndex.build(tmp_path / "missing", _core.RecordFormat())
        path = tmp_path / "file"
        path.write_text("")
        with pytest.raises(NotADirectoryError):
            _index.ExperimentIndex.build(path, _core.RecordFormat())

    def test_missing_time_data(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            _index.ExperimentIndex.build(tmp_path, _core.RecordFormat())

    def test_empty_rank_files_skipped(self, tmp_path, seed):
        # With three ranks and two particles, the last rank file is empty.
        _mock.write_experiment(
            tmp_path, times=[0.0], particles={2: 5, 3: 5}, n_ranks=3, seed=seed
        )
        empty = _index.rank_file(tmp_path, "particle_CPO/weighted_CPO", 0, 2)
        assert empty.stat().st_size == 0
        index = _index.ExperimentIndex.build(tmp_path, _core.RecordFormat())
        assert index.particle_ids(0.0) == (2, 3)

    def test_compressed(self, tmp_path, seed):
        fmt = _core.RecordFormat(compressed=True)
        written = _mock.write_experiment(
            tmp_path, times=[0.0, 1.0], particles={4: 12}, fmt=fmt, seed=seed
        )
        index = _index.ExperimentIndex.build(tmp_path, fmt)
        _, location = index.lookup(1.0, 4)
        grains = list(_records.decode(location, fmt))
        assert len(grains) == 24
        olivine = [g.orientation for g in grains if g.mineral == _core.Mineral.olivine]
        np.testing.assert_allclose(
            olivine, written[(1, 4, _core.Mineral.olivine)][0], atol=1e-9
        )

    def test_custom_prefixes(self, tmp_path, seed):
        params = {
            "time_data_file": "times.txt",
            "time_data_marker": "output",
            "grain_data_file_prefix": "cpo/grains",
            "particle_data_file_prefix": "cpo/particles",
        }
        _mock.write_experiment(
            tmp_path, times=[3.0], particles={1: 4}, params=params, seed=seed
        )
        index = _index.ExperimentIndex.build(tmp_path, _core.RecordFormat(), params)
        _, location = index.lookup(3.0, 1)
        assert location.path == tmp_path / "cpo" / "grains-00000.0000.dat"

    def test_damaged_rank_file(self, tmp_path, seed):
        """Test that a truncated rank file only affects lookups of its particles."""
        fmt = _core.RecordFormat(compressed=True)
        _mock.write_experiment(
            tmp_path,
            times=[0.0],
            particles={2: 30, 3: 30},
            fmt=fmt,
            n_ranks=2,
            seed=seed,
        )
        damaged = _index.rank_file(tmp_path, "particle_CPO/weighted_CPO", 0, 0)
        data = damaged.read_bytes()
        damaged.write_bytes(data[: len(data) // 2])
        index = _index.ExperimentIndex.build(tmp_path, fmt)
        assert index.particle_ids(0.0) == (3,)
        _, location = index.lookup(0.0, 3)
        assert len(list(_records.decode(location, fmt))) == 60
        with pytest.raises(_err.CompressionError, match="particle 2"):
            index.lookup(0.0, 2)

    def test_invalid_header_aborts(self, tmp_path, seed):
        _mock.write_experiment(tmp_path, times=[0.0], particles={2: 3}, seed=seed)
        path = _index.rank_file(tmp_path, "particle_CPO/weighted_CPO", 0, 0)
        path.write_text("x y z\n1 2 3\n")
        with pytest.raises(_err.HeaderError):
            _index.ExperimentIndex.build(tmp_path, _core.RecordFormat())
