"""> CPO Analyzer: Tests for pole figure selections, aggregation and export."""

import numpy as np
import pytest

from cpoanalyzer import core as _core
from cpoanalyzer import exceptions as _err
from cpoanalyzer import geometry as _geo
from cpoanalyzer import index as _index
from cpoanalyzer import io as _io
from cpoanalyzer import mock as _mock
from cpoanalyzer import polefigures as _pf


def _selection(particle_id=1, time=1.0, mineral="olivine", axis="a"):
    return _pf.PoleFigureSelection(
        experiment="exp",
        time=time,
        particle_id=particle_id,
        mineral=_core.Mineral[mineral],
        axis=_core.CrystalAxis[axis],
    )


def test_expand_requests():
    """Test the order and size of the expanded selections."""
    selections = _pf.expand_requests(
        ["exp"],
        [1.0, 5.0],
        [1, 10],
        [_core.CrystalAxis.a, _core.CrystalAxis.c],
        [_core.Mineral.olivine],
    )
    assert len(selections) == 8
    assert [(s.time, s.particle_id, s.axis.name) for s in selections] == [
        (1.0, 1, "a"),
        (1.0, 1, "c"),
        (1.0, 10, "a"),
        (1.0, 10, "c"),
        (5.0, 1, "a"),
        (5.0, 1, "c"),
        (5.0, 10, "a"),
        (5.0, 10, "c"),
    ]
    assert len(set(selections)) == 8


def test_expand_requests_empty():
    assert _pf.expand_requests(["exp"], [], [1], [_core.CrystalAxis.a], []) == ()


class TestAggregate:
    """Tests for aggregation of grains into pole figure datasets."""

    def test_dataset(self, experiment, ref_axes):
        directory, written = experiment
        index = _index.ExperimentIndex.build(directory, _core.RecordFormat())
        selection = _selection(particle_id=10, time=4.0, axis="b")
        dataset = _pf.aggregate(selection, index, ref_axes=ref_axes, elasticity=True)
        orientations, fractions = written[(2, 10, _core.Mineral.olivine)]

        assert dataset.snapshot == _index.Snapshot(2, 5.0)
        assert dataset.time == 5.0
        assert dataset.n_grains == 35
        assert dataset.ref_axes == ref_axes
        np.testing.assert_allclose(dataset.weights, fractions, rtol=1e-12)
        np.testing.assert_allclose(dataset.total_weight, 1.0, rtol=1e-12)
        # Poles are unit vectors and projected points lie in the disk.
        np.testing.assert_allclose(np.linalg.norm(dataset.poles, axis=1), 1, atol=1e-9)
        assert np.all(np.sum(dataset.points**2, axis=1) <= 2 + 1e-9)
        expected = _geo.poles(orientations, hkl=(0, 1, 0), ref_axes=ref_axes)
        np.testing.assert_allclose(
            dataset.poles, np.column_stack(expected), atol=1e-9
        )
        assert dataset.particle_info is not None
        assert dataset.particle_info.id == 10
        with pytest.raises(ValueError):
            dataset.points[0, 0] = 0.0

    def test_unweighted(self, tmp_path, seed):
        _mock.write_experiment(
            tmp_path, times=[0.0], particles={1: 8}, with_fractions=False, seed=seed
        )
        index = _index.ExperimentIndex.build(tmp_path, _core.RecordFormat())
        dataset = _pf.aggregate(_selection(time=0.0), index)
        np.testing.assert_allclose(dataset.weights, 1 / 8)
        np.testing.assert_allclose(dataset.total_weight, 1.0)

    def test_missing_particle(self, experiment):
        directory, _ = experiment
        index = _index.ExperimentIndex.build(directory, _core.RecordFormat())
        with pytest.raises(_err.NotFoundError):
            _pf.aggregate(_selection(particle_id=999), index)

    def test_mineral_not_stored(self, tmp_path, seed):
        fmt = _core.RecordFormat(minerals=(_core.Mineral.olivine,))
        _mock.write_experiment(tmp_path, times=[0.0], particles={1: 8}, fmt=fmt, seed=seed)
        index = _index.ExperimentIndex.build(tmp_path, fmt)
        with pytest.raises(_err.NotFoundError):
            _pf.aggregate(_selection(time=0.0, mineral="enstatite"), index)

    def test_missing_particle_file(self, experiment):
        directory, _ = experiment
        index = _index.ExperimentIndex.build(directory, _core.RecordFormat())
        _, location = index.lookup(1.0, 1)
        location.particle_file.unlink()
        with pytest.raises(OSError):
            _pf.aggregate(_selection(), index, elasticity=True)
        # Without elasticity information, the companion file is not needed.
        dataset = _pf.aggregate(_selection(), index, elasticity=False)
        assert dataset.particle_info is None


def test_save_load_datasets(tmp_path, experiment):
    directory, _ = experiment
    index = _index.ExperimentIndex.build(directory, _core.RecordFormat())
    datasets = [
        _pf.aggregate(s, index)
        for s in _pf.expand_requests(
            ["exp"],
            [1.0],
            [1, 10],
            [_core.CrystalAxis.a],
            [_core.Mineral.olivine, _core.Mineral.enstatite],
        )
    ]
    path = _io.save_datasets(tmp_path / "datasets.npz", datasets)
    loaded = _io.load_datasets(path)
    assert len(loaded) == 4
    for original, copy in zip(datasets, loaded, strict=True):
        assert copy.selection == original.selection
        assert copy.snapshot == original.snapshot
        np.testing.assert_array_equal(copy.points, original.points)
        np.testing.assert_array_equal(copy.weights, original.weights)


def test_load_incomplete_archive(tmp_path):
    path = tmp_path / "broken.npz"
    np.savez(path, experiment=np.array(["exp"]))
    with pytest.raises(_err.FormatError):
        _io.load_datasets(path)


def test_header_text(experiment):
    """Test the description of a particle in the pole figure header."""
    from cpoanalyzer import visualisation as _vis

    directory, _ = experiment
    index = _index.ExperimentIndex.build(directory, _core.RecordFormat())
    dataset = _pf.aggregate(_selection(particle_id=10), index, elasticity=True)
    lines = _vis.header_text(dataset)
    assert len(lines) == 3
    assert lines[0].startswith("id=10, time=1.00000e+00, grains=35, position=(")
    assert "anisotropic%=" in lines[0]
    assert lines[1].startswith("hex%=")
    assert [part.split("=")[0] for part in lines[2].split(", ")] == [
        "h/a%",
        "t/a%",
        "o/a%",
        "m/a%",
        "t/a%",
    ]
    dataset = _pf.aggregate(_selection(particle_id=10), index, elasticity=False)
    assert _vis.header_text(dataset) == ["id=10, time=1.00000e+00, grains=35"]
