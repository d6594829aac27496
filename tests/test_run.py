"""> CPO Analyzer: Tests for processing of configured pole figure selections."""

import io

import numpy as np
import pytest

from cpoanalyzer import cli as _cli
from cpoanalyzer import core as _core
from cpoanalyzer import exceptions as _err
from cpoanalyzer import io as _io
from cpoanalyzer import logger as _log
from cpoanalyzer import mock as _mock
from cpoanalyzer import run as _run

# Subdirectory of `outdir` used to store outputs from these tests.
SUBDIR = "run"


def _configure(tmp_path, experiments=("exp",), **params):
    for name in experiments:
        _mock.write_experiment(
            tmp_path / name, times=[0.0, 1.0, 5.0], particles={1: 20, 10: 30}
        )
    _params = {
        "times": [1.0, 5.0],
        "particle_ids": [1, 999],
        "axes": ["AAxis", "CAxis"],
        "minerals": ["Olivine"],
        "sphere_points": 31,
    }
    _params.update(params)
    return _mock.write_config(
        tmp_path / "config.toml", tmp_path, list(experiments), **_params
    )


class TestProcessConfiguration:
    """Tests for the processing of complete configurations."""

    def test_partial_failure(self, tmp_path):
        """Test that an absent particle fails only its own selections."""
        config = _io.parse_config(_configure(tmp_path))
        summary = _run.process_configuration(config, ncpus=1, figures=False)
        assert summary.n_selections == 8
        assert len(summary.datasets) == 4
        assert len(summary.failures) == 4
        assert all(f.kind == "NotFoundError" for f in summary.failures)
        assert all(f.selection.particle_id == 999 for f in summary.failures)
        # Results are in the order of the expanded selections.
        assert [(d.selection.time, d.selection.axis.name) for d in summary.datasets] == [
            (1.0, "a"),
            (1.0, "c"),
            (5.0, "a"),
            (5.0, "c"),
        ]
        for dataset in summary.datasets:
            np.testing.assert_allclose(dataset.total_weight, 1.0, rtol=1e-12)

    def test_parallel_matches_serial(self, tmp_path, ncpus):
        config = _io.parse_config(_configure(tmp_path, particle_ids=[1, 10]))
        serial = _run.process_configuration(config, ncpus=1, figures=False)
        parallel = _run.process_configuration(
            config, ncpus=max(2, ncpus), figures=False
        )
        assert len(parallel.failures) == len(serial.failures) == 0
        assert [d.selection for d in parallel.datasets] == [
            d.selection for d in serial.datasets
        ]
        for a, b in zip(serial.datasets, parallel.datasets, strict=True):
            np.testing.assert_array_equal(a.points, b.points)
            np.testing.assert_array_equal(a.weights, b.weights)

    def test_missing_experiment(self, tmp_path):
        """Test that a missing experiment directory fails only its selections."""
        config = _io.parse_config(_configure(tmp_path, particle_ids=[1]))
        config["experiment_dirs"].append("missing")
        summary = _run.process_configuration(config, ncpus=1, figures=False)
        assert summary.n_selections == 8
        assert len(summary.datasets) == 4
        assert {f.kind for f in summary.failures} == {"FileNotFoundError"}
        assert {f.selection.experiment for f in summary.failures} == {"missing"}

    def test_figures_and_export(self, tmp_path, outdir):
        config = _io.parse_config(
            _configure(
                tmp_path,
                particle_ids=[10],
                minerals=["Olivine", "Enstatite"],
                color_scale="Vik",
            )
        )
        export = tmp_path / "datasets.npz"
        summary = _run.process_configuration(config, ncpus=1, export=export)
        # One figure for each time (and particle).
        assert len(summary.figures) == 2
        for path in summary.figures:
            assert path.exists()
            assert path.parent == (tmp_path / "exp" / "CPO_figures").resolve()
            assert "_oli_ens_A-C-Axis_Vik_g1_sp31_" in path.name
        assert summary.figures[0].name.endswith("_t00001.00010.png")
        assert summary.figures[1].name.endswith("_t00002.00010.png")
        loaded = _io.load_datasets(export)
        assert [d.selection for d in loaded] == [d.selection for d in summary.datasets]
        if outdir is not None:
            for path in summary.figures:
                target = _io.resolve_path(f"{outdir}/{SUBDIR}/{path.name}")
                target.write_bytes(path.read_bytes())

    def test_figures_shared_snapshot(self, tmp_path):
        """Test that times resolving to the same snapshot produce a single figure."""
        config = _io.parse_config(
            _configure(tmp_path, times=[1.0, 1.2], particle_ids=[10])
        )
        summary = _run.process_configuration(config, ncpus=1)
        assert len(summary.datasets) == 4
        assert {d.snapshot.timestep for d in summary.datasets} == {1}
        assert len(summary.figures) == 1
        name = summary.figures[0].name
        assert name.endswith("_A-C-Axis_Batlow_g1_sp31_t00001.00010.png")

    def test_summary_logged(self, tmp_path):
        config = _io.parse_config(_configure(tmp_path))
        stream = io.StringIO()
        with _io.logfile_enable(stream):
            _run.process_configuration(config, ncpus=1, figures=False)
        logs = stream.getvalue()
        assert "processed 8 pole figure selections: 4 succeeded, 4 failed" in logs
        assert "WARNING" in logs and "particle 999 not found" in logs

    def test_damaged_grain_file(self, tmp_path):
        """Test that a truncated grain data file fails only the selections it holds."""
        fmt = _core.RecordFormat(compressed=True)
        for name in ("a", "b"):
            _mock.write_experiment(
                tmp_path / name,
                times=[0.0, 1.0, 5.0],
                particles={1: 20, 10: 30},
                fmt=fmt,
                n_ranks=2,
            )
        # Particle 1 is stored in rank 0, particle 10 in rank 1.
        damaged = tmp_path / "b" / "particle_CPO" / "weighted_CPO-00001.0000.dat"
        data = damaged.read_bytes()
        damaged.write_bytes(data[: len(data) // 2])
        path = _mock.write_config(
            tmp_path / "config.toml",
            tmp_path,
            ["a", "b"],
            compressed=True,
            times=[1.0],
            particle_ids=[1, 10],
            axes=["AAxis"],
            minerals=["Olivine"],
        )
        summary = _run.process_configuration(
            _io.parse_config(path), ncpus=1, figures=False
        )
        assert summary.n_selections == 4
        assert [
            (d.selection.experiment, d.selection.particle_id) for d in summary.datasets
        ] == [("a", 1), ("a", 10), ("b", 10)]
        assert len(summary.failures) == 1
        failure = summary.failures[0]
        assert failure.kind == "CompressionError"
        assert (failure.selection.experiment, failure.selection.particle_id) == ("b", 1)

    def test_malformed_record(self, tmp_path):
        """Test that an invalid particle ID in a record fails only its own rank file."""
        config_path = _configure(tmp_path, experiments=("a", "b"), particle_ids=[1])
        grain_file = tmp_path / "b" / "particle_CPO" / "weighted_CPO-00001.0000.dat"
        header, first, *rest = grain_file.read_text().splitlines(keepends=True)
        grain_file.write_text(header + "abc" + first[first.index(" ") :] + "".join(rest))
        summary = _run.process_configuration(
            _io.parse_config(config_path), ncpus=1, figures=False
        )
        assert len(summary.datasets) == 6
        assert len(summary.failures) == 2
        assert {f.kind for f in summary.failures} == {"FormatError"}
        assert {
            (f.selection.experiment, f.selection.time) for f in summary.failures
        } == {("b", 1.0)}

    def test_invalid_format_aborts(self, tmp_path):
        config_path = _configure(tmp_path, particle_ids=[1])
        grain_file = tmp_path / "exp" / "particle_CPO" / "weighted_CPO-00001.0000.dat"
        grain_file.write_text("x y z\n1 2 3\n")
        config = _io.parse_config(config_path)
        with pytest.raises(_err.FormatError):
            _run.process_configuration(config, ncpus=1, figures=False)


class TestCli:
    """Tests for the command line tools."""

    def test_analyser(self, tmp_path, capsys):
        config = _configure(tmp_path, particle_ids=[1])
        export = tmp_path / "out.npz"
        logfile = tmp_path / "run.log"
        console_level = _log.CONSOLE_LOGGER.level
        _cli.CLI_HANDLERS.pole_figure_analyser(
            [
                str(config),
                "--ncpus",
                "1",
                "--no-figures",
                "--export",
                str(export),
                "--logfile",
                str(logfile),
                "--log-level",
                "warning",
            ]
        )
        assert export.exists()
        assert "4 succeeded, 0 failed" in logfile.read_text()
        assert not (tmp_path / "exp" / "CPO_figures").exists()
        # Console level is restored after the run.
        assert _log.CONSOLE_LOGGER.level == console_level

        _cli.CLI_HANDLERS.dataset_inspector([str(export)])
        out = capsys.readouterr().out
        assert "NPZ file with 4 pole figure datasets" in out
        assert "exp: time=1.0, particle=1, Olivine AAxis" in out

    def test_analyser_failures_exit_status(self, tmp_path):
        config = _configure(tmp_path)
        with pytest.raises(SystemExit) as excinfo:
            _cli.CLI_HANDLERS.pole_figure_analyser(
                [str(config), "--ncpus", "1", "--no-figures"]
            )
        assert excinfo.value.code == 1

    def test_analyser_invalid_config(self, tmp_path):
        path = _mock.write_config(
            tmp_path / "config.toml", tmp_path, ["exp"], axes=["DAxis"]
        )
        with pytest.raises(SystemExit) as excinfo:
            _cli.CLI_HANDLERS.pole_figure_analyser([str(path)])
        assert excinfo.value.code == 2
