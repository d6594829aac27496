"""> CPO Analyzer: Configuration, dataset and supporting Input/Output functions.

The CPO Analyzer reads TOML configuration files, which specify the experiment
directories and the pole figures that should be produced, e.g.

```toml
base_dir = "/path/to/model/output/"
experiment_dirs = ["experiment_1", "experiment_2"]
compressed = false

[pole_figures]
times = [1e6, 5e6]
particle_ids = [1, 10]
axes = ["AAxis", "BAxis", "CAxis"]
minerals = ["Olivine", "Enstatite"]
```

See `cpoanalyzer.core.DefaultParams` for the optional `[pole_figures]` keys and
`cpoanalyzer.core.RecordFormat` for the optional `[format]` table, which describes the
layout of the grain data files. Pole figure datasets can be exported to NumPy NPZ
archives with `save_datasets` and read back with `load_datasets`.

"""

import contextlib as cl
import io
import logging
import pathlib
import sys

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import numpy as np

from cpoanalyzer import core as _core
from cpoanalyzer import exceptions as _err
from cpoanalyzer import logger as _log


def parse_config(path):
    """Parse a TOML file containing CPO Analyzer configuration.

    Returns a dictionary with the validated top level keys, the `pole_figures`
    parameters (with defaults filled in) and the `format` record format descriptor.
    Raises a `cpoanalyzer.exceptions.ConfigError` (or one of its subclasses) for
    invalid configuration.

    """
    path = resolve_path(path)
    _log.info("parsing configuration file: %s", path)
    with open(path, "rb") as file:
        toml = tomllib.load(file)

    try:
        toml["base_dir"] = resolve_path(toml["base_dir"], path.parent, mkdir=False)
    except KeyError:
        raise _err.ConfigError(f"missing 'base_dir' in '{path}'") from None
    except TypeError:
        raise _err.ConfigError(
            f"'base_dir' must be a string, not {type(toml['base_dir'])}"
        ) from None

    toml["experiment_dirs"] = toml.get("experiment_dirs", None)
    if not isinstance(toml["experiment_dirs"], list) or not all(
        isinstance(d, str) for d in toml["experiment_dirs"]
    ):
        raise _err.ConfigError(
            f"'experiment_dirs' must be a list of directory names in '{path}'"
        )

    toml["compressed"] = toml.get("compressed", False)
    if not isinstance(toml["compressed"], bool):
        raise _err.ConfigError(
            f"'compressed' must be true or false, not {toml['compressed']}"
        )
    toml["log_level"] = toml.get("log_level", "INFO")
    if toml["log_level"] not in ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"):
        raise _err.ConfigError(f"unsupported log level '{toml['log_level']}'")

    toml["pole_figures"] = _parse_config_pole_figures(toml)
    toml["format"] = _parse_config_format(toml)

    # Requested minerals must be stored in one of the mineral slots of the data files.
    for mineral in toml["pole_figures"]["minerals"]:
        if mineral not in toml["format"].minerals:
            raise _err.UnknownMineralError(
                f"requested mineral '{mineral.label}' is not stored in the data files,"
                + " which contain "
                + ", ".join(m.label for m in toml["format"].minerals)
            )
    return toml


def resolve_path(path, refdir=None, mkdir=True):
    """Resolve relative paths and create parent directories if necessary.

    Relative paths are interpreted with respect to the current working directory,
    i.e. the directory from whith the current Python process was executed,
    unless a specific reference directory is provided with `refdir`.
    Parent directories are not created if `mkdir` is False.

    """
    cwd = pathlib.Path.cwd()
    if refdir is None:
        _path = cwd / path
    else:
        _path = pathlib.Path(refdir) / path
    if mkdir:
        _path.parent.mkdir(parents=True, exist_ok=True)
    return _path.resolve()


def parse_mineral(token):
    """Parse a mineral name from configuration files.

    >>> parse_mineral("Enstatite")
    <Mineral.enstatite: 1>

    """
    if isinstance(token, _core.Mineral):
        return token
    if isinstance(token, str):
        try:
            return _core.Mineral[token.strip().lower()]
        except KeyError:
            pass
    raise _err.UnknownMineralError(
        f"unknown mineral '{token}', expected one of "
        + ", ".join(m.label for m in _core.Mineral)
    )


def parse_axis(token):
    """Parse a crystallographic axis name from configuration files.

    >>> parse_axis("CAxis")
    <CrystalAxis.c: 2>

    """
    if isinstance(token, _core.CrystalAxis):
        return token
    if isinstance(token, str):
        for axis in _core.CrystalAxis:
            if token.strip().lower() == axis.label.lower():
                return axis
    raise _err.UnknownAxisError(
        f"unknown crystallographic axis '{token}', expected one of "
        + ", ".join(a.label for a in _core.CrystalAxis)
    )


def _parse_config_pole_figures(toml):
    """Parse `[pole_figures]` section and fill in default parameters."""
    _params = toml.get("pole_figures", {})
    if not isinstance(_params, dict):
        raise _err.ConfigError("'pole_figures' must be a table")
    for key, default in _core.DefaultParams().as_dict().items():
        _params[key] = _params.get(key, default)

    for key in ("times", "particle_ids", "axes", "minerals"):
        if not isinstance(_params[key], list | tuple):
            raise _err.ConfigError(f"'{key}' must be a list, not {_params[key]}")

    if not all(
        isinstance(t, int | float) and not isinstance(t, bool) for t in _params["times"]
    ):
        raise _err.ConfigError(f"invalid output times: {_params['times']}")
    _params["times"] = tuple(float(t) for t in _params["times"])

    if not all(
        isinstance(i, int) and not isinstance(i, bool) and i >= 0
        for i in _params["particle_ids"]
    ):
        raise _err.ConfigError(f"invalid particle IDs: {_params['particle_ids']}")
    _params["particle_ids"] = tuple(_params["particle_ids"])

    _params["axes"] = tuple(parse_axis(a) for a in _params["axes"])
    _params["minerals"] = tuple(parse_mineral(m) for m in _params["minerals"])

    if _params["color_scale"] not in _core.COLOR_SCALES:
        raise _err.ConfigError(
            f"unsupported color scale '{_params['color_scale']}', expected one of "
            + ", ".join(_core.COLOR_SCALES)
        )

    sphere_points = _params["sphere_points"]
    if (
        not isinstance(sphere_points, int)
        or isinstance(sphere_points, bool)
        or sphere_points < 3
    ):
        raise _err.ConfigError(
            f"'sphere_points' must be an integer larger than 2, not {sphere_points}"
        )

    ref_axes = _params["ref_axes"]
    if (
        not isinstance(ref_axes, str)
        or len(set(ref_axes.lower())) != 2
        or not set(ref_axes.lower()) < set("xyz")
    ):
        raise _err.ConfigError(
            f"'ref_axes' must be two distinct letters out of 'xyz', not '{ref_axes}'"
        )
    _params["ref_axes"] = ref_axes.lower()

    for key in ("elastisity_header", "small_figure", "no_description_text"):
        if not isinstance(_params[key], bool):
            raise _err.ConfigError(f"'{key}' must be true or false, not {_params[key]}")
    return _params


def _parse_config_format(toml):
    """Parse optional `[format]` table into a `cpoanalyzer.core.RecordFormat`."""
    _format = dict(toml.get("format", {}))
    try:
        if "representation" in _format:
            _format["representation"] = _core.Representation(_format["representation"])
        if "minerals" in _format:
            _format["minerals"] = tuple(parse_mineral(m) for m in _format["minerals"])
        return _core.RecordFormat(compressed=toml["compressed"], **_format)
    except (TypeError, ValueError) as e:
        raise _err.ConfigError(f"invalid record format: {e}") from None


def figure_filename(directory, params, selections, timestep):
    """Get the output path of the pole figure grid for a given set of selections.

    All `selections` must share the experiment, time and particle, `timestep` is the
    number of the resolved output snapshot. The file name encodes the minerals, axes,
    color scale, counting grid resolution, output snapshot number and particle ID.

    >>> from cpoanalyzer import polefigures as _pf
    >>> sel = _pf.PoleFigureSelection(
    ...     "exp", 1.0, 7, _core.Mineral.olivine, _core.CrystalAxis.a)
    >>> params = _core.DefaultParams().as_dict()
    >>> figure_filename("exp", params, [sel], 3).name
    'weighted_LPO_elastic_oli_A-Axis_Batlow_g1_sp301_t00003.00007.png'

    """
    selection = selections[0]
    minerals = []
    axes = []
    for s in selections:
        if s.mineral not in minerals:
            minerals.append(s.mineral)
        if s.axis not in axes:
            axes.append(s.axis)
    name = "{}_{}{}{}Axis_{}_g1_sp{}_t{:05d}.{:05d}.png".format(
        params["figure_output_prefix"],
        "elastic_" if params["elastisity_header"] else "no-elastic_",
        "".join(f"{m.abbreviation}_" for m in minerals),
        "".join(f"{a.name.upper()}-" for a in axes),
        params["color_scale"],
        params["sphere_points"],
        timestep,
        selection.particle_id,
    )
    return resolve_path(
        pathlib.Path(directory) / params["figure_output_dir"] / name, mkdir=False
    )


def save_datasets(path, datasets):
    """Save pole figure datasets to a NumPy NPZ archive.

    Arrays of the i-th dataset are stored with the prefix `dataset_<i>_`. Selection and
    snapshot metadata are stored in arrays with one entry per dataset. Elasticity data
    of the particles is not stored. See also `load_datasets`.

    """
    path = resolve_path(path)
    arrays = {
        "experiment": np.array([d.selection.experiment for d in datasets], dtype=str),
        "requested_time": np.array([d.selection.time for d in datasets], dtype=float),
        "particle_id": np.array([d.selection.particle_id for d in datasets], dtype=int),
        "mineral": np.array([int(d.selection.mineral) for d in datasets], dtype=int),
        "axis": np.array([int(d.selection.axis) for d in datasets], dtype=int),
        "timestep": np.array([d.snapshot.timestep for d in datasets], dtype=int),
        "time": np.array([d.snapshot.time for d in datasets], dtype=float),
        "ref_axes": np.array([d.ref_axes for d in datasets], dtype=str),
    }
    for i, dataset in enumerate(datasets):
        arrays[f"dataset_{i}_poles"] = dataset.poles
        arrays[f"dataset_{i}_points"] = dataset.points
        arrays[f"dataset_{i}_weights"] = dataset.weights
    _log.info("saving %d pole figure datasets to %s", len(datasets), path)
    np.savez(path, **arrays)
    return path


def load_datasets(path):
    """Load pole figure datasets from a NumPy NPZ archive, see `save_datasets`."""
    from cpoanalyzer import index as _index
    from cpoanalyzer import polefigures as _pf

    datasets = []
    with np.load(resolve_path(path, mkdir=False)) as archive:
        try:
            for i in range(len(archive["experiment"])):
                selection = _pf.PoleFigureSelection(
                    experiment=str(archive["experiment"][i]),
                    time=float(archive["requested_time"][i]),
                    particle_id=int(archive["particle_id"][i]),
                    mineral=_core.Mineral(archive["mineral"][i]),
                    axis=_core.CrystalAxis(archive["axis"][i]),
                )
                datasets.append(
                    _pf.PoleFigureDataset(
                        selection=selection,
                        snapshot=_index.Snapshot(
                            timestep=int(archive["timestep"][i]),
                            time=float(archive["time"][i]),
                        ),
                        poles=archive[f"dataset_{i}_poles"],
                        points=archive[f"dataset_{i}_points"],
                        weights=archive[f"dataset_{i}_weights"],
                        ref_axes=str(archive["ref_axes"][i]),
                    )
                )
        except KeyError as e:
            raise _err.FormatError(f"incomplete dataset archive '{path}': {e}") from None
    return datasets


@cl.contextmanager
def logfile_enable(path, level: str | int = logging.DEBUG, mode="w"):
    """Enable logging to a file at `path` with given `level`.

    See the `cpoanalyzer.logger` documentation for examples.

    Logging levels are documented here:
    - <https://docs.python.org/3/library/logging.html#logging-levels>

    """
    formatter = logging.Formatter(_log.LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    # Path can be an io.TextIOWrapper or io.StringIO, for testing purposes.
    logger_file: logging.StreamHandler | logging.FileHandler
    if isinstance(path, (io.StringIO, io.TextIOWrapper)):
        _log.debug("enabling logging at %s level to IO stream", level)
        logger_file = logging.StreamHandler(path)
    else:
        _log.debug("enabling logging at %s level to %s", level, path)
        logger_file = logging.FileHandler(resolve_path(path), mode=mode)
    logger_file.setFormatter(formatter)
    logger_file.setLevel(level)
    _log.LOGGER.addHandler(logger_file)
    try:
        yield
    finally:
        if not isinstance(path, (io.StringIO, io.TextIOWrapper)):
            logger_file.close()
        _log.LOGGER.removeHandler(logger_file)


@cl.contextmanager
def log_cli_level(level: str | int, handler: logging.Handler = _log.CONSOLE_LOGGER):
    """Set console logging handler level for current context.

    See the `cpoanalyzer.logger` documentation for examples.

    Logging levels are documented here:
    - <https://docs.python.org/3/library/logging.html#logging-levels>

    """
    default_level = handler.level
    handler.setLevel(level)
    try:
        yield
    finally:
        handler.setLevel(default_level)
