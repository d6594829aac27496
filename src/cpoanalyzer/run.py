"""> CPO Analyzer: Processing of configured pole figure selections.

Selections are independent of each other, so they are processed in parallel using a
process `Pool`, see `cpoanalyzer.utils.import_proc_pool`. If Ray is installed, it will
be automatically preferred, otherwise the Python standard library multiprocessing module
is used. Results are collected in the order of `cpoanalyzer.polefigures.expand_requests`,
regardless of the order in which the workers finish.

A selection that fails (e.g. because the particle is absent at the requested time) is
recorded in the `RunSummary` and does not abort the processing of other selections.

"""

import functools as ft
from dataclasses import dataclass, field
from time import perf_counter

from tqdm import tqdm

from cpoanalyzer import exceptions as _err
from cpoanalyzer import index as _index
from cpoanalyzer import io as _io
from cpoanalyzer import logger as _log
from cpoanalyzer import polefigures as _pf
from cpoanalyzer import utils as _utils

Pool, HAS_RAY = _utils.import_proc_pool()


@dataclass(frozen=True)
class SelectionFailure:
    """Record of a pole figure selection that could not be processed."""

    selection: _pf.PoleFigureSelection
    kind: str
    """Name of the exception class, e.g. 'NotFoundError'."""
    message: str


@dataclass
class RunSummary:
    """Results of processing a configuration.

    Datasets and failures are stored in the order of the selection enumeration.

    """

    datasets: list = field(default_factory=list)
    failures: list = field(default_factory=list)
    figures: list = field(default_factory=list)
    """Paths to the pole figure images that were written."""

    @property
    def n_selections(self):
        return len(self.datasets) + len(self.failures)

    def log(self):
        """Log a summary of succeeded and failed selections."""
        _log.info(
            "processed %d pole figure selections: %d succeeded, %d failed",
            self.n_selections,
            len(self.datasets),
            len(self.failures),
        )
        for dataset in self.datasets:
            _log.info(
                "  OK     %s (time %s, %d grains)",
                dataset.selection,
                dataset.time,
                dataset.n_grains,
            )
        for failure in self.failures:
            _log.info("  FAILED %s [%s]", failure.selection, failure.kind)


def build_indexes(config, selections):
    """Build the `cpoanalyzer.index.ExperimentIndex` of each configured experiment.

    Returns a dictionary mapping experiment names to either the index or the `OSError`
    raised while building it (e.g. because the experiment directory is missing), which
    fails the selections of that experiment. Damaged grain data files only fail the
    selections that need them, see `cpoanalyzer.index.ExperimentIndex.lookup`.
    Unparsable headers and other errors are fatal and propagated.

    """
    params = config["pole_figures"]
    indexes = {}
    for experiment in config["experiment_dirs"]:
        times = sorted({s.time for s in selections if s.experiment == experiment})
        _log.info("processing experiment %s", experiment)
        try:
            indexes[experiment] = _index.ExperimentIndex.build(
                config["base_dir"] / experiment, config["format"], params, times=times
            )
        except OSError as e:
            _log.error("unable to index experiment %s: %s", experiment, e)
            indexes[experiment] = e
    return indexes


def process_selection(selection, indexes, ref_axes="xy", elasticity=False):
    """Process one selection, returning a tuple of (dataset, failure).

    Exactly one of the two return values is None. Errors of the analyzer and `OSError`
    are recorded as a `SelectionFailure`, other exceptions are propagated.

    """
    index = indexes[selection.experiment]
    if isinstance(index, OSError):
        return None, SelectionFailure(
            selection=selection, kind=index.__class__.__name__, message=str(index)
        )
    try:
        dataset = _pf.aggregate(
            selection, index, ref_axes=ref_axes, elasticity=elasticity
        )
    except (_err.Error, OSError) as e:
        return None, SelectionFailure(
            selection=selection, kind=e.__class__.__name__, message=str(e)
        )
    return dataset, None


def process_configuration(config, ncpus=None, figures=True, export=None):
    """Create the pole figure datasets requested in a parsed configuration.

    Expects a configuration dictionary returned by `cpoanalyzer.io.parse_config`.
    If `ncpus` is None, the number of CPU cores is chosen automatically, a value of
    one disables multiprocessing. If `figures` is True, a pole figure grid is rendered
    for each combination of experiment, time and particle (requires Matplotlib).
    If `export` is a path, the datasets are also saved to an NPZ archive.

    Returns a `RunSummary`.

    """
    begin = perf_counter()
    params = config["pole_figures"]
    selections = _pf.expand_requests(
        config["experiment_dirs"],
        params["times"],
        params["particle_ids"],
        params["axes"],
        params["minerals"],
    )
    _log.info("expanded configuration into %d pole figure selections", len(selections))
    indexes = build_indexes(config, selections)

    _run = ft.partial(
        process_selection,
        indexes=indexes,
        ref_axes=params["ref_axes"],
        elasticity=params["elastisity_header"],
    )
    summary = RunSummary()
    if ncpus is None:
        ncpus = _utils.default_ncpus()
    if ncpus == 1 or len(selections) < 2:
        results = map(_run, selections)
        _collect(summary, results, len(selections))
    else:
        if HAS_RAY:
            _log.debug("using Ray for distributed multiprocessing")
        with Pool(processes=ncpus) as pool:
            _collect(summary, pool.imap(_run, selections), len(selections))

    if figures:
        summary.figures = render_figures(config, summary.datasets)
    if export is not None:
        _io.save_datasets(export, summary.datasets)

    summary.log()
    _log.info("total runtime: %.2f seconds", perf_counter() - begin)
    return summary


def _collect(summary, results, total):
    for dataset, failure in tqdm(results, total=total, desc="Processing selections"):
        if failure is None:
            summary.datasets.append(dataset)
        elif failure.kind == "NotFoundError":
            _log.warning("skipping %s: %s", failure.selection, failure.message)
            summary.failures.append(failure)
        else:
            _log.error(
                "failed to process %s: %s (%s)",
                failure.selection,
                failure.message,
                failure.kind,
            )
            summary.failures.append(failure)


def render_figures(config, datasets):
    """Render one pole figure grid per experiment, output snapshot and particle.

    Requested times that resolve to the same output snapshot share one figure.
    Returns the list of paths to the written figures.

    """
    from cpoanalyzer import visualisation as _vis

    params = config["pole_figures"]
    groups = {}
    for dataset in datasets:
        key = (
            dataset.selection.experiment,
            dataset.snapshot.timestep,
            dataset.selection.particle_id,
        )
        groups.setdefault(key, []).append(dataset)

    paths = []
    for (experiment, timestep, particle_id), group in groups.items():
        # Keep one dataset for each mineral and axis.
        unique = {}
        for d in group:
            unique.setdefault((d.selection.mineral, d.selection.axis), d)
        group = list(unique.values())
        output = _io.figure_filename(
            config["base_dir"] / experiment,
            params,
            [d.selection for d in group],
            timestep,
        )
        _log.info("saving pole figures for particle %d to %s", particle_id, output)
        paths.append(_vis.polefigure_grid(group, params, savefile=output))
    return paths
