"""> CPO Analyzer: Entry points and argument handling for command line tools.

All CLI handlers should be registered in the `CLI_HANDLERS` namedtuple,
which ensures that they will be installed as executable scripts alongside the package.

"""

import argparse
import os
import sys
from collections import namedtuple
from zipfile import ZipFile

from cpoanalyzer import exceptions as _err
from cpoanalyzer import io as _io
from cpoanalyzer import logger as _log
from cpoanalyzer import run as _run


class CliTool:
    """Base class for command line tools.

    Subclasses implement `__call__(argv=None)` and `_add_arguments(parser)`. The first
    paragraph of the subclass docstring is used as the description in the help text,
    the rest as the epilog.

    """

    def __call__(self, argv=None):
        raise NotImplementedError

    def _add_arguments(self, parser):
        raise NotImplementedError

    def _get_args(self, argv=None) -> argparse.Namespace:
        assert self.__doc__ is not None, f"missing docstring for {self}"
        description, epilog = self.__doc__.split(os.linesep + os.linesep, 1)
        parser = argparse.ArgumentParser(description=description, epilog=epilog)
        self._add_arguments(parser)
        return parser.parse_args(argv)


class PoleFigureAnalyser(CliTool):
    """CPO Analyzer script to create pole figures from geodynamic particle output.

    Reads the TOML configuration file CONFIG, which lists the experiment directories
    and the times, particles, minerals and crystallographic axes to be shown. One pole
    figure grid is saved for each experiment, time and particle. Selections that can't
    be processed are reported at the end of the run, and the exit status is non-zero
    if any selection failed.

    """

    def __call__(self, argv=None):
        args = self._get_args(argv)
        try:
            config = _io.parse_config(args.config)
            level = config["log_level"] if args.log_level is None else args.log_level
            with _io.log_cli_level(level.upper()):
                if args.logfile is None:
                    summary = self._process(config, args)
                else:
                    with _io.logfile_enable(args.logfile):
                        summary = self._process(config, args)
        except (_err.Error, OSError) as e:
            _log.error("%s: %s", e.__class__.__name__, e)
            sys.exit(2)
        if summary.failures:
            sys.exit(1)

    def _process(self, config, args):
        return _run.process_configuration(
            config,
            ncpus=args.ncpus,
            figures=not args.no_figures,
            export=args.export,
        )

    def _add_arguments(self, parser):
        parser.add_argument("config", help="configuration file (.toml)")
        parser.add_argument(
            "-n",
            "--ncpus",
            help="number of processes to use, the default is chosen automatically",
            default=None,
            type=int,
        )
        parser.add_argument(
            "--no-figures",
            help="skip rendering of the pole figures",
            default=False,
            action="store_true",
        )
        parser.add_argument(
            "-e",
            "--export",
            help="save the pole figure datasets to a NumPy archive (.npz)",
            default=None,
        )
        parser.add_argument(
            "-l",
            "--log-level",
            help="verbosity of console logs, e.g. DEBUG, INFO or WARNING,"
            + " overrides the 'log_level' configuration option",
            default=None,
        )
        parser.add_argument(
            "--logfile",
            help="also write logs (at DEBUG level) to this file",
            default=None,
        )


class DatasetInspector(CliTool):
    """CPO Analyzer script to show information about exported pole figure datasets.

    Lists the selections stored in an NPZ archive written with the `--export` option
    of the `cpoanalyzer` command.

    """

    def __call__(self, argv=None):
        args = self._get_args(argv)
        with ZipFile(args.input) as npz:
            for name in npz.namelist():
                if not (name.startswith("dataset_") or name[:-4] in _METADATA_KEYS):
                    _log.warning("found unknown NPZ key '%s' in '%s'", name, args.input)
        try:
            datasets = _io.load_datasets(args.input)
        except _err.Error as e:
            _log.error(str(e))
            sys.exit(2)
        print(f"NPZ file with {len(datasets)} pole figure datasets:")
        for i, dataset in enumerate(datasets):
            print(
                f" - {i}: {dataset.selection} at time {dataset.time}"
                + f" (timestep {dataset.snapshot.timestep}),"
                + f" {dataset.n_grains} grains, total weight {dataset.total_weight:.4f}"
            )

    def _add_arguments(self, parser):
        parser.add_argument("input", help="input file (.npz)")


_METADATA_KEYS = (
    "experiment",
    "requested_time",
    "particle_id",
    "mineral",
    "axis",
    "timestep",
    "time",
    "ref_axes",
)

# These are not the final names of the executables (those are set in pyproject.toml).
_CLI_HANDLERS = namedtuple(
    "_CLI_HANDLERS",
    (
        "pole_figure_analyser",
        "dataset_inspector",
    ),
)
CLI_HANDLERS = _CLI_HANDLERS(
    pole_figure_analyser=PoleFigureAnalyser(),
    dataset_inspector=DatasetInspector(),
)
