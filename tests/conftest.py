"""> Configuration and fixtures for CPO Analyzer tests."""

import matplotlib
import pytest
from _pytest.logging import LoggingPlugin, _LiveLoggingStreamHandler

from cpoanalyzer import core as _core
from cpoanalyzer import logger as _log
from cpoanalyzer import mock as _mock
from cpoanalyzer import utils as _utils

matplotlib.use("Agg")
_log.quiet_aliens()  # Stop imported modules from spamming the logs.


# Set up custom pytest CLI arguments.
def pytest_addoption(parser):
    parser.addoption(
        "--outdir",
        metavar="DIR",
        default=None,
        help="output directory in which to store CPO Analyzer figures/logs",
    )
    parser.addoption(
        "--ncpus",
        default=_utils.default_ncpus(),
        type=int,
        help="number of CPUs to use for tests that support multiprocessing",
    )


# The default pytest logging plugin always creates its own handlers...
class PytestConsoleLogger(LoggingPlugin):
    """Pytest plugin that allows linking up a custom console logger."""

    name = "pytest-console-logger"

    def __init__(self, config, *args, **kwargs):
        super().__init__(config, *args, **kwargs)
        terminal_reporter = config.pluginmanager.get_plugin("terminalreporter")
        capture_manager = config.pluginmanager.get_plugin("capturemanager")
        handler = _LiveLoggingStreamHandler(terminal_reporter, capture_manager)
        handler.setFormatter(_log.CONSOLE_LOGGER.formatter)
        handler.setLevel(_log.CONSOLE_LOGGER.level)
        self.log_cli_handler = handler

    # Override original, which tries to delete some silly globals that we aren't
    # using anymore, this might break the (already quite broken) -s/--capture.
    @pytest.hookimpl(hookwrapper=True)
    def pytest_runtest_teardown(self, item):
        self.log_cli_handler.set_when("teardown")
        yield from self._runtest_for(item, "teardown")


@pytest.hookimpl(trylast=True)
def pytest_configure(config):
    # Hook up our logging plugin last,
    # it relies on terminalreporter and capturemanager.
    if config.option.verbose > 0:
        config.pluginmanager.register(
            PytestConsoleLogger(config), PytestConsoleLogger.name
        )


@pytest.fixture(scope="session")
def verbose(request):
    return request.config.option.verbose


@pytest.fixture(scope="session")
def outdir(request):
    return request.config.getoption("--outdir")


@pytest.fixture(scope="session")
def ncpus(request):
    return max(1, request.config.getoption("--ncpus"))


@pytest.fixture(scope="function")
def console_handler(request):
    if request.config.option.verbose > 0:  # Show console logs if -v/--verbose given.
        return request.config.pluginmanager.get_plugin(
            "pytest-console-logger"
        ).log_cli_handler
    return _log.CONSOLE_LOGGER


@pytest.fixture(scope="session")
def seed():
    """Default seed for test RNG."""
    return 8816


@pytest.fixture(scope="session", params=["xz", "yz", "xy"])
def ref_axes(request):
    return request.param


@pytest.fixture(
    scope="session",
    params=[
        _core.Representation.euler,
        _core.Representation.matrix,
        _core.Representation.quaternion,
    ],
)
def representation(request):
    return request.param


@pytest.fixture
def experiment(tmp_path, seed):
    """Synthetic experiment with three snapshots and two particles.

    Returns a tuple of the experiment directory and the written orientations,
    see `cpoanalyzer.mock.write_experiment`.

    """
    directory = tmp_path / "exp"
    written = _mock.write_experiment(
        directory,
        times=[0.0, 1.0, 5.0],
        particles={1: 20, 10: 35},
        n_ranks=2,
        seed=seed,
    )
    return directory, written
