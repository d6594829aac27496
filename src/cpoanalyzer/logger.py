"""> CPO Analyzer: Package logger and console handler.

All analyzer messages go through the "cpoanalyzer" logger (`LOGGER`), which writes to
`sys.stderr` at `INFO` level with the `CONSOLE_LOGGER` handler. Use the old printf style
formatting for log messages, not fstrings, so that messages below the handler level
are never formatted.

>>> import logging
>>> import sys
>>> import cpoanalyzer
>>> cpoa_logger = logging.getLogger("cpoanalyzer")
>>> cpoa_logger.handlers  # doctest: +ELLIPSIS
[<StreamHandler ... (INFO)>]

Below, the handler writes to `sys.stdout` without colours (`...` is a timestamp):

>>> handler = cpoa_logger.handlers[0]
>>> _stream = handler.setStream(sys.stdout)  # Doctests don't check stderr.
>>> handler.formatter.color_enabled = False
>>> cpoa_logger.info("reading %d grains", 12)  # doctest: +ELLIPSIS
INFO [...] cpoanalyzer: reading 12 grains
>>> handler.setLevel(logging.ERROR)
>>> cpoa_logger.warning("hidden")
>>> cpoa_logger.error("shown")  # doctest: +ELLIPSIS
ERROR [...] cpoanalyzer: shown
>>> handler.setLevel(logging.INFO)
>>> _ = handler.setStream(_stream)
>>> handler.formatter.color_enabled = True

See `cpoanalyzer.io.log_cli_level` to change the console level temporarily and
`cpoanalyzer.io.logfile_enable` to also write logs to a file.

"""

import logging

# NOTE: Do NOT import any cpoanalyzer submodules here to avoid cyclical imports.

# Uncoloured format of log records, also used for log files.
LOG_FORMAT = "%(levelname)s [%(asctime)s] %(name)s: %(message)s"


class ConsoleFormatter(logging.Formatter):
    """Log formatter that highlights level names with terminal colour codes.

    Colours are disabled by setting the `color_enabled` attribute to False.

    """

    color_enabled = True
    colors = {
        logging.CRITICAL: "1;31",
        logging.ERROR: "31",
        logging.WARNING: "33",
        logging.INFO: "32",
        logging.DEBUG: "34",
    }

    def format(self, record):
        code = self.colors.get(record.levelno)
        if self.color_enabled and code is not None:
            self._style._fmt = (
                f"\033[{code}m%(levelname)s [%(asctime)s]\033[m"
                + " \033[1m%(name)s:\033[m %(message)s"
            )
        else:
            self._style._fmt = LOG_FORMAT
        return super().format(record)


LOGGER = logging.getLogger("cpoanalyzer")
# Handlers filter by their own level, the logger passes everything on.
LOGGER.setLevel(logging.DEBUG)
CONSOLE_LOGGER = logging.StreamHandler()
CONSOLE_LOGGER.setFormatter(ConsoleFormatter(datefmt="%H:%M"))
CONSOLE_LOGGER.setLevel(logging.INFO)
LOGGER.addHandler(CONSOLE_LOGGER)


def error(msg, *args, **kwargs):
    """Log an ERROR message of the CPO Analyzer."""
    LOGGER.error(msg, *args, **kwargs)


def warning(msg, *args, **kwargs):
    """Log a WARNING message of the CPO Analyzer."""
    LOGGER.warning(msg, *args, **kwargs)


def info(msg, *args, **kwargs):
    """Log an INFO message of the CPO Analyzer."""
    LOGGER.info(msg, *args, **kwargs)


def debug(msg, *args, **kwargs):
    """Log a DEBUG message of the CPO Analyzer."""
    LOGGER.debug(msg, *args, **kwargs)


def quiet_aliens(root_level=logging.WARNING, level=logging.CRITICAL):
    """Raise the level of the root logger and of all loggers of other packages.

    Used by the test suite to keep logs of dependencies (Matplotlib, Numba, ...) out of
    the captured output.

    """
    logging.getLogger().setLevel(root_level)
    for name in logging.Logger.manager.loggerDict:
        if name != "cpoanalyzer" and not name.startswith("cpoanalyzer."):
            logging.getLogger(name).setLevel(level)
