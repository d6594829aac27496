"""> CPO Analyzer: Custom exceptions (subclasses of `cpoanalyzer.exceptions.Error`).

Missing or unreadable files are reported with the builtin `OSError` subclasses
(`FileNotFoundError`, `NotADirectoryError`, ...), i.e. Python's `IOError`.

"""

# <https://docs.python.org/3.11/tutorial/errors.html#user-defined-exceptions>


class Error(Exception):
    """Base class for exceptions in the CPO Analyzer."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return str(self.message)


class ConfigError(Error):
    """Exception raised for errors in the input configuration.

    Attributes:
    - message — explanation of the error

    """


class UnknownMineralError(ConfigError):
    """Exception raised for mineral names or mineral slots that can't be interpreted.

    Raised by the configuration parser for unsupported mineral tokens, and by the
    record decoder when a data file declares more mineral slots than the record format
    enumerates.

    """


class UnknownAxisError(ConfigError):
    """Exception raised for unsupported crystallographic axis tokens."""


class FormatError(Error):
    """Exception raised for malformed headers or records in CPO data files.

    Attributes:
    - message — explanation of the error

    """


class HeaderError(FormatError):
    """Exception raised for unparsable header lines of CPO data files.

    A data file with an invalid header can't be matched to the record format at all,
    so this error aborts the construction of an experiment index. Errors in individual
    records only fail the pole figure selections that need them.

    """


class CompressionError(Error):
    """Exception raised for corrupt or truncated compressed data streams."""


class NotFoundError(Error):
    """Exception raised when a requested time or particle is absent from an experiment.

    This is a recoverable condition, the affected pole figure selection is skipped.

    """
