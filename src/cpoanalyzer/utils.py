"""> CPO Analyzer: Process pools for parallel processing of pole figure selections."""

import os

from cpoanalyzer import logger as _log


def import_proc_pool():
    """Get the process `Pool` class to use for processing selections in parallel.

    Returns a tuple of the `Pool` class and a flag which is True if it was imported from
    Ray (`ray.util.multiprocessing.Pool`, distributed memory), or False if it is the
    `multiprocessing.Pool` of the standard library. Both have the same API.

    """
    try:
        from ray.util.multiprocessing import Pool

        return Pool, True
    except ImportError:
        from multiprocessing import Pool

        return Pool, False


def default_ncpus():
    """Get the default number of worker processes.

    One CPU core available to this process is left free for the main process. Falls
    back to a single worker if the number of CPU cores is unknown.

    """
    if hasattr(os, "sched_getaffinity"):
        available = len(os.sched_getaffinity(0))
    else:
        available = os.cpu_count()
    if available is None:
        _log.warning("unable to determine number of available CPUs, using 1")
        return 1
    return max(available - 1, 1)
