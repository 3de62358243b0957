"""Logging helpers shared by the library and its command line tools."""

import functools
import logging
from typing import Callable


def log_exceptions(func: Callable) -> Callable:
    """
    Log any exception escaping ``func`` with its traceback, then re-raise it.

    The record goes to the logger of the module defining ``func`` and names
    the function by its qualified name, so a failing homing run is logged
    as ``Autostep.autoset_position_procedure``.

    Example:
    >>> from autostep.tools import log_exceptions
    >>>
    >>> @log_exceptions
    ... def home(stepper):
    ...     stepper.autoset_position_procedure()
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logging.getLogger(func.__module__).error(
                "Exception in %s: %s", func.__qualname__, e,
                exc_info=True
            )
            raise

    return wrapper
