# =============================================================================
# Imports
# =============================================================================
import importlib
import logging
import os
import time
from typing import Optional


# =============================================================================
# Context Managers
# =============================================================================
class ElapsedTimer:
    """
    Context manager and reusable timer to measure elapsed time.

    Example:
        timer = ElapsedTimer()
        with timer:
            do_something()
        print(f'Elapsed: {timer.elapsed:.3f}')
    """

    def __init__(self):
        self.start = None
        self._elapsed = None

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self._elapsed = time.perf_counter() - self.start

    @property
    def elapsed(self):
        """
        Return the elapsed time for the most recent context.
        """
        if self._elapsed is None:
            raise ValueError("Timer has not been used in a context yet.")
        return self._elapsed


# =============================================================================
# Helpers
# =============================================================================
def get_class_from_string(class_name: str) -> type:
    """
    Obtains a class object from its dotted name, e.g.
    `rangeprobe.http.server.HttpServer`.

    Args:

        class_name (str): Supplies the fully qualified class name.

    Returns:

        type: Returns the class object.
    """
    (module_name, _, name) = class_name.rpartition('.')
    if not module_name:
        raise ValueError(f'Not a fully qualified class name: {class_name}')

    timer = ElapsedTimer()
    with timer:
        module = importlib.import_module(module_name)
        cls = getattr(module, name)

    logging.debug(f'Loaded {class_name} in {timer.elapsed:.4f} seconds.')
    return cls


def env_int(name: str, default: int) -> int:
    """
    Returns the integer value of environment variable `name`, or `default`
    if it is unset or empty.
    """
    value = os.environ.get(name)
    if not value:
        return default
    return int(value)


def env_str(name: str, default: Optional[str] = '') -> Optional[str]:
    return os.environ.get(name) or default

# vim:set ts=8 sw=4 sts=4 tw=78 et:                                           #
