# Licensed under a 3-clause BSD style license - see LICENSE.rst
import time


class Timer(object):
    """Accumulating wall-clock timer used to report the run time of a
    scan.  The timer can be started and stopped repeatedly and used as
    a context manager.

    Examples
    --------
    >>> t = Timer.create(start=True)
    >>> with t:
    ...     pass
    """

    def __init__(self):
        self._t0 = None
        self._time = 0

    @classmethod
    def create(cls, start=False):
        timer = cls()
        if start:
            timer.start()
        return timer

    @property
    def running(self):
        return self._t0 is not None

    @property
    def elapsed_time(self):
        """Accumulated time in seconds.  Includes the current interval
        when the timer is running."""
        if self.running:
            return self._time + (time.perf_counter() - self._t0)
        return self._time

    def start(self):
        if self.running:
            raise RuntimeError('Timer already started.')
        self._t0 = time.perf_counter()

    def stop(self):
        if not self.running:
            raise RuntimeError('Timer not started.')
        self._time += time.perf_counter() - self._t0
        self._t0 = None

    def clear(self):
        self._t0 = None
        self._time = 0

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.stop()
