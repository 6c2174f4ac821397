import taichi as ti

from time import perf_counter


class TimerRecord(object):
    def __init__(self, name):
        self.name = str(name)
        self.total = 0.
        self.current = 0.
        self.count = 0
        self.min = float("inf")
        self.max = 0.
        self.start = 0.

    def begin(self):
        self.start = perf_counter()

    def end(self):
        cur_time = perf_counter() - self.start
        self.total += cur_time
        self.current = cur_time
        self.min = min(self.min, cur_time)
        self.max = max(self.max, cur_time)
        self.count += 1

    @property
    def average(self):
        return self.total / self.count if self.count else 0.


class TimingTree(object):
    """
    Nested wall clock timers.

    A timer started while others are running is recorded below them, its full
    name joins the names of the running timers with '.', e.g.
    "Simulation.Contact detection".
    """

    def __init__(self, sync_kernels: bool = True):
        self.records = {}
        self._running = []
        self.sync_kernels = sync_kernels

    def start(self, name):
        path = ".".join(self._running + [name])
        if path not in self.records:
            self.records[path] = TimerRecord(path)
        self.records[path].begin()
        self._running.append(name)

    def stop(self, name):
        if not self._running or self._running[-1] != name:
            raise RuntimeError(f"Timer '{name}' is not the innermost running timer ({self._running})")
        if self.sync_kernels:
            ti.sync()
        self.records[".".join(self._running)].end()
        self._running.pop()

    def is_timer_running(self, name) -> bool:
        return name in self._running

    def running(self):
        return list(self._running)

    def reduced(self):
        """name -> {total, count, min, max, average} of every timer that has been stopped at least once."""
        return {name: {"total": rec.total, "count": rec.count, "min": rec.min, "max": rec.max,
                       "average": rec.average}
                for name, rec in self.records.items() if rec.count > 0}

    def __str__(self):
        reduced = self.reduced()
        root_total = max((r["total"] for name, r in reduced.items() if "." not in name), default=0.)
        msg = f"{'Timer':<50} {'total [s]':>12} {'%':>7} {'count':>8} {'average [s]':>12}\n"
        for name, rec in reduced.items():
            depth = name.count(".")
            label = "  " * depth + name.split(".")[-1]
            pct = 100. * rec["total"] / root_total if root_total > 0. else 0.
            msg += f"{label:<50} {rec['total']:>12.4f} {pct:>7.2f} {rec['count']:>8d} {rec['average']:>12.6f}\n"
        return msg
