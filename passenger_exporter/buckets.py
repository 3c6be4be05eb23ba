"""Stable metric ids for Passenger worker processes.

Passenger restarts workers on a rolling schedule, so labelling samples by pid
would create a new series for every restart. Instead each pid is given a small
integer bucket that survives across scrapes and is handed to the replacement
process once its previous owner is gone.

This relies on passenger-status listing the processes of a group in order of
increasing spawn time: surviving processes keep their place and restarted
processes are appended at the end. If that order is ever broken, survivors
still keep their ids but a replacement may land in a different freed slot,
which shows up as an extra counter reset.
"""

import threading


def update_processes(old, processes):
    """Return the pid -> bucket mapping for ``processes`` given the previous one.

    Pids already in ``old`` keep their bucket. New pids take the freed buckets
    in ascending order, in the order they appear in ``processes``, and once
    those run out new buckets are allocated past the highest one known.
    Pids no longer running are dropped.
    """
    found = [None] * (max(old.values(), default=-1) + 1)
    missing = []

    for p in processes:
        idx = old.get(p.pid)
        if idx is None:
            missing.append(p.pid)
        else:
            # The bucket doubles as an index, leaving the slots of exited
            # processes empty for the new pids below.
            found[idx] = p.pid

    updated = {}
    pending = iter(missing)
    for idx, pid in enumerate(found):
        if pid is None:
            pid = next(pending, None)
            if pid is None:
                continue
        updated[pid] = idx

    for idx, pid in enumerate(pending, start=len(found)):
        updated[pid] = idx

    return updated


class ProcessBuckets:
    """Bucket maps for every application, shared by concurrent scrapes.

    Maps are kept per supergroup name so that restarts in one application
    never move the ids of another.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._buckets = {}

    def assign(self, info):
        """Update the maps from a decoded status and return the new maps.

        The returned mapping is replaced, never mutated, by later calls.
        """
        with self._lock:
            self._buckets = {
                sg.name: update_processes(
                    self._buckets.get(sg.name, {}), sg.group.processes
                )
                for sg in info.supergroups
            }
            return self._buckets

    def snapshot(self):
        """Return the maps written by the most recent scrape."""
        with self._lock:
            return self._buckets
