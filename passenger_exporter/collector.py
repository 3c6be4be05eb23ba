import logging
import math
import os

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.process_collector import ProcessCollector

from passenger_exporter import NAMESPACE
from passenger_exporter.buckets import ProcessBuckets
from passenger_exporter.interval import IntervalError, parse_interval
from passenger_exporter.status import StatusError, query_status

logger = logging.getLogger(__name__)


def metric_name(name):
    return "%s_%s" % (NAMESPACE, name)


def parse_float(val):
    try:
        return float(val)
    except ValueError as exc:
        logger.error("failed to parse %r: %s", val, exc)
        return math.nan


class PassengerCollector:
    """Collect Passenger metrics by running passenger-status on every scrape."""

    def __init__(self, command, timeout):
        if isinstance(command, str):
            command = command.split()
        if not command:
            raise ValueError("passenger command must not be empty")
        self.command = list(command)
        self.timeout = timeout
        self.buckets = ProcessBuckets()

    def status(self):
        return query_status(self.command, self.timeout)

    def _families(self):
        return {
            "up": GaugeMetricFamily(
                metric_name("up"), "Could passenger status be queried."
            ),
            "version": GaugeMetricFamily(
                metric_name("version"), "Version of passenger", labels=["version"]
            ),
            "top_level_queue": GaugeMetricFamily(
                metric_name("top_level_queue"),
                "Number of requests in the top-level queue.",
            ),
            "max_processes": GaugeMetricFamily(
                metric_name("max_processes"), "Configured maximum number of processes."
            ),
            "current_processes": GaugeMetricFamily(
                metric_name("current_processes"), "Current number of processes."
            ),
            "app_count": GaugeMetricFamily(metric_name("app_count"), "Number of apps."),
            "app_queue": GaugeMetricFamily(
                metric_name("app_queue"),
                "Number of requests in app process queues.",
                labels=["name"],
            ),
            "app_procs_spawning": GaugeMetricFamily(
                metric_name("app_procs_spawning"),
                "Number of processes spawning.",
                labels=["name"],
            ),
            "proc_memory": GaugeMetricFamily(
                metric_name("proc_memory"),
                "Memory consumed by a process",
                labels=["name", "id"],
            ),
            "requests_processed": CounterMetricFamily(
                metric_name("requests_processed_total"),
                "Number of requests served by a process.",
                labels=["name", "id"],
            ),
            "proc_uptime": GaugeMetricFamily(
                metric_name("proc_uptime"),
                "Number of seconds since processor started.",
                labels=["name", "id", "code_revision"],
            ),
        }

    def describe(self):
        return list(self._families().values())

    def collect(self):
        metrics = self._families()
        up = metrics.pop("up")

        try:
            info = self.status()
        except StatusError as exc:
            logger.error("failed to collect status from passenger: %s", exc)
            up.add_metric([], 0)
            yield up
            return
        up.add_metric([], 1)
        yield up

        metrics["version"].add_metric([info.passenger_version], 1)
        metrics["top_level_queue"].add_metric(
            [], parse_float(info.top_level_requests_in_queue)
        )
        metrics["max_processes"].add_metric([], parse_float(info.max_process_count))
        metrics["current_processes"].add_metric(
            [], parse_float(info.current_process_count)
        )
        metrics["app_count"].add_metric([], parse_float(info.app_count))

        buckets = self.buckets.assign(info)
        for sg in info.supergroups:
            metrics["app_queue"].add_metric([sg.name], parse_float(sg.requests_in_queue))
            metrics["app_procs_spawning"].add_metric(
                [sg.name], parse_float(sg.group.processes_spawning)
            )

            ids = buckets.get(sg.name, {})
            for proc in sg.group.processes:
                if proc.pid not in ids:
                    continue
                bucket = str(ids[proc.pid])
                metrics["proc_memory"].add_metric(
                    [sg.name, bucket], parse_float(proc.real_memory)
                )
                metrics["requests_processed"].add_metric(
                    [sg.name, bucket], parse_float(proc.requests_processed)
                )
                try:
                    uptime = parse_interval(proc.uptime)
                except IntervalError as exc:
                    logger.error("failed to parse uptime of pid %s: %s", proc.pid, exc)
                    continue
                metrics["proc_uptime"].add_metric(
                    [sg.name, bucket, proc.code_revision], uptime
                )

        yield from metrics.values()


class PidFileError(OSError):
    pass


def read_pid_file(path):
    try:
        with open(path) as f:
            content = f.read()
    except OSError as exc:
        raise PidFileError("error reading pidfile %r: %s" % (path, exc)) from exc
    try:
        return int(content.strip())
    except ValueError as exc:
        raise PidFileError("error parsing pidfile %r: %s" % (path, exc)) from exc


class PidFileCollector:
    """Export the standard process metrics of the pid stored in a pid file."""

    def __init__(self, path, namespace=NAMESPACE, proc="/proc"):
        self.path = path
        self.namespace = namespace
        self.proc = proc

    def collect(self):
        try:
            pid = read_pid_file(self.path)
        except PidFileError as exc:
            logger.error("%s", exc)
            return []
        if not os.path.isdir(os.path.join(self.proc, str(pid))):
            logger.error("process %d from pidfile %r is not running", pid, self.path)
            return []
        collector = ProcessCollector(
            namespace=self.namespace, pid=lambda: pid, proc=self.proc, registry=None
        )
        return collector.collect()
