"""Query passenger-status and decode its XML output.

Every value is kept as the string found in the document; numeric coercion
happens when metrics are emitted.
"""

import logging
import subprocess
import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, fields

logger = logging.getLogger(__name__)


class StatusError(Exception):
    """passenger-status could not be queried or understood."""


class StatusTimeout(StatusError):
    """passenger-status did not exit within the configured timeout."""


class DecodeError(StatusError):
    """The status document is malformed."""


def tag(name):
    """Declare the XML element a string field is read from."""
    return field(default="", metadata={"xml": name})


@dataclass
class Process:
    pid: str = tag("pid")
    gupid: str = tag("gupid")
    sticky_session_id: str = tag("sticky_session_id")
    process_group_id: str = tag("process_group_id")
    command: str = tag("command")
    code_revision: str = tag("code_revision")
    life_status: str = tag("life_status")
    enabled: str = tag("enabled")
    has_metrics: str = tag("has_metrics")
    concurrency: str = tag("concurrency")
    sessions: str = tag("sessions")
    busyness: str = tag("busyness")
    requests_processed: str = tag("processed")
    spawner_creation_time: str = tag("spawner_creation_time")
    spawn_start_time: str = tag("spawn_start_time")
    spawn_end_time: str = tag("spawn_end_time")
    last_used: str = tag("last_used")
    last_used_desc: str = tag("last_used_desc")
    uptime: str = tag("uptime")
    cpu: str = tag("cpu")
    rss: str = tag("rss")
    pss: str = tag("pss")
    private_dirty: str = tag("private_dirty")
    swap: str = tag("swap")
    real_memory: str = tag("real_memory")
    vmsize: str = tag("vmsize")


@dataclass
class Options:
    app_root: str = tag("app_root")
    app_group_name: str = tag("app_group_name")
    app_type: str = tag("app_type")
    start_command: str = tag("start_command")
    startup_file: str = tag("startup_file")
    process_title: str = tag("process_title")
    environment: str = tag("environment")
    base_uri: str = tag("base_uri")
    spawn_method: str = tag("spawn_method")
    default_user: str = tag("default_user")
    default_group: str = tag("default_group")
    integration_mode: str = tag("integration_mode")
    ruby: str = tag("ruby")
    log_level: str = tag("log_level")
    start_timeout: str = tag("start_timeout")
    min_processes: str = tag("min_processes")
    max_processes: str = tag("max_processes")
    max_preloader_idle_time: str = tag("max_preloader_idle_time")
    max_out_of_band_work_instances: str = tag("max_out_of_band_work_instances")
    analytics: str = tag("analytics")
    debugger: str = tag("debugger")


@dataclass
class Group:
    name: str = tag("name")
    component_name: str = tag("component_name")
    app_root: str = tag("app_root")
    app_type: str = tag("app_type")
    environment: str = tag("environment")
    uuid: str = tag("uuid")
    uid: str = tag("uid")
    gid: str = tag("gid")
    user: str = tag("user")
    life_status: str = tag("life_status")
    capacity_used: str = tag("capacity_used")
    requests_in_queue: str = tag("get_wait_list_size")
    disable_wait_list_size: str = tag("disable_wait_list_size")
    processes_spawning: str = tag("processes_being_spawned")
    enabled_process_count: str = tag("enabled_process_count")
    disabling_process_count: str = tag("disabling_process_count")
    disabled_process_count: str = tag("disabled_process_count")
    default: str = ""
    options: Options = field(default_factory=Options)
    processes: list = field(default_factory=list)


@dataclass
class SuperGroup:
    name: str = tag("name")
    state: str = tag("state")
    capacity_used: str = tag("capacity_used")
    requests_in_queue: str = tag("get_wait_list_size")
    group: Group = field(default_factory=Group)


@dataclass
class Info:
    passenger_version: str = tag("passenger_version")
    app_count: str = tag("group_count")
    current_process_count: str = tag("process_count")
    max_process_count: str = tag("max")
    capacity_used: str = tag("capacity_used")
    top_level_requests_in_queue: str = tag("get_wait_list_size")
    supergroups: list = field(default_factory=list)

    def processes(self):
        """Yield every process in document order."""
        for sg in self.supergroups:
            yield from sg.group.processes


def _text_fields(cls, element):
    """Read the tagged string fields of ``cls`` from the children of ``element``."""
    values = {}
    if element is None:
        return values
    for f in fields(cls):
        name = f.metadata.get("xml")
        if name is not None:
            values[f.name] = element.findtext(name, default="")
    return values


def _decode_group(element):
    group = Group(**_text_fields(Group, element))
    if element is None:
        return group
    group.default = element.get("default", "")
    group.options = Options(**_text_fields(Options, element.find("options")))
    group.processes = [
        Process(**_text_fields(Process, proc))
        for proc in element.iterfind("processes/process")
    ]
    return group


def parse_output(data):
    """Decode a passenger-status XML document into an :class:`Info`."""
    try:
        tree = ET.fromstring(data)
    except (ET.ParseError, ValueError, LookupError) as exc:
        # ValueError and LookupError come from unusable encoding declarations.
        raise DecodeError("failed to parse passenger-status output: %s" % exc) from exc

    info = Info(**_text_fields(Info, tree))
    names = set()
    for element in tree.iterfind("supergroups/supergroup"):
        sg = SuperGroup(**_text_fields(SuperGroup, element))
        if sg.name in names:
            raise DecodeError("supergroup %r reported more than once" % sg.name)
        names.add(sg.name)
        sg.group = _decode_group(element.find("group"))
        info.supergroups.append(sg)

    seen = set()
    for proc in info.processes():
        if proc.pid in seen:
            raise DecodeError("pid %s reported more than once" % proc.pid)
        seen.add(proc.pid)

    return info


def _reap(proc):
    """Kill a child that ran out of time and wait for it off the request thread."""
    try:
        proc.kill()
    except OSError:
        pass

    def wait():
        proc.communicate()
        logger.debug("reaped timed out child %d (status %s)", proc.pid, proc.returncode)

    threading.Thread(target=wait, name="reap-%d" % proc.pid, daemon=True).start()


def fetch_status(argv, timeout):
    """Run ``argv`` and return its standard output.

    ``timeout`` is in seconds. Standard error is discarded.
    """
    try:
        proc = subprocess.Popen(
            argv, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL
        )
    except OSError as exc:
        raise StatusError("failed to run %s: %s" % (argv[0], exc)) from exc

    try:
        out, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _reap(proc)
        raise StatusTimeout(
            "%s timed out after %gs" % (argv[0], timeout)
        ) from None

    if proc.returncode < 0:
        raise StatusError("%s killed by signal %d" % (argv[0], -proc.returncode))
    if proc.returncode != 0:
        raise StatusError("%s exited with status %d" % (argv[0], proc.returncode))
    return out


def query_status(argv, timeout):
    return parse_output(fetch_status(argv, timeout))
