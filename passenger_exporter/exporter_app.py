#!/usr/bin/env python
import logging

import click
from flask import Flask, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from werkzeug.serving import make_server

from passenger_exporter import __version__
from passenger_exporter.collector import PassengerCollector, PidFileCollector
from passenger_exporter.interval import IntervalError, parse_interval

logger = logging.getLogger(__name__)

LANDING_PAGE = """<html>
<head><title>Passenger Exporter</title></head>
<body>
<h1>Passenger Exporter</h1>
<p><a href="{path}">Metrics</a></p>
</body>
</html>
"""


def create_app(collector, metrics_path="/metrics", pid_file=None):
    """Build the Flask app serving ``collector`` on ``metrics_path``."""
    registry = CollectorRegistry()
    registry.register(collector)
    if pid_file:
        registry.register(PidFileCollector(pid_file))

    # Initiate flask app
    app = Flask(__name__)
    app.config["COLLECTOR"] = collector

    def metrics():
        # Every request runs passenger-status once
        return Response(generate_latest(registry), content_type=CONTENT_TYPE_LATEST)

    def index():
        return LANDING_PAGE.format(path=metrics_path)

    app.add_url_rule(metrics_path, "metrics", metrics)
    if metrics_path != "/":
        app.add_url_rule("/", "index", index)
    return app


class Interval(click.ParamType):
    name = "interval"

    def convert(self, value, param, ctx):
        try:
            seconds = parse_interval(value)
        except IntervalError as exc:
            self.fail(str(exc), param, ctx)
        if seconds <= 0:
            self.fail("%r must be greater than zero" % value, param, ctx)
        return seconds


def parse_listen_address(ctx, param, value):
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit():
        raise click.BadParameter("expected [host]:port, got %r" % value)
    return host.strip("[]") or "0.0.0.0", int(port)


def check_command(ctx, param, value):
    if not value.split():
        raise click.BadParameter("must not be empty")
    return value


def check_path(ctx, param, value):
    if not value.startswith("/"):
        raise click.BadParameter("must start with '/'")
    return value


@click.command()
@click.option(
    "--passenger.command",
    "command",
    default="passenger-status --show=xml",
    show_default=True,
    callback=check_command,
    envvar="PASSENGER_EXPORTER_PASSENGER_COMMAND",
    help="Passenger command for querying passenger status.",
)
@click.option(
    "--passenger.command.timeout",
    "timeout",
    type=Interval(),
    default="500ms",
    show_default=True,
    envvar="PASSENGER_EXPORTER_PASSENGER_COMMAND_TIMEOUT",
    help="Timeout for passenger.command.",
)
@click.option(
    "--passenger.pid-file",
    "pid_file",
    default=None,
    envvar="PASSENGER_EXPORTER_PASSENGER_PID_FILE",
    help="Optional path to a file containing the passenger/nginx PID for additional metrics.",
)
@click.option(
    "--web.telemetry-path",
    "metrics_path",
    default="/metrics",
    show_default=True,
    callback=check_path,
    envvar="PASSENGER_EXPORTER_WEB_TELEMETRY_PATH",
    help="Path under which to expose metrics.",
)
@click.option(
    "--web.listen-address",
    "listen_address",
    default=":9106",
    show_default=True,
    callback=parse_listen_address,
    envvar="PASSENGER_EXPORTER_WEB_LISTEN_ADDRESS",
    help="Address to listen on for web interface and telemetry.",
)
@click.option(
    "--log.level",
    "log_level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    show_default=True,
    envvar="PASSENGER_EXPORTER_LOG_LEVEL",
    help="Only log messages with the given severity or above.",
)
@click.version_option(__version__, prog_name="passenger_exporter_nginx")
def main(command, timeout, pid_file, metrics_path, listen_address, log_level):
    """Export Phusion Passenger status as Prometheus metrics."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(levelname)s - [%(name)s] %(message)s",
    )

    collector = PassengerCollector(command, timeout)
    app = create_app(collector, metrics_path, pid_file)

    host, port = listen_address
    try:
        server = make_server(host, port, app, threaded=True)
    except OSError as exc:
        logger.error("failed to listen on %s:%d: %s", host, port, exc)
        raise SystemExit(1)

    logger.info("starting passenger_exporter_nginx v%s at %s:%d", __version__, host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("shutting down")
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
