"""Prometheus exporter for Phusion Passenger running behind nginx."""

__version__ = "0.1.0"

NAMESPACE = "passenger_nginx"
