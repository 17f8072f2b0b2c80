"""
Prometheus scrape endpoint for the application.
"""

from __future__ import annotations

from flask import Flask, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

METRICS_VIEW_NAME = "prometheus_metrics"


def register_metrics_endpoint(app: Flask) -> bool:
    """
    Serve the default Prometheus registry at ``METRICS_ENDPOINT``.

    Nothing is registered unless ``MONITORING_ENABLED`` is set. Returns
    whether the endpoint is mounted.
    """
    if not app.config.get("MONITORING_ENABLED", False):
        return False
    if METRICS_VIEW_NAME in app.view_functions:
        return True

    endpoint = app.config.get("METRICS_ENDPOINT") or "/metrics"

    def prometheus_metrics():
        return Response(generate_latest(REGISTRY), content_type=CONTENT_TYPE_LATEST)

    app.add_url_rule(endpoint, endpoint=METRICS_VIEW_NAME, view_func=prometheus_metrics, methods=["GET"])
    app.logger.info("Prometheus metrics exposed", extra={"metrics_endpoint": endpoint})
    return True
