# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Logging and metrics configuration"""

    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"
    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_NAME = os.environ.get("LOG_FILE_NAME", "crm_app.log")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    # Console and File Logging
    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    # Application Info
    APP_NAME = os.environ.get("APP_NAME", "CRM Client Importer")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class ImporterMonitoring:
    """Prometheus metric helpers for importer report endpoints."""

    RUN_REPORT_COUNTER = Counter(
        "importer_run_report_requests_total",
        "Total importer run report API requests.",
        labelnames=("status",),
    )
    RUN_REPORT_LATENCY = Histogram(
        "importer_run_report_request_seconds",
        "Latency histogram for importer run report API.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    )

    @classmethod
    def record_run_report(cls, *, duration_seconds: float, status: str):
        cls.RUN_REPORT_COUNTER.labels(status=status).inc()
        cls.RUN_REPORT_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))
