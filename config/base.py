# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None):
    """Parse an integer setting, falling back to ``default`` on bad input."""
    try:
        number = int(value) if value is not None else default
    except (TypeError, ValueError):
        number = default
    if minimum is not None and number < minimum:
        return default
    return number


def _coerce_country_code(value, default="7"):
    """Keep only digits of a country calling code (``+7`` -> ``7``)."""
    if value is None:
        return default
    digits = "".join(ch for ch in str(value) if ch.isdigit())
    if not digits or len(digits) > 3:
        return default
    return digits


class Config:
    # SECRET_KEY must be set via environment variable in production
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Importer configuration
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=False)
    IMPORTER_WORKER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")
    IMPORTER_UPLOAD_DIR = os.environ.get("IMPORTER_UPLOAD_DIR")
    IMPORTER_MAX_UPLOAD_MB = _coerce_int(os.environ.get("IMPORTER_MAX_UPLOAD_MB"), 25, minimum=1)
    IMPORTER_DEFAULT_COUNTRY_CODE = _coerce_country_code(os.environ.get("IMPORTER_DEFAULT_COUNTRY_CODE"))
    # Errors shown by the run report endpoint; the run itself stores all of them
    IMPORTER_REPORT_ERROR_LIMIT = _coerce_int(os.environ.get("IMPORTER_REPORT_ERROR_LIMIT"), 20, minimum=1)
    IMPORTER_PRESETS_PATH = os.environ.get("IMPORTER_PRESETS_PATH")


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes, including on Windows
    db_path = os.path.join(instance_path, "crm_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SESSION_COOKIE_SECURE = True
