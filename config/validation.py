# config/validation.py

"""
Environment variable validation for the CRM importer.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    if os.environ.get("IMPORTER_WORKER_ENABLED", "false").lower() in {"1", "true", "yes", "on"}:
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when IMPORTER_WORKER_ENABLED=true")

    presets_path = os.environ.get("IMPORTER_PRESETS_PATH")
    if presets_path and not os.path.exists(presets_path):
        errors.append(f"IMPORTER_PRESETS_PATH points to a missing file: {presets_path}")

    country_code = os.environ.get("IMPORTER_DEFAULT_COUNTRY_CODE")
    if country_code is not None and not country_code.lstrip("+").isdigit():
        errors.append("IMPORTER_DEFAULT_COUNTRY_CODE must be a numeric calling code (e.g. 7 or +7)")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
