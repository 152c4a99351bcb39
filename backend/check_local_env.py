"""Validate the local OmniTech backend environment.

Usage:
  set -a
  source backend/.env
  set +a
  python3 backend/check_local_env.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


DEPRECATED_MODEL = "gemini-2.5-flash-preview-09-2025"
ENV_PATH = Path(__file__).resolve().parent / ".env"
TRUE_VALUES = {"1", "true", "yes", "on"}


def load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if value.startswith(("'", '"')) and value.endswith(("'", '"')) and len(value) >= 2:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def check_file_path(name: str, errors: list[str], warnings: list[str]) -> None:
    value = os.getenv(name, "").strip()
    if not value:
        warnings.append(f"{name} is not set")
        return
    if value.startswith("{"):
        return
    if not Path(value).expanduser().exists():
        errors.append(f"{name} points to a missing file: {value}")


def _flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in TRUE_VALUES


def collect_problems() -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []

    for name in ("DB_USER", "DB_PASSWORD", "DB_NAME", "DB_HOST", "DB_PORT"):
        if not os.getenv(name, "").strip():
            warnings.append(f"{name} is missing; safety events will not be persisted")

    if os.getenv("OMNITECH_MODEL_ID", "").strip() == DEPRECATED_MODEL:
        errors.append("OMNITECH_MODEL_ID uses the deprecated preview model")

    if _flag("OMNITECH_OFFLINE_MODE"):
        warnings.append("OMNITECH_OFFLINE_MODE is on; every analysis will use simulated results")
    elif _flag("OMNITECH_USE_VERTEX"):
        if not (os.getenv("OMNITECH_PROJECT_ID", "").strip() or os.getenv("GOOGLE_CLOUD_PROJECT", "").strip()):
            errors.append("OMNITECH_USE_VERTEX is on but no OMNITECH_PROJECT_ID or GOOGLE_CLOUD_PROJECT is set")
        check_file_path("GOOGLE_APPLICATION_CREDENTIALS", errors, warnings)
        if not os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "").strip():
            warnings.append(
                "Vertex AI will rely on gcloud ADC. Run: gcloud auth application-default login"
            )
    elif not os.getenv("OMNITECH_API_KEY", "").strip():
        warnings.append("OMNITECH_API_KEY is not set; the backend will run in simulated mode")

    if os.getenv("CLOUDSQL_INSTANCE_CONNECTION_NAME", "").strip():
        warnings.append(
            "CLOUDSQL_INSTANCE_CONNECTION_NAME is set. For local TCP testing, leave it blank and use DB_HOST/DB_PORT."
        )

    check_file_path("FIREBASE_SERVICE_ACCOUNT_JSON", errors, warnings)
    if not os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON", "").strip():
        warnings.append(
            "Firebase Admin will fall back to Application Default Credentials if available."
        )
    return errors, warnings


def main() -> int:
    load_env_file(ENV_PATH)

    py_version = sys.version_info
    if py_version < (3, 10):
        print(
            "Unsupported Python version: "
            f"{py_version.major}.{py_version.minor}. "
            "Use Python 3.10 or newer for this repo."
        )
        return 1

    errors, warnings = collect_problems()

    print(f"Loaded env file: {ENV_PATH}")
    if errors:
        print("\nErrors:")
        for item in errors:
            print(f"  - {item}")
    if warnings:
        print("\nWarnings:")
        for item in warnings:
            print(f"  - {item}")

    if errors:
        print("\nLocal environment is not ready.")
        return 1

    print("\nLocal environment looks ready.")
    print("Next:")
    print("  1. cd backend")
    print("  2. uvicorn omnitech.main:app --reload")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
