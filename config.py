"""Runtime configuration for the separation service.

Values come from environment variables; a ``.env`` file at the repository
root is loaded first if it exists.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


DEFAULT_DB_PATH = Path(__file__).resolve().parent / "separation.db"
DEFAULT_AUDIT_DIR = Path(__file__).resolve().parent / "audit"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_codes(name: str, default: str) -> FrozenSet[str]:
    raw = os.getenv(name, default)
    return frozenset(code.strip() for code in raw.split(",") if code.strip())


@dataclass(frozen=True)
class Settings:
    """Service settings.

    Attributes:
        db_path: SQLite database holding separations, master data and counts
        batch_size: Rows per bulk insert statement
        max_reported_problems: Row problems kept in a change report
        melancia_material_codes: Materials accepted by the melancia override
        require_registered_materials: Skip sheet materials missing from the registry
        audit_dir: Directory for the JSON file audit backend
        log_level: Logging level name
        log_format: "human" or "json"
        temporal_endpoint: Temporal server address
        temporal_namespace: Temporal namespace
        temporal_api_key: Temporal Cloud API key (optional for local servers)
        temporal_task_queue: Task queue for separation workflows
    """
    db_path: Path = DEFAULT_DB_PATH
    batch_size: int = 100
    max_reported_problems: int = 10
    melancia_material_codes: FrozenSet[str] = field(default_factory=lambda: frozenset({"100195"}))
    require_registered_materials: bool = True
    audit_dir: Path = DEFAULT_AUDIT_DIR
    log_level: str = "INFO"
    log_format: str = "human"
    temporal_endpoint: str = "localhost:7233"
    temporal_namespace: str = "default"
    temporal_api_key: str = ""
    temporal_task_queue: str = "separation-default"


def load_settings() -> Settings:
    """Build settings from the current environment."""
    batch_size = _env_int("SEPARATION_BATCH_SIZE", 100)
    if batch_size < 1:
        raise ValueError("SEPARATION_BATCH_SIZE must be at least 1")

    return Settings(
        db_path=Path(os.getenv("SEPARATION_DB_PATH", str(DEFAULT_DB_PATH))),
        batch_size=batch_size,
        max_reported_problems=_env_int("SEPARATION_MAX_REPORTED_PROBLEMS", 10),
        melancia_material_codes=_env_codes("MELANCIA_MATERIAL_CODES", "100195"),
        require_registered_materials=_env_bool("SEPARATION_REQUIRE_REGISTERED_MATERIALS", True),
        audit_dir=Path(os.getenv("AUDIT_DIR", str(DEFAULT_AUDIT_DIR))),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("LOG_FORMAT", "human").lower(),
        temporal_endpoint=os.getenv("TEMPORAL_ENDPOINT", "localhost:7233"),
        temporal_namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
        temporal_api_key=os.getenv("TEMPORAL_API_KEY", ""),
        temporal_task_queue=os.getenv("TEMPORAL_TASK_QUEUE", "separation-default"),
    )


_settings: Settings = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
