"""Project-level configuration and path helpers."""

import os
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "agent_sync.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"
DEFAULT_OUTPUT_PATH = DATA_DIR / "agents.json"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]

POSTGRES_SCHEMES = ("postgres://", "postgresql://")


def is_postgres_url(value: PathLike | None) -> bool:
    """Return True when DATABASE_URL points at a PostgreSQL server."""
    return bool(value) and str(value).startswith(POSTGRES_SCHEMES)


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path (or pass a DSN through)."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    if is_postgres_url(env_value):
        return str(env_value)

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def resolve_output_path(env_value: PathLike | None = None) -> Path:
    """Resolve the published agents.json location."""
    if not env_value:
        return DEFAULT_OUTPUT_PATH
    candidate = Path(env_value).expanduser()
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def parse_signal(name: str) -> signal.Signals:
    """Map 'SIGUSR1', 'usr1' or '10' to a signal number."""
    value = name.strip().upper()
    if value.isdigit():
        return signal.Signals(int(value))
    if not value.startswith("SIG"):
        value = f"SIG{value}"
    return signal.Signals[value]


def parse_origins(value: str | None) -> list[str]:
    """Split a comma-separated origin list, dropping blanks."""
    if not value:
        return []
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass
class Settings:
    """Runtime settings, normally read from the environment."""

    database_url: PathLike = DEFAULT_DB_PATH
    output_path: Path = DEFAULT_OUTPUT_PATH
    reload_pid_file: Path | None = None
    reload_signal: str = "SIGUSR1"

    # Reconciler timing (seconds)
    keepalive_interval: float = 30.0
    keepalive_timeout: float = 5.0
    backoff_initial: float = 1.0
    backoff_max: float = 60.0

    api_host: str = "localhost"
    api_port: int = 8000
    # Browser origins allowed to call the API; empty disables CORS
    cors_origins: list[str] = field(default_factory=list)
    log_level: str = "INFO"

    @classmethod
    def from_environment(cls) -> "Settings":
        """Create settings from environment variables."""
        pid_file = os.getenv("AGENT_SYNC_RELOAD_PID_FILE")
        return cls(
            database_url=resolve_db_path(os.getenv("DATABASE_URL")),
            output_path=resolve_output_path(os.getenv("AGENT_SYNC_OUTPUT_PATH")),
            reload_pid_file=Path(pid_file).expanduser() if pid_file else None,
            reload_signal=os.getenv("AGENT_SYNC_RELOAD_SIGNAL", "SIGUSR1"),
            keepalive_interval=float(
                os.getenv("AGENT_SYNC_KEEPALIVE_INTERVAL", "30.0")
            ),
            keepalive_timeout=float(os.getenv("AGENT_SYNC_KEEPALIVE_TIMEOUT", "5.0")),
            backoff_initial=float(os.getenv("AGENT_SYNC_BACKOFF_INITIAL", "1.0")),
            backoff_max=float(os.getenv("AGENT_SYNC_BACKOFF_MAX", "60.0")),
            api_host=os.getenv("API_HOST", "localhost"),
            api_port=int(os.getenv("API_PORT", "8000")),
            cors_origins=parse_origins(os.getenv("API_CORS_ORIGINS")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
