import os
from functools import lru_cache
from pathlib import Path


ALLOWED_PAGE_SIZES = (10, 20, 50, 100)
DEFAULT_PAGE = 0
DEFAULT_PAGE_SIZE = 10
MIN_ADJUSTMENT_YEAR = 2000
MAX_ADJUSTMENT_YEAR = 2100


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        scheduler_enabled: bool,
        snapshot_hour: int,
        snapshot_minute: int,
        net_completed_adjustments: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.scheduler_enabled = scheduler_enabled
        self.snapshot_hour = snapshot_hour
        self.snapshot_minute = snapshot_minute
        self.net_completed_adjustments = net_completed_adjustments
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    scheduler_enabled = _env_flag("LEDGER_SCHEDULER_ENABLED", "true")
    snapshot_hour = int(os.getenv("LEDGER_SNAPSHOT_HOUR", "0"))
    snapshot_minute = int(os.getenv("LEDGER_SNAPSHOT_MINUTE", "0"))
    net_completed_adjustments = _env_flag("LEDGER_NET_COMPLETED_ADJUSTMENTS", "false")
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        scheduler_enabled=scheduler_enabled,
        snapshot_hour=snapshot_hour,
        snapshot_minute=snapshot_minute,
        net_completed_adjustments=net_completed_adjustments,
        log_level=log_level,
    )
