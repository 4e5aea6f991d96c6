import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        developers: list[tuple[str, str]],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.developers = developers


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("COSTS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def parse_developers(raw: str) -> list[tuple[str, str]]:
    developers: list[tuple[str, str]] = []
    for chunk in raw.split(","):
        parts = chunk.strip().split(maxsplit=1)
        if not parts:
            continue
        first = parts[0]
        last = parts[1] if len(parts) > 1 else ""
        developers.append((first, last))
    return developers


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "costs.db"
    database_url = os.getenv("COSTS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("COSTS_TIMEZONE", "UTC")
    log_level = os.getenv("COSTS_LOG_LEVEL", "INFO").upper()
    developers = parse_developers(
        os.getenv("COSTS_DEVELOPERS", "Gil Yona,Rotem Molcho")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        developers=developers,
    )
