from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    data_dir: str
    sheet_window_rows: int
    progress_interval: int
    generate_log_interval: int
    convert_log_interval: int
    load_batch_size: int
    load_log_interval: int
    progress_max_entries: int
    progress_retention_seconds: float
    progress_sweep_minutes: int
    database_echo: bool = False


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "studentpipe"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./students.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        data_dir=os.getenv("DATA_DIR", "./data"),
        sheet_window_rows=int(os.getenv("SHEET_WINDOW_ROWS", "1000")),
        progress_interval=int(os.getenv("PROGRESS_INTERVAL", "1000")),
        generate_log_interval=int(os.getenv("GENERATE_LOG_INTERVAL", "50000")),
        convert_log_interval=int(os.getenv("CONVERT_LOG_INTERVAL", "10000")),
        load_batch_size=int(os.getenv("LOAD_BATCH_SIZE", "5000")),
        load_log_interval=int(os.getenv("LOAD_LOG_INTERVAL", "10000")),
        progress_max_entries=int(os.getenv("PROGRESS_MAX_ENTRIES", "1000")),
        progress_retention_seconds=float(os.getenv("PROGRESS_RETENTION_SECONDS", "3600")),
        progress_sweep_minutes=int(os.getenv("PROGRESS_SWEEP_MINUTES", "5")),
        database_echo=os.getenv("DATABASE_ECHO", "false").lower() in {"1", "true", "yes"},
    )
