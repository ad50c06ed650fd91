import datetime
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings


LOGGER_NAME = "tutorgate"
LOG_FILE_NAME = "gateway.log"
LOG_BACKUP_DAYS = 7
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

_LOGGING_CONFIGURED = False


def resolve_log_timezone(timezone_name: str | None) -> datetime.tzinfo:
    """LOG_TIMEZONE when it names a known zone, else the host's local zone."""
    if timezone_name:
        try:
            return ZoneInfo(timezone_name)
        except ZoneInfoNotFoundError:
            pass
    return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc


class LocalTimezoneFormatter(logging.Formatter):
    """ISO-8601 timestamps with millisecond precision in the LOG_TIMEZONE zone."""

    def __init__(self, fmt: str = LOG_FORMAT, *, timezone_name: str | None = None) -> None:
        super().__init__(fmt)
        self.tzinfo = resolve_log_timezone(timezone_name)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = datetime.datetime.fromtimestamp(record.created, tz=self.tzinfo)
        return stamp.strftime(datefmt) if datefmt else stamp.isoformat(timespec="milliseconds")


def build_file_handler(log_dir: Path, formatter: logging.Formatter) -> TimedRotatingFileHandler:
    """
    <log_dir>/gateway.log, rolled over at midnight into gateway.log.YYYY-MM-DD;
    only gateway records are written and a week of files is kept.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        when="midnight",
        backupCount=LOG_BACKUP_DAYS,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    handler.addFilter(logging.Filter(LOGGER_NAME))
    return handler


def setup_logging() -> None:
    """
    Configure application logging once per process.

    Gateway records go to the rotating file under LOG_DIR; everything,
    uvicorn included, is echoed to the console via the root logger.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)
    formatter = LocalTimezoneFormatter(timezone_name=settings.log_timezone)

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(level)
    app_logger.addHandler(build_file_handler(Path(settings.log_dir), formatter))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root_logger.addHandler(console)

    _LOGGING_CONFIGURED = True


logger = logging.getLogger(LOGGER_NAME)
