import datetime
import logging
import re
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import Settings


LOGGER_NAME = "yuanbao_proxy"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_FILE_NAME = "app.log"
LOG_BACKUP_DAYS = 7

_ROTATED_DAY = re.compile(r"\d{4}-\d{2}-\d{2}")

_LOGGING_CONFIGURED = False


class LocalTimezoneFormatter(logging.Formatter):
    """
    Formatter rendering `asctime` in LOG_TIMEZONE (ISO 8601, milliseconds).
    Unknown zone names fall back to the host's local zone.
    """

    def __init__(self, *args, timezone_name: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._tzinfo = self._lookup_zone(timezone_name)

    @staticmethod
    def _lookup_zone(timezone_name: Optional[str]) -> datetime.tzinfo:
        if timezone_name:
            try:
                return ZoneInfo(timezone_name)
            except (ZoneInfoNotFoundError, ValueError):
                pass
        local = datetime.datetime.now().astimezone().tzinfo
        return local or datetime.timezone.utc

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        stamp = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        return stamp.strftime(datefmt) if datefmt else stamp.isoformat(timespec="milliseconds")


class DailyFileHandler(TimedRotatingFileHandler):
    """
    Midnight-rotating handler: today's records go to logs/app.log and
    earlier days are kept as logs/app-YYYY-MM-DD.log.
    """

    def rotation_filename(self, default_name: str) -> str:  # type: ignore[override]
        # default_name is "<base>.YYYY-MM-DD" because suffix is "%Y-%m-%d".
        base = Path(self.baseFilename)
        day = default_name.rsplit(".", 1)[-1]
        return str(base.with_name(f"{base.stem}-{day}{base.suffix}"))

    def getFilesToDelete(self) -> list[str]:  # type: ignore[override]
        # Rotated files are "<stem>-<date><suffix>"; the newest backupCount stay.
        base = Path(self.baseFilename)
        prefix = f"{base.stem}-"
        rotated = []
        for path in base.parent.glob(f"{prefix}*{base.suffix}"):
            day = path.name[len(prefix) : len(path.name) - len(base.suffix)]
            if _ROTATED_DAY.fullmatch(day):
                rotated.append(str(path))
        rotated.sort()
        if len(rotated) <= self.backupCount:
            return []
        return rotated[: len(rotated) - self.backupCount]


def _resolve_level(level_name: object) -> int:
    if not isinstance(level_name, str):
        return logging.INFO
    level = logging.getLevelName(level_name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _build_file_handler(log_dir: Path, formatter: logging.Formatter) -> DailyFileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = DailyFileHandler(
        log_dir / LOG_FILE_NAME,
        when="midnight",
        backupCount=LOG_BACKUP_DAYS,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    handler.setFormatter(formatter)
    # Only proxy records go to the file; uvicorn access logs stay on the console.
    handler.addFilter(lambda record: record.name.startswith(LOGGER_NAME))
    return handler


def _has_console_handler(target: logging.Logger) -> bool:
    return any(
        isinstance(handler, logging.StreamHandler)
        and not isinstance(handler, logging.FileHandler)
        for handler in target.handlers
    )


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure logging for the proxy process; later calls are no-ops.

    Records of the "yuanbao_proxy" logger are written to a daily file under
    LOG_DIR, and a console handler on the root logger shows them together
    with uvicorn's own records (uvicorn runs with log_config=None).
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    level = _resolve_level(getattr(settings, "log_level", "INFO"))
    formatter = LocalTimezoneFormatter(
        LOG_FORMAT,
        timezone_name=getattr(settings, "log_timezone", None),
    )

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(level)
    app_logger.propagate = True
    app_logger.addHandler(
        _build_file_handler(Path(getattr(settings, "log_dir", "logs")), formatter)
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if not _has_console_handler(root_logger):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root_logger.addHandler(console)

    _LOGGING_CONFIGURED = True


logger = logging.getLogger(LOGGER_NAME)


__all__ = ["LOGGER_NAME", "DailyFileHandler", "LocalTimezoneFormatter", "logger", "setup_logging"]
