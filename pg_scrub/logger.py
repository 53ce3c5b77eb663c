import logging
import re
import sys
from pathlib import Path
from typing import Optional

from concurrent_log_handler import ConcurrentRotatingFileHandler

LOGGER_NAME = 'pg_scrub'
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 10

# user[:password]@ part of postgres connection urls
URL_CREDENTIALS_RE = re.compile(r"(postgres(?:ql)?://)[^@/\s]+@")


def redact_credentials(message: str) -> str:
    return URL_CREDENTIALS_RE.sub(r"\1***@", message)


class CredentialsFilter(logging.Filter):
    """
    Connection urls reach the log without user and password
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_credentials(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class Logger:
    """
    Process wide 'pg_scrub' logger: stdout always, plus one rotating file per run
    """
    _instance = None
    _formatter: logging.Formatter
    _file_handler: Optional[ConcurrentRotatingFileHandler] = None

    logger = None

    def __new__(cls):
        if cls._instance is not None:
            return cls._instance

        cls._instance = super().__new__(cls)
        cls._instance.logger = logging.getLogger(LOGGER_NAME)
        cls._instance.logger.setLevel(logging.INFO)
        cls._instance.logger.addFilter(CredentialsFilter())

        cls._instance._formatter = logging.Formatter(
            datefmt="%Y-%m-%d %H:%M:%S",
            fmt="%(asctime)s,%(msecs)03d - %(levelname)8s - %(message)s",
        )

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(cls._instance._formatter)
        cls._instance.logger.addHandler(handler)

        return cls._instance

    def add_file_handler(self, log_dir: Path, log_file_name: str) -> Path:
        """
        Switches file output to the run's log directory, closing the previous run's file
        """
        self.close_file_handler()
        log_dir.mkdir(parents=True, exist_ok=True)

        log_path = log_dir / log_file_name
        self._file_handler = ConcurrentRotatingFileHandler(
            log_path,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUP_COUNT,
        )
        self._file_handler.setFormatter(self._formatter)
        self.logger.addHandler(self._file_handler)
        return log_path

    def close_file_handler(self):
        if self._file_handler is None:
            return

        self.logger.removeHandler(self._file_handler)
        self._file_handler.flush()
        self._file_handler.close()
        self._file_handler = None

    def set_log_level(self, log_level: int):
        self.logger.setLevel(log_level)


def get_logger():
    return Logger().logger


def logger_add_file_handler(log_dir: Path, log_file_name: str) -> Path:
    return Logger().add_file_handler(
        log_dir=log_dir,
        log_file_name=log_file_name,
    )


def logger_close_file_handler():
    Logger().close_file_handler()


def logger_set_log_level(log_level: int):
    Logger().set_log_level(log_level)
