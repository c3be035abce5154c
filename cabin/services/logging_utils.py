# services/logging_utils.py
"""
Process-wide logging for the client and the relay.

Both entry points call setup_logging() before importing anything else, so
every module can simply use ``logging.getLogger(__name__)``. Records go to the
console, a daily-rotated ``<component>.log`` and a size-rotated
``<component>-error.log``; key material and ICE credentials are masked before
any handler sees them.
"""
import logging
import logging.config
import os
import re
from pathlib import Path

# Third-party loggers that flood DEBUG output during ICE and DTLS setup.
NOISY_LOGGERS = {
    "aioice": "WARNING",
    "aiortc": "INFO",
    "websockets": "INFO",
}

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%d-%m-%Y %H:%M:%S"


class RedactingFilter(logging.Filter):
    """
    Masks handshake keys, salts and SDP credentials in log messages.
    """

    SENSITIVE_PATTERNS = (
        re.compile(r'(aes_key=)\S+'),
        re.compile(r'((?:client|server)_public_key=)\S+'),
        re.compile(r'(salt=)\S+'),
        re.compile(r'(a=ice-pwd:)\S+'),
        re.compile(r'(a=fingerprint:\S+ )\S+'),
    )

    def filter(self, record: logging.LogRecord) -> bool:
        text = record.getMessage()
        masked = text
        for pattern in self.SENSITIVE_PATTERNS:
            masked = pattern.sub(r"\1***", masked)
        if masked != text:
            # formatters must not re-apply the original args
            record.msg, record.args = masked, ()
        return True


def _file_handler(cls: str, path: Path, level: str, **rotation) -> dict:
    return {
        "class": f"logging.handlers.{cls}",
        "formatter": "default",
        "filters": ["redact"],
        "filename": str(path),
        "encoding": "utf-8",
        "level": level,
        **rotation,
    }


def setup_logging(component: str, level: str = None, logs_dir: str = None) -> None:
    """
    Configure logging for one process.

    Args:
        component (str): Process name ("client" or "relay"); names the log files.
        level (str, optional): Root level. Defaults to LOG_LEVEL or "INFO".
        logs_dir (str, optional): Directory for log files. Defaults to
            CABIN_LOGS_DIR or "logs"; created if missing.

    Raises:
        OSError: If the log directory cannot be created.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    directory = Path(logs_dir or os.getenv("CABIN_LOGS_DIR", "logs"))
    directory.mkdir(parents=True, exist_ok=True)

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "filters": ["redact"],
            "level": level,
        },
        "daily": _file_handler(
            "TimedRotatingFileHandler", directory / f"{component}.log", level,
            when="midnight", backupCount=14),
        "errors": _file_handler(
            "RotatingFileHandler", directory / f"{component}-error.log", "ERROR",
            maxBytes=10 * 1024 * 1024, backupCount=5),
    }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"redact": {"()": RedactingFilter}},
        "formatters": {"default": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT}},
        "handlers": handlers,
        "loggers": {name: {"level": noisy} for name, noisy in NOISY_LOGGERS.items()},
        "root": {"level": level, "handlers": list(handlers)},
    })
