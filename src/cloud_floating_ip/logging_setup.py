import os
import json
import logging
from logging.handlers import RotatingFileHandler


class StructuredFormatter(logging.Formatter):
    """
    Custom formatter that outputs JSON for structured logging.
    """
    def format(self, record):
        # Check if this is a structured log entry
        if hasattr(record, 'json_fields') and record.json_fields.get('structured_event'):
            return json.dumps(record.json_fields, separators=(',', ':'))
        else:
            return super().format(record)


class StructuredFilter(logging.Filter):
    """
    Filter that only allows structured log events to pass through.
    """
    def filter(self, record):
        return (hasattr(record, 'json_fields') and
                record.json_fields.get('structured_event', False))


class NonStructuredFilter(logging.Filter):
    """
    Filter that only allows non-structured log events to pass through.
    """
    def filter(self, record):
        return not (hasattr(record, 'json_fields') and
                    record.json_fields.get('structured_event', False))


def setup_logger(name: str, level: str, log_file: str | None = None, max_bytes: int = 10 * 1024 * 1024,
                 backup_count: int = 5, quiet: bool = False, enable_structured_console: bool = False):
    """
    Logger setup for one command-line invocation.

    Console output goes to stderr so that stdout only carries command results
    (the "owner"/"standby" status verdict).

    Args:
        name (str): Logger name, shared by all modules through LOGGER_NAME.
        level (str): Log level name for the logger and file handler.
        log_file (str): Optional rotating log file path.
        max_bytes (int): Log file size before rotation.
        backup_count (int): Number of rotated files to keep.
        quiet (bool): Raise the console threshold to WARNING (info suppressed).
        enable_structured_console (bool): Console shows structured events as
            JSON instead of human-readable messages.
    """
    logger_name = name or os.getenv("LOGGER_NAME", "CLOUD_FLOATING_IP")
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # A CLI process may call this more than once (tests, embedding callers)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    regular_formatter = logging.Formatter('%(asctime)s %(levelname)s [%(name)s] %(message)s')

    console_level = logging.WARNING if quiet else getattr(logging, level.upper(), logging.INFO)

    ch = logging.StreamHandler()
    ch.setLevel(console_level)
    if enable_structured_console:
        ch.setFormatter(StructuredFormatter())
        ch.addFilter(StructuredFilter())
    else:
        ch.setFormatter(regular_formatter)
        ch.addFilter(NonStructuredFilter())
    logger.addHandler(ch)

    # File logging keeps human-readable messages regardless of quiet mode
    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            fh = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
            fh.setLevel(getattr(logging, level.upper(), logging.INFO))
            fh.setFormatter(regular_formatter)
            fh.addFilter(NonStructuredFilter())
            logger.addHandler(fh)
            logger.debug(f"File logging enabled: {log_file}")
        except OSError as e:
            logger.warning(f"Could not setup file logging at {log_file}: {e}")

    logger.propagate = False
    return logger
