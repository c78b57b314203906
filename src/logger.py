r"""
Centralized logging configuration for the Package Tracker.

This module provides the logging setup shared by every scanning workstation:
- Structured JSON logging to a daily file (one JSON object per line)
- Automatic file rotation when a file exceeds MaxLogSizeMB
- Configurable log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- Automatic cleanup of old logs (retention policy)
- Human-readable console output for operators and developers
- Context-aware logging (operator, scan session, active input channel)

Scan traffic is logged at two levels: silent drops (rate limit, repeated
frames) at DEBUG so they never flood production logs, and every state
transition at INFO so the audit trail shows who qualified or delivered which
package and when.

Log file location: [Logging] LogDirectory in config.ini,
                   default ~/.package_tracker/logs
Log file format:   YYYY-MM-DD.log

Example log entry (JSON format):
    {"timestamp": "2025-11-05T14:30:45.123", "level": "INFO",
     "tool": "package_tracker", "operator": "Ana Lopez",
     "session_id": "2025-11-05_14-30-00", "channel": "PHYSICAL",
     "module": "lifecycle", "function": "qualify", "line": 142,
     "message": "Package 41234567890 QUALIFIED"}
"""

# Standard library imports
import logging  # Core logging framework
import json  # JSON formatting for structured logging
import os  # Home directory fallback
from datetime import datetime, timedelta  # Log rotation and cleanup
from pathlib import Path  # Modern path handling
from logging.handlers import RotatingFileHandler  # Automatic log rotation
from typing import Optional, Dict, Any  # Type hints
import configparser  # Reading config.ini settings
from contextvars import ContextVar  # Context storage for structured fields


# Context variables for structured logging
_operator: ContextVar[Optional[str]] = ContextVar('operator', default=None)
_session_id: ContextVar[Optional[str]] = ContextVar('session_id', default=None)
_channel: ContextVar[Optional[str]] = ContextVar('channel', default=None)

DEFAULT_LOG_DIR = Path(os.path.expanduser("~")) / ".package_tracker" / "logs"


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON with fields:
    - timestamp: ISO 8601 format with milliseconds
    - level: Log level name
    - tool: Always "package_tracker"
    - operator: Operator (encargado) of the current scan session, if set
    - session_id: Current scan session, if set
    - channel: Active input channel (CAMERA / PHYSICAL), if set
    - module, function, line: Origin of the record
    - message: Log message
    - exc_info: Exception information (if present)
    - extra: Extra structured data passed as ``extra={'extra_data': ...}``
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'tool': 'package_tracker',
            'operator': _operator.get(),
            'session_id': _session_id.get(),
            'channel': _channel.get(),
            'module': record.name,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['exc_info'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data['extra'] = record.extra_data

        return json.dumps(log_data, ensure_ascii=False)


class AppLogger:
    """
    Centralized application logger with file rotation and cleanup.

    Logging is configured only once, on the first ``get_logger`` call,
    regardless of how many modules import the logger.

    The logging system is configured from config.ini with these settings:
    - LogLevel: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - MaxLogSizeMB: Maximum size per log file before rotation
    - LogRetentionDays: How many days of logs to keep
    - LogDirectory: Where log files are written

    Attributes:
        _initialized: Whether logging has been configured (class-level)
        config_path: config.ini consulted on first setup (class-level)
    """

    _initialized: bool = False
    config_path: Path = Path('config.ini')

    @classmethod
    def get_logger(cls, name: str = 'PackageTracker') -> logging.Logger:
        """
        Get or create a logger, configuring logging on first use.

        Args:
            name: Logger name, typically the module name (__name__)

        Returns:
            Logger instance sharing the root handlers
        """
        if not cls._initialized:
            cls._setup_logging()
            cls._initialized = True

        return logging.getLogger(name)

    @classmethod
    def _setup_logging(cls):
        """
        Setup logging configuration from config.ini.

        Configures the log directory, level, JSON file handler with rotation,
        console handler, and removes logs older than the retention period.
        If the configured directory cannot be created, falls back to the
        default directory in the user's home.
        """
        config = cls._load_config()

        log_dir = Path(config.get('Logging', 'LogDirectory', fallback=str(DEFAULT_LOG_DIR))).expanduser()
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log_dir = DEFAULT_LOG_DIR
            log_dir.mkdir(parents=True, exist_ok=True)
            print(f"Warning: Could not create log directory. Using default: {log_dir}. Error: {e}")

        log_file = log_dir / f"{datetime.now():%Y-%m-%d}.log"

        log_level_str = config.get('Logging', 'LogLevel', fallback='INFO')
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)

        max_log_size = config.getint('Logging', 'MaxLogSizeMB', fallback=10) * 1024 * 1024

        console_formatter = logging.Formatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # JSON lines to file, rotated at max_log_size
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=30,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(StructuredJSONFormatter())

        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(console_formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

        retention_days = config.getint('Logging', 'LogRetentionDays', fallback=30)
        cls._cleanup_old_logs(log_dir, retention_days)

        logger = logging.getLogger('PackageTracker')
        logger.info("=" * 80)
        logger.info("Package Tracker Started")
        logger.info(f"Log Level: {log_level_str}")
        logger.info(f"Log File: {log_file}")
        logger.info("=" * 80)

    @classmethod
    def _load_config(cls) -> configparser.ConfigParser:
        """
        Load the [Logging] section from config.ini.

        Returns:
            ConfigParser object; empty if config.ini does not exist, in which
            case fallback defaults apply (INFO, 10MB, 30 days).
        """
        config = configparser.ConfigParser()
        if cls.config_path.exists():
            config.read(cls.config_path, encoding='utf-8')
        return config

    @staticmethod
    def _cleanup_old_logs(log_dir: Path, retention_days: int):
        """
        Delete log files older than the retention period.

        Args:
            log_dir: Directory containing log files
            retention_days: Number of days to keep logs; 0 or negative keeps
                            everything
        """
        if retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=retention_days)

        try:
            for log_file in log_dir.glob("*.log*"):
                file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)
                if file_mtime < cutoff_date:
                    log_file.unlink()
                    logging.getLogger('PackageTracker').debug(f"Deleted old log: {log_file.name}")

        except OSError as e:
            # Log cleanup never blocks startup
            logging.getLogger('PackageTracker').warning(f"Failed to cleanup old logs: {e}")


# Convenience functions
def get_logger(name: str = 'PackageTracker') -> logging.Logger:
    """
    Get application logger.

    Example:
        >>> from logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Scanner started")
    """
    return AppLogger.get_logger(name)


def set_operator_context(operator: Optional[str]) -> None:
    """
    Set the operator (encargado) included in subsequent log entries.

    Args:
        operator: Operator name, or None to clear
    """
    _operator.set(operator)


def set_session_context(session_id: Optional[str]) -> None:
    """
    Set the scan session ID included in subsequent log entries.

    Args:
        session_id: Session identifier (e.g., "2025-11-05_14-30-00") or None
    """
    _session_id.set(session_id)


def set_channel_context(channel: Optional[str]) -> None:
    """Set the active input channel included in subsequent log entries."""
    _channel.set(channel)


def clear_logging_context() -> None:
    """Clear all logging context (operator, session_id, channel)."""
    _operator.set(None)
    _session_id.set(None)
    _channel.set(None)
