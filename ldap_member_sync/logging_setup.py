"""
Logging setup and configuration for LDAP Member Sync.

This module configures file logging with daily rotation and retention, optional
console output, scrubbing of credentials from log messages, and a separate
audit logger for directory write operations.
"""

import os
import re
import glob
import logging
import logging.handlers
from datetime import datetime, timedelta
from typing import Dict, Any

LOG_FILE_NAME = 'member_sync.log'


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub passwords and other secrets from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'new_password', 'unicodePwd', 'userPassword',
        'secret', 'token', 'credential', 'pwd'
    ]

    _ASSIGNMENT_PATTERNS = [
        re.compile(rf'({keyword}\s*[=:]\s*)[^\s,}}\]]+', re.IGNORECASE)
        for keyword in SENSITIVE_KEYWORDS
    ]
    _JSON_PATTERNS = [
        re.compile(rf'(["\']{keyword}["\']\s*:\s*["\'])[^"\']*(["\'])', re.IGNORECASE)
        for keyword in SENSITIVE_KEYWORDS
    ]

    def filter(self, record):
        """Replace secret values in the log message with ****."""
        if hasattr(record, 'msg'):
            msg = str(record.msg)

            # Quoted dict/JSON values first so the quotes survive
            for pattern in self._JSON_PATTERNS:
                msg = pattern.sub(r'\1****\2', msg)

            for pattern in self._ASSIGNMENT_PATTERNS:
                msg = pattern.sub(r'\1****', msg)

            record.msg = msg

        return True


class LoggingManager:
    """
    Manages logging configuration for LDAP Member Sync.

    Provides file-based logging with rotation, retention policies, and
    container-friendly console output.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging configuration dictionary
        """
        if self.configured:
            return

        logging_config = config if config else {}

        log_level = logging_config.get('level', 'INFO').upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = logging_config.get('console_level', 'WARNING').upper()

        self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level, logging.INFO))
        root_logger.handlers.clear()

        detailed_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%H:%M:%S'
        )

        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler(rotation)
        file_handler.setLevel(getattr(logging, log_level, logging.INFO))
        file_handler.setFormatter(detailed_formatter)
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, console_level, logging.WARNING))
            console_handler.setFormatter(console_formatter)
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        self._cleanup_old_logs()

        self.configured = True

        logger = logging.getLogger(__name__)
        logger.info(f"Logging configured: level={log_level}, dir={self.log_dir}, "
                    f"retention={self.retention_days} days, console={console_enabled}")

    def _ensure_log_directory(self) -> None:
        """Ensure the log directory exists, falling back to the working directory."""
        if self.log_dir and not os.path.exists(self.log_dir):
            try:
                os.makedirs(self.log_dir, exist_ok=True)
            except OSError as e:
                print(f"Warning: Could not create log directory {self.log_dir}: {e}")
                self.log_dir = '.'

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        """
        Create the file handler for the given rotation setting.

        Args:
            rotation: 'daily', 'midnight' or 'none'
        """
        log_file = os.path.join(self.log_dir, LOG_FILE_NAME)

        if rotation.lower() in ['daily', 'midnight']:
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(log_file, encoding='utf-8')

        return handler

    def _cleanup_old_logs(self) -> None:
        """Remove rotated log files older than the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)
        for log_file in glob.glob(os.path.join(self.log_dir, LOG_FILE_NAME + '.*')):
            try:
                file_time = datetime.fromtimestamp(os.path.getmtime(log_file))
                if file_time < cutoff_date:
                    os.remove(log_file)
            except OSError as e:
                print(f"Warning: Could not remove old log file {log_file}: {e}")

    def reset(self) -> None:
        """Forget the current configuration so setup_logging can run again."""
        self.configured = False


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


class SecurityAuditLogger:
    """Audit trail for directory writes and login refreshes."""

    def __init__(self):
        self.logger = logging.getLogger('security')

    def log_directory_operation(self, operation: str, username: str, success: bool):
        """Log a write to the directory (create, delete, set_password)."""
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"Directory operation {status}: {operation} user={username}")

    def log_login_sync(self, username: str, success: bool):
        """Log the directory refresh that follows a login."""
        status = "SUCCESS" if success else "FAILURE"
        level = logging.INFO if success else logging.WARNING
        self.logger.log(level, f"Login refresh {status}: user={username}")

    def log_configuration_access(self, config_file: str):
        """Log configuration file access."""
        self.logger.info(f"Configuration loaded: {config_file}")


# Global security logger instance
security_logger = SecurityAuditLogger()
