"""
Logging configuration for kb-rag.

One place configures the root logger for the API process, the ingestion
workers and the dead-letter sink. Console output is coloured (or JSON for log
shippers); file output rotates and keeps a separate error log so dead-lettered
documents and missing-record drops are easy to find.
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional
import json


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'        # Reset
    }

    def format(self, record):
        levelname = record.levelname
        color = self.COLORS.get(levelname, self.COLORS['RESET'])
        record.levelname = f"{color}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            # Other handlers share the record
            record.levelname = levelname


_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
    'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'taskName',
])


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Fields passed through `extra=`
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class LoggerConfig:
    """Centralized logger configuration."""

    def __init__(self, log_dir: Optional[str] = None):
        self.log_dir = Path(log_dir or os.getenv("LOG_DIR", "logs"))

        self.config = {
            'level': logging.INFO,
            'console': True,
            'file': False,
            'json_format': False,
            'max_file_size': 10 * 1024 * 1024,  # 10MB
            'backup_count': 5,
            'log_file': 'kbrag.log',
            'error_file': 'error.log'
        }

    def configure(self,
                  level: str = 'INFO',
                  console: bool = True,
                  file: bool = False,
                  json_format: bool = False,
                  log_file: Optional[str] = None,
                  error_file: Optional[str] = None,
                  max_file_size: int = 10 * 1024 * 1024,
                  backup_count: int = 5) -> None:
        """
        Configure the logging system.

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            console: Enable console logging
            file: Enable rotating file logging under the log directory
            json_format: Use JSON format for structured logging
            log_file: Custom log file name
            error_file: Custom error log file name
            max_file_size: Maximum file size before rotation
            backup_count: Number of backup files to keep
        """
        self.config.update({
            'level': getattr(logging, level.upper()),
            'console': console,
            'file': file,
            'json_format': json_format,
            'log_file': log_file or self.config['log_file'],
            'error_file': error_file or self.config['error_file'],
            'max_file_size': max_file_size,
            'backup_count': backup_count
        })

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.setLevel(self.config['level'])

        text_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

        if self.config['console']:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self.config['level'])
            if self.config['json_format']:
                console_handler.setFormatter(JSONFormatter())
            else:
                console_handler.setFormatter(ColoredFormatter(text_format, datefmt='%Y-%m-%d %H:%M:%S'))
            root_logger.addHandler(console_handler)

        if self.config['file']:
            self.log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / self.config['log_file'],
                maxBytes=self.config['max_file_size'],
                backupCount=self.config['backup_count']
            )
            file_handler.setLevel(self.config['level'])

            # Error log file (only ERROR and CRITICAL)
            error_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / self.config['error_file'],
                maxBytes=self.config['max_file_size'],
                backupCount=self.config['backup_count']
            )
            error_handler.setLevel(logging.ERROR)

            if self.config['json_format']:
                file_handler.setFormatter(JSONFormatter())
                error_handler.setFormatter(JSONFormatter())
            else:
                file_handler.setFormatter(logging.Formatter(text_format, datefmt='%Y-%m-%d %H:%M:%S'))
                error_handler.setFormatter(logging.Formatter(
                    text_format + '\n%(pathname)s:%(lineno)d',
                    datefmt='%Y-%m-%d %H:%M:%S'
                ))

            root_logger.addHandler(file_handler)
            root_logger.addHandler(error_handler)

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)


# Global logger configuration instance
logger_config = LoggerConfig()


def setup_logging(level: str = 'INFO',
                  console: bool = True,
                  file: bool = False,
                  json_format: bool = False,
                  **kwargs) -> None:
    """Setup logging configuration. See `LoggerConfig.configure`."""
    logger_config.configure(
        level=level,
        console=console,
        file=file,
        json_format=json_format,
        **kwargs
    )


def get_logger(name: str) -> logging.Logger:
    return logger_config.get_logger(name)


# Convenience functions for common logging patterns
def log_database_operation(logger: logging.Logger, operation: str, table: str,
                           record_id: str = None, **extra):
    """Log database operations."""
    message = f"DB {operation} on {table}"
    if record_id:
        message += f" (ID: {record_id})"
    logger.debug(message, extra=extra)


def log_kafka_message(logger: logging.Logger, action: str, topic: str,
                      message_id: str = None, **extra):
    """Log Kafka message operations."""
    message = f"Kafka {action} on topic {topic}"
    if message_id:
        message += f" (ID: {message_id})"
    logger.info(message, extra=extra)


def log_embedding_operation(logger: logging.Logger, operation: str,
                            subject: str, scope: str, **extra):
    """Log embedding operations."""
    logger.info(f"Embedding {operation} for {subject} (scope: {scope})", extra=extra)
