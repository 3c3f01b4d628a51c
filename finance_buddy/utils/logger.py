"""
Logging System

Rotating UTF-8 file logs plus a quiet console handler for the RAG core.
Rebuild summaries go to their own log file so index refreshes can be
audited separately from the module logs.
"""

import os
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from datetime import datetime
from typing import Dict, Iterable

ROOT_LOGGER = 'finance_buddy'


class SafeFormatter(logging.Formatter):
    """Formatter that handles unicode errors gracefully"""

    def format(self, record):
        try:
            return super().format(record)
        except UnicodeEncodeError:
            # Fallback: ASCII-safe version
            record.msg = str(record.msg).encode('ascii', 'replace').decode('ascii')
            return super().format(record)


class LoggerManager:
    """Manages all loggers with Unicode support"""

    _instance = None
    _loggers: Dict[str, logging.Logger] = {}
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(LoggerManager, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._setup_logging()
            self._initialized = True

    def _setup_logging(self):
        """Setup logging system"""
        self.log_dir = Path(os.getenv('FINANCE_BUDDY_LOG_DIR', 'logs'))
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_logger(
            ROOT_LOGGER,
            str(self.log_dir / 'finance_buddy.log'),
            os.getenv('FINANCE_BUDDY_LOG_LEVEL', 'INFO'),
            10 * 1024 * 1024,  # 10MB
            5
        )

        rebuild_log = self.log_dir / f"rebuilds_{datetime.now().strftime('%Y%m%d')}.log"
        self._setup_rebuild_logger(str(rebuild_log))

    def _setup_logger(
        self,
        name: str,
        log_file: str,
        level: str,
        max_size: int,
        backup_count: int
    ):
        """Setup individual logger with UTF-8 support"""
        logger = logging.getLogger(name)
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        logger.handlers = []
        logger.propagate = False

        formatter = SafeFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.setLevel(logging.WARNING)
        logger.addHandler(console_handler)

        try:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=max_size,
                backupCount=backup_count,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"File logging disabled ({e})")

        self._loggers[name] = logger

    def _setup_rebuild_logger(self, log_file: str):
        """Setup dedicated index-rebuild logger"""
        logger = logging.getLogger(f'{ROOT_LOGGER}.rebuilds')
        logger.setLevel(logging.INFO)
        logger.handlers = []
        logger.propagate = False

        formatter = SafeFormatter(
            '%(asctime)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        try:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=30,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            self._loggers[ROOT_LOGGER].warning(f"Rebuild logging disabled ({e})")

        self._loggers['rebuilds'] = logger

    def get_logger(self, name: str = ROOT_LOGGER) -> logging.Logger:
        """Get logger instance"""
        full_name = f'{ROOT_LOGGER}.{name}' if name != ROOT_LOGGER else name

        if full_name not in self._loggers:
            # Children propagate to the root logger's handlers
            logger = logging.getLogger(full_name)
            logger.setLevel(logging.DEBUG)
            self._loggers[full_name] = logger

        return self._loggers[full_name]

    def log_rebuild(self, user_id: str, lines: Iterable[str]):
        """
        Write an index rebuild summary to the dedicated rebuild log.

        Args:
            user_id: Tenant whose index was rebuilt
            lines: Human-readable report lines
        """
        rebuild_logger = self._loggers['rebuilds']
        rebuild_logger.info(f"REBUILD user={user_id}")
        for line in lines:
            rebuild_logger.info(f"  {line}")
        rebuild_logger.info("=" * 80)

        for handler in rebuild_logger.handlers:
            handler.flush()


# Global instance
_logger_manager = None


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get logger for a module.

    Args:
        name: Module name (e.g., 'rag.chunker', 'embeddings.ollama')

    Returns:
        Logger instance
    """
    global _logger_manager
    if _logger_manager is None:
        _logger_manager = LoggerManager()
    return _logger_manager.get_logger(name)


def log_rebuild_report(user_id: str, lines: Iterable[str]):
    """Log a rebuild report - convenience function."""
    global _logger_manager
    if _logger_manager is None:
        _logger_manager = LoggerManager()
    _logger_manager.log_rebuild(user_id, lines)


def set_log_level(level: str):
    """Apply a configured level (e.g. 'DEBUG') to the package root logger"""
    get_logger().setLevel(getattr(logging, str(level).upper(), logging.INFO))
