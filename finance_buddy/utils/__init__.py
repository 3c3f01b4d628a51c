"""Utility functions"""
from finance_buddy.utils.logger import get_logger, log_rebuild_report, set_log_level
from finance_buddy.utils.config import ConfigManager, get_config_manager, load_global_config

__all__ = [
    'get_logger',
    'log_rebuild_report',
    'set_log_level',
    'ConfigManager',
    'get_config_manager',
    'load_global_config'
]
