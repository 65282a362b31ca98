"""
Logging Setup for capsize
Initializes logging configuration from YAML file
"""

import os
import logging
import logging.config
import yaml
from colorama import init, Fore, Style
from typing import Optional
import glob

# Initialize colorama for Windows compatibility
init(autoreset=True)

ROOT_LOGGER_NAME = 'capsize'


class ColoredFormatter(logging.Formatter):
    """Custom formatter to add colors to console output"""

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA + Style.BRIGHT,
    }

    def format(self, record):
        # Color a copy of the level name so file handlers keep plain text
        original = record.levelname
        if original in self.COLORS:
            record.levelname = f"{self.COLORS[original]}{original}{Style.RESET_ALL}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def get_package_base_dir() -> str:
    """Directory of the installed capsize package (holds packaged config)."""
    return os.path.abspath(os.path.dirname(__file__))


def _default_logging_config(logs_dir: str) -> dict:
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'detailed': {
                'format': '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S'
            },
            'console': {
                'format': '%(asctime)s | %(levelname)-8s | %(message)s',
                'datefmt': '%H:%M:%S'
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'level': 'WARNING',
                'formatter': 'console',
                'stream': 'ext://sys.stderr'
            },
            'file': {
                'class': 'logging.FileHandler',
                'level': 'DEBUG',
                'formatter': 'detailed',
                'filename': os.path.join(logs_dir, 'capsize.log'),
                'mode': 'a'
            },
            'error_file': {
                'class': 'logging.FileHandler',
                'level': 'ERROR',
                'formatter': 'detailed',
                'filename': os.path.join(logs_dir, 'errors.log'),
                'mode': 'a'
            }
        },
        'root': {
            'level': 'DEBUG',
            'handlers': ['console', 'file', 'error_file']
        }
    }


def _cleanup_old_logs(logs_dir: str = "logs", keep_count: int = 5):
    """
    Clean up old rotated log files, keeping only the last N executions

    Args:
        logs_dir: Directory containing log files
        keep_count: Number of most recent log files to keep
    """
    run_logs = glob.glob(os.path.join(logs_dir, "capsize_*.log"))
    if len(run_logs) <= keep_count:
        return

    # Newest first
    run_logs.sort(key=os.path.getmtime, reverse=True)
    for old_log in run_logs[keep_count:]:
        try:
            os.remove(old_log)
        except OSError as e:
            logging.getLogger(ROOT_LOGGER_NAME).debug(f"Could not remove old log {old_log}: {e}")


def _rotate_previous_run(logs_dir: str) -> None:
    """Move the previous run's log aside so each run starts with a clean file."""
    current = os.path.join(logs_dir, 'capsize.log')
    if os.path.exists(current) and os.path.getsize(current) > 0:
        stamp = int(os.path.getmtime(current))
        try:
            os.replace(current, os.path.join(logs_dir, f'capsize_{stamp}.log'))
        except OSError as e:
            logging.getLogger(ROOT_LOGGER_NAME).debug(f"Could not rotate {current}: {e}")
    error_log = os.path.join(logs_dir, 'errors.log')
    try:
        open(error_log, 'w', encoding='utf-8').close()
    except OSError as e:
        logging.getLogger(ROOT_LOGGER_NAME).debug(f"Could not truncate {error_log}: {e}")


def setup_logging(config_path: Optional[str] = None, log_level: Optional[str] = None,
                  logs_dir: str = "logs") -> logging.Logger:
    """
    Setup logging configuration from YAML file

    Args:
        config_path: Path to logging configuration file (defaults to packaged logging.yaml)
        log_level: Override console/root level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logs_dir: Directory receiving log files
    """
    os.makedirs(logs_dir, exist_ok=True)

    if config_path is None:
        config_path = os.path.join(get_package_base_dir(), 'config', 'logging.yaml')

    logging_config = _default_logging_config(logs_dir)
    if os.path.exists(config_path):
        with open(config_path, 'r', encoding='utf-8') as file:
            config_data = yaml.safe_load(file) or {}
        logging_config = config_data.get('logging', logging_config)

    # Re-root file handlers into logs_dir
    for handler in logging_config.get('handlers', {}).values():
        filename = handler.get('filename')
        if filename:
            handler['filename'] = os.path.join(logs_dir, os.path.basename(filename))

    _rotate_previous_run(logs_dir)
    _cleanup_old_logs(logs_dir, keep_count=5)

    if log_level:
        log_level = log_level.upper()
        if 'root' in logging_config:
            logging_config['root']['level'] = log_level
        console = logging_config.get('handlers', {}).get('console')
        if console:
            console['level'] = log_level

    try:
        logging.config.dictConfig(logging_config)
    except (ValueError, TypeError, AttributeError, ImportError) as config_error:
        # dictConfig failed, fall back to basic configuration
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%H:%M:%S'
        )
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        logger.error(f"Failed to apply logging configuration: {config_error}")
        return logger

    # Apply colored formatter to console handlers
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler) and getattr(handler.stream, 'name', '') in ('<stdout>', '<stderr>'):
            handler.setFormatter(ColoredFormatter(
                fmt='%(asctime)s | %(levelname)-8s | %(message)s',
                datefmt='%H:%M:%S'
            ))

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.info("Logging initialized")
    return logger


def get_logger(name: str = None) -> logging.Logger:
    """Get a logger instance"""
    if name:
        if name.startswith(f'{ROOT_LOGGER_NAME}.') or name == ROOT_LOGGER_NAME:
            return logging.getLogger(name)
        return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')
    return logging.getLogger(ROOT_LOGGER_NAME)
