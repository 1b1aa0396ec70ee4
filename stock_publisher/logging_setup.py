"""
Logging configuration for the stock photo publisher.
"""

import logging
import os
import sys
from typing import Optional
from .config import AppConfig


def setup_logging(config: AppConfig, log_prefix: Optional[str] = None) -> None:
    """
    Configure logging based on settings.

    Args:
        config: Application configuration
        log_prefix: Optional prefix for the log file name
    """
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    if config.debug_mode:
        log_level = logging.DEBUG
    log_format = '%(asctime)s - %(threadName)s - %(levelname)s - %(message)s'

    log_file = config.log_file

    # Create a timestamp-based log file if prefix provided but no specific file
    if not log_file and log_prefix:
        import datetime
        timestamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
        log_file = f"{log_prefix}_{timestamp}.log"

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        logging.basicConfig(
            filename=log_file,
            level=log_level,
            format=log_format
        )

        # Also log to console if debug mode is enabled
        if config.debug_mode:
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(log_level)
            console.setFormatter(logging.Formatter(log_format))
            logging.getLogger('').addHandler(console)
    else:
        logging.basicConfig(
            level=log_level,
            format=log_format
        )

    # Set level for third-party loggers to reduce noise
    logging.getLogger('PIL').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    logging.info(f"Logging initialized. Caption provider: {config.caption.provider_type}")

    if config.debug_mode:
        logging.debug("Debug mode enabled")
        logging.debug(f"Python version: {sys.version}")
        logging.debug("Configuration summary:")
        logging.debug(f"  Completion model: {config.completion.model}")
        logging.debug(f"  Max attempts: {config.max_attempts}")
        logging.debug(f"  Transport retry: {config.transport_retry}")
        logging.debug(f"  Validation retry: {config.validation_retry}")
        logging.debug(f"  Max workers: {config.max_workers or 'one per record'}")
        logging.debug(f"  Step failure policy: {config.step_failure_policy}")
        logging.debug(f"  Missing description: {config.missing_description}")
        target = config.upload_target.target_type if config.upload_target else 'none'
        logging.debug(f"  Upload target: {target}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: Name for the logger

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
