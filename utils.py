"""
Utility functions for logging and file information.
"""

import logging
from pathlib import Path
from datetime import datetime
import sys
from typing import Optional


class PrefixFormatter(logging.Formatter):
    """Console formatter with a stable, greppable severity prefix."""

    LEVEL_PREFIXES = {
        'WARNING': 'WARN',
        'CRITICAL': 'ERROR',
    }

    def format(self, record):
        prefix = self.LEVEL_PREFIXES.get(record.levelname, record.levelname)
        return f"[{prefix}] {record.getMessage()}"


def setup_logging(verbose: bool = True, stream=None):
    """
    Setup console logging.

    Args:
        verbose: If True, set DEBUG level; otherwise INFO
        stream: Console stream (default: stderr, the error channel)
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    root_logger.handlers = []

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(PrefixFormatter())
    root_logger.addHandler(console_handler)


def attach_log_file(logs_dir: Path, name: str = 'vgl') -> logging.Handler:
    """
    Add a detailed file handler to the root logger.

    Args:
        logs_dir: Directory to save log files
        name: Log file prefix

    Returns:
        The handler, so the caller can detach it when the run ends
    """
    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_file = logs_dir / f'{name}_{timestamp}.log'

    file_handler = logging.FileHandler(log_file, mode='w')
    file_handler.setLevel(logging.DEBUG)  # Always capture all details in file
    file_handler.setFormatter(detailed_formatter)

    root_logger = logging.getLogger()
    # Console handlers keep their own level; the file gets everything
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)

    logging.info(f"Log file: {log_file}")
    return file_handler


def detach_log_file(handler: Optional[logging.Handler]):
    """Remove and close a handler added by attach_log_file."""
    if handler is None:
        return
    logging.getLogger().removeHandler(handler)
    handler.close()


def format_bytes(num_bytes: int) -> str:
    """Format bytes into human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if num_bytes < 1024.0:
            return f"{num_bytes:.2f} {unit}"
        num_bytes /= 1024.0
    return f"{num_bytes:.2f} PB"


def get_file_info(filepath: Path) -> dict:
    """Get file information."""
    filepath = Path(filepath)
    if not filepath.exists():
        return {'exists': False}

    stat = filepath.stat()
    return {
        'exists': True,
        'size': stat.st_size,
        'size_formatted': format_bytes(stat.st_size),
        'modified': datetime.fromtimestamp(stat.st_mtime).isoformat()
    }
