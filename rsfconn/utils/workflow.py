#!/usr/bin/env python3
"""
Workflow helper utilities.

Provides logging setup, input validation and output-path helpers shared by
the preprocessing and connectome modules.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


def setup_logging(
    output_dir: Path,
    workflow_name: str = 'resting_state_connectivity',
    level: str = 'INFO',
    verbose: bool = False
) -> logging.Logger:
    """
    Set up logging to both a timestamped file and the console.

    Parameters
    ----------
    output_dir : Path
        Analysis output directory; log files go to ``<output_dir>/logs``
    workflow_name : str
        Name used for the log file
    level : str
        Logging level (DEBUG, INFO, WARNING, ERROR)
    verbose : bool
        Force DEBUG level

    Returns
    -------
    logging.Logger
        Configured root logger

    Examples
    --------
    >>> logger = setup_logging(Path("/data/analysis/fc/sub-001"))
    >>> logger.info("Starting analysis")
    """
    log_dir = Path(output_dir) / 'logs'
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"{workflow_name}_{timestamp}.log"

    numeric_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger()
    logger.setLevel(numeric_level)

    # Clear handlers from a previous run in the same process
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(numeric_level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logger.info(f"Log file: {log_file}")

    return logger


def log_section(logger: logging.Logger, title: str, width: int = 80) -> None:
    """Log a banner-style section header."""
    logger.info("=" * width)
    logger.info(title)
    logger.info("=" * width)


def validate_inputs(*file_paths: Optional[Path]) -> bool:
    """
    Validate that input files exist.

    ``None`` entries are skipped so optional inputs can be passed through.

    Raises
    ------
    FileNotFoundError
        If any file doesn't exist

    Examples
    --------
    >>> validate_inputs(Path("/data/bold.nii.gz"), Path("/data/mask.nii.gz"))
    True
    """
    for file_path in file_paths:
        if file_path is None:
            continue
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Input file not found: {file_path}")

    return True


def get_output_file(
    output_dir: Path,
    stem: str,
    config: Optional[Dict[str, Any]] = None
) -> Path:
    """
    Build a plot output path using the configured figure format.

    Examples
    --------
    >>> get_output_file(Path("/out"), "correlation_matrix")
    PosixPath('/out/correlation_matrix.png')
    """
    fmt = 'png'
    if config is not None:
        fmt = config.get('output', {}).get('format', fmt)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir / f"{stem}.{fmt}"
