"""
Shared utilities for rsfconn package.

Available utilities
-------------------
workflow : Logging setup, input validation and output paths
"""

from rsfconn.utils.workflow import (
    setup_logging,
    log_section,
    validate_inputs,
    get_output_file,
)

__all__ = [
    'setup_logging',
    'log_section',
    'validate_inputs',
    'get_output_file',
]
