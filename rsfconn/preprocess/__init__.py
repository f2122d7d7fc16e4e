"""
Resting-state BOLD preprocessing
"""

from rsfconn.preprocess.bold_preprocess import (
    PreprocessingResult,
    preprocess_bold,
    motion_correct,
    compute_compcor,
    clean_matrix,
    interpolate_frames,
    tissue_mask,
    temporal_derivative,
    transforms_to_motion_parameters,
)

__all__ = [
    'PreprocessingResult',
    'preprocess_bold',
    'motion_correct',
    'compute_compcor',
    'clean_matrix',
    'interpolate_frames',
    'tissue_mask',
    'temporal_derivative',
    'transforms_to_motion_parameters',
]
