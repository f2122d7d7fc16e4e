"""
Quality control for resting-state preprocessing
"""

from rsfconn.preprocess.qc.func_qc import (
    compute_framewise_displacement,
    compute_dvars,
    find_high_motion_frames,
    summarize_motion,
    motion_dataframe,
    plot_motion_qc,
    plot_nuisance_components,
)

__all__ = [
    'compute_framewise_displacement',
    'compute_dvars',
    'find_high_motion_frames',
    'summarize_motion',
    'motion_dataframe',
    'plot_motion_qc',
    'plot_nuisance_components',
]
