"""
rsfconn: Resting-state functional connectivity with ANTsPy

Single-subject pipeline from a 4D BOLD series and an atlas to region
correlation matrices and network graphs.

Modules
-------
data : Image and region-table loading
preprocess : Motion correction, CompCor, band-pass, nuisance regression,
    smoothing and motion QC
connectome : Atlas registration, region time series, correlation and
    significance matrices, graph metrics, plots
analysis : ICA decomposition
workflows : End-to-end single-subject workflow
validation : Consistency checks between pipeline stages

Usage
-----
>>> from rsfconn import load_config
>>> from rsfconn.workflows.resting_state import run_resting_state_connectivity
>>> config = load_config('study.yaml')
"""

__version__ = "0.1.0"
__all__ = ['analysis', 'config', 'connectome', 'data', 'preprocess', 'utils', 'validation', 'workflows']

# Make config loader easily accessible
from rsfconn.config import load_config

__all__.append('load_config')
