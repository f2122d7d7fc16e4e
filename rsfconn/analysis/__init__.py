"""
Decomposition analyses for resting-state data
"""

from rsfconn.analysis.ica import run_ica, ica_component_images

__all__ = ['run_ica', 'ica_component_images']
