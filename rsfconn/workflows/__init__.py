"""
End-to-end analysis workflows
"""

from rsfconn.workflows.resting_state import run_resting_state_connectivity

__all__ = ['run_resting_state_connectivity']
