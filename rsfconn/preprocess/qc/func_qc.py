#!/usr/bin/env python3
"""
Quality Control (QC) utilities for resting-state preprocessing.

This module provides functions for:
1. Framewise displacement from motion parameters
2. DVARS from a time-by-voxel matrix
3. Motion summaries and outlier counts
4. Motion/DVARS/global signal QC plots

Usage:
    from rsfconn.preprocess.qc.func_qc import compute_dvars, summarize_motion, plot_motion_qc
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import seaborn as sns

logger = logging.getLogger(__name__)


def compute_framewise_displacement(motion_params: np.ndarray, radius: float = 50.0) -> np.ndarray:
    """
    Compute framewise displacement from motion parameters.

    Parameters
    ----------
    motion_params : ndarray
        Motion parameters (N x 6): [rot_x, rot_y, rot_z, trans_x, trans_y, trans_z]
        Rotations in radians, translations in mm
    radius : float
        Head radius in mm for converting rotations to displacements (default: 50mm)

    Returns
    -------
    ndarray
        Framewise displacement for each volume (length N)
    """
    motion_params = np.asarray(motion_params, dtype=float)
    if motion_params.ndim != 2 or motion_params.shape[1] != 6:
        raise ValueError(f"Expected (N, 6) motion parameters, got {motion_params.shape}")

    derivatives = np.diff(motion_params, axis=0)

    # Arc length on a sphere: s = r * theta
    rot_disp = radius * np.abs(derivatives[:, :3])
    trans_disp = np.abs(derivatives[:, 3:])

    fd = np.sum(rot_disp, axis=1) + np.sum(trans_disp, axis=1)

    # First volume has no predecessor
    fd = np.insert(fd, 0, 0)

    return fd


def compute_dvars(matrix: np.ndarray, normalize: bool = True) -> np.ndarray:
    """
    Compute DVARS from a time-by-voxel matrix.

    DVARS is the root mean square of the intensity change between successive
    volumes. The first volume, which has no predecessor, is assigned the mean
    of the remaining values.

    Parameters
    ----------
    matrix : ndarray
        Time series matrix (n_timepoints, n_voxels)
    normalize : bool
        Rescale the matrix to [0, 1] first so values are comparable across scans

    Returns
    -------
    ndarray
        DVARS for each volume (length n_timepoints)
    """
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2:
        raise ValueError(f"Expected 2D matrix, got shape {matrix.shape}")

    n_timepoints = matrix.shape[0]
    if n_timepoints < 2:
        return np.zeros(n_timepoints)

    if normalize:
        span = matrix.max() - matrix.min()
        matrix = (matrix - matrix.min()) / span if span > 0 else np.zeros_like(matrix)

    diffs = np.diff(matrix, axis=0)
    dvars = np.zeros(n_timepoints)
    dvars[1:] = np.sqrt(np.mean(diffs ** 2, axis=1))
    dvars[0] = dvars[1:].mean()

    return dvars


def find_high_motion_frames(fd: np.ndarray, threshold: float) -> np.ndarray:
    """Indices of frames whose framewise displacement exceeds ``threshold``."""
    return np.flatnonzero(np.asarray(fd) > threshold)


def summarize_motion(
    fd: np.ndarray,
    dvars: np.ndarray,
    fd_threshold: float = 0.5,
    dvars_threshold: float = 1.5
) -> Dict[str, Any]:
    """
    Summary statistics for FD and DVARS.

    Parameters
    ----------
    fd : ndarray
        Framewise displacement per volume
    dvars : ndarray
        DVARS per volume
    fd_threshold : float
        FD threshold in mm
    dvars_threshold : float
        Threshold on DVARS divided by its median

    Returns
    -------
    dict
        n_volumes, mean/max FD, FD outliers, mean/max DVARS, DVARS outliers
    """
    fd = np.asarray(fd, dtype=float)
    dvars = np.asarray(dvars, dtype=float)
    n_volumes = len(fd)

    median_dvars = np.median(dvars[dvars > 0]) if np.any(dvars > 0) else 0.0
    dvars_robust = dvars / median_dvars if median_dvars > 0 else np.zeros_like(dvars)

    n_outliers_fd = int(np.sum(fd > fd_threshold))
    n_outliers_dvars = int(np.sum(dvars_robust > dvars_threshold))

    summary = {
        'n_volumes': n_volumes,
        'mean_fd': float(np.mean(fd)) if n_volumes else 0.0,
        'max_fd': float(np.max(fd)) if n_volumes else 0.0,
        'n_outliers_fd': n_outliers_fd,
        'percent_outliers_fd': (n_outliers_fd / n_volumes) * 100 if n_volumes else 0.0,
        'mean_dvars': float(np.mean(dvars)) if len(dvars) else 0.0,
        'max_dvars': float(np.max(dvars)) if len(dvars) else 0.0,
        'n_outliers_dvars': n_outliers_dvars,
    }

    logger.info("Motion Summary:")
    logger.info(f"  Total volumes: {n_volumes}")
    logger.info(f"  Mean FD: {summary['mean_fd']:.3f} mm")
    logger.info(f"  Max FD: {summary['max_fd']:.3f} mm")
    logger.info(f"  Outlier volumes (FD>{fd_threshold}mm): {n_outliers_fd} ({summary['percent_outliers_fd']:.1f}%)")
    logger.info(f"  Mean DVARS: {summary['mean_dvars']:.4f}")

    return summary


def motion_dataframe(
    fd: np.ndarray,
    dvars: np.ndarray,
    global_signal: np.ndarray,
    tr: float = 1.0
) -> pd.DataFrame:
    """Per-frame QC table (one row per volume)."""
    n_volumes = len(fd)
    return pd.DataFrame({
        'volume': np.arange(n_volumes),
        'time': np.arange(n_volumes) * tr,
        'framewise_displacement': fd,
        'dvars': dvars,
        'global_signal': global_signal,
    })


def plot_motion_qc(
    qc_table: pd.DataFrame,
    output_file: Optional[Union[str, Path]] = None,
    fd_threshold: float = 0.5,
    dpi: int = 150
) -> plt.Figure:
    """
    Plot framewise displacement, DVARS and global signal over time.

    Parameters
    ----------
    qc_table : DataFrame
        Output of :func:`motion_dataframe`
    output_file : Path, optional
        Where to save the figure
    fd_threshold : float
        Drawn as a reference line on the FD panel
    dpi : int
        Resolution of the saved figure

    Returns
    -------
    matplotlib.figure.Figure
    """
    sns.set_style('whitegrid')
    fig, axes = plt.subplots(3, 1, figsize=(12, 9), sharex=True)

    time = qc_table['time']
    fd = qc_table['framewise_displacement']
    outliers = fd > fd_threshold

    axes[0].plot(time, fd, 'k-', linewidth=1.5, label='FD')
    axes[0].axhline(y=fd_threshold, color='r', linestyle='--', linewidth=2,
                    label=f'Threshold ({fd_threshold}mm)')
    axes[0].fill_between(time, 0, fd, where=outliers, color='red', alpha=0.3, label='Outliers')
    axes[0].set_ylabel('FD (mm)', fontsize=12)
    axes[0].set_title(f'Framewise Displacement (Mean={fd.mean():.3f}mm, Outliers={int(outliers.sum())})',
                      fontsize=14, fontweight='bold')
    axes[0].legend(loc='upper right')

    axes[1].plot(time, qc_table['dvars'], 'b-', linewidth=1.5)
    axes[1].set_ylabel('DVARS', fontsize=12)
    axes[1].set_title('DVARS', fontsize=14, fontweight='bold')

    axes[2].plot(time, qc_table['global_signal'], 'g-', linewidth=1.5)
    axes[2].set_ylabel('Global signal', fontsize=12)
    axes[2].set_xlabel('Time (seconds)', fontsize=12)
    axes[2].set_title('Global Signal', fontsize=14, fontweight='bold')

    plt.tight_layout()

    if output_file is not None:
        output_file = Path(output_file)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_file, dpi=dpi, bbox_inches='tight')
        logger.info(f"  Saved: {output_file}")
        plt.close(fig)

    return fig


def plot_nuisance_components(
    nuisance: np.ndarray,
    names: Optional[list] = None,
    output_file: Optional[Union[str, Path]] = None,
    tr: float = 1.0,
    dpi: int = 150
) -> plt.Figure:
    """Stacked line plot of nuisance regressors (CompCor, motion, global signal)."""
    nuisance = np.asarray(nuisance)
    if nuisance.ndim == 1:
        nuisance = nuisance[:, np.newaxis]
    n_timepoints, n_components = nuisance.shape

    if names is None:
        names = [f"nuisance_{i}" for i in range(n_components)]

    time = np.arange(n_timepoints) * tr
    fig, ax = plt.subplots(figsize=(12, max(3, 0.5 * n_components)))

    for i in range(n_components):
        column = nuisance[:, i]
        span = np.ptp(column)
        scaled = (column - column.mean()) / span if span > 0 else column * 0
        ax.plot(time, scaled + i, linewidth=1)

    ax.set_yticks(range(n_components))
    ax.set_yticklabels(names, fontsize=8)
    ax.set_xlabel('Time (seconds)', fontsize=12)
    ax.set_title('Nuisance Regressors', fontsize=14, fontweight='bold')

    plt.tight_layout()

    if output_file is not None:
        output_file = Path(output_file)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_file, dpi=dpi, bbox_inches='tight')
        logger.info(f"  Saved: {output_file}")
        plt.close(fig)

    return fig
