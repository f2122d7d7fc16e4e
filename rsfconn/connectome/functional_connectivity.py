#!/usr/bin/env python3
"""
Functional Connectivity Module

Compute functional connectivity matrices from region time series.

Key Features:
- Region-by-region correlation matrices (Pearson, Spearman)
- Two-sided significance matrices, optional FDR correction
- Fisher z-transformation for statistical analysis
- Restriction to a named sub-network (e.g. default-mode network)

Usage:
    # Extract time series (from roi_extraction module)
    timeseries = extract_region_timeseries(cleaned, atlas_bold, mask, regions)

    # Compute functional connectivity matrix
    fc = compute_functional_connectivity(
        timeseries=timeseries,
        method='pearson'
    )
    fc['correlation'], fc['pvalues']
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd
from scipy import stats

from rsfconn.connectome.atlas_labels import RegionTable

logger = logging.getLogger(__name__)


def _as_frame(timeseries: Union[pd.DataFrame, np.ndarray]) -> pd.DataFrame:
    if isinstance(timeseries, pd.DataFrame):
        return timeseries
    timeseries = np.asarray(timeseries)
    if timeseries.ndim != 2:
        raise ValueError(f"Expected 2D timeseries, got shape {timeseries.shape}")
    return pd.DataFrame(
        timeseries,
        columns=[f"ROI_{i:03d}" for i in range(timeseries.shape[1])]
    )


def compute_correlation_matrix(
    timeseries: Union[pd.DataFrame, np.ndarray],
    method: str = 'pearson'
) -> pd.DataFrame:
    """
    Compute correlation matrix from time series data

    Args:
        timeseries: Time-by-region table or array (n_timepoints, n_rois)
        method: Correlation method ('pearson', 'spearman')

    Returns:
        Symmetric DataFrame (n_rois, n_rois) indexed by region name. Regions
        with a constant signal have 0 correlation with everything, including
        themselves.

    Raises:
        ValueError: If method is unknown or timeseries invalid
    """
    frame = _as_frame(timeseries)
    n_timepoints, n_rois = frame.shape

    if n_timepoints < 2:
        raise ValueError(f"Need at least 2 timepoints, got {n_timepoints}")

    logger.info(f"Computing {method} correlation matrix...")
    logger.info(f"  Timeseries shape: {frame.shape}")

    values = frame.to_numpy(dtype=float)
    if method == 'spearman':
        values = stats.rankdata(values, axis=0)
    elif method != 'pearson':
        raise ValueError(f"Unknown correlation method: {method}")

    constant = np.std(values, axis=0) == 0
    with np.errstate(invalid='ignore', divide='ignore'):
        corr = np.corrcoef(values, rowvar=False)
    corr = np.atleast_2d(corr)

    corr = np.clip(np.nan_to_num(corr, nan=0.0), -1.0, 1.0)
    corr = (corr + corr.T) / 2
    np.fill_diagonal(corr, np.where(constant, 0.0, 1.0))

    if constant.any():
        logger.warning(
            f"  {int(constant.sum())} region(s) have constant signal: "
            f"{list(frame.columns[constant])}"
        )

    logger.info(f"  Correlation matrix shape: {corr.shape}")

    return pd.DataFrame(corr, index=frame.columns, columns=frame.columns)


def compute_significance_matrix(
    timeseries: Union[pd.DataFrame, np.ndarray],
    method: str = 'pearson',
    correction: Optional[str] = None,
    correlation: Optional[pd.DataFrame] = None
) -> pd.DataFrame:
    """
    Two-sided p-values for every region pair

    Uses the t distribution with n - 2 degrees of freedom:
    t = r * sqrt((n - 2) / (1 - r^2))

    Args:
        timeseries: Time-by-region table (n_timepoints, n_rois)
        method: Correlation method ('pearson', 'spearman')
        correction: None or 'fdr_bh' (Benjamini-Hochberg over the upper triangle)
        correlation: Precomputed correlation matrix for ``timeseries``

    Returns:
        DataFrame of p-values; diagonal is 0, pairs involving a constant
        region are 1
    """
    frame = _as_frame(timeseries)
    n_timepoints = frame.shape[0]
    if n_timepoints < 3:
        raise ValueError(f"Need at least 3 timepoints for p-values, got {n_timepoints}")

    if correlation is None:
        correlation = compute_correlation_matrix(frame, method=method)

    r = correlation.to_numpy(dtype=float)
    dof = n_timepoints - 2

    with np.errstate(divide='ignore', invalid='ignore'):
        t_values = r * np.sqrt(dof / np.clip(1.0 - r ** 2, 1e-15, None))
    pvalues = 2 * stats.t.sf(np.abs(t_values), dof)

    # Undefined correlations carry no evidence
    undefined = np.diag(r) == 0
    pvalues[undefined, :] = 1.0
    pvalues[:, undefined] = 1.0

    if correction == 'fdr_bh':
        iu = np.triu_indices_from(pvalues, k=1)
        if len(iu[0]):
            adjusted = stats.false_discovery_control(pvalues[iu], method='bh')
            pvalues[iu] = adjusted
            pvalues[(iu[1], iu[0])] = adjusted
    elif correction is not None:
        raise ValueError(f"Unknown correction: {correction}")

    np.fill_diagonal(pvalues, 0.0)

    return pd.DataFrame(pvalues, index=correlation.index, columns=correlation.columns)


def fisher_z_transform(correlation_matrix: Union[pd.DataFrame, np.ndarray]):
    """
    Apply Fisher z-transformation to correlation matrix

    z = 0.5 * ln((1 + r) / (1 - r))

    The diagonal is set to 0 since self-connections are not meaningful.
    """
    is_frame = isinstance(correlation_matrix, pd.DataFrame)
    values = correlation_matrix.to_numpy(dtype=float) if is_frame else np.asarray(correlation_matrix, dtype=float)

    # Clip correlations to valid range to avoid infinities
    r = np.clip(values, -0.9999, 0.9999)
    z = np.arctanh(r)
    np.fill_diagonal(z, 0.0)

    logger.info("Applied Fisher z-transformation")

    if is_frame:
        return pd.DataFrame(z, index=correlation_matrix.index, columns=correlation_matrix.columns)
    return z


def inverse_fisher_z_transform(z_matrix: Union[pd.DataFrame, np.ndarray]):
    """
    Apply inverse Fisher z-transformation

    r = tanh(z), diagonal restored to 1.
    """
    is_frame = isinstance(z_matrix, pd.DataFrame)
    values = z_matrix.to_numpy(dtype=float) if is_frame else np.asarray(z_matrix, dtype=float)

    r = np.tanh(values)
    np.fill_diagonal(r, 1.0)

    if is_frame:
        return pd.DataFrame(r, index=z_matrix.index, columns=z_matrix.columns)
    return r


def restrict_to_network(
    timeseries: pd.DataFrame,
    regions: RegionTable,
    network: str = 'dmn'
) -> pd.DataFrame:
    """
    Keep only the columns of regions flagged as members of ``network``

    Members missing from ``timeseries`` (e.g. dropped by masking) are
    reported and skipped.
    """
    member_names = regions.network_names(network)
    present = [name for name in member_names if name in timeseries.columns]
    missing = [name for name in member_names if name not in timeseries.columns]

    logger.info(f"Restricting to network '{network}': {len(present)} of {len(member_names)} members present")
    if missing:
        logger.warning(f"  Members without signal: {missing}")

    subset = timeseries[present].copy()
    if 'labels' in timeseries.attrs:
        label_by_name = dict(zip(timeseries.columns, timeseries.attrs['labels']))
        subset.attrs['labels'] = [label_by_name[name] for name in present]
    return subset


def summarize_connectivity(correlation: pd.DataFrame) -> Dict:
    """Summary statistics over the upper triangle of a connectivity matrix."""
    matrix = correlation.to_numpy(dtype=float)
    upper_triangle = matrix[np.triu_indices_from(matrix, k=1)]
    nonzero_edges = upper_triangle[upper_triangle != 0]

    return {
        'n_rois': int(matrix.shape[0]),
        'n_edges_total': int(len(upper_triangle)),
        'n_edges_nonzero': int(len(nonzero_edges)),
        'mean_connectivity': float(np.mean(nonzero_edges)) if len(nonzero_edges) > 0 else 0.0,
        'std_connectivity': float(np.std(nonzero_edges)) if len(nonzero_edges) > 0 else 0.0,
        'min_connectivity': float(np.min(nonzero_edges)) if len(nonzero_edges) > 0 else 0.0,
        'max_connectivity': float(np.max(nonzero_edges)) if len(nonzero_edges) > 0 else 0.0,
    }


def compute_functional_connectivity(
    timeseries: Union[pd.DataFrame, np.ndarray],
    method: str = 'pearson',
    alpha: float = 0.05,
    correction: Optional[str] = None,
    output_dir: Optional[Path] = None,
    output_prefix: str = 'fc'
) -> Dict:
    """
    Compute functional connectivity and significance matrices from time series

    Main function that orchestrates connectivity computation.

    Args:
        timeseries: Time-by-region table (n_timepoints, n_rois)
        method: Correlation method ('pearson', 'spearman')
        alpha: Significance level used for the summary count
        correction: Multiple comparison correction (None, 'fdr_bh')
        output_dir: Optional directory to save outputs
        output_prefix: Prefix for output files

    Returns:
        Dictionary containing:
            - correlation: Correlation matrix (DataFrame)
            - pvalues: Significance matrix (DataFrame)
            - fisher_z: Fisher z-transformed correlations (DataFrame)
            - roi_names: List of region names
            - method: Method used
            - summary: Summary statistics
            - output_files: Dict of saved file paths (if output_dir provided)
    """
    frame = _as_frame(timeseries)
    n_timepoints, n_rois = frame.shape

    logger.info("=" * 80)
    logger.info("FUNCTIONAL CONNECTIVITY ANALYSIS")
    logger.info("=" * 80)
    logger.info(f"Timeseries shape: {frame.shape}")
    logger.info(f"Method: {method}")

    correlation = compute_correlation_matrix(frame, method=method)
    pvalues = compute_significance_matrix(
        frame, method=method, correction=correction, correlation=correlation
    )
    z_matrix = fisher_z_transform(correlation)

    summary = summarize_connectivity(correlation)
    upper = np.triu_indices(n_rois, k=1)
    summary['n_significant'] = int(np.sum(pvalues.to_numpy()[upper] < alpha))
    summary['alpha'] = alpha
    summary['correction'] = correction

    logger.info("\nSummary Statistics:")
    logger.info(f"  ROIs: {summary['n_rois']}")
    logger.info(f"  Edges (non-zero): {summary['n_edges_nonzero']} / {summary['n_edges_total']}")
    logger.info(f"  Significant edges (p<{alpha}): {summary['n_significant']}")
    logger.info(f"  Mean connectivity: {summary['mean_connectivity']:.4f}")
    logger.info(f"  Range: [{summary['min_connectivity']:.4f}, {summary['max_connectivity']:.4f}]")

    output_files = {}
    if output_dir is not None:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"\nSaving outputs to: {output_dir}")

        corr_file = output_dir / f"{output_prefix}_correlation.csv"
        correlation.to_csv(corr_file)
        output_files['correlation_csv'] = str(corr_file)

        pval_file = output_dir / f"{output_prefix}_pvalues.csv"
        pvalues.to_csv(pval_file)
        output_files['pvalues_csv'] = str(pval_file)

        ts_file = output_dir / f"{output_prefix}_timeseries.csv"
        frame.to_csv(ts_file)
        output_files['timeseries_csv'] = str(ts_file)

        summary_file = output_dir / f"{output_prefix}_summary.json"
        with open(summary_file, 'w') as f:
            json.dump({'method': method, 'n_timepoints': n_timepoints, **summary}, f, indent=2)
        output_files['summary'] = str(summary_file)

        for key, path in output_files.items():
            logger.info(f"  {key}: {Path(path).name}")

    return {
        'correlation': correlation,
        'pvalues': pvalues,
        'fisher_z': z_matrix,
        'roi_names': list(frame.columns),
        'method': method,
        'summary': summary,
        'output_files': output_files
    }
