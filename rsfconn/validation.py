"""
Consistency checks between pipeline stages.

Each check raises ValueError with a description of the first violation
found and returns None otherwise.
"""

import logging
from typing import Dict, Iterable, Optional

import ants
import numpy as np
import pandas as pd

from rsfconn.connectome.atlas_labels import RegionTable

logger = logging.getLogger(__name__)


def _spatial_shape(image: ants.ANTsImage):
    return tuple(image.shape[:3])


def check_spatial_match(*images: Optional[ants.ANTsImage]) -> None:
    """All images (3D or 4D) share the same spatial grid size; None entries are skipped."""
    present = [img for img in images if img is not None]
    if len(present) < 2:
        return

    reference = _spatial_shape(present[0])
    for i, image in enumerate(present[1:], start=1):
        if _spatial_shape(image) != reference:
            raise ValueError(
                f"Image {i} has spatial shape {_spatial_shape(image)}, expected {reference}"
            )


def check_voxel_matrix(matrix: np.ndarray, bold: ants.ANTsImage, mask: ants.ANTsImage) -> None:
    """Rows equal BOLD frames and columns equal mask voxels."""
    n_frames = bold.shape[3]
    n_voxels = int(np.sum(mask.numpy() >= 0.5))

    if matrix.ndim != 2:
        raise ValueError(f"Expected 2D matrix, got shape {matrix.shape}")
    if matrix.shape[0] != n_frames:
        raise ValueError(f"Matrix has {matrix.shape[0]} rows, BOLD has {n_frames} frames")
    if matrix.shape[1] != n_voxels:
        raise ValueError(f"Matrix has {matrix.shape[1]} columns, mask has {n_voxels} voxels")


def check_correlation_matrix(
    correlation: pd.DataFrame,
    expected_regions: Optional[Iterable] = None,
    atol: float = 1e-8
) -> None:
    """
    Square, symmetric, bounded by [-1, 1], unit diagonal (0 for constant
    signals) and, when given, one row per expected region.

    ``expected_regions`` may be region names or the number of regions.
    """
    values = correlation.to_numpy(dtype=float)

    if values.ndim != 2 or values.shape[0] != values.shape[1]:
        raise ValueError(f"Correlation matrix is not square: {values.shape}")
    if not np.allclose(values, values.T, atol=atol):
        raise ValueError("Correlation matrix is not symmetric")
    if np.any(np.abs(values) > 1 + atol):
        raise ValueError("Correlation values outside [-1, 1]")

    diagonal = np.diag(values)
    if not np.all(np.isclose(diagonal, 1, atol=atol) | np.isclose(diagonal, 0, atol=atol)):
        raise ValueError(f"Unexpected diagonal values: {diagonal}")

    if expected_regions is not None:
        if isinstance(expected_regions, (int, np.integer)):
            n_expected = int(expected_regions)
            if values.shape[0] != n_expected:
                raise ValueError(f"Expected {n_expected} regions, got {values.shape[0]}")
        else:
            expected = list(expected_regions)
            if list(correlation.index) != expected:
                raise ValueError(
                    f"Region order {list(correlation.index)} does not match expected {expected}"
                )


def check_network_matrix(
    correlation: pd.DataFrame,
    regions: RegionTable,
    network: str,
    available: Optional[Iterable[str]] = None
) -> None:
    """
    Sub-network matrix has exactly the network members that had signal

    Args:
        correlation: Correlation matrix restricted to ``network``
        regions: Region table with network membership
        network: Network name
        available: Region names present in the full time-series table
    """
    members = regions.network_names(network)
    if available is not None:
        available = set(available)
        members = [name for name in members if name in available]

    if list(correlation.index) != members:
        raise ValueError(
            f"Network '{network}' matrix rows {list(correlation.index)} do not match members {members}"
        )
    check_correlation_matrix(correlation, expected_regions=len(members))


def compare_results(first: Dict, second: Dict, atol: float = 1e-6) -> None:
    """
    Two runs produced the same tables and statistics

    Compares DataFrames, arrays and scalars stored under the same keys.
    """
    if set(first) != set(second):
        raise ValueError(f"Result keys differ: {sorted(set(first) ^ set(second))}")

    for key in first:
        a, b = first[key], second[key]
        if isinstance(a, pd.DataFrame):
            if list(a.columns) != list(b.columns) or list(a.index) != list(b.index):
                raise ValueError(f"'{key}': labels differ between runs")
            a_values, b_values = a.to_numpy(dtype=float), b.to_numpy(dtype=float)
            if not np.allclose(a_values, b_values, atol=atol, equal_nan=True):
                raise ValueError(f"'{key}': values differ between runs")
        elif isinstance(a, np.ndarray):
            if a.shape != np.shape(b) or not np.allclose(a, b, atol=atol, equal_nan=True):
                raise ValueError(f"'{key}': arrays differ between runs")
        elif isinstance(a, float):
            if not np.isclose(a, b, atol=atol, equal_nan=True):
                raise ValueError(f"'{key}': {a} != {b}")
        elif isinstance(a, dict):
            compare_results(a, b, atol=atol)
        elif a != b:
            raise ValueError(f"'{key}': {a!r} != {b!r}")

    logger.debug(f"Results match on {len(first)} keys")
