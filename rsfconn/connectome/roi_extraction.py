#!/usr/bin/env python3
"""
ROI Extraction Module

Reduce a 4D BOLD series to a time-by-voxel matrix and average the voxels of
each atlas region into a time-by-region table.

Key Features:
- Time-by-voxel matrices restricted to a brain mask
- Region averaging with ascending label order
- Minimum voxel count per region
- Region names from a RegionTable

Usage:
    matrix = timeseries_to_matrix(cleaned_bold, mask)
    timeseries = extract_region_timeseries(
        image=cleaned_bold,
        label_image=atlas_bold,
        mask=mask,
        regions=region_table
    )
"""

import logging
from typing import Optional

import ants
import numpy as np
import pandas as pd

from rsfconn.connectome.atlas_labels import RegionTable

logger = logging.getLogger(__name__)


def binarize_mask(mask: ants.ANTsImage) -> ants.ANTsImage:
    """Binary (0/1) copy of a mask image."""
    return ants.threshold_image(mask, 0.5, 1e9)


def timeseries_to_matrix(
    image: ants.ANTsImage,
    mask: ants.ANTsImage
) -> np.ndarray:
    """
    Convert a 4D image to a time-by-voxel matrix

    Args:
        image: 4D image
        mask: 3D mask; voxels with value >= 0.5 are kept

    Returns:
        Array of shape (n_timepoints, n_mask_voxels)

    Raises:
        ValueError: If image is not 4D or spatial dimensions don't match
    """
    if image.dimension != 4:
        raise ValueError(f"Expected 4D image, got {image.dimension}D")
    if tuple(image.shape[:3]) != tuple(mask.shape):
        raise ValueError(
            f"Spatial dimensions mismatch: image={image.shape[:3]}, mask={mask.shape}"
        )

    matrix = ants.timeseries_to_matrix(image, binarize_mask(mask))

    logger.debug(f"  Time-by-voxel matrix: {matrix.shape}")

    return matrix


def matrix_to_timeseries(
    reference: ants.ANTsImage,
    matrix: np.ndarray,
    mask: ants.ANTsImage
) -> ants.ANTsImage:
    """Write a time-by-voxel matrix back into a 4D image shaped like ``reference``."""
    return ants.matrix_to_timeseries(reference, matrix, binarize_mask(mask))


def mask_labels(label_image: ants.ANTsImage, mask: ants.ANTsImage) -> np.ndarray:
    """
    Label value of each mask voxel, in the column order of timeseries_to_matrix

    Returns:
        Integer array of length n_mask_voxels (0 = unlabeled)
    """
    if tuple(label_image.shape) != tuple(mask.shape):
        raise ValueError(
            f"Spatial dimensions mismatch: labels={label_image.shape}, mask={mask.shape}"
        )

    inside = mask.numpy() >= 0.5
    return np.rint(label_image.numpy()[inside]).astype(int)


def average_regions(
    matrix: np.ndarray,
    voxel_labels: np.ndarray,
    regions: Optional[RegionTable] = None,
    min_voxels: int = 1,
    statistic: str = 'mean'
) -> pd.DataFrame:
    """
    Average voxel time series within each labeled region

    Args:
        matrix: Array of shape (n_timepoints, n_voxels)
        voxel_labels: Integer label per column of ``matrix`` (0 = background)
        regions: Optional RegionTable used for column names
        min_voxels: Regions with fewer voxels are skipped
        statistic: How to aggregate voxels ('mean', 'median')

    Returns:
        DataFrame of shape (n_timepoints, n_regions), columns named by region
        in ascending label order; ``df.attrs['labels']`` holds the labels

    Raises:
        ValueError: If shapes disagree or statistic is unknown
    """
    if matrix.ndim != 2:
        raise ValueError(f"Expected 2D matrix, got shape {matrix.shape}")
    if len(voxel_labels) != matrix.shape[1]:
        raise ValueError(
            f"Got {len(voxel_labels)} voxel labels for {matrix.shape[1]} matrix columns"
        )
    if statistic not in ('mean', 'median'):
        raise ValueError(f"Unknown statistic: {statistic}")

    unique_labels = np.unique(voxel_labels)
    unique_labels = unique_labels[unique_labels > 0]

    logger.info(f"  Averaging {matrix.shape[1]} voxels into {len(unique_labels)} regions...")

    columns = {}
    kept_labels = []
    for label in unique_labels:
        in_region = voxel_labels == label
        n_voxels = int(in_region.sum())
        if n_voxels < min_voxels:
            logger.warning(
                f"  Region {label} has only {n_voxels} voxels (< {min_voxels}), skipping"
            )
            continue

        if statistic == 'mean':
            values = matrix[:, in_region].mean(axis=1)
        else:
            values = np.median(matrix[:, in_region], axis=1)

        name = regions.get_name(label) if regions is not None else f"ROI_{label:03d}"
        if name in columns:
            raise ValueError(f"Region name '{name}' of label {label} is already used by another label")
        columns[name] = values
        kept_labels.append(int(label))

    timeseries = pd.DataFrame(columns)
    timeseries.index.name = 'time'
    timeseries.attrs['labels'] = kept_labels

    logger.info(f"  Region time series: {timeseries.shape}")

    return timeseries


def extract_region_timeseries(
    image: ants.ANTsImage,
    label_image: ants.ANTsImage,
    mask: ants.ANTsImage,
    regions: Optional[RegionTable] = None,
    min_voxels: int = 1,
    statistic: str = 'mean'
) -> pd.DataFrame:
    """
    Time-by-region table from a 4D image and a label image in the same space

    Only labels present inside the mask appear as columns.
    """
    logger.info("Extracting region time series...")

    matrix = timeseries_to_matrix(image, mask)
    voxel_labels = mask_labels(label_image, mask)

    return average_regions(
        matrix,
        voxel_labels,
        regions=regions,
        min_voxels=min_voxels,
        statistic=statistic
    )
