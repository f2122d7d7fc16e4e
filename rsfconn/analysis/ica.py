#!/usr/bin/env python3
"""
Spatial/temporal ICA of resting-state data

Decomposes a time-by-voxel matrix with scikit-learn's FastICA. Component
time courses can be used as nuisance regressors during preprocessing, and
the mixing matrix maps back to one 3D image per component.
"""

import logging
from typing import List, Optional, Tuple

import ants
import numpy as np
from sklearn.decomposition import FastICA

from rsfconn.connectome.roi_extraction import binarize_mask

logger = logging.getLogger(__name__)


def run_ica(
    matrix: np.ndarray,
    n_components: int,
    random_state: Optional[int] = 42,
    max_iter: int = 10000,
    tol: float = 0.001
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Run FastICA on a time-by-voxel matrix

    Args:
        matrix: Array of shape (n_timepoints, n_voxels)
        n_components: Number of independent components
        random_state: Seed for the unmixing initialization
        max_iter: Maximum FastICA iterations
        tol: Convergence tolerance

    Returns:
        Tuple of:
            - sources: Component time courses (n_timepoints, n_components)
            - mixing: Voxel loadings (n_voxels, n_components)
    """
    if matrix.ndim != 2:
        raise ValueError(f"Expected 2D matrix, got shape {matrix.shape}")

    n_timepoints, n_voxels = matrix.shape
    if not 0 < n_components <= min(n_timepoints, n_voxels):
        raise ValueError(
            f"n_components must be in [1, {min(n_timepoints, n_voxels)}], got {n_components}"
        )

    logger.info(f"Running FastICA with {n_components} components on {matrix.shape} matrix")

    ica = FastICA(
        n_components=n_components,
        whiten='unit-variance',
        max_iter=max_iter,
        tol=tol,
        random_state=random_state
    )
    sources = ica.fit_transform(matrix)
    mixing = ica.mixing_

    logger.info(f"  Converged in {ica.n_iter_} iterations")

    return sources, mixing


def ica_component_images(
    mixing: np.ndarray,
    mask: ants.ANTsImage
) -> List[ants.ANTsImage]:
    """
    One 3D image per component from the voxel loadings

    Args:
        mixing: Voxel loadings (n_voxels, n_components) where n_voxels is the
            number of nonzero voxels in ``mask``
        mask: 3D mask used to build the decomposed matrix
    """
    mask = binarize_mask(mask)
    n_mask_voxels = int((mask.numpy() > 0).sum())
    if mixing.shape[0] != n_mask_voxels:
        raise ValueError(
            f"Mixing matrix has {mixing.shape[0]} rows but mask has {n_mask_voxels} voxels"
        )

    return [ants.make_image(mask, mixing[:, k]) for k in range(mixing.shape[1])]
