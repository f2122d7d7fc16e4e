#!/usr/bin/env python3
"""
Resting-state BOLD preprocessing

Steps (in order):
1. Motion correction to the temporal mean (ants.motion_correction)
2. Motion summaries: framewise displacement, DVARS, global signal
3. Nuisance regressors: CompCor from CSF/WM (ants.compcor), motion
   parameters and derivatives, optional global signal, optional ICA
4. Optional replacement of high-motion frames by linear interpolation
5. Band-pass filtering of data and regressors, then nuisance regression
   (ANTs matrix utilities or nilearn.signal.clean)
6. Spatial smoothing (Gaussian, physical units)

Whether to regress the global signal is left to the caller
(``global_signal_regression``); it is off by default.

Usage:
    result = preprocess_bold(
        bold=bold_image,
        mask=brain_mask,
        segmentation=tissue_segmentation,
        compcor_components=6,
        frequency_low=0.01,
        frequency_high=0.1,
        smoothing_sigma=3.0
    )
    cleaned = result.cleaned_image
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import ants
import numpy as np
from nilearn import signal
from scipy.interpolate import interp1d
from scipy.spatial.transform import Rotation

from rsfconn.analysis.ica import run_ica
from rsfconn.connectome.roi_extraction import (
    binarize_mask,
    matrix_to_timeseries,
    timeseries_to_matrix,
)
from rsfconn.preprocess.qc.func_qc import (
    compute_dvars,
    compute_framewise_displacement,
    find_high_motion_frames,
)

logger = logging.getLogger(__name__)


# Atropos 3-class convention: 1 = CSF, 2 = GM, 3 = WM
CSF_LABEL = 1
WM_LABEL = 3


@dataclass
class PreprocessingResult:
    """Outputs of :func:`preprocess_bold`."""
    cleaned_image: ants.ANTsImage
    mean_image: ants.ANTsImage
    framewise_displacement: np.ndarray
    dvars: np.ndarray
    global_signal: np.ndarray
    nuisance: np.ndarray
    nuisance_names: List[str]
    motion_parameters: np.ndarray
    censored_frames: List[int] = field(default_factory=list)
    parameters: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_timepoints(self) -> int:
        return self.cleaned_image.shape[3]


def temporal_derivative(array: np.ndarray) -> np.ndarray:
    """First difference along time, zero-padded to keep the input shape."""
    array = np.asarray(array, dtype=float)
    if array.ndim == 1:
        array = array[:, np.newaxis]
    derivative = np.diff(array, axis=0)
    return np.vstack((np.zeros((1, array.shape[1])), derivative))


def transforms_to_motion_parameters(motion_transforms: Sequence) -> np.ndarray:
    """
    Convert per-volume ANTs rigid transforms to six motion parameters

    Args:
        motion_transforms: One entry per volume, each a list of transform
            files from ``ants.motion_correction`` (or "NA" for volumes that
            were not registered)

    Returns:
        Array (n_volumes, 6): rotations about x, y, z in radians followed by
        translations in mm. Unregistered volumes repeat the previous row.
    """
    params = np.zeros((len(motion_transforms), 6))

    for k, transforms in enumerate(motion_transforms):
        mat_files = [] if isinstance(transforms, str) else [
            t for t in transforms if str(t).endswith('.mat')
        ]
        if not mat_files:
            if k > 0:
                params[k] = params[k - 1]
            continue

        transform = ants.read_transform(mat_files[0])
        values = np.asarray(transform.parameters, dtype=float)
        matrix = values[:9].reshape(3, 3)
        translation = values[9:12]

        # Remove any scaling so the rotation is orthonormal
        u, _, vt = np.linalg.svd(matrix)
        rotation = Rotation.from_matrix(u @ vt).as_euler('xyz')

        params[k, :3] = rotation
        params[k, 3:] = translation

    return params


def motion_correct(
    bold: ants.ANTsImage,
    fixed: ants.ANTsImage,
    mask: Optional[ants.ANTsImage] = None,
    type_of_transform: str = 'BOLDRigid'
) -> Dict[str, Any]:
    """
    Rigidly align every volume to ``fixed``

    Returns:
        Dictionary containing:
            - motion_corrected: 4D image
            - motion_parameters: (n_volumes, 6) array
            - fd: framewise displacement per volume
    """
    logger.info(f"Running motion correction ({type_of_transform})...")

    mc = ants.motion_correction(
        bold,
        fixed=fixed,
        type_of_transform=type_of_transform,
        mask=mask
    )

    motion_parameters = transforms_to_motion_parameters(mc['motion_parameters'])
    fd = compute_framewise_displacement(motion_parameters)

    logger.info(f"  Mean FD: {fd.mean():.3f} mm, max FD: {fd.max():.3f} mm")

    return {
        'motion_corrected': mc['motion_corrected'],
        'motion_parameters': motion_parameters,
        'fd': fd,
    }


def tissue_mask(
    segmentation: ants.ANTsImage,
    labels: Sequence[int],
    brain_mask: Optional[ants.ANTsImage] = None,
    erode: int = 0
) -> ants.ANTsImage:
    """Binary mask of the given segmentation classes, optionally eroded."""
    tissue = segmentation * 0
    for label in labels:
        tissue = tissue + ants.threshold_image(segmentation, label, label)
    tissue = ants.threshold_image(tissue, 0.5, 1e9)

    if erode > 0:
        tissue = ants.iMath(tissue, 'ME', erode)
    if brain_mask is not None:
        tissue = tissue * binarize_mask(brain_mask)

    return tissue


def compute_compcor(
    bold: ants.ANTsImage,
    noise_mask: ants.ANTsImage,
    n_components: int,
    quantile: float = 0.975
) -> np.ndarray:
    """
    CompCor nuisance components from high-variance voxels within ``noise_mask``

    Returns:
        Array (n_timepoints, n_components)
    """
    logger.info(f"  CompCor: {n_components} components (quantile={quantile})")

    compcor = ants.compcor(
        bold,
        ncompcor=n_components,
        quantile=quantile,
        mask=noise_mask,
        filter_type='polynomial',
        degree=2
    )
    return np.asarray(compcor['components'])


def interpolate_frames(matrix: np.ndarray, frames: Sequence[int]) -> np.ndarray:
    """
    Replace the given rows by linear interpolation over the remaining rows

    Frames before the first or after the last retained frame take the value
    of the nearest retained frame.
    """
    frames = sorted(set(int(f) for f in frames))
    if not frames:
        return matrix

    n_timepoints = matrix.shape[0]
    keep = np.setdiff1d(np.arange(n_timepoints), frames)
    if len(keep) < 2:
        raise ValueError(
            f"Cannot interpolate: only {len(keep)} frames remain after censoring"
        )

    interpolator = interp1d(
        keep,
        matrix[keep],
        axis=0,
        bounds_error=False,
        fill_value=(matrix[keep[0]], matrix[keep[-1]])
    )
    result = matrix.copy()
    result[frames] = interpolator(frames)
    return result


def clean_matrix(
    matrix: np.ndarray,
    nuisance: Optional[np.ndarray],
    tr: float,
    frequency_low: Optional[float] = 0.01,
    frequency_high: Optional[float] = 0.1,
    backend: str = 'ants'
) -> np.ndarray:
    """
    Band-pass filter a time-by-voxel matrix and regress out nuisance signals

    With the ``ants`` backend both the data and the regressors are filtered
    before regression so that no out-of-band signal is reintroduced. The
    ``nilearn`` backend hands both steps to ``nilearn.signal.clean``.
    """
    do_filter = frequency_low is not None and frequency_high is not None
    has_nuisance = nuisance is not None and nuisance.size > 0

    if backend == 'ants':
        if do_filter:
            logger.info(f"  Band-pass: {frequency_low} - {frequency_high} Hz, TR={tr}s")
            matrix = ants.bandpass_filter_matrix(
                matrix, lowf=frequency_low, highf=frequency_high, tr=tr
            )
            if has_nuisance:
                nuisance = ants.bandpass_filter_matrix(
                    nuisance, lowf=frequency_low, highf=frequency_high, tr=tr
                )
        if has_nuisance:
            logger.info(f"  Regressing {nuisance.shape[1]} nuisance components")
            matrix = ants.regress_components(matrix, nuisance)
        return matrix

    if backend == 'nilearn':
        logger.info("  Cleaning with nilearn.signal.clean")
        return signal.clean(
            matrix,
            detrend=True,
            standardize=False,
            confounds=nuisance if has_nuisance else None,
            low_pass=frequency_high if do_filter else None,
            high_pass=frequency_low if do_filter else None,
            t_r=tr
        )

    raise ValueError(f"Unknown filter backend: {backend}")


def preprocess_bold(
    bold: ants.ANTsImage,
    mask: ants.ANTsImage,
    segmentation: Optional[ants.ANTsImage] = None,
    motion_correction: bool = True,
    motion_transform: str = 'BOLDRigid',
    compcor_components: int = 6,
    compcor_quantile: float = 0.975,
    frequency_low: Optional[float] = 0.01,
    frequency_high: Optional[float] = 0.1,
    smoothing_sigma: float = 3.0,
    global_signal_regression: bool = False,
    motion_as_nuisance: bool = True,
    fd_threshold: float = 0.5,
    censor_high_motion: bool = False,
    filter_backend: str = 'ants',
    ica_components: int = 0,
    random_state: Optional[int] = 42
) -> PreprocessingResult:
    """
    Clean a resting-state BOLD series

    Args:
        bold: 4D BOLD image
        mask: 3D brain mask in BOLD space
        segmentation: 3D tissue segmentation in BOLD space (1=CSF, 2=GM, 3=WM);
            CompCor uses the whole brain mask when omitted
        motion_correction: Rigidly align volumes to the temporal mean
        motion_transform: ANTs transform type for motion correction
        compcor_components: Number of CompCor components (0 disables)
        compcor_quantile: Voxel variance quantile for CompCor
        frequency_low: High-pass cutoff in Hz (None disables band-pass)
        frequency_high: Low-pass cutoff in Hz (None disables band-pass)
        smoothing_sigma: Gaussian sigma in mm (0 disables)
        global_signal_regression: Add the global signal to the regressors
        motion_as_nuisance: Add motion parameters and their derivatives
        fd_threshold: FD threshold in mm for high-motion frames
        censor_high_motion: Interpolate over high-motion frames before filtering
        filter_backend: 'ants' or 'nilearn'
        ica_components: FastICA components from CSF/WM voxels added as
            regressors (0 disables)
        random_state: Seed for ICA

    Returns:
        PreprocessingResult; the cleaned image keeps every input frame
    """
    if bold.dimension != 4:
        raise ValueError(f"Expected 4D BOLD image, got {bold.dimension}D")
    if tuple(bold.shape[:3]) != tuple(mask.shape):
        raise ValueError(
            f"Spatial dimensions mismatch: bold={bold.shape[:3]}, mask={mask.shape}"
        )
    if segmentation is not None and tuple(segmentation.shape) != tuple(mask.shape):
        raise ValueError(
            f"Spatial dimensions mismatch: segmentation={segmentation.shape}, mask={mask.shape}"
        )

    n_timepoints = bold.shape[3]
    tr = float(ants.get_spacing(bold)[3])
    mask = binarize_mask(mask)

    logger.info("=" * 80)
    logger.info("BOLD PREPROCESSING")
    logger.info("=" * 80)
    logger.info(f"BOLD shape: {bold.shape}, TR={tr}s")

    mean_image = ants.get_average_of_timeseries(bold)

    # Step 1: motion correction
    if motion_correction:
        mc = motion_correct(bold, fixed=mean_image, mask=mask, type_of_transform=motion_transform)
        corrected = mc['motion_corrected']
        motion_parameters = mc['motion_parameters']
        fd = mc['fd']
        mean_image = ants.get_average_of_timeseries(corrected)
    else:
        logger.info("Motion correction disabled")
        corrected = bold
        motion_parameters = np.zeros((n_timepoints, 6))
        fd = np.zeros(n_timepoints)

    # Step 2: motion summaries
    matrix = timeseries_to_matrix(corrected, mask)
    dvars = compute_dvars(matrix)
    global_signal = matrix.mean(axis=1)

    # Step 3: nuisance regressors
    logger.info("Building nuisance regressors...")
    regressors = []
    names = []

    if segmentation is not None:
        noise_mask = tissue_mask(segmentation, (CSF_LABEL, WM_LABEL), brain_mask=mask)
        if noise_mask.sum() == 0:
            logger.warning("  No CSF/WM voxels inside the mask, using whole brain for CompCor")
            noise_mask = mask
    else:
        noise_mask = mask

    if compcor_components > 0:
        compcor = compute_compcor(corrected, noise_mask, compcor_components, compcor_quantile)
        regressors.append(compcor)
        names.extend(f"compcor_{i}" for i in range(compcor.shape[1]))

    if motion_as_nuisance and motion_correction:
        regressors.append(motion_parameters)
        regressors.append(temporal_derivative(motion_parameters))
        axes = ['rot_x', 'rot_y', 'rot_z', 'trans_x', 'trans_y', 'trans_z']
        names.extend(axes)
        names.extend(f"d_{a}" for a in axes)

    if ica_components > 0:
        noise_matrix = timeseries_to_matrix(corrected, noise_mask)
        sources, _ = run_ica(noise_matrix, ica_components, random_state=random_state)
        regressors.append(sources)
        names.extend(f"ica_{i}" for i in range(sources.shape[1]))

    if global_signal_regression:
        regressors.append(global_signal[:, np.newaxis])
        names.append('global_signal')

    nuisance = np.column_stack(regressors) if regressors else np.zeros((n_timepoints, 0))
    logger.info(f"  Nuisance matrix: {nuisance.shape}")

    # Step 4: high-motion frames
    censored = find_high_motion_frames(fd, fd_threshold).tolist()
    if censor_high_motion and censored:
        logger.info(f"  Interpolating {len(censored)} high-motion frames")
        matrix = interpolate_frames(matrix, censored)
        if nuisance.size:
            nuisance = interpolate_frames(nuisance, censored)
    elif censored:
        logger.info(f"  {len(censored)} frames exceed FD threshold (not censored)")

    # Step 5: band-pass + regression
    logger.info("Filtering and regressing nuisance signals...")
    cleaned_matrix = clean_matrix(
        matrix,
        nuisance,
        tr=tr,
        frequency_low=frequency_low,
        frequency_high=frequency_high,
        backend=filter_backend
    )
    cleaned = matrix_to_timeseries(corrected, cleaned_matrix, mask)

    # Step 6: smoothing, spatial axes only
    if smoothing_sigma > 0:
        logger.info(f"Smoothing with sigma={smoothing_sigma}mm")
        cleaned = ants.smooth_image(
            cleaned,
            (smoothing_sigma, smoothing_sigma, smoothing_sigma, 0.0),
            sigma_in_physical_coordinates=True
        )
        # Re-mask: smoothing spreads signal past the brain boundary
        cleaned_matrix = timeseries_to_matrix(cleaned, mask)
        cleaned = matrix_to_timeseries(corrected, cleaned_matrix, mask)

    logger.info(f"Cleaned image: {cleaned.shape}")

    parameters = {
        'motion_correction': motion_correction,
        'motion_transform': motion_transform,
        'compcor_components': compcor_components,
        'compcor_quantile': compcor_quantile,
        'frequency_low': frequency_low,
        'frequency_high': frequency_high,
        'smoothing_sigma': smoothing_sigma,
        'global_signal_regression': global_signal_regression,
        'motion_as_nuisance': motion_as_nuisance,
        'fd_threshold': fd_threshold,
        'censor_high_motion': censor_high_motion,
        'filter_backend': filter_backend,
        'ica_components': ica_components,
        'tr': tr,
    }

    return PreprocessingResult(
        cleaned_image=cleaned,
        mean_image=mean_image,
        framewise_displacement=fd,
        dvars=dvars,
        global_signal=global_signal,
        nuisance=nuisance,
        nuisance_names=names,
        motion_parameters=motion_parameters,
        censored_frames=censored if censor_high_motion else [],
        parameters=parameters
    )
