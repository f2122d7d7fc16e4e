#!/usr/bin/env python3
"""
Image loading for resting-state analysis.

Thin wrappers around ANTsPy image I/O that add the input validation and
logging used throughout the pipeline.

Usage:
    bold = read_image('sub-01_bold.nii.gz', dimension=4)
    mean_bold = average_over_time(bold)
    tr = get_repetition_time(bold)
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import ants
import nibabel as nib

from rsfconn.connectome.atlas_labels import RegionTable, load_region_table

logger = logging.getLogger(__name__)


def read_image(
    image_file: Union[str, Path],
    dimension: Optional[int] = None
) -> ants.ANTsImage:
    """
    Read a 3D or 4D image

    Args:
        image_file: Path to NIfTI image
        dimension: Expected dimensionality (3 or 4); checked if given

    Returns:
        ANTsImage

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the image dimension doesn't match ``dimension``
    """
    image_file = Path(image_file)

    if not image_file.exists():
        raise FileNotFoundError(f"Image file not found: {image_file}")

    image = ants.image_read(str(image_file), dimension=dimension)

    if dimension is not None and image.dimension != dimension:
        raise ValueError(
            f"Expected {dimension}D image, got {image.dimension}D: {image_file}"
        )

    logger.info(f"Loaded {image.dimension}D image: {image_file.name} {image.shape}")

    return image


def average_over_time(bold: ants.ANTsImage) -> ants.ANTsImage:
    """Collapse a 4D time series to its 3D temporal mean."""
    if bold.dimension != 4:
        raise ValueError(f"Expected 4D image, got {bold.dimension}D")

    return ants.get_average_of_timeseries(bold)


def get_repetition_time(bold: Union[ants.ANTsImage, str, Path]) -> float:
    """
    Repetition time in seconds.

    Read from the fourth spacing of an ANTsImage, or from the NIfTI header
    when a path is given.
    """
    if isinstance(bold, ants.ANTsImage):
        if bold.dimension != 4:
            raise ValueError(f"Expected 4D image, got {bold.dimension}D")
        return float(ants.get_spacing(bold)[3])

    header = nib.load(str(bold)).header
    zooms = header.get_zooms()
    if len(zooms) < 4:
        raise ValueError(f"No time dimension in header: {bold}")
    tr = float(zooms[3])

    # NIfTI xyzt_units may store TR in milliseconds
    _, time_unit = header.get_xyzt_units()
    if time_unit == 'msec':
        tr = tr / 1000.0

    return tr


@dataclass
class SubjectData:
    """Images and region table for one resting-state session."""
    bold: ants.ANTsImage
    mask: ants.ANTsImage
    atlas: ants.ANTsImage
    regions: RegionTable
    template: Optional[ants.ANTsImage] = None
    segmentation: Optional[ants.ANTsImage] = None

    @property
    def n_timepoints(self) -> int:
        return self.bold.shape[3]

    @property
    def repetition_time(self) -> float:
        return get_repetition_time(self.bold)


def load_subject_data(
    bold_file: Union[str, Path],
    mask_file: Union[str, Path],
    atlas_file: Union[str, Path],
    labels_file: Union[str, Path],
    template_file: Optional[Union[str, Path]] = None,
    segmentation_file: Optional[Union[str, Path]] = None
) -> SubjectData:
    """
    Load all inputs of the resting-state tutorial

    Args:
        bold_file: 4D BOLD series
        mask_file: Brain mask in BOLD space
        atlas_file: Atlas label image in template space
        labels_file: Region label table (CSV/TSV or "index name" text)
        template_file: Template the atlas is defined on; registration uses
            the atlas itself when omitted
        segmentation_file: Tissue segmentation in BOLD space (CSF/GM/WM)

    Returns:
        SubjectData
    """
    logger.info("Loading subject data...")

    bold = read_image(bold_file, dimension=4)
    mask = read_image(mask_file, dimension=3)
    atlas = read_image(atlas_file, dimension=3)
    regions = load_region_table(labels_file)

    template = read_image(template_file, dimension=3) if template_file else None
    segmentation = read_image(segmentation_file, dimension=3) if segmentation_file else None

    logger.info(f"  BOLD: {bold.shape}, TR={get_repetition_time(bold):.3f}s")
    logger.info(f"  Regions in table: {len(regions)}")

    return SubjectData(
        bold=bold,
        mask=mask,
        atlas=atlas,
        regions=regions,
        template=template,
        segmentation=segmentation
    )
