"""
Unit tests for time-by-voxel matrices and region averaging.
"""

import numpy as np
import pandas as pd
import pytest

from rsfconn.connectome.atlas_labels import RegionTable
from rsfconn.connectome.roi_extraction import (
    average_regions,
    extract_region_timeseries,
    mask_labels,
    matrix_to_timeseries,
    timeseries_to_matrix,
)
from rsfconn.validation import check_voxel_matrix

from conftest import N_TIMEPOINTS


class TestTimeseriesToMatrix:

    def test_shape_matches_frames_and_mask_voxels(self, bold_image, mask_image):
        matrix = timeseries_to_matrix(bold_image, mask_image)

        assert matrix.shape == (N_TIMEPOINTS, 64)
        check_voxel_matrix(matrix, bold_image, mask_image)

    def test_rejects_3d_image(self, mask_image):
        with pytest.raises(ValueError):
            timeseries_to_matrix(mask_image, mask_image)

    def test_round_trip_preserves_masked_voxels(self, bold_image, mask_image):
        matrix = timeseries_to_matrix(bold_image, mask_image)
        image = matrix_to_timeseries(bold_image, matrix * 2, mask_image)

        assert image.shape == bold_image.shape
        np.testing.assert_allclose(
            timeseries_to_matrix(image, mask_image), matrix * 2, rtol=1e-5
        )
        # Outside the mask is zero
        assert np.all(image.numpy()[0, 0, 0, :] == 0)


class TestAverageRegions:

    def test_columns_in_ascending_label_order(self, region_table):
        matrix = np.column_stack([np.full(5, v) for v in (3.0, 1.0, 2.0, 2.0, 0.0)])
        labels = np.array([3, 1, 2, 2, 0])

        timeseries = average_regions(matrix, labels, regions=region_table)

        assert list(timeseries.columns) == ['Precuneus_L', 'Angular_L', 'Calcarine_L']
        assert timeseries.attrs['labels'] == [1, 2, 3]
        np.testing.assert_allclose(timeseries['Angular_L'], 2.0)

    def test_min_voxels_skips_small_regions(self):
        matrix = np.ones((4, 3))
        labels = np.array([1, 2, 2])

        timeseries = average_regions(matrix, labels, min_voxels=2)

        assert list(timeseries.columns) == ['ROI_002']

    def test_median_statistic(self):
        matrix = np.array([[1.0, 2.0, 10.0]])
        timeseries = average_regions(matrix, np.array([1, 1, 1]), statistic='median')
        assert timeseries.iloc[0, 0] == 2.0

    def test_one_column_per_label(self, region_table):
        matrix = np.ones((4, 4))
        labels = np.array([1, 2, 3, 9])

        timeseries = average_regions(matrix, labels, regions=region_table)

        assert timeseries.shape[1] == len(timeseries.attrs['labels']) == 4
        assert list(timeseries.columns)[-1] == 'ROI_009'

    def test_name_collision_rejected(self):
        regions = RegionTable(pd.DataFrame({'label': [1], 'name': ['ROI_002']}))
        with pytest.raises(ValueError, match='already used'):
            average_regions(np.ones((4, 2)), np.array([1, 2]), regions=regions)

    def test_label_count_mismatch(self):
        with pytest.raises(ValueError):
            average_regions(np.ones((4, 3)), np.array([1, 2]))


def test_mask_labels_follow_matrix_columns(atlas_image, mask_image):
    voxel_labels = mask_labels(atlas_image, mask_image)

    assert len(voxel_labels) == 64
    # Label 4 lies outside the mask
    assert set(np.unique(voxel_labels)) == {1, 2, 3}


def test_extract_region_timeseries(bold_image, atlas_image, mask_image, region_table):
    timeseries = extract_region_timeseries(bold_image, atlas_image, mask_image, regions=region_table)

    assert timeseries.shape == (N_TIMEPOINTS, 3)
    assert list(timeseries.columns) == ['Precuneus_L', 'Angular_L', 'Calcarine_L']
    corr = timeseries.corr()
    assert corr.loc['Precuneus_L', 'Angular_L'] > 0.8
