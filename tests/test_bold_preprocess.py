"""
Unit tests for BOLD preprocessing helpers and the preprocessing pipeline.

Most pipeline cases disable motion correction; one runs the full default
path (ANTs motion correction and CompCor) on the tiny synthetic series.
Censoring cases replace motion correction with fixed motion parameters.
"""

import ants
import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from rsfconn.connectome.roi_extraction import timeseries_to_matrix
from rsfconn.preprocess import bold_preprocess
from rsfconn.preprocess.bold_preprocess import (
    clean_matrix,
    interpolate_frames,
    preprocess_bold,
    temporal_derivative,
    tissue_mask,
    transforms_to_motion_parameters,
)
from rsfconn.preprocess.qc.func_qc import compute_framewise_displacement

from conftest import N_TIMEPOINTS, TR


def test_temporal_derivative_keeps_shape():
    values = np.array([[0.0, 1.0], [1.0, 3.0], [3.0, 6.0]])
    derivative = temporal_derivative(values)

    assert derivative.shape == values.shape
    np.testing.assert_allclose(derivative, [[0, 0], [1, 2], [2, 3]])


class TestInterpolateFrames:

    def test_linear_fill(self):
        matrix = np.arange(10, dtype=float)[:, np.newaxis] * np.array([[1.0, 2.0]])
        corrupted = matrix.copy()
        corrupted[[3, 4]] = 100

        fixed = interpolate_frames(corrupted, [3, 4])

        np.testing.assert_allclose(fixed, matrix)

    def test_edges_take_nearest_frame(self):
        matrix = np.arange(5, dtype=float)[:, np.newaxis]
        fixed = interpolate_frames(matrix, [0, 4])
        assert fixed[0, 0] == 1.0
        assert fixed[4, 0] == 3.0

    def test_no_frames_is_noop(self):
        matrix = np.ones((4, 2))
        assert interpolate_frames(matrix, []) is matrix

    def test_too_few_frames_remaining(self):
        with pytest.raises(ValueError):
            interpolate_frames(np.ones((3, 1)), [0, 1])


class TestCleanMatrix:

    def _data(self, seed=0):
        rng = np.random.RandomState(seed)
        confound = rng.randn(N_TIMEPOINTS, 1)
        matrix = 3 * confound + 0.5 * rng.randn(N_TIMEPOINTS, 8)
        return matrix, confound

    @pytest.mark.parametrize('backend', ['ants', 'nilearn'])
    def test_regression_removes_confound(self, backend):
        matrix, confound = self._data()

        cleaned = clean_matrix(
            matrix, confound, tr=TR, frequency_low=None, frequency_high=None, backend=backend
        )

        assert cleaned.shape == matrix.shape
        for k in range(cleaned.shape[1]):
            r = np.corrcoef(cleaned[:, k], confound[:, 0])[0, 1]
            assert abs(r) < 1e-6

    def test_band_pass_removes_slow_drift(self):
        t = np.arange(N_TIMEPOINTS) * TR
        drift = np.linspace(0, 10, N_TIMEPOINTS)
        in_band = np.sin(2 * np.pi * 0.05 * t)
        matrix = np.column_stack([drift + in_band, drift + in_band])

        cleaned = clean_matrix(matrix, None, tr=TR, frequency_low=0.01, frequency_high=0.1)

        before = abs(np.corrcoef(matrix[:, 0], in_band)[0, 1])
        after = abs(np.corrcoef(cleaned[:, 0], in_band)[0, 1])
        assert after > before

    def test_unknown_backend(self):
        matrix, confound = self._data()
        with pytest.raises(ValueError):
            clean_matrix(matrix, confound, tr=TR, backend='fsl')


def test_tissue_mask(segmentation_image, mask_image):
    noise = tissue_mask(segmentation_image, (1, 3), brain_mask=mask_image)
    values = noise.numpy()

    assert set(np.unique(values)) == {0.0, 1.0}
    # Two slabs of 4x4 voxels
    assert int(values.sum()) == 32


class TestPreprocessBold:

    def test_keeps_every_frame(self, bold_image, mask_image):
        result = preprocess_bold(
            bold_image,
            mask_image,
            motion_correction=False,
            compcor_components=0,
            smoothing_sigma=0
        )

        assert result.cleaned_image.shape == bold_image.shape
        assert result.n_timepoints == N_TIMEPOINTS
        assert result.framewise_displacement.shape == (N_TIMEPOINTS,)
        assert np.all(result.framewise_displacement == 0)
        assert result.dvars.shape == (N_TIMEPOINTS,)
        assert result.nuisance.shape == (N_TIMEPOINTS, 0)
        assert result.parameters['tr'] == TR

    def test_global_signal_regression(self, bold_image, mask_image):
        result = preprocess_bold(
            bold_image,
            mask_image,
            motion_correction=False,
            compcor_components=0,
            smoothing_sigma=0,
            frequency_low=None,
            frequency_high=None,
            global_signal_regression=True
        )

        assert result.nuisance_names == ['global_signal']
        cleaned = timeseries_to_matrix(result.cleaned_image, mask_image)
        for k in (0, 20, 63):
            r = np.corrcoef(cleaned[:, k], result.global_signal)[0, 1]
            assert abs(r) < 1e-3

    def test_smoothing_stays_inside_mask(self, bold_image, mask_image):
        result = preprocess_bold(
            bold_image,
            mask_image,
            motion_correction=False,
            compcor_components=0,
            smoothing_sigma=3.0
        )

        outside = result.cleaned_image.numpy()[mask_image.numpy() == 0]
        assert np.all(outside == 0)

    def test_shape_mismatch(self, bold_image):
        small_mask = ants.from_numpy(np.ones((4, 4, 4), dtype=np.float32))
        with pytest.raises(ValueError):
            preprocess_bold(bold_image, small_mask, motion_correction=False)

    def test_rejects_3d_input(self, mask_image):
        with pytest.raises(ValueError):
            preprocess_bold(mask_image, mask_image)


MOTION_AXES = ['rot_x', 'rot_y', 'rot_z', 'trans_x', 'trans_y', 'trans_z']


class TestMotionParameters:

    def _write_rigid(self, path, angles, translation):
        rotation = Rotation.from_euler('xyz', angles).as_matrix()
        transform = ants.create_ants_transform(
            transform_type='AffineTransform',
            dimension=3,
            parameters=list(rotation.ravel()) + list(translation)
        )
        ants.write_transform(transform, str(path))
        return str(path)

    def test_euler_angles_and_translation(self, tmp_path):
        mat_file = self._write_rigid(tmp_path / 'vol0GenericAffine.mat', [0.0, 0.0, 0.1], [1.0, 2.0, 3.0])

        params = transforms_to_motion_parameters([[mat_file]])

        assert params.shape == (1, 6)
        np.testing.assert_allclose(params[0], [0.0, 0.0, 0.1, 1.0, 2.0, 3.0], atol=1e-5)

    def test_unregistered_volume_repeats_previous(self, tmp_path):
        mat_file = self._write_rigid(tmp_path / 'vol0GenericAffine.mat', [0.05, 0.0, 0.0], [0.5, 0.0, 0.0])

        params = transforms_to_motion_parameters([[mat_file], 'NA'])

        np.testing.assert_array_equal(params[1], params[0])


class TestPreprocessBoldFullPipeline:

    def test_motion_correction_and_compcor(self, bold_image, mask_image, segmentation_image):
        result = preprocess_bold(
            bold_image,
            mask_image,
            segmentation=segmentation_image,
            compcor_components=2,
            compcor_quantile=0.5
        )

        assert result.motion_parameters.shape == (N_TIMEPOINTS, 6)
        assert result.framewise_displacement.shape == (N_TIMEPOINTS,)
        assert result.framewise_displacement[0] == 0
        assert np.all(result.framewise_displacement >= 0)
        assert result.nuisance_names == (
            ['compcor_0', 'compcor_1'] + MOTION_AXES + [f"d_{a}" for a in MOTION_AXES]
        )
        assert result.nuisance.shape == (N_TIMEPOINTS, 14)
        assert result.cleaned_image.shape == bold_image.shape
        assert result.censored_frames == []

    def test_compcor_restricted_to_csf_and_wm(
        self, monkeypatch, bold_image, mask_image, segmentation_image
    ):
        noise_voxels = []

        def fake_compcor(bold, noise_mask, n_components, quantile):
            noise_voxels.append(int(noise_mask.numpy().sum()))
            return np.random.RandomState(0).randn(bold.shape[3], n_components)

        monkeypatch.setattr(bold_preprocess, 'compute_compcor', fake_compcor)

        result = preprocess_bold(
            bold_image,
            mask_image,
            segmentation=segmentation_image,
            motion_correction=False,
            compcor_components=3
        )

        # CSF slab plus WM slab, 16 voxels each
        assert noise_voxels == [32]
        assert result.nuisance_names == ['compcor_0', 'compcor_1', 'compcor_2']

    def test_high_motion_frames_censored(self, monkeypatch, bold_image, mask_image):
        params = np.zeros((N_TIMEPOINTS, 6))
        params[10:, 3] = 1.0    # 1 mm jump at frame 10
        params[25:, 3] = 0.0    # and back at frame 25

        def fake_motion_correct(bold, fixed, mask=None, type_of_transform='BOLDRigid'):
            return {
                'motion_corrected': bold,
                'motion_parameters': params,
                'fd': compute_framewise_displacement(params),
            }

        monkeypatch.setattr(bold_preprocess, 'motion_correct', fake_motion_correct)

        result = preprocess_bold(
            bold_image,
            mask_image,
            compcor_components=0,
            fd_threshold=0.5,
            censor_high_motion=True
        )

        assert result.censored_frames == [10, 25]
        assert result.framewise_displacement[10] == pytest.approx(1.0)
        assert result.n_timepoints == N_TIMEPOINTS

    def test_high_motion_frames_reported_without_censoring(self, monkeypatch, bold_image, mask_image):
        params = np.zeros((N_TIMEPOINTS, 6))
        params[10:, 3] = 1.0

        def fake_motion_correct(bold, fixed, mask=None, type_of_transform='BOLDRigid'):
            return {
                'motion_corrected': bold,
                'motion_parameters': params,
                'fd': compute_framewise_displacement(params),
            }

        monkeypatch.setattr(bold_preprocess, 'motion_correct', fake_motion_correct)

        result = preprocess_bold(bold_image, mask_image, compcor_components=0)

        assert result.censored_frames == []
        assert result.parameters['censor_high_motion'] is False

    def test_ica_regressors(self, bold_image, mask_image, segmentation_image):
        result = preprocess_bold(
            bold_image,
            mask_image,
            segmentation=segmentation_image,
            motion_correction=False,
            compcor_components=0,
            ica_components=2
        )

        assert result.nuisance_names == ['ica_0', 'ica_1']
        assert result.nuisance.shape == (N_TIMEPOINTS, 2)
