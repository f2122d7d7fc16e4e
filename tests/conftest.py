"""
Shared fixtures: tiny synthetic BOLD series, brain mask, atlas and region
table built directly as ANTs images.
"""

import ants
import numpy as np
import pandas as pd
import pytest

from rsfconn.connectome.atlas_labels import RegionTable

SHAPE = (8, 8, 8)
N_TIMEPOINTS = 40
TR = 2.0
SPACING = (3.0, 3.0, 3.0)


def _region_signals(n_timepoints, seed=42):
    """Three smooth signals: a and b strongly correlated, c independent."""
    rng = np.random.RandomState(seed)
    kernel = np.ones(3) / 3
    a = np.convolve(rng.randn(n_timepoints), kernel, mode='same')
    b = 0.8 * a + 0.2 * np.convolve(rng.randn(n_timepoints), kernel, mode='same')
    c = np.convolve(rng.randn(n_timepoints), kernel, mode='same')
    return a, b, c


def make_atlas_array():
    """
    Labels 1-3 fill the mask (x slabs), label 4 sits outside the mask.

    Mask covers x, y, z in [2, 6).
    """
    atlas = np.zeros(SHAPE, dtype=np.float32)
    atlas[2:3, 2:6, 2:6] = 1
    atlas[3:5, 2:6, 2:6] = 2
    atlas[5:6, 2:6, 2:6] = 3
    atlas[0:1, 0:2, 0:2] = 4
    return atlas


def make_mask_array():
    mask = np.zeros(SHAPE, dtype=np.float32)
    mask[2:6, 2:6, 2:6] = 1
    return mask


def make_bold_array(n_timepoints=N_TIMEPOINTS, seed=42):
    rng = np.random.RandomState(seed)
    a, b, c = _region_signals(n_timepoints, seed=seed)
    atlas = make_atlas_array()

    data = np.full(SHAPE + (n_timepoints,), 100.0, dtype=np.float32)
    for label, signal in ((1, a), (2, b), (3, c)):
        idx = np.argwhere(atlas == label)
        for x, y, z in idx:
            data[x, y, z, :] += 5 * signal + 0.1 * rng.randn(n_timepoints)
    return data


@pytest.fixture
def mask_image():
    return ants.from_numpy(make_mask_array(), origin=(0.0, 0.0, 0.0), spacing=SPACING)


@pytest.fixture
def atlas_image():
    return ants.from_numpy(make_atlas_array(), origin=(0.0, 0.0, 0.0), spacing=SPACING)


@pytest.fixture
def bold_image():
    return ants.from_numpy(
        make_bold_array(),
        origin=(0.0, 0.0, 0.0, 0.0),
        spacing=SPACING + (TR,)
    )


@pytest.fixture
def segmentation_image():
    """CSF at the mask border in x, GM inside, WM in the last slab."""
    seg = np.zeros(SHAPE, dtype=np.float32)
    seg[2:6, 2:6, 2:6] = 2
    seg[2, 2:6, 2:6] = 1
    seg[5, 2:6, 2:6] = 3
    return ants.from_numpy(seg, origin=(0.0, 0.0, 0.0), spacing=SPACING)


@pytest.fixture
def region_table():
    return RegionTable(pd.DataFrame({
        'label': [1, 2, 3, 4],
        'name': ['Precuneus_L', 'Angular_L', 'Calcarine_L', 'Cerebellum_3_L'],
        'dmn': [True, True, False, True],
    }))


@pytest.fixture
def region_timeseries():
    """Time-by-region table with a correlated pair and an independent region."""
    a, b, c = _region_signals(N_TIMEPOINTS)
    frame = pd.DataFrame({'Precuneus_L': a, 'Angular_L': b, 'Calcarine_L': c})
    frame.index.name = 'time'
    frame.attrs['labels'] = [1, 2, 3]
    return frame
