"""
End-to-end test of the resting-state workflow on synthetic inputs.

Registration is replaced with an identity stand-in (the atlas is already
on the BOLD grid) and motion correction is disabled so the run takes
seconds.
"""

import json

import ants
import pandas as pd
import pytest

from rsfconn.config import ConfigurationError, load_config
from rsfconn.connectome.graph_metrics import graph_statistics_summary
from rsfconn.validation import compare_results
from rsfconn.workflows import resting_state
from rsfconn.workflows.resting_state import run_resting_state_connectivity


@pytest.fixture
def inputs(tmp_path, bold_image, mask_image, atlas_image):
    files = {
        'bold_file': tmp_path / 'inputs' / 'bold.nii.gz',
        'mask_file': tmp_path / 'inputs' / 'mask.nii.gz',
        'atlas_file': tmp_path / 'inputs' / 'atlas.nii.gz',
        'labels_file': tmp_path / 'inputs' / 'labels.csv',
    }
    files['bold_file'].parent.mkdir()
    ants.image_write(bold_image, str(files['bold_file']))
    ants.image_write(mask_image, str(files['mask_file']))
    ants.image_write(atlas_image, str(files['atlas_file']))
    pd.DataFrame({
        'label': [1, 2, 3, 4],
        'name': ['Precuneus_L', 'Angular_L', 'Calcarine_L', 'Cerebellum_3_L'],
        'isdmn': [1, 1, 0, 1],
    }).to_csv(files['labels_file'], index=False)
    return files


@pytest.fixture
def identity_registration(monkeypatch):
    def fake_registration(fixed, moving, type_of_transform, **kwargs):
        return {
            'fwdtransforms': [],
            'invtransforms': [],
            'warpedmovout': moving.clone(),
        }

    def fake_apply_transforms(fixed, moving, transformlist, interpolator='linear', **kwargs):
        return moving.clone()

    monkeypatch.setattr(ants, 'registration', fake_registration)
    monkeypatch.setattr(ants, 'apply_transforms', fake_apply_transforms)
    monkeypatch.setattr(resting_state, 'plot_atlas_overlay', lambda *args, **kwargs: None)


@pytest.fixture
def config():
    config = load_config()
    config['preprocess']['motion_correction'] = False
    config['preprocess']['compcor_components'] = 0
    config['graph']['density'] = 1.0
    return config


def test_full_run(tmp_path, inputs, identity_registration, config):
    output_dir = tmp_path / 'output'

    results = run_resting_state_connectivity(output_dir=output_dir, config=config, **inputs)

    # Label 4 lies outside the brain mask
    assert list(results['timeseries'].columns) == ['Precuneus_L', 'Angular_L', 'Calcarine_L']

    correlation = results['all_regions']['connectivity']['correlation']
    assert correlation.shape == (3, 3)
    assert correlation.loc['Precuneus_L', 'Angular_L'] > 0.5

    network = results['network']['connectivity']['correlation']
    assert list(network.index) == ['Precuneus_L', 'Angular_L']

    assert set(results['transform_comparison']['model']) == {'Affine', 'SyN'}
    assert results['registration'].transform_model == 'SyN'

    assert (output_dir / 'registration' / 'atlas_in_bold.nii.gz').exists()
    assert (output_dir / 'registration' / 'transform_comparison.csv').exists()
    assert (output_dir / 'preprocessed' / 'cleaned_bold.nii.gz').exists()
    assert (output_dir / 'qc' / 'motion_qc.csv').exists()
    assert (output_dir / 'connectivity' / 'all_regions_correlation.csv').exists()
    assert (output_dir / 'connectivity' / 'all_regions_graph.json').exists()
    assert (output_dir / 'network' / 'dmn_pvalues.csv').exists()

    with open(output_dir / 'parameters.json') as f:
        params = json.load(f)
    assert params['n_regions'] == 3
    assert params['network'] == 'dmn'
    assert params['repetition_time'] == pytest.approx(2.0)


def test_single_transform_model(tmp_path, inputs, identity_registration, config):
    config['registration']['transform_models'] = ['SyN']
    config['connectivity']['network'] = None

    results = run_resting_state_connectivity(
        output_dir=tmp_path / 'output', config=config, **inputs
    )

    assert results['transform_comparison'] is None
    assert results['network'] is None
    assert not (tmp_path / 'output' / 'registration' / 'transform_comparison.csv').exists()


def test_rerun_is_deterministic(tmp_path, inputs, identity_registration, config):
    runs = []
    for name in ('first', 'second'):
        results = run_resting_state_connectivity(
            output_dir=tmp_path / name, config=config, **inputs
        )
        runs.append({
            'timeseries': results['timeseries'],
            'correlation': results['all_regions']['connectivity']['correlation'],
            'pvalues': results['all_regions']['connectivity']['pvalues'],
            'graph': graph_statistics_summary(results['all_regions']['graph']),
            'qc': results['qc'],
        })

    compare_results(runs[0], runs[1])


def test_unknown_preprocess_option_rejected(tmp_path, inputs, config):
    config['preprocess']['slice_timing'] = True

    with pytest.raises(ConfigurationError):
        run_resting_state_connectivity(output_dir=tmp_path / 'output', config=config, **inputs)

    assert not (tmp_path / 'output').exists()
