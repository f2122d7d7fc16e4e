"""
Unit tests for the connectivity command-line interface.
"""

import pytest

from rsfconn.config import ConfigurationError, load_config
from rsfconn.connectome.run_functional_connectivity import apply_overrides, build_parser, main

REQUIRED = [
    '--bold', 'bold.nii.gz',
    '--mask', 'mask.nii.gz',
    '--atlas', 'atlas.nii.gz',
    '--labels', 'labels.csv',
]


def test_required_arguments():
    parser = build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(['--bold', 'bold.nii.gz'])


def test_defaults(tmp_path):
    args = build_parser().parse_args(REQUIRED + ['--output-dir', str(tmp_path)])

    assert args.motion_correction is True
    assert args.global_signal is False
    assert args.density is None
    assert args.network is None


def test_overrides(tmp_path):
    args = build_parser().parse_args(REQUIRED + [
        '--output-dir', str(tmp_path),
        '--density', '0.1',
        '--global-signal',
        '--no-motion-correction',
        '--network', 'salience',
    ])

    config = apply_overrides(load_config(), args)

    assert config['graph']['density'] == 0.1
    assert config['preprocess']['global_signal_regression'] is True
    assert config['preprocess']['motion_correction'] is False
    assert config['connectivity']['network'] == 'salience'


def test_invalid_density_override(tmp_path):
    args = build_parser().parse_args(REQUIRED + ['--output-dir', str(tmp_path), '--density', '1.5'])
    with pytest.raises(ConfigurationError):
        apply_overrides(load_config(), args)


def test_missing_input_returns_error(tmp_path):
    argv = [
        '--bold', str(tmp_path / 'missing_bold.nii.gz'),
        '--mask', str(tmp_path / 'mask.nii.gz'),
        '--atlas', str(tmp_path / 'atlas.nii.gz'),
        '--labels', str(tmp_path / 'labels.csv'),
        '--output-dir', str(tmp_path / 'out'),
    ]
    assert main(argv) == 1
