#!/usr/bin/env python3
"""
Resting-State Functional Connectivity CLI

Command-line interface for the single-subject resting-state connectivity
analysis: atlas registration, BOLD preprocessing, region time series,
correlation/significance matrices and network graphs.

Usage:
    # Basic usage
    python -m rsfconn.connectome.run_functional_connectivity \
        --bold sub-001_bold.nii.gz \
        --mask sub-001_brainmask.nii.gz \
        --atlas aal.nii.gz \
        --labels aal_labels.csv \
        --output-dir /study/analysis/rsfc/sub-001/

    # With template, segmentation and options
    python -m rsfconn.connectome.run_functional_connectivity \
        --bold sub-001_bold.nii.gz \
        --mask sub-001_brainmask.nii.gz \
        --atlas aal.nii.gz \
        --labels aal_labels.csv \
        --template template.nii.gz \
        --segmentation sub-001_seg.nii.gz \
        --network dmn \
        --density 0.2 \
        --global-signal \
        --output-dir /study/analysis/rsfc/sub-001/
"""

import argparse
import sys
from pathlib import Path

from rsfconn.config import ConfigurationError, load_config, validate_config
from rsfconn.utils.workflow import setup_logging
from rsfconn.workflows.resting_state import run_resting_state_connectivity


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for the connectivity CLI"""
    parser = argparse.ArgumentParser(
        description="Resting-state functional connectivity from a BOLD series and an atlas",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default-mode network with the packaged defaults
  python -m rsfconn.connectome.run_functional_connectivity \\
      --bold sub-001_bold.nii.gz --mask sub-001_brainmask.nii.gz \\
      --atlas aal.nii.gz --labels aal_labels.csv \\
      --output-dir /data/analysis/rsfc/sub-001/

  # Study config, global signal regression, sparser graph
  python -m rsfconn.connectome.run_functional_connectivity \\
      --bold sub-001_bold.nii.gz --mask sub-001_brainmask.nii.gz \\
      --atlas aal.nii.gz --labels aal_labels.csv \\
      --config study.yaml --global-signal --density 0.1 \\
      --output-dir /data/analysis/rsfc/sub-001/
        """
    )

    # Required arguments
    parser.add_argument(
        '--bold',
        type=Path,
        required=True,
        help='Path to 4D BOLD series (NIfTI)'
    )

    parser.add_argument(
        '--mask',
        type=Path,
        required=True,
        help='Path to brain mask in BOLD space (NIfTI)'
    )

    parser.add_argument(
        '--atlas',
        type=Path,
        required=True,
        help='Path to atlas label image (NIfTI)'
    )

    parser.add_argument(
        '--labels',
        type=Path,
        required=True,
        help='Region label table (CSV/TSV, or text with "index name" lines)'
    )

    parser.add_argument(
        '--output-dir',
        type=Path,
        required=True,
        help='Output directory for results'
    )

    # Optional arguments
    parser.add_argument(
        '--template',
        type=Path,
        help='Template image the atlas is defined on (default: register the atlas itself)'
    )

    parser.add_argument(
        '--segmentation',
        type=Path,
        help='Tissue segmentation in BOLD space (1=CSF, 2=GM, 3=WM) for CompCor'
    )

    parser.add_argument(
        '--config',
        type=Path,
        help='Study YAML config merged on top of the packaged defaults'
    )

    parser.add_argument(
        '--network',
        type=str,
        help='Sub-network to analyse (default: connectivity.network from config)'
    )

    parser.add_argument(
        '--density',
        type=float,
        help='Fraction of strongest edges kept in network graphs'
    )

    parser.add_argument(
        '--global-signal',
        action='store_true',
        help='Regress out the global signal'
    )

    parser.add_argument(
        '--no-motion-correction',
        action='store_false',
        dest='motion_correction',
        help='Skip motion correction'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    return parser


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    """Apply command-line options on top of the loaded config"""
    if args.density is not None:
        config['graph']['density'] = args.density
    if args.global_signal:
        config['preprocess']['global_signal_regression'] = True
    if not args.motion_correction:
        config['preprocess']['motion_correction'] = False
    if args.network:
        config['connectivity']['network'] = args.network
    validate_config(config)
    return config


def main(argv=None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Create output directory
    args.output_dir.mkdir(parents=True, exist_ok=True)

    try:
        config = apply_overrides(load_config(args.config), args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    # Setup logging
    logger = setup_logging(
        args.output_dir,
        level=config.get('logging', {}).get('level', 'INFO'),
        verbose=args.verbose
    )

    logger.info(f"BOLD: {args.bold}")
    logger.info(f"Atlas: {args.atlas}")
    logger.info(f"Labels: {args.labels}")
    logger.info(f"Output directory: {args.output_dir}")
    logger.info(f"Global signal regression: {config['preprocess']['global_signal_regression']}")

    # Validate inputs
    for name, path in [('BOLD', args.bold), ('Mask', args.mask), ('Atlas', args.atlas),
                       ('Labels', args.labels), ('Template', args.template),
                       ('Segmentation', args.segmentation)]:
        if path is not None and not path.exists():
            logger.error(f"{name} file not found: {path}")
            return 1

    try:
        results = run_resting_state_connectivity(
            bold_file=args.bold,
            mask_file=args.mask,
            atlas_file=args.atlas,
            labels_file=args.labels,
            output_dir=args.output_dir,
            template_file=args.template,
            segmentation_file=args.segmentation,
            config=config
        )
    except Exception as e:
        logger.error(f"Analysis failed: {str(e)}", exc_info=True)
        return 1

    logger.info("\nOutput files:")
    logger.info(f"  - parameters: {Path(results['output_files']['parameters']).name}")
    for key, filepath in results['output_files']['all_regions'].items():
        logger.info(f"  - {key}: {Path(filepath).name}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
