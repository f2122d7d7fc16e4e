#!/usr/bin/env python3
"""
Resting-state functional connectivity workflow

Runs the full single-subject analysis:
1. Load BOLD, brain mask, atlas, region table (and optional template and
   tissue segmentation)
2. Register the atlas to the mean BOLD image, comparing transform models
3. Preprocess the BOLD series (motion correction, CompCor, band-pass,
   nuisance regression, smoothing) and record motion QC
4. Average voxels within each atlas region
5. Correlation and significance matrices over all regions
6. Repeat for a named sub-network and build network graphs

Usage:
    from rsfconn.workflows.resting_state import run_resting_state_connectivity

    results = run_resting_state_connectivity(
        bold_file='sub-001_bold.nii.gz',
        mask_file='sub-001_brainmask.nii.gz',
        atlas_file='aal.nii.gz',
        labels_file='aal_labels.csv',
        output_dir='/study/analysis/rsfc/sub-001',
        template_file='template.nii.gz'
    )
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

import ants

from rsfconn.config import get_config_value, load_config, validate_config
from rsfconn.connectome.atlas_func_transform import (
    compare_transform_models,
    register_atlas,
    warp_atlas_to_bold,
)
from rsfconn.connectome.functional_connectivity import (
    compute_functional_connectivity,
    restrict_to_network,
)
from rsfconn.connectome.graph_metrics import build_network_graph, graph_statistics_summary
from rsfconn.connectome.roi_extraction import extract_region_timeseries, timeseries_to_matrix
from rsfconn.connectome.visualization import (
    plot_atlas_overlay,
    plot_correlation_matrix,
    plot_network_graph,
    plot_region_timeseries,
    plot_transform_comparison,
)
from rsfconn.data import average_over_time, load_subject_data
from rsfconn.preprocess.bold_preprocess import preprocess_bold
from rsfconn.preprocess.qc.func_qc import (
    motion_dataframe,
    plot_motion_qc,
    plot_nuisance_components,
    summarize_motion,
)
from rsfconn.utils.workflow import get_output_file, log_section, validate_inputs
from rsfconn.validation import (
    check_correlation_matrix,
    check_network_matrix,
    check_spatial_match,
    check_voxel_matrix,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _register(subject, mean_bold, config: Dict[str, Any], output_dir: Path) -> Dict[str, Any]:
    """Compare transform models and warp the atlas with the selected one."""
    models = get_config_value(config, 'registration.transform_models', ['SyN'])
    selected = get_config_value(config, 'registration.selected_model', 'SyN')
    interpolator = get_config_value(config, 'registration.interpolator', 'genericLabel')
    seed = get_config_value(config, 'preprocess.random_state')
    dpi = get_config_value(config, 'output.dpi', 150)

    fixed = mean_bold * subject.mask
    moving = subject.template if subject.template is not None else subject.atlas

    output_files = {}
    if len(models) > 1:
        comparison = compare_transform_models(
            fixed, moving, transform_models=models, mask=subject.mask, random_seed=seed
        )
        registration = comparison['results'][selected]

        table_file = output_dir / 'transform_comparison.csv'
        comparison['table'].to_csv(table_file, index=False)
        output_files['transform_comparison_csv'] = str(table_file)

        plot_file = get_output_file(output_dir, 'transform_comparison', config)
        plot_transform_comparison(comparison['table'], output_file=plot_file, dpi=dpi)
        output_files['transform_comparison_plot'] = str(plot_file)
        comparison_table = comparison['table']
    else:
        registration = register_atlas(fixed, moving, transform_model=selected, random_seed=seed)
        comparison_table = None

    warped = warp_atlas_to_bold(
        mean_bold,
        subject.atlas,
        mask=subject.mask,
        registration=registration,
        interpolator=interpolator
    )
    atlas_bold = warped['atlas_bold']

    atlas_file = output_dir / 'atlas_in_bold.nii.gz'
    ants.image_write(atlas_bold, str(atlas_file))
    output_files['atlas_bold'] = str(atlas_file)

    overlay_file = get_output_file(output_dir, 'atlas_overlay', config)
    plot_atlas_overlay(mean_bold, atlas_bold, output_file=overlay_file, dpi=dpi)
    output_files['atlas_overlay'] = str(overlay_file)

    return {
        'atlas_bold': atlas_bold,
        'registration': registration,
        'comparison': comparison_table,
        'output_files': output_files,
    }


def _connectivity_and_graph(
    timeseries,
    label: str,
    config: Dict[str, Any],
    output_dir: Path
) -> Dict[str, Any]:
    """Correlation, significance, heatmap, graph and graph plot for one region set."""
    dpi = get_config_value(config, 'output.dpi', 150)
    alpha = get_config_value(config, 'connectivity.alpha', 0.05)

    fc = compute_functional_connectivity(
        timeseries,
        method=get_config_value(config, 'connectivity.method', 'pearson'),
        alpha=alpha,
        correction=get_config_value(config, 'connectivity.correction'),
        output_dir=output_dir,
        output_prefix=label
    )
    output_files = dict(fc['output_files'])

    heatmap_file = get_output_file(output_dir, f"{label}_correlation_matrix", config)
    plot_correlation_matrix(
        fc['correlation'],
        pvalues=fc['pvalues'],
        alpha=alpha,
        output_file=heatmap_file,
        title=f"Functional Connectivity ({label})",
        dpi=dpi
    )
    output_files['correlation_plot'] = str(heatmap_file)

    network = build_network_graph(
        fc['correlation'],
        density=get_config_value(config, 'graph.density', 0.25),
        compute_efficiency=get_config_value(config, 'graph.compute_efficiency', True)
    )

    graph_file = output_dir / f"{label}_graph.json"
    with open(graph_file, 'w') as f:
        json.dump(graph_statistics_summary(network), f, indent=2)
    output_files['graph_summary'] = str(graph_file)

    nodes_file = output_dir / f"{label}_node_metrics.csv"
    network.node_metrics.to_csv(nodes_file)
    output_files['node_metrics_csv'] = str(nodes_file)

    graph_plot = get_output_file(output_dir, f"{label}_network_graph", config)
    plot_network_graph(network, output_file=graph_plot, title=f"Network ({label})", dpi=dpi)
    output_files['graph_plot'] = str(graph_plot)

    return {'connectivity': fc, 'graph': network, 'output_files': output_files}


def run_resting_state_connectivity(
    bold_file: PathLike,
    mask_file: PathLike,
    atlas_file: PathLike,
    labels_file: PathLike,
    output_dir: PathLike,
    template_file: Optional[PathLike] = None,
    segmentation_file: Optional[PathLike] = None,
    config: Optional[Dict[str, Any]] = None,
    network: Optional[str] = None
) -> Dict[str, Any]:
    """
    Run the single-subject resting-state connectivity analysis

    Args:
        bold_file: 4D BOLD series
        mask_file: Brain mask in BOLD space
        atlas_file: Atlas label image (template space)
        labels_file: Region label table
        output_dir: Directory for all outputs
        template_file: Intensity template the atlas is defined on
        segmentation_file: Tissue segmentation in BOLD space (1=CSF, 2=GM, 3=WM)
        config: Configuration dict (packaged defaults when omitted)
        network: Sub-network to analyse (overrides connectivity.network)

    Returns:
        Dictionary containing:
            - subject: SubjectData
            - atlas_bold: Atlas label image in BOLD space
            - registration: RegistrationResult used for the atlas
            - preprocessing: PreprocessingResult
            - qc: Motion summary dict
            - timeseries: Time-by-region DataFrame
            - all_regions: {'connectivity', 'graph'} for every region
            - network: {'connectivity', 'graph'} for the sub-network, or None
            - output_files: Dict of saved file paths
    """
    if config is None:
        config = load_config()
    validate_config(config)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    dpi = get_config_value(config, 'output.dpi', 150)
    network = network or get_config_value(config, 'connectivity.network')

    log_section(logger, "RESTING-STATE FUNCTIONAL CONNECTIVITY")
    logger.info(f"BOLD: {bold_file}")
    logger.info(f"Atlas: {atlas_file}")
    logger.info(f"Output directory: {output_dir}")

    validate_inputs(bold_file, mask_file, atlas_file, labels_file, template_file, segmentation_file)

    output_files: Dict[str, Any] = {}

    # Step 1: Load data
    log_section(logger, "[Step 1] Loading data")
    subject = load_subject_data(
        bold_file,
        mask_file,
        atlas_file,
        labels_file,
        template_file=template_file,
        segmentation_file=segmentation_file
    )
    check_spatial_match(subject.bold, subject.mask, subject.segmentation)
    mean_bold = average_over_time(subject.bold)

    # Step 2: Register atlas to BOLD space
    log_section(logger, "[Step 2] Registering atlas to BOLD space")
    registration_dir = output_dir / 'registration'
    registration_dir.mkdir(parents=True, exist_ok=True)
    reg = _register(subject, mean_bold, config, registration_dir)
    atlas_bold = reg['atlas_bold']
    check_spatial_match(subject.mask, atlas_bold)
    output_files['registration'] = reg['output_files']

    # Step 3: Preprocess
    log_section(logger, "[Step 3] Preprocessing BOLD")
    preprocess_options = dict(config.get('preprocess', {}))
    preprocessing = preprocess_bold(
        subject.bold,
        subject.mask,
        segmentation=subject.segmentation,
        **preprocess_options
    )

    preproc_dir = output_dir / 'preprocessed'
    preproc_dir.mkdir(parents=True, exist_ok=True)
    cleaned_file = preproc_dir / 'cleaned_bold.nii.gz'
    ants.image_write(preprocessing.cleaned_image, str(cleaned_file))
    output_files['cleaned_bold'] = str(cleaned_file)

    tr = subject.repetition_time
    qc_dir = output_dir / 'qc'
    qc_table = motion_dataframe(
        preprocessing.framewise_displacement,
        preprocessing.dvars,
        preprocessing.global_signal,
        tr=tr
    )
    qc_summary = summarize_motion(
        preprocessing.framewise_displacement,
        preprocessing.dvars,
        fd_threshold=preprocessing.parameters.get('fd_threshold', 0.5)
    )
    qc_dir.mkdir(parents=True, exist_ok=True)
    qc_table.to_csv(qc_dir / 'motion_qc.csv', index=False)
    with open(qc_dir / 'motion_summary.json', 'w') as f:
        json.dump(qc_summary, f, indent=2)
    motion_plot = get_output_file(qc_dir, 'motion_qc', config)
    plot_motion_qc(
        qc_table,
        output_file=motion_plot,
        fd_threshold=preprocessing.parameters.get('fd_threshold', 0.5),
        dpi=dpi
    )
    output_files['qc'] = {
        'motion_csv': str(qc_dir / 'motion_qc.csv'),
        'motion_summary': str(qc_dir / 'motion_summary.json'),
        'motion_plot': str(motion_plot),
    }
    if preprocessing.nuisance.shape[1] > 0:
        nuisance_plot = get_output_file(qc_dir, 'nuisance_regressors', config)
        plot_nuisance_components(
            preprocessing.nuisance,
            names=preprocessing.nuisance_names,
            output_file=nuisance_plot,
            tr=tr,
            dpi=dpi
        )
        output_files['qc']['nuisance_plot'] = str(nuisance_plot)

    # Step 4: Region time series
    log_section(logger, "[Step 4] Extracting region time series")
    check_voxel_matrix(
        timeseries_to_matrix(preprocessing.cleaned_image, subject.mask),
        preprocessing.cleaned_image,
        subject.mask
    )
    timeseries = extract_region_timeseries(
        preprocessing.cleaned_image,
        atlas_bold,
        subject.mask,
        regions=subject.regions,
        min_voxels=get_config_value(config, 'connectivity.min_voxels', 1),
        statistic=get_config_value(config, 'connectivity.statistic', 'mean')
    )
    if timeseries.shape[1] < 2:
        raise ValueError(
            f"Only {timeseries.shape[1]} region(s) have signal after masking; "
            "need at least 2 for connectivity"
        )
    timeseries_plot = get_output_file(output_dir / 'connectivity', 'region_timeseries', config)
    plot_region_timeseries(timeseries, output_file=timeseries_plot, tr=tr, dpi=dpi)

    # Step 5: All-region connectivity
    log_section(logger, "[Step 5] Connectivity across all regions")
    all_regions = _connectivity_and_graph(
        timeseries, 'all_regions', config, output_dir / 'connectivity'
    )
    check_correlation_matrix(
        all_regions['connectivity']['correlation'],
        expected_regions=list(timeseries.columns)
    )
    output_files['all_regions'] = all_regions['output_files']
    output_files['all_regions']['timeseries_plot'] = str(timeseries_plot)

    # Step 6: Sub-network connectivity
    network_results = None
    if network:
        log_section(logger, f"[Step 6] Connectivity within network '{network}'")
        network_timeseries = restrict_to_network(timeseries, subject.regions, network)
        if network_timeseries.shape[1] < 2:
            logger.warning(
                f"Network '{network}' has {network_timeseries.shape[1]} region(s) with signal, skipping"
            )
        else:
            network_results = _connectivity_and_graph(
                network_timeseries, network, config, output_dir / 'network'
            )
            check_network_matrix(
                network_results['connectivity']['correlation'],
                subject.regions,
                network,
                available=timeseries.columns
            )
            output_files['network'] = network_results['output_files']

    # Save analysis parameters
    params_file = output_dir / 'parameters.json'
    params = {
        'bold_file': str(bold_file),
        'mask_file': str(mask_file),
        'atlas_file': str(atlas_file),
        'labels_file': str(labels_file),
        'template_file': str(template_file) if template_file else None,
        'segmentation_file': str(segmentation_file) if segmentation_file else None,
        'repetition_time': tr,
        'n_timepoints': subject.n_timepoints,
        'n_regions': int(timeseries.shape[1]),
        'network': network,
        'transform_model': reg['registration'].transform_model,
        'preprocess': preprocessing.parameters,
        'censored_frames': preprocessing.censored_frames,
        'config': config,
        'analysis_date': datetime.now().isoformat()
    }
    with open(params_file, 'w') as f:
        json.dump(params, f, indent=2, default=str)
    output_files['parameters'] = str(params_file)

    log_section(logger, "ANALYSIS COMPLETE")
    logger.info(f"Regions: {timeseries.shape[1]}")
    logger.info(f"Mean FD: {qc_summary['mean_fd']:.3f}mm")
    logger.info(f"Outputs: {output_dir}")

    return {
        'subject': subject,
        'atlas_bold': atlas_bold,
        'registration': reg['registration'],
        'transform_comparison': reg['comparison'],
        'preprocessing': preprocessing,
        'qc': qc_summary,
        'timeseries': timeseries,
        'all_regions': {'connectivity': all_regions['connectivity'], 'graph': all_regions['graph']},
        'network': (
            {'connectivity': network_results['connectivity'], 'graph': network_results['graph']}
            if network_results is not None else None
        ),
        'output_files': output_files,
    }
