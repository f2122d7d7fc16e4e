"""
Connectome Analysis Module

Tools for building region-level functional connectomes from resting-state
BOLD data.

Pipeline
--------
1. Atlas registration (atlas_func_transform.py)
   - Template/atlas to mean BOLD registration with ANTs
   - Side-by-side comparison of transform models
   - Label-preserving resampling of the atlas

2. ROI Extraction (roi_extraction.py, atlas_labels.py)
   - Time-by-voxel matrices restricted to the brain mask
   - Region averaging in ascending label order
   - Region tables with sub-network membership (e.g. default-mode)

3. Functional Connectivity (functional_connectivity.py)
   - Region-by-region correlation and significance matrices
   - Fisher z-transformation
   - Restriction to a sub-network

4. Graph Metrics (graph_metrics.py)
   - Proportional (density) thresholding
   - Global efficiency, transitivity, node centrality, hubs

Usage Examples
--------------
timeseries = extract_region_timeseries(cleaned_bold, atlas_bold, mask, regions)

fc = compute_functional_connectivity(timeseries, method='pearson')
plot_correlation_matrix(fc['correlation'], fc['pvalues'], output_file='fc.png')

dmn = restrict_to_network(timeseries, regions, 'dmn')
network = build_network_graph(compute_correlation_matrix(dmn), density=0.25)
network.statistics['global_efficiency']
"""

from rsfconn.connectome.atlas_labels import (
    RegionTable,
    load_region_table,
    region_table_from_dataframe,
    normalize_network_name,
)

from rsfconn.connectome.atlas_func_transform import (
    RegistrationResult,
    register_atlas,
    apply_transform,
    compare_transform_models,
    warp_atlas_to_bold,
)

from rsfconn.connectome.roi_extraction import (
    timeseries_to_matrix,
    matrix_to_timeseries,
    average_regions,
    extract_region_timeseries,
)

from rsfconn.connectome.functional_connectivity import (
    compute_functional_connectivity,
    compute_correlation_matrix,
    compute_significance_matrix,
    fisher_z_transform,
    inverse_fisher_z_transform,
    restrict_to_network,
)

from rsfconn.connectome.graph_metrics import (
    NetworkGraph,
    strongest_edges,
    threshold_by_density,
    build_network_graph,
    compute_global_efficiency,
)

from rsfconn.connectome.visualization import (
    plot_correlation_matrix,
    plot_network_graph,
    plot_atlas_overlay,
    plot_region_timeseries,
    plot_transform_comparison,
)

__all__ = [
    # Region tables
    'RegionTable',
    'load_region_table',
    'region_table_from_dataframe',
    'normalize_network_name',
    # Registration
    'RegistrationResult',
    'register_atlas',
    'apply_transform',
    'compare_transform_models',
    'warp_atlas_to_bold',
    # ROI extraction
    'timeseries_to_matrix',
    'matrix_to_timeseries',
    'average_regions',
    'extract_region_timeseries',
    # Functional connectivity
    'compute_functional_connectivity',
    'compute_correlation_matrix',
    'compute_significance_matrix',
    'fisher_z_transform',
    'inverse_fisher_z_transform',
    'restrict_to_network',
    # Graph metrics
    'NetworkGraph',
    'strongest_edges',
    'threshold_by_density',
    'build_network_graph',
    'compute_global_efficiency',
    # Visualization
    'plot_correlation_matrix',
    'plot_network_graph',
    'plot_atlas_overlay',
    'plot_region_timeseries',
    'plot_transform_comparison',
]
