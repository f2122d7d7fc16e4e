#!/usr/bin/env python3
"""
Connectome Visualization Module

Visualization tools for connectivity matrices and brain networks.

Key Features:
- Annotated correlation heatmaps with non-significant cells blanked
- Network graph drawings from thresholded correlations
- Atlas overlays on the mean BOLD image
- Region time series and transform model comparison plots

Usage:
    from rsfconn.connectome.visualization import (
        plot_correlation_matrix,
        plot_network_graph
    )

    plot_correlation_matrix(
        correlation=fc['correlation'],
        pvalues=fc['pvalues'],
        output_file='fc_heatmap.png'
    )
"""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import ants
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import pandas as pd
import seaborn as sns
from nilearn import plotting

from rsfconn.connectome.graph_metrics import NetworkGraph

logger = logging.getLogger(__name__)


def _save(fig: plt.Figure, output_file: Optional[Union[str, Path]], dpi: int) -> None:
    if output_file is None:
        return
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_file, dpi=dpi, bbox_inches='tight')
    logger.info(f"  Saved: {output_file}")
    plt.close(fig)


def plot_correlation_matrix(
    correlation: pd.DataFrame,
    pvalues: Optional[pd.DataFrame] = None,
    alpha: float = 0.05,
    output_file: Optional[Union[str, Path]] = None,
    title: str = 'Functional Connectivity',
    annotate: Optional[bool] = None,
    cmap: str = 'RdBu_r',
    figsize: Optional[Tuple[float, float]] = None,
    dpi: int = 150
) -> plt.Figure:
    """
    Plot correlation matrix as an annotated heatmap

    Args:
        correlation: Region-by-region correlation matrix
        pvalues: Matching significance matrix; cells with p >= alpha are blanked
        alpha: Significance level
        output_file: Path to save figure (figure is closed after saving)
        title: Figure title
        annotate: Write r values into cells (default: only for <= 30 regions)
        cmap: Colormap name
        figsize: Figure size in inches (scaled to the matrix when omitted)
        dpi: Resolution for saved figure

    Returns:
        Matplotlib figure object
    """
    n_rois = correlation.shape[0]

    logger.info(f"Plotting correlation matrix: {correlation.shape}")

    if annotate is None:
        annotate = n_rois <= 30
    if figsize is None:
        side = min(max(6, 0.5 * n_rois + 2), 24)
        figsize = (side + 2, side)

    hidden = None
    if pvalues is not None:
        if pvalues.shape != correlation.shape:
            raise ValueError(
                f"pvalues shape {pvalues.shape} does not match correlation shape {correlation.shape}"
            )
        hidden = pvalues.to_numpy() >= alpha
        logger.info(f"  Blanking {int(hidden.sum()) // 2} non-significant pairs (p >= {alpha})")

    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(
        correlation,
        mask=hidden,
        vmin=-1,
        vmax=1,
        center=0,
        cmap=cmap,
        annot=annotate,
        fmt='.2f',
        annot_kws={'fontsize': 7},
        square=True,
        linewidths=0.5,
        linecolor='lightgray',
        cbar_kws={'label': 'Correlation (r)', 'shrink': 0.8},
        xticklabels=n_rois <= 50,
        yticklabels=n_rois <= 50,
        ax=ax
    )

    ax.set_title(title, fontsize=14, fontweight='bold')
    if pvalues is not None:
        ax.text(
            0.0, -0.02, f"Blank cells: p >= {alpha}",
            transform=ax.transAxes, ha='left', va='top', fontsize=9, style='italic'
        )

    plt.tight_layout()
    _save(fig, output_file, dpi)

    return fig


def plot_network_graph(
    network: NetworkGraph,
    output_file: Optional[Union[str, Path]] = None,
    title: str = 'Network Graph',
    layout: str = 'spring',
    seed: int = 42,
    figsize: Tuple[float, float] = (10, 10),
    dpi: int = 150
) -> plt.Figure:
    """
    Draw a thresholded network

    Node size follows degree, hubs are outlined in red, edge colour follows
    the sign of the correlation.
    """
    G = network.graph
    logger.info(f"Plotting network graph: {G.number_of_nodes()} nodes, {G.number_of_edges()} edges")

    if layout == 'spring':
        pos = nx.spring_layout(G, seed=seed, weight='weight')
    elif layout == 'circular':
        pos = nx.circular_layout(G)
    else:
        raise ValueError(f"Unknown layout: {layout}")

    degree = dict(G.degree())
    hubs = set(network.hubs)
    node_sizes = [100 + 60 * degree[n] for n in G.nodes]
    node_edges = ['red' if n in hubs else 'black' for n in G.nodes]

    edge_colors = ['firebrick' if d.get('correlation', 0) > 0 else 'steelblue'
                   for _, _, d in G.edges(data=True)]
    edge_widths = [0.5 + 2.5 * d.get('weight', 0) for _, _, d in G.edges(data=True)]

    fig, ax = plt.subplots(figsize=figsize)
    nx.draw_networkx_edges(G, pos, ax=ax, edge_color=edge_colors, width=edge_widths, alpha=0.6)
    nx.draw_networkx_nodes(
        G, pos, ax=ax, node_size=node_sizes, node_color='lightyellow',
        edgecolors=node_edges, linewidths=1.5
    )
    nx.draw_networkx_labels(G, pos, ax=ax, font_size=7)

    stats = network.statistics
    subtitle = f"density={stats.get('density', 0):.2f}"
    if 'global_efficiency' in stats:
        subtitle += f", global efficiency={stats['global_efficiency']:.3f}"
    ax.set_title(f"{title}\n{subtitle}", fontsize=14, fontweight='bold')
    ax.axis('off')

    plt.tight_layout()
    _save(fig, output_file, dpi)

    return fig


def _to_nilearn_image(image: Union[ants.ANTsImage, str, Path]):
    if isinstance(image, ants.ANTsImage):
        return image.to_nibabel()
    return str(image)


def plot_atlas_overlay(
    mean_image: Union[ants.ANTsImage, str, Path],
    atlas: Union[ants.ANTsImage, str, Path],
    output_file: Optional[Union[str, Path]] = None,
    title: str = 'Atlas in BOLD space',
    display_mode: str = 'ortho',
    dpi: int = 150
) -> plt.Figure:
    """Overlay an atlas label image on the mean BOLD image for registration QC."""
    logger.info("Plotting atlas overlay...")

    fig = plt.figure(figsize=(12, 4))
    plotting.plot_roi(
        _to_nilearn_image(atlas),
        bg_img=_to_nilearn_image(mean_image),
        display_mode=display_mode,
        cmap='tab20',
        alpha=0.5,
        title=title,
        draw_cross=False,
        figure=fig
    )

    _save(fig, output_file, dpi)

    return fig


def plot_region_timeseries(
    timeseries: pd.DataFrame,
    output_file: Optional[Union[str, Path]] = None,
    tr: float = 1.0,
    max_regions: int = 12,
    title: str = 'Region Time Series',
    dpi: int = 150
) -> plt.Figure:
    """
    Stacked, z-scored time series of the first ``max_regions`` regions
    """
    columns = list(timeseries.columns[:max_regions])
    time = np.arange(len(timeseries)) * tr

    fig, ax = plt.subplots(figsize=(12, max(3, 0.6 * len(columns))))
    for offset, name in enumerate(columns):
        values = timeseries[name].to_numpy(dtype=float)
        std = values.std()
        scaled = (values - values.mean()) / std if std > 0 else values * 0
        ax.plot(time, scaled / 4 + offset, linewidth=1)

    ax.set_yticks(range(len(columns)))
    ax.set_yticklabels(columns, fontsize=8)
    ax.set_xlabel('Time (seconds)', fontsize=12)
    ax.set_title(title, fontsize=14, fontweight='bold')

    plt.tight_layout()
    _save(fig, output_file, dpi)

    return fig


def plot_transform_comparison(
    table: pd.DataFrame,
    output_file: Optional[Union[str, Path]] = None,
    metric: str = 'mattes_mi',
    title: str = 'Transform Model Comparison',
    dpi: int = 150
) -> plt.Figure:
    """
    Bar chart of an alignment score per transform model

    ``table`` is the ``table`` entry returned by compare_transform_models.
    Lower Mattes MI means better alignment (ANTs reports it negated).
    """
    if metric not in table.columns:
        raise ValueError(f"Metric '{metric}' not in comparison table: {list(table.columns)}")

    sns.set_style('whitegrid')
    fig, ax = plt.subplots(figsize=(6, 4))
    sns.barplot(data=table, x='model', y=metric, ax=ax, color='steelblue')
    ax.set_xlabel('Transform model', fontsize=12)
    ax.set_ylabel(metric, fontsize=12)
    ax.set_title(title, fontsize=14, fontweight='bold')

    plt.tight_layout()
    _save(fig, output_file, dpi)

    return fig
