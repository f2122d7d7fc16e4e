#!/usr/bin/env python3
"""
Graph Theory Metrics Module

Build proportionally thresholded networks from correlation matrices and
compute graph-theoretic statistics for them.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import networkx as nx
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class NetworkGraph:
    """Thresholded network and its statistics."""
    graph: nx.Graph
    statistics: Dict = field(default_factory=dict)
    node_metrics: Optional[pd.DataFrame] = None

    @property
    def hubs(self) -> List[str]:
        return self.statistics.get('hubs', [])


def _to_array(matrix: Union[pd.DataFrame, np.ndarray]):
    if isinstance(matrix, pd.DataFrame):
        return matrix.to_numpy(dtype=float), [str(c) for c in matrix.columns]
    matrix = np.asarray(matrix, dtype=float)
    return matrix, [f"Node_{i:03d}" for i in range(matrix.shape[0])]


def n_edges_for_density(n_nodes: int, density: float) -> int:
    """Number of undirected edges that gives ``density`` on ``n_nodes`` nodes"""
    return int(round(density * n_nodes * (n_nodes - 1) / 2))


def strongest_edges(values: np.ndarray, density: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Row and column indices of the strongest upper-triangle edges by |r|

    Ties are broken by position in the upper triangle.
    """
    if not 0 < density <= 1:
        raise ValueError(f"density must be in (0, 1], got {density}")
    if values.ndim != 2 or values.shape[0] != values.shape[1]:
        raise ValueError(f"Expected square matrix, got shape {values.shape}")

    n_nodes = values.shape[0]
    iu = np.triu_indices(n_nodes, k=1)
    n_keep = n_edges_for_density(n_nodes, density)
    order = np.argsort(-np.abs(values[iu]), kind='stable')[:n_keep]

    return iu[0][order], iu[1][order]


def threshold_by_density(
    matrix: Union[pd.DataFrame, np.ndarray],
    density: float
) -> Union[pd.DataFrame, np.ndarray]:
    """
    Keep the strongest edges until the requested density is reached

    Edges are ranked by absolute value over the upper triangle; kept edges
    keep their signed weight, everything else (diagonal included) is 0.
    Ties are broken by position in the upper triangle.

    Args:
        matrix: Symmetric connectivity matrix
        density: Fraction of possible edges to keep, in (0, 1]

    Returns:
        Thresholded matrix of the same type as ``matrix``
    """
    values, _ = _to_array(matrix)
    rows, cols = strongest_edges(values, density)

    thresholded = np.zeros_like(values)
    thresholded[rows, cols] = values[rows, cols]
    thresholded[cols, rows] = values[rows, cols]

    logger.debug(f"  Kept {len(rows)} edges (density={density})")

    if isinstance(matrix, pd.DataFrame):
        return pd.DataFrame(thresholded, index=matrix.index, columns=matrix.columns)
    return thresholded


def matrix_to_graph(
    matrix: Union[pd.DataFrame, np.ndarray],
    edges: Optional[Tuple[np.ndarray, np.ndarray]] = None
) -> nx.Graph:
    """
    Convert connectivity matrix to NetworkX graph

    Nodes are region names. Each edge carries ``weight`` = |r| and
    ``correlation`` = r. Without ``edges`` every non-zero off-diagonal entry
    becomes an edge; with ``edges`` (row and column indices) exactly those
    pairs do, zero correlations included.
    """
    values, names = _to_array(matrix)

    G = nx.Graph()
    G.add_nodes_from(names)
    if edges is None:
        rows, cols = np.nonzero(np.triu(values, k=1))
    else:
        rows, cols = edges
    for i, j in zip(rows, cols):
        G.add_edge(
            names[i], names[j],
            weight=float(abs(values[i, j])),
            correlation=float(values[i, j])
        )

    G.remove_edges_from(nx.selfloop_edges(G))
    return G


def compute_global_efficiency(graph: nx.Graph) -> float:
    """Compute global efficiency (mean inverse shortest path length)"""
    return float(nx.global_efficiency(graph))


def compute_characteristic_path_length(graph: nx.Graph) -> Optional[float]:
    """Compute characteristic path length on the largest component"""
    if graph.number_of_edges() == 0:
        return None

    if nx.is_connected(graph):
        return float(nx.average_shortest_path_length(graph))

    largest_cc = max(nx.connected_components(graph), key=len)
    logger.warning("Graph disconnected, using largest component")
    return float(nx.average_shortest_path_length(graph.subgraph(largest_cc)))


def compute_node_metrics(graph: nx.Graph) -> pd.DataFrame:
    """Degree, strength, clustering and betweenness for each node"""
    nodes = list(graph.nodes)

    degree = dict(graph.degree())
    strength = dict(graph.degree(weight='weight'))
    clustering = nx.clustering(graph)
    betweenness = nx.betweenness_centrality(graph, normalized=True)

    metrics = pd.DataFrame({
        'degree': [degree[n] for n in nodes],
        'strength': [float(strength[n]) for n in nodes],
        'clustering': [float(clustering[n]) for n in nodes],
        'betweenness': [float(betweenness[n]) for n in nodes],
    }, index=pd.Index(nodes, name='region'))

    return metrics


def identify_hubs(node_metrics: pd.DataFrame, method: str = 'degree', percentile: float = 90) -> List[str]:
    """Identify hub nodes"""
    values = node_metrics[method].to_numpy()
    if len(values) == 0 or np.all(values == 0):
        return []

    threshold = np.percentile(values, percentile)
    hubs = list(node_metrics.index[values >= threshold])

    logger.info(f"Identified {len(hubs)} hub nodes using {method}")

    return hubs


def build_network_graph(
    correlation: Union[pd.DataFrame, np.ndarray],
    density: float = 0.25,
    compute_efficiency: bool = True
) -> NetworkGraph:
    """
    Build a network from a correlation matrix and compute its statistics

    Args:
        correlation: Region-by-region correlation matrix
        density: Fraction of strongest edges (by |r|) to keep
        compute_efficiency: Also compute global efficiency

    Returns:
        NetworkGraph whose statistics hold n_nodes, n_edges, density,
        requested_density, transitivity, mean_clustering,
        characteristic_path_length, global_efficiency (when requested),
        per-node degree/clustering/betweenness and hubs
    """
    values, _ = _to_array(correlation)
    n_nodes = values.shape[0]

    logger.info("=" * 80)
    logger.info("NETWORK GRAPH")
    logger.info("=" * 80)
    logger.info(f"Nodes: {n_nodes}, requested density: {density}")

    # Ensure symmetric matrix
    symmetric_values = (values + values.T) / 2
    symmetric = symmetric_values
    if isinstance(correlation, pd.DataFrame):
        symmetric = pd.DataFrame(symmetric_values, index=correlation.index, columns=correlation.columns)

    graph = matrix_to_graph(symmetric, edges=strongest_edges(symmetric_values, density))
    node_metrics = compute_node_metrics(graph)

    statistics = {
        'n_nodes': graph.number_of_nodes(),
        'n_edges': graph.number_of_edges(),
        'density': float(nx.density(graph)) if n_nodes > 1 else 0.0,
        'requested_density': density,
        'transitivity': float(nx.transitivity(graph)),
        'mean_clustering': float(node_metrics['clustering'].mean()) if n_nodes else 0.0,
        'characteristic_path_length': compute_characteristic_path_length(graph),
        'degree': node_metrics['degree'].to_dict(),
        'clustering': node_metrics['clustering'].to_dict(),
        'betweenness': node_metrics['betweenness'].to_dict(),
        'hubs': identify_hubs(node_metrics, method='degree', percentile=90),
    }

    if compute_efficiency:
        statistics['global_efficiency'] = compute_global_efficiency(graph)
        logger.info(f"  Global efficiency: {statistics['global_efficiency']:.4f}")

    logger.info(f"  Edges: {statistics['n_edges']}")
    logger.info(f"  Density: {statistics['density']:.4f}")
    logger.info(f"  Transitivity: {statistics['transitivity']:.4f}")
    logger.info(f"  Hubs: {statistics['hubs']}")

    return NetworkGraph(graph=graph, statistics=statistics, node_metrics=node_metrics)


def graph_statistics_summary(network: NetworkGraph) -> Dict:
    """JSON-serializable subset of the graph statistics"""
    scalar_keys = [
        'n_nodes', 'n_edges', 'density', 'requested_density', 'transitivity',
        'mean_clustering', 'characteristic_path_length', 'global_efficiency'
    ]
    summary = {k: network.statistics[k] for k in scalar_keys if k in network.statistics}
    summary['hubs'] = list(network.hubs)
    return summary
