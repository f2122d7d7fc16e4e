"""
Atlas region tables and sub-network membership.

A region table maps integer atlas labels to region names and to boolean
sub-network flags (e.g. ``dmn`` for the default-mode network).
"""
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union
import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


# Column aliases accepted when reading label tables
LABEL_COLUMNS = ('label', 'label_num', 'index', 'id', 'roi')
NAME_COLUMNS = ('name', 'label_name', 'roi_name', 'region')

# AAL regions conventionally assigned to the default-mode network
AAL_DEFAULT_MODE_REGIONS = [
    'Frontal_Sup_Medial_L',
    'Frontal_Sup_Medial_R',
    'Frontal_Med_Orb_L',
    'Frontal_Med_Orb_R',
    'Cingulum_Ant_L',
    'Cingulum_Ant_R',
    'Cingulum_Post_L',
    'Cingulum_Post_R',
    'Hippocampus_L',
    'Hippocampus_R',
    'ParaHippocampal_L',
    'ParaHippocampal_R',
    'Angular_L',
    'Angular_R',
    'Precuneus_L',
    'Precuneus_R',
    'Temporal_Mid_L',
    'Temporal_Mid_R',
]

KNOWN_NETWORKS = {
    'dmn': AAL_DEFAULT_MODE_REGIONS,
}


class RegionTable:
    """
    Region label table

    Attributes:
        table: DataFrame with ``label`` (int), ``name`` (str) and one bool
            column per sub-network, indexed by label
    """

    def __init__(self, table: pd.DataFrame):
        if 'label' not in table.columns or 'name' not in table.columns:
            raise ValueError("Region table requires 'label' and 'name' columns")
        if table['label'].duplicated().any():
            dupes = table.loc[table['label'].duplicated(), 'label'].tolist()
            raise ValueError(f"Duplicate labels in region table: {dupes}")
        if table['name'].astype(str).duplicated().any():
            dupes = table.loc[table['name'].astype(str).duplicated(), 'name'].tolist()
            raise ValueError(f"Duplicate region names in region table: {dupes}")

        table = table.copy()
        table['label'] = table['label'].astype(int)
        table['name'] = table['name'].astype(str)
        self.table = table.set_index('label', drop=False).sort_index()

    def __len__(self) -> int:
        return len(self.table)

    def __repr__(self) -> str:
        return f"RegionTable({len(self)} regions, networks={self.networks})"

    @property
    def labels(self) -> List[int]:
        return self.table['label'].tolist()

    @property
    def networks(self) -> List[str]:
        """Names of sub-network flag columns"""
        return [c for c in self.table.columns if c not in ('label', 'name')]

    def get_name(self, label: int) -> str:
        label = int(label)
        if label in self.table.index:
            return self.table.at[label, 'name']
        return f"ROI_{label:03d}"

    def names_for(self, labels: Iterable[int]) -> List[str]:
        return [self.get_name(label) for label in labels]

    def network_labels(self, network: str) -> List[int]:
        """
        Labels flagged as members of a sub-network

        Raises:
            KeyError: If the table has no flag column for ``network``
        """
        network = normalize_network_name(network)
        if network not in self.networks:
            raise KeyError(
                f"Unknown network '{network}'. Available: {self.networks}"
            )
        members = self.table[self.table[network]]
        return members['label'].tolist()

    def network_names(self, network: str) -> List[str]:
        return self.names_for(self.network_labels(network))

    def add_network(self, network: str, region_names: Iterable[str]) -> None:
        """Add or replace a flag column from a list of region names."""
        network = normalize_network_name(network)
        region_names = set(region_names)
        self.table[network] = self.table['name'].isin(region_names)
        n_members = int(self.table[network].sum())
        logger.info(f"  Network '{network}': {n_members} member regions")
        if n_members == 0:
            logger.warning(f"  No regions matched for network '{network}'")

    def to_dataframe(self) -> pd.DataFrame:
        return self.table.reset_index(drop=True)


def normalize_network_name(name: str) -> str:
    """Map column names like ``isdmn`` or ``is_DMN`` to ``dmn``."""
    name = name.strip().lower()
    if name.startswith('is_'):
        name = name[3:]
    elif name.startswith('is') and len(name) > 2:
        name = name[2:]
    return name


def _find_column(columns: Iterable[str], candidates: Iterable[str]) -> Optional[str]:
    lowered = {c.lower(): c for c in columns}
    for candidate in candidates:
        if candidate in lowered:
            return lowered[candidate]
    return None


def _coerce_flag(series: pd.Series) -> pd.Series:
    if series.dtype == bool:
        return series
    lowered = series.astype(str).str.strip().str.lower()
    return lowered.isin(['1', '1.0', 'true', 't', 'yes', 'y'])


def parse_label_text(txt_file: Path) -> Dict[int, str]:
    """
    Parse a plain "index name" label file.

    Lines starting with '#' are ignored.
    """
    labels = {}
    with open(txt_file, 'r') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#'):
                parts = line.split(maxsplit=1)
                if len(parts) == 2:
                    idx, name = parts
                    labels[int(idx)] = name
    return labels


def region_table_from_dataframe(df: pd.DataFrame) -> RegionTable:
    """
    Build a RegionTable from a DataFrame with flexible column names

    Label and name columns are located by alias; every remaining column whose
    values look boolean (0/1, true/false, yes/no) becomes a network flag.
    """
    label_col = _find_column(df.columns, LABEL_COLUMNS)
    name_col = _find_column(df.columns, NAME_COLUMNS)

    if label_col is None or name_col is None:
        raise ValueError(
            f"Label table needs a label column {LABEL_COLUMNS} and a name "
            f"column {NAME_COLUMNS}; got {list(df.columns)}"
        )

    table = pd.DataFrame({
        'label': df[label_col].astype(int),
        'name': df[name_col].astype(str).str.strip(),
    })

    for column in df.columns:
        if column in (label_col, name_col):
            continue
        values = df[column].dropna().astype(str).str.strip().str.lower().unique()
        if len(values) and set(values) <= {'0', '1', '0.0', '1.0', 'true', 'false', 't', 'f', 'yes', 'no', 'y', 'n'}:
            table[normalize_network_name(column)] = _coerce_flag(df[column].fillna(0))
        else:
            logger.debug(f"  Ignoring non-flag column: {column}")

    return RegionTable(table)


def load_region_table(
    labels_file: Union[str, Path],
    default_networks: bool = True
) -> RegionTable:
    """
    Load a region label table

    Args:
        labels_file: CSV/TSV with label, name and network flag columns, or a
            text file with "index name" lines
        default_networks: Add known networks (AAL default-mode) by region
            name when the file carries no flag column for them

    Returns:
        RegionTable

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    labels_file = Path(labels_file)

    if not labels_file.exists():
        raise FileNotFoundError(f"Labels file not found: {labels_file}")

    logger.info(f"Loading region table: {labels_file}")

    suffixes = ''.join(labels_file.suffixes).lower()
    if suffixes.endswith('.csv'):
        regions = region_table_from_dataframe(pd.read_csv(labels_file))
    elif suffixes.endswith('.tsv'):
        regions = region_table_from_dataframe(pd.read_csv(labels_file, sep='\t'))
    else:
        labels = parse_label_text(labels_file)
        regions = RegionTable(pd.DataFrame({
            'label': list(labels.keys()),
            'name': list(labels.values()),
        }))

    if default_networks:
        for network, members in KNOWN_NETWORKS.items():
            if network not in regions.networks:
                regions.add_network(network, members)

    logger.info(f"  Loaded {len(regions)} regions, networks: {regions.networks}")

    return regions


def labels_present(label_image: np.ndarray, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """Unique nonzero labels in a label array, optionally within a mask."""
    values = label_image if mask is None else label_image[mask > 0]
    values = np.rint(values).astype(int)
    unique = np.unique(values)
    return unique[unique > 0]
