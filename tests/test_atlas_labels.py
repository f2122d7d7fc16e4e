"""
Unit tests for region tables and sub-network membership.
"""

import numpy as np
import pandas as pd
import pytest

from rsfconn.connectome.atlas_labels import (
    RegionTable,
    labels_present,
    load_region_table,
    normalize_network_name,
    region_table_from_dataframe,
)


class TestRegionTable:

    def test_sorted_by_label(self):
        table = RegionTable(pd.DataFrame({'label': [3, 1, 2], 'name': ['c', 'a', 'b']}))
        assert table.labels == [1, 2, 3]
        assert len(table) == 3

    def test_unknown_label_gets_placeholder_name(self, region_table):
        assert region_table.get_name(1) == 'Precuneus_L'
        assert region_table.get_name(7) == 'ROI_007'

    def test_network_members(self, region_table):
        assert region_table.networks == ['dmn']
        assert region_table.network_labels('dmn') == [1, 2, 4]
        assert region_table.network_names('isDMN') == ['Precuneus_L', 'Angular_L', 'Cerebellum_3_L']

    def test_unknown_network_raises(self, region_table):
        with pytest.raises(KeyError):
            region_table.network_labels('visual')

    def test_add_network(self, region_table):
        region_table.add_network('visual', ['Calcarine_L'])
        assert region_table.network_labels('visual') == [3]

    def test_duplicate_labels_rejected(self):
        with pytest.raises(ValueError):
            RegionTable(pd.DataFrame({'label': [1, 1], 'name': ['a', 'b']}))

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match='Duplicate region names'):
            RegionTable(pd.DataFrame({'label': [1, 2, 3], 'name': ['A', 'A', 'B']}))


@pytest.mark.parametrize('column,expected', [
    ('isdmn', 'dmn'),
    ('is_DMN', 'dmn'),
    ('dmn', 'dmn'),
    ('Salience', 'salience'),
])
def test_normalize_network_name(column, expected):
    assert normalize_network_name(column) == expected


class TestLoadRegionTable:

    def test_csv_with_flag_column(self, tmp_path):
        labels_file = tmp_path / 'labels.csv'
        pd.DataFrame({
            'label_num': [1, 2, 3],
            'label_name': ['Precuneus_L', 'Calcarine_L', 'Angular_R'],
            'isdmn': [1, 0, 1],
            'lobe': ['parietal', 'occipital', 'parietal'],
        }).to_csv(labels_file, index=False)

        table = load_region_table(labels_file)

        assert table.labels == [1, 2, 3]
        assert table.networks == ['dmn']
        assert table.network_names('dmn') == ['Precuneus_L', 'Angular_R']

    def test_text_file_gets_default_mode_by_name(self, tmp_path):
        labels_file = tmp_path / 'labels.txt'
        labels_file.write_text("# AAL subset\n1 Precuneus_L\n2 Calcarine_L\n3 Cingulum_Post_R\n")

        table = load_region_table(labels_file)

        assert table.get_name(2) == 'Calcarine_L'
        assert table.network_labels('dmn') == [1, 3]

    def test_without_default_networks(self, tmp_path):
        labels_file = tmp_path / 'labels.txt'
        labels_file.write_text("1 Precuneus_L\n")

        table = load_region_table(labels_file, default_networks=False)

        assert table.networks == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_region_table(tmp_path / 'labels.csv')

    def test_missing_name_column(self):
        with pytest.raises(ValueError):
            region_table_from_dataframe(pd.DataFrame({'label': [1], 'volume': [10.0]}))


def test_labels_present_within_mask():
    labels = np.array([[0, 1, 2], [3, 3, 0]], dtype=float)
    mask = np.array([[1, 1, 0], [1, 0, 0]])

    assert labels_present(labels).tolist() == [1, 2, 3]
    assert labels_present(labels, mask).tolist() == [1, 3]
