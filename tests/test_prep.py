"""Tests for ipseq.prep module."""

import os

import numpy as np
import pandas as pd
import pytest

from ipseq import ConfigurationError, aggregate_sites, prep_ip

from conftest import write_experiment


def _sites(rows):
    base = {'chr': 'chr1', 'region_start': 1, 'region_end': 2, 'strand': '+'}
    return pd.DataFrame([{**base, **r} for r in rows])


class TestAggregateSites:
    def test_sums_sites_and_drops_intergenic(self):
        sites = _sites([
            {'gene': 'X', 'site_type': 'CDS', 'ESC_1_Input': 3},
            {'gene': 'X', 'site_type': 'UTR3', 'ESC_1_Input': 5},
            {'gene': 'X', 'site_type': 'intergenic', 'ESC_1_Input': 100},
        ])

        genes = aggregate_sites(sites)

        assert list(genes.columns) == ['gene', 'ESC_1_Input']
        assert genes.set_index('gene').loc['X', 'ESC_1_Input'] == 8
        assert len(genes) == 1

    def test_missing_counts_are_skipped(self):
        sites = _sites([
            {'gene': 'Y', 'site_type': 'CDS', 'ESC_1_Input': 4, 'ESC_2_Input': np.nan},
            {'gene': 'Y', 'site_type': 'CDS', 'ESC_1_Input': np.nan, 'ESC_2_Input': 6},
        ])

        genes = aggregate_sites(sites).set_index('gene')

        assert genes.loc['Y', 'ESC_1_Input'] == 4
        assert genes.loc['Y', 'ESC_2_Input'] == 6

    def test_gene_with_only_intergenic_sites_is_absent(self):
        sites = _sites([
            {'gene': 'A', 'site_type': 'CDS', 'ESC_1_Input': 1},
            {'gene': 'B', 'site_type': 'intergenic', 'ESC_1_Input': 9},
        ])

        genes = aggregate_sites(sites)

        assert genes['gene'].tolist() == ['A']

    def test_positional_columns_dropped(self, site_table):
        genes = aggregate_sites(site_table)
        for col in ['chr', 'region_start', 'region_end', 'strand', 'site_type']:
            assert col not in genes.columns

    def test_one_row_per_gene(self, site_table):
        genes = aggregate_sites(site_table)
        assert genes['gene'].is_unique
        assert set(genes['gene']) == set(site_table['gene'])

    def test_matches_genic_totals(self, site_table):
        genes = aggregate_sites(site_table).set_index('gene')
        genic = site_table[site_table['site_type'] != 'intergenic']
        expected = genic.groupby('gene')['ESC_1_TIA1'].sum()

        pd.testing.assert_series_equal(
            genes['ESC_1_TIA1'].sort_index(), expected.sort_index(), check_dtype=False
        )


class TestPrepIp:
    def test_returns_required_keys(self, prepped_data):
        assert 'counts' in prepped_data
        assert 'config' in prepped_data
        assert 'samples' in prepped_data
        assert 'metadata' in prepped_data
        assert 'output_dirs' in prepped_data

    def test_sample_metadata_parsed(self, prepped_data):
        samples = prepped_data['samples']
        assert len(samples) == 27
        assert set(samples['cell_type']) == {'ESC', 'NPC', 'Neu'}
        assert set(samples['condition']) == {'Input', 'TIA1', 'IgG'}
        assert set(samples['replicate']) == {1, 2, 3}

    def test_metadata_counts_are_consistent(self, prepped_data):
        metadata = prepped_data['metadata']
        assert metadata['n_genes'] == len(prepped_data['counts'])
        assert metadata['n_samples'] == len(prepped_data['samples'])
        assert metadata['n_intergenic_sites'] == 5

    def test_writes_gene_counts(self, prepped_data):
        path = os.path.join(prepped_data['output_dirs']['tables'], 'gene_counts.csv')
        assert os.path.exists(path)

    def test_checkpoint_saved(self, prepped_data):
        output_dir = prepped_data['config']['data_paths']['output_dir']
        assert os.path.exists(os.path.join(output_dir, 'data_after_prep.pkl'))

    def test_missing_required_column_raises(self, tmp_path, site_table):
        config_path = write_experiment(tmp_path, site_table.drop(columns=['strand']))
        with pytest.raises(ConfigurationError):
            prep_ip(config_path)
