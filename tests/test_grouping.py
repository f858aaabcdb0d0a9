"""Tests for ipseq.grouping module."""

import pandas as pd
import pytest

from ipseq import ConfigurationError, build_exclusions, select_samples
from ipseq.grouping import input_samples


@pytest.fixture
def counts():
    columns = ['gene'] + [
        f'{ct}_{rep}_{cond}'
        for ct in ('ESC', 'NPC')
        for cond in ('Input', 'TIA1', 'IgG')
        for rep in (3, 1, 2)
    ]
    return pd.DataFrame([[f'g{i}'] + [1] * (len(columns) - 1) for i in range(3)], columns=columns)


@pytest.fixture
def exclusions():
    return build_exclusions([{'cell_type': 'NPC', 'condition': 'IgG', 'exclude': [1]}])


class TestBuildExclusions:
    def test_keyed_by_cell_type_and_condition(self, exclusions):
        assert exclusions == {('NPC', 'IgG'): frozenset({1})}

    def test_merges_repeated_keys(self):
        result = build_exclusions([
            {'cell_type': 'Neu', 'condition': 'IgG', 'exclude': [1]},
            {'cell_type': 'Neu', 'condition': 'IgG', 'exclude': ['3']},
        ])
        assert result[('Neu', 'IgG')] == frozenset({1, 3})

    def test_empty(self):
        assert build_exclusions(None) == {}

    def test_malformed_entry_raises(self):
        with pytest.raises(ConfigurationError):
            build_exclusions([{'cell_type': 'Neu', 'exclude': [1]}])


class TestSelectSamples:
    def test_columns_ordered_by_replicate(self, counts):
        group = select_samples(counts, 'ESC', 'TIA1', 'Input')

        assert group['top'] == ['ESC_1_TIA1', 'ESC_2_TIA1', 'ESC_3_TIA1']
        assert group['bottom'] == ['ESC_1_Input', 'ESC_2_Input', 'ESC_3_Input']
        assert group['replicate_count'] == 3
        assert group['excluded'] == []

    def test_exclusion_applies_to_both_sides(self, counts, exclusions):
        group = select_samples(counts, 'NPC', 'TIA1', 'IgG', exclusions)

        assert group['bottom'] == ['NPC_2_IgG', 'NPC_3_IgG']
        assert group['top'] == ['NPC_2_TIA1', 'NPC_3_TIA1']
        assert group['replicates'] == [2, 3]
        assert group['replicate_count'] == 2
        assert group['excluded'] == [1]

    def test_exclusion_only_for_its_cell_type(self, counts, exclusions):
        group = select_samples(counts, 'ESC', 'TIA1', 'IgG', exclusions)
        assert group['replicate_count'] == 3

    def test_exclusion_only_for_bottom_condition(self, counts, exclusions):
        group = select_samples(counts, 'NPC', 'IgG', 'Input', exclusions)
        assert group['replicate_count'] == 3

    def test_missing_cell_type_raises(self, counts):
        with pytest.raises(ConfigurationError, match='Neu'):
            select_samples(counts, 'Neu', 'TIA1', 'Input')

    def test_missing_condition_raises(self, counts):
        with pytest.raises(ConfigurationError, match='IgG2'):
            select_samples(counts, 'ESC', 'TIA1', 'IgG2')

    def test_unpaired_replicates_raise(self, counts):
        unpaired = counts.drop(columns=['ESC_2_TIA1'])
        with pytest.raises(ConfigurationError):
            select_samples(unpaired, 'ESC', 'TIA1', 'Input')

    def test_does_not_match_prefix_cell_types(self, counts):
        extra = counts.assign(ESCX_1_TIA1=1)
        group = select_samples(extra, 'ESC', 'TIA1', 'Input')
        assert 'ESCX_1_TIA1' not in group['top']


class TestInputSamples:
    def test_returns_input_columns(self, counts):
        assert input_samples(counts, 'NPC', 'Input') == ['NPC_1_Input', 'NPC_2_Input', 'NPC_3_Input']

    def test_missing_raises(self, counts):
        with pytest.raises(ConfigurationError):
            input_samples(counts, 'Neu', 'Input')
