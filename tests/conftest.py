"""Shared test fixtures for IP-seq pipeline tests."""

import numpy as np
import pandas as pd
import pytest
import yaml

CELL_TYPES = ['ESC', 'NPC', 'Neu']
CONDITIONS = ['Input', 'TIA1', 'IgG']
N_BOUND = 12


def nb_counts(rng, mean, size, dispersion=0.02):
    """Negative binomial draws with the given mean and dispersion."""
    n = 1.0 / dispersion
    p = n / (n + np.asarray(mean, dtype=float))
    return rng.negative_binomial(n, p, size=size)


def sample_name(cell_type, replicate, condition):
    return f"{cell_type}_{replicate}_{condition}"


@pytest.fixture
def paired_counts():
    """
    Gene-level counts for one cell type: 3 replicates x (Input, TIA1).

    'GeneA' doubles from Input to TIA1 in every replicate, 'GeneB' is flat
    and 'GeneZero' has no counts at all. 300 background genes carry
    negative binomial noise so the dispersion trend can be fitted.
    """
    rng = np.random.default_rng(7)
    n_background = 300
    means = rng.lognormal(mean=np.log(300), sigma=1.0, size=n_background)

    bottom = [f"ESC_{r}_Input" for r in (1, 2, 3)]
    top = [f"ESC_{r}_TIA1" for r in (1, 2, 3)]

    data = {'gene': [f'BG{i:03d}' for i in range(n_background)]}
    for col in bottom + top:
        data[col] = nb_counts(rng, means, n_background)
    counts = pd.DataFrame(data)

    extra = pd.DataFrame({
        'gene': ['GeneA', 'GeneB', 'GeneZero'],
        'ESC_1_Input': [1000, 800, 0],
        'ESC_2_Input': [1100, 850, 0],
        'ESC_3_Input': [950, 780, 0],
        'ESC_1_TIA1': [2000, 800, 0],
        'ESC_2_TIA1': [2200, 850, 0],
        'ESC_3_TIA1': [1900, 780, 0],
    })
    return pd.concat([counts, extra], ignore_index=True)


def _site_table(rng, n_genes=150):
    """Site-level count table covering all cell types and conditions."""
    genes = [f'Gene{i:03d}' for i in range(n_genes)]
    means = rng.lognormal(mean=np.log(200), sigma=1.0, size=n_genes)
    fold = {
        'Input': np.ones(n_genes),
        'TIA1': np.where(np.arange(n_genes) < N_BOUND, 6.0, 1.0),
        'IgG': np.full(n_genes, 0.4),
    }

    samples = [
        sample_name(ct, rep, cond)
        for ct in CELL_TYPES for cond in CONDITIONS for rep in (1, 2, 3)
    ]

    gene_counts = {}
    for name in samples:
        _, _, cond = name.split('_')
        gene_counts[name] = nb_counts(rng, means * fold[cond], n_genes)

    rows = []
    for g, gene in enumerate(genes):
        n_sites = 1 + g % 3
        remaining = {s: gene_counts[s][g] for s in samples}
        for site in range(n_sites):
            row = {
                'gene': gene,
                'chr': f'chr{1 + g % 19}',
                'region_start': 1000 * g + 100 * site,
                'region_end': 1000 * g + 100 * site + 50,
                'strand': '+' if g % 2 else '-',
                'site_type': ['UTR3', 'CDS', 'intron'][site % 3],
            }
            for s in samples:
                if site == n_sites - 1:
                    row[s] = remaining[s]
                else:
                    part = rng.binomial(remaining[s], 0.5)
                    row[s] = part
                    remaining[s] -= part
            rows.append(row)

    # intergenic sites carry a gene id but must never be counted
    for i in range(5):
        row = {
            'gene': genes[i],
            'chr': 'chr1',
            'region_start': 10_000_000 + 100 * i,
            'region_end': 10_000_050 + 100 * i,
            'strand': '+',
            'site_type': 'intergenic',
        }
        for s in samples:
            row[s] = 10_000
        rows.append(row)

    # a gene with no reads anywhere
    zero = {
        'gene': 'GeneZero', 'chr': 'chr2', 'region_start': 5, 'region_end': 55,
        'strand': '+', 'site_type': 'CDS',
    }
    for s in samples:
        zero[s] = 0
    rows.append(zero)

    return pd.DataFrame(rows)


@pytest.fixture
def site_table():
    return _site_table(np.random.default_rng(42))


def write_experiment(tmp_path, sites, **overrides):
    """Write sites + YAML config under tmp_path and return the config path."""
    csv_path = str(tmp_path / 'sites.csv')
    sites.to_csv(csv_path, index=False)

    config = {
        'experiment': {'name': 'Test_Experiment'},
        'data_paths': {
            'input_file': csv_path,
            'output_dir': str(tmp_path / 'results'),
        },
        'samples': {
            'cell_types': CELL_TYPES,
            'input_condition': 'Input',
            'target_condition': 'TIA1',
            'control_condition': 'IgG',
            'replicate_exclusions': [
                {'cell_type': 'NPC', 'condition': 'IgG', 'exclude': [1]},
                {'cell_type': 'Neu', 'condition': 'IgG', 'exclude': [1]},
            ],
        },
        'normalization': {'yield_ratio': 1.5},
        'statistics': {'alpha': 0.05, 'correction': 'independent_filter', 'n_jobs': 1},
        'enrichment': {
            'comparison': {'top': 'TIA1', 'bottom': 'IgG'},
            'log2fc_threshold': 0.58,
            'alpha': 0.05,
        },
    }
    for section, values in overrides.items():
        config[section] = values

    config_path = str(tmp_path / 'test_config.yaml')
    with open(config_path, 'w') as f:
        yaml.dump(config, f)
    return config_path


@pytest.fixture
def sample_config(tmp_path, site_table):
    """Create a YAML config and matching site-level CSV for testing."""
    return write_experiment(tmp_path, site_table), tmp_path


@pytest.fixture
def prepped_data(sample_config):
    """Run prep_ip and return the result for downstream tests."""
    from ipseq import prep_ip

    config_path, tmp_path = sample_config
    return prep_ip(config_path)


@pytest.fixture
def normed_data(prepped_data):
    from ipseq import norm_ip

    return norm_ip(prepped_data)
