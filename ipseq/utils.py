"""
Utility functions for IP-seq pipeline.

Internal helpers for configuration loading, sample-name parsing,
directory management, table output and data serialization.
"""

import copy
import os
import pickle
import re

import yaml


SAMPLE_PATTERN = re.compile(r'^(?P<cell_type>[^_]+)_(?P<replicate>\d)_(?P<condition>[^_]+)$')

POSITIONAL_COLUMNS = ['chr', 'region_start', 'region_end', 'strand', 'site_type']
REQUIRED_COLUMNS = ['gene'] + POSITIONAL_COLUMNS

_DEFAULT_CONFIG = {
    'experiment': {'name': 'IP-seq enrichment'},
    'samples': {
        'cell_types': ['ESC', 'NPC', 'Neu'],
        'input_condition': 'Input',
        'target_condition': 'TIA1',
        'control_condition': 'IgG',
        'replicate_exclusions': [
            {'cell_type': 'NPC', 'condition': 'IgG', 'exclude': [1]},
            {'cell_type': 'Neu', 'condition': 'IgG', 'exclude': [1]},
        ],
    },
    'comparisons': [
        {'top': 'TIA1', 'bottom': 'Input'},
        {'top': 'IgG', 'bottom': 'Input'},
        {'top': 'TIA1', 'bottom': 'IgG'},
    ],
    'normalization': {
        'yield_ratio': 1.5,
    },
    'statistics': {
        'alpha': 0.05,
        'correction': 'independent_filter',
        'dispersion_trend': 'parametric',
        'n_jobs': 1,
    },
    'enrichment': {
        'comparison': {'top': 'TIA1', 'bottom': 'IgG'},
        'log2fc_threshold': 0.58,
        'alpha': 0.05,
    },
}


class ConfigurationError(ValueError):
    """Raised when the samples on disk do not match the configured experiment."""


def _merge_defaults(defaults, overrides):
    """Recursively fill missing keys of ``overrides`` from ``defaults``."""
    merged = copy.deepcopy(defaults)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_config(config_path):
    """Load YAML config file and fill in pipeline defaults."""
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}
    return _merge_defaults(_DEFAULT_CONFIG, config)


def parse_sample_name(name):
    """
    Split a sample column name into its design attributes.

    Parameters
    ----------
    name : str
        Column name such as ``'ESC_1_TIA1'``.

    Returns
    -------
    dict or None
        ``{'cell_type', 'replicate', 'condition'}``, or None when the name
        does not follow the ``<cellType>_<digit>_<condition>`` pattern.
    """
    match = SAMPLE_PATTERN.match(str(name))
    if match is None:
        return None
    return {
        'cell_type': match.group('cell_type'),
        'replicate': int(match.group('replicate')),
        'condition': match.group('condition'),
    }


def _identify_sample_columns(columns):
    """Return the columns that look like sample count columns, in file order."""
    return [c for c in columns if parse_sample_name(c) is not None]


def comparison_name(top, bottom):
    """Canonical ``<top>_vs_<bottom>`` label for a comparison."""
    return f"{top}_vs_{bottom}"


def per_cell_type(stage, cell_types, **kwargs):
    """
    Run one pipeline stage for every cell type.

    Parameters
    ----------
    stage : callable
        Called as ``stage(cell_type, **kwargs)``.
    cell_types : list of str
        Cell types, in output order.

    Returns
    -------
    dict
        Maps each cell type to the stage result, in ``cell_types`` order.
    """
    return {cell_type: stage(cell_type, **kwargs) for cell_type in cell_types}


def write_table(df, path):
    """Write a gene table as CSV: header row, no index, NA as empty field."""
    df.to_csv(path, index=False, na_rep='')
    return path


def _create_output_dirs(base_dir):
    """Create organized output directory structure."""
    dirs = {
        'base': base_dir,
        'figures': f"{base_dir}/figures",
        'viz': f"{base_dir}/figures/viz",
        'tables': f"{base_dir}/tables"
    }

    for dir_path in dirs.values():
        os.makedirs(dir_path, exist_ok=True)

    return dirs


def save_data(data, filename=None):
    """
    Save analysis data to pickle file for sequential workflow.

    Parameters
    ----------
    data : dict
        Analysis data dictionary (output from prep_ip, norm_ip, etc.)
    filename : str, optional
        Custom filename. If None, uses default based on output_dir in config.

    Returns
    -------
    str
        Path where data was saved.

    Example
    -------
    >>> data = prep_ip('config/experiment.yaml')
    >>> save_data(data)  # Saves to results/data_checkpoint.pkl
    """
    if filename is None:
        output_dir = data['config']['data_paths']['output_dir']
        filename = os.path.join(output_dir, 'data_checkpoint.pkl')

    with open(filename, 'wb') as f:
        pickle.dump(data, f)

    size_mb = os.path.getsize(filename) / (1024 * 1024)

    print(f"\n  > Checkpoint saved: {filename} ({size_mb:.1f} MB)")
    print(f"    Reload with: ipseq.load_data('{filename}')")

    return filename


def load_data(filepath):
    """
    Load analysis data from pickle file.

    Parameters
    ----------
    filepath : str
        Path to saved pickle file.

    Returns
    -------
    dict
        Analysis data dictionary.

    Example
    -------
    >>> from ipseq import load_data
    >>> data = load_data('results/data_after_prep.pkl')
    >>> data = norm_ip(data)  # Continue from where you left off
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Data file not found: {filepath}")

    print(f"\n{'='*80}")
    print(f"LOADING DATA")
    print(f"{'='*80}")

    with open(filepath, 'rb') as f:
        data = pickle.load(f)

    size_mb = os.path.getsize(filepath) / (1024 * 1024)

    print(f"Location: {filepath}")
    print(f"Size: {size_mb:.1f} MB")

    if 'metadata' in data:
        print(f"\nData contains:")
        print(f"  Genes: {data['metadata']['n_genes']}")
        print(f"  Samples: {data['metadata']['n_samples']}")
        print(f"  Cell types: {data['metadata']['cell_types']}")

    print(f"{'='*80}\n")

    return data
