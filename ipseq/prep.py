"""
Data preparation functions for IP-seq pipeline.

Handles loading the site-level count table, validating its columns,
collapsing sites into gene-level counts and parsing sample metadata.
"""

import os

import pandas as pd

from .utils import (
    POSITIONAL_COLUMNS,
    REQUIRED_COLUMNS,
    ConfigurationError,
    _create_output_dirs,
    _identify_sample_columns,
    _load_config,
    parse_sample_name,
    save_data,
    write_table,
)


def aggregate_sites(sites, sample_cols=None, gene_col='gene',
                    site_type_col='site_type', intergenic='intergenic'):
    """
    Collapse site-level counts into gene-level counts.

    Intergenic sites do not belong to any annotated gene and are dropped
    before summing. Missing counts contribute zero to a gene's total.

    Parameters
    ----------
    sites : pd.DataFrame
        One row per site with ``gene``, ``site_type``, positional columns
        and one count column per sample.
    sample_cols : list of str, optional
        Count columns to sum. Defaults to every column matching the
        ``<cellType>_<digit>_<condition>`` pattern.
    gene_col : str, optional
        Gene identifier column (default: 'gene').
    site_type_col : str, optional
        Site category column (default: 'site_type').
    intergenic : str, optional
        Site type value marking intergenic rows (default: 'intergenic').

    Returns
    -------
    pd.DataFrame
        One row per gene, ``gene`` column first, integer counts.

    Example
    -------
    >>> genes = aggregate_sites(sites)
    >>> genes.set_index('gene').loc['Actb', 'ESC_1_TIA1']
    """
    if sample_cols is None:
        sample_cols = _identify_sample_columns(sites.columns)

    genic = sites[sites[site_type_col] != intergenic]
    genic = genic.drop(columns=[c for c in POSITIONAL_COLUMNS if c in genic.columns])

    counts = (
        genic.groupby(gene_col, sort=True)[list(sample_cols)]
        .sum(min_count=0)
        .round()
        .astype('int64')
        .reset_index()
    )
    return counts


def sample_metadata(sample_cols):
    """Build the per-sample design table from column names."""
    rows = []
    for col in sample_cols:
        parsed = parse_sample_name(col)
        if parsed is None:
            raise ConfigurationError(f"Not a sample column name: {col!r}")
        rows.append({'sample': col, **parsed})
    return pd.DataFrame(rows, columns=['sample', 'cell_type', 'replicate', 'condition'])


def prep_ip(config_path):
    """
    Load and prepare IP-seq count data for analysis.

    This function:
    1. Loads the YAML configuration file
    2. Reads the site-level count table
    3. Validates required columns and identifies sample columns
    4. Collapses sites into gene-level counts (intergenic sites removed)
    5. Parses sample metadata from column names
    6. Creates output directory structure

    Parameters
    ----------
    config_path : str
        Path to YAML configuration file.

    Returns
    -------
    dict
        Dictionary containing:
        - 'counts': pd.DataFrame of gene-level counts (``gene`` column + samples)
        - 'config': loaded configuration dictionary
        - 'samples': pd.DataFrame of sample metadata
        - 'metadata': summary statistics about the data
        - 'output_dirs': paths to output directories

    Example
    -------
    >>> data = prep_ip('config/experiment.yaml')
    >>> counts = data['counts']
    >>> print(f"Loaded {len(counts)} genes")
    """

    print("\n" + "="*80)
    print("STEP 1: LOADING DATA AND CONFIGURATION")
    print("="*80)

    config = _load_config(config_path)
    cell_types = config['samples']['cell_types']

    print(f"\n> Configuration loaded")
    print(f"  Experiment: {config['experiment']['name']}")
    print(f"  Cell types: {', '.join(cell_types)}")
    print(f"  Comparisons: {', '.join(c['top'] + '/' + c['bottom'] for c in config['comparisons'])}")

    # =========================================================================
    # 1. LOAD SITE COUNTS
    # =========================================================================
    print(f"\n[1/4] Loading site counts...")

    input_file = config['data_paths']['input_file']
    sites = pd.read_csv(input_file, dtype={'gene': str})

    print(f"  > Loaded {sites.shape[0]} sites, {sites.shape[1]} columns")

    missing = [c for c in REQUIRED_COLUMNS if c not in sites.columns]
    if missing:
        raise ConfigurationError(f"Input table is missing required columns: {missing}")

    # =========================================================================
    # 2. IDENTIFY SAMPLE COLUMNS
    # =========================================================================
    print(f"\n[2/4] Identifying sample columns...")

    sample_cols = _identify_sample_columns(sites.columns)
    samples = sample_metadata(sample_cols)

    for cell_type in cell_types:
        subset = samples[samples['cell_type'] == cell_type]
        per_condition = subset.groupby('condition')['sample'].count().to_dict()
        print(f"  {cell_type}: {per_condition}")

    unused = [c for c in sites.columns if c not in sample_cols and c not in REQUIRED_COLUMNS]
    if unused:
        print(f"  Warning: ignoring unrecognized columns: {', '.join(unused)}")

    # =========================================================================
    # 3. AGGREGATE SITES TO GENES
    # =========================================================================
    print(f"\n[3/4] Aggregating sites to genes...")

    n_intergenic = int((sites['site_type'] == 'intergenic').sum())
    counts = aggregate_sites(sites, sample_cols)

    print(f"  > Removed {n_intergenic} intergenic sites")
    print(f"  > {len(sites) - n_intergenic} genic sites collapsed into {len(counts)} genes")

    # =========================================================================
    # 4. CREATE OUTPUT DIRECTORIES
    # =========================================================================
    print(f"\n[4/4] Creating output directories...")

    output_dir = config['data_paths']['output_dir']
    output_dirs = _create_output_dirs(output_dir)

    counts_path = os.path.join(output_dirs['tables'], 'gene_counts.csv')
    write_table(counts, counts_path)
    print(f"  > Saved: gene_counts.csv")
    print(f"    {len(counts)} genes x {len(sample_cols)} samples")

    metadata = {
        'n_sites': len(sites),
        'n_intergenic_sites': n_intergenic,
        'n_genes': len(counts),
        'n_samples': len(sample_cols),
        'cell_types': cell_types,
        'conditions': sorted(samples['condition'].unique().tolist()),
    }

    print("\n" + "="*80)
    print("DATA PREPARATION COMPLETE")
    print("="*80)
    print(f"\nSites loaded:            {metadata['n_sites']}")
    print(f"Genes after aggregation: {metadata['n_genes']}")
    print(f"Total samples:           {metadata['n_samples']}")
    print("\nNext step: norm_ip() for size-factor normalization")
    print("="*80 + "\n")

    return_data = {
        'counts': counts,
        'config': config,
        'samples': samples,
        'metadata': metadata,
        'output_dirs': output_dirs
    }

    # Auto-save for sequential workflow
    save_path = os.path.join(output_dir, 'data_after_prep.pkl')
    save_data(return_data, save_path)

    return return_data
