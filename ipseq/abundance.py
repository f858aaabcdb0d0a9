"""
Input abundance statistics for IP-seq pipeline.

Normalized mean, standard deviation and noise (coefficient of variation)
of each gene across the input replicates of a cell type.
"""

import copy
import os

import numpy as np
import pandas as pd

from .grouping import input_samples
from .normalization import median_of_ratios, normalize_counts
from .utils import per_cell_type, save_data, write_table


def summarize_abundance(counts, sample_cols, cell_type, size_factors=None):
    """
    Summarize normalized input abundance for one cell type.

    Parameters
    ----------
    counts : pd.DataFrame
        Gene-level count matrix.
    sample_cols : list of str
        Input replicate columns of the cell type.
    cell_type : str
        Used to name the output columns.
    size_factors : pd.Series or array-like, optional
        One factor per column. Estimated by median-of-ratios if omitted.

    Returns
    -------
    pd.DataFrame
        ``<cellType>.mean``, ``<cellType>.sd`` and ``<cellType>.noise``
        (sd / mean), one row per gene in matrix order.

    Example
    -------
    >>> stats = summarize_abundance(counts, ['ESC_1_Input', 'ESC_2_Input', 'ESC_3_Input'], 'ESC')
    """
    sample_cols = list(sample_cols)
    if size_factors is None:
        size_factors = median_of_ratios(counts[sample_cols])
    else:
        size_factors = pd.Series(np.asarray(size_factors, dtype=float), index=sample_cols)

    normed = normalize_counts(counts, size_factors)
    mean = normed.mean(axis=1, skipna=True)
    sd = normed.std(axis=1, skipna=True, ddof=1)

    with np.errstate(divide='ignore', invalid='ignore'):
        noise = sd / mean.replace(0, np.nan)

    return pd.DataFrame({
        f'{cell_type}.mean': mean,
        f'{cell_type}.sd': sd,
        f'{cell_type}.noise': noise,
    }, index=counts.index)


def abundance_ip(data):
    """
    Compute input abundance statistics for every cell type.

    Only the paired input (baseline) samples are used; immunoprecipitation
    and control samples are excluded.

    Parameters
    ----------
    data : dict
        Output from prep_ip() or any later step.

    Returns
    -------
    dict
        Updated data dictionary with 'abundance': pd.DataFrame with ``gene``
        plus mean / sd / noise columns per cell type.

    Example
    -------
    >>> data = enrich_ip(data)
    >>> data = abundance_ip(data)
    """

    print("\n" + "="*80)
    print("INPUT ABUNDANCE")
    print("="*80)

    counts = data['counts']
    config = data['config']
    cell_types = config['samples']['cell_types']
    input_condition = config['samples']['input_condition']

    def _stage(cell_type):
        cols = input_samples(counts, cell_type, input_condition)
        print(f"  {cell_type}: {len(cols)} {input_condition} replicates")
        return summarize_abundance(counts, cols, cell_type)

    print(f"\nSummarizing {input_condition} samples...")
    stats = per_cell_type(_stage, cell_types)

    abundance = pd.concat([counts[['gene']]] + list(stats.values()), axis=1)

    path = os.path.join(data['output_dirs']['tables'], 'abundance.csv')
    write_table(abundance, path)
    print(f"\n  > Saved: abundance.csv ({len(abundance)} genes)")

    data_updated = copy.copy(data)
    data_updated['abundance'] = abundance

    output_path = os.path.join(config['data_paths']['output_dir'], 'data_after_abundance.pkl')
    save_data(data_updated, output_path)

    print("\n" + "="*80)
    print("Next step: summary_ip() to assemble the final table")
    print("="*80 + "\n")

    return data_updated
