"""
Normalization functions for IP-seq pipeline.

Median-of-ratios size factors per comparison, with an optional yield
correction for isotype-control pulldowns that recover far less material
than the immunoprecipitation they are compared against.
"""

import copy
import os

import numpy as np
import pandas as pd
from pydeseq2.preprocessing import deseq2_norm

from .grouping import build_exclusions, select_samples
from .utils import comparison_name, save_data, write_table


def median_of_ratios(counts):
    """
    Compute per-sample size factors with the median-of-ratios estimator.

    Each sample's factor is the median, over genes with a non-zero count in
    every sample, of the ratio between its count and the gene's geometric
    mean across samples.

    Parameters
    ----------
    counts : pd.DataFrame
        Genes x samples count matrix (sample columns only).

    Returns
    -------
    pd.Series
        One strictly positive, finite factor per sample.

    Raises
    ------
    ValueError
        If a sample has no counts at all, or no gene is non-zero in every
        sample.
    """
    values = counts.to_numpy(dtype=float)

    empty = [col for col, total in zip(counts.columns, np.nansum(values, axis=0)) if total <= 0]
    if empty:
        raise ValueError(f"Cannot estimate size factors: samples with no counts: {empty}")

    usable = np.all(values > 0, axis=1)
    if not usable.any():
        raise ValueError(
            "Cannot estimate size factors: every gene has a zero count in at least one sample"
        )

    _, factors = deseq2_norm(counts.T.astype(float))

    return pd.Series(np.asarray(factors, dtype=float), index=counts.columns, name='size_factor')


def yield_adjusted_size_factors(counts, bottom_cols, top_cols, yield_ratio=None):
    """
    Size factors for one comparison, optionally yield-corrected.

    Parameters
    ----------
    counts : pd.DataFrame
        Gene-level count matrix containing at least the given columns.
    bottom_cols, top_cols : list of str
        Reference and numerator sample columns.
    yield_ratio : float, optional
        Multiplier applied to the bottom-condition factors. Top-condition
        factors keep their baseline value.

    Returns
    -------
    pd.Series
        Factors ordered bottom columns first, then top columns.
    """
    columns = list(bottom_cols) + list(top_cols)
    factors = median_of_ratios(counts[columns])

    if yield_ratio is not None:
        if yield_ratio <= 0:
            raise ValueError(f"yield_ratio must be positive, got {yield_ratio}")
        factors.loc[list(bottom_cols)] = factors.loc[list(bottom_cols)] * float(yield_ratio)

    return factors


def normalize_counts(counts, size_factors):
    """Divide each sample column by its size factor."""
    columns = list(size_factors.index)
    return counts[columns].div(size_factors, axis=1)


def norm_ip(data, yield_ratio='config'):
    """
    Compute size factors for every comparison and cell type.

    For each configured comparison and each cell type, the paired samples
    are selected (replicate exclusions applied) and median-of-ratios size
    factors are computed on the bottom + top columns. When the bottom
    condition is the isotype control, the bottom factors are multiplied by
    the yield ratio.

    Parameters
    ----------
    data : dict
        Output from prep_ip().
    yield_ratio : float, None or 'config', optional
        Yield correction for control-referenced comparisons. 'config'
        (default) reads ``normalization.yield_ratio``; None disables it.

    Returns
    -------
    dict
        Updated data dictionary with:
        - 'groups': {(comparison, cell_type): sample group}
        - 'size_factors': {(comparison, cell_type): pd.Series}
        - 'normalization': parameters used

    Example
    -------
    >>> data = prep_ip('config/experiment.yaml')
    >>> data = norm_ip(data)
    """

    print("\n" + "="*80)
    print("SIZE-FACTOR NORMALIZATION")
    print("="*80)

    counts = data['counts']
    config = data['config']
    cell_types = config['samples']['cell_types']
    control = config['samples']['control_condition']
    exclusions = build_exclusions(config['samples'].get('replicate_exclusions'))

    if yield_ratio == 'config':
        yield_ratio = config['normalization'].get('yield_ratio')

    print(f"\nYield ratio: {yield_ratio if yield_ratio is not None else 'none'}"
          f" (applied when bottom condition is {control})")
    print(f"Replicate exclusions: {len(exclusions)}")
    for (cell_type, condition), reps in sorted(exclusions.items()):
        print(f"  {cell_type} {condition}: replicates {sorted(reps)}")

    groups = {}
    size_factors = {}
    rows = []

    # =========================================================================
    # 1. GROUP SAMPLES AND COMPUTE FACTORS
    # =========================================================================
    print(f"\n[1/2] Computing size factors...")

    for comparison in config['comparisons']:
        top, bottom = comparison['top'], comparison['bottom']
        name = comparison_name(top, bottom)
        adjust = yield_ratio if bottom == control else None

        print(f"\n  {name}:")
        for cell_type in cell_types:
            group = select_samples(counts, cell_type, top, bottom, exclusions)
            factors = yield_adjusted_size_factors(counts, group['bottom'], group['top'], adjust)

            groups[(name, cell_type)] = group
            size_factors[(name, cell_type)] = factors

            formatted = ', '.join(f"{v:.3f}" for v in factors.values)
            print(f"    {cell_type}: {group['replicate_count']} replicates, factors [{formatted}]")

            for sample, value in factors.items():
                rows.append({
                    'comparison': name,
                    'cell_type': cell_type,
                    'sample': sample,
                    'size_factor': value,
                    'yield_adjusted': adjust is not None and sample in group['bottom'],
                })

    # =========================================================================
    # 2. SAVE FACTORS
    # =========================================================================
    print(f"\n[2/2] Saving size factors...")

    factors_path = os.path.join(data['output_dirs']['tables'], 'size_factors.csv')
    write_table(pd.DataFrame(rows), factors_path)
    print(f"  > Saved: size_factors.csv ({len(rows)} rows)")

    data_updated = copy.copy(data)
    data_updated['groups'] = groups
    data_updated['size_factors'] = size_factors
    data_updated['normalization'] = {
        'method': 'median_of_ratios',
        'yield_ratio': yield_ratio,
        'yield_condition': control,
    }

    # Auto-save for sequential workflow
    output_path = os.path.join(config['data_paths']['output_dir'], 'data_after_norm.pkl')
    save_data(data_updated, output_path)

    print("\n" + "="*80)
    print("NORMALIZATION COMPLETE")
    print("="*80)
    print(f"\nNext step: stat_ip() for differential enrichment")
    print("="*80 + "\n")

    return data_updated
