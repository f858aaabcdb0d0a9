"""
Enrichment classification for IP-seq pipeline.

Labels each gene Enriched or Noise per cell type from the merged
target-vs-control differential table.
"""

import copy
import os

import numpy as np
import pandas as pd

from .utils import comparison_name, per_cell_type, save_data, write_table

LABELS = ['Enriched', 'Noise']


def _threshold_for(log2fc_threshold, cell_type):
    if isinstance(log2fc_threshold, dict):
        return float(log2fc_threshold[cell_type])
    return float(log2fc_threshold)


def label_cell_type(cell_type, merged, top, bottom, log2fc_threshold=0.58, alpha=0.05):
    """
    Enrichment labels of one cell type.

    A gene is Enriched iff ``log2FC > threshold`` and ``padj < alpha``;
    missing values on either side make it Noise.

    Returns
    -------
    pd.Series
        Categorical labels aligned with ``merged.index``.
    """
    threshold = _threshold_for(log2fc_threshold, cell_type)
    lfc = merged[f'log2_{top}_{bottom}_{cell_type}']
    padj = merged[f'padj_{cell_type}']

    # NaN comparisons are False, so missing values fall through to Noise
    enriched = (lfc > threshold) & (padj < alpha)

    return pd.Series(
        pd.Categorical(np.where(enriched, 'Enriched', 'Noise'), categories=LABELS),
        index=merged.index,
        name=f'{cell_type}.enrichment',
    )


def classify_enrichment(merged, cell_types, top, bottom, log2fc_threshold=0.58, alpha=0.05):
    """
    Classify genes as Enriched or Noise in every cell type.

    Parameters
    ----------
    merged : pd.DataFrame
        Output from merge_comparison() for the target-vs-control comparison.
    cell_types : list of str
        Cell types to label.
    top, bottom : str
        Conditions of the comparison, used to find the fold-change columns.
    log2fc_threshold : float or dict, optional
        Log2 fold-change cutoff, either one value or one per cell type
        (default: 0.58, about 1.5-fold).
    alpha : float, optional
        Adjusted p-value cutoff (default: 0.05).

    Returns
    -------
    pd.DataFrame
        ``gene`` plus one ``<cellType>.enrichment`` column per cell type,
        in the same row order and index as ``merged``.

    Example
    -------
    >>> labels = classify_enrichment(merged, ['ESC', 'NPC', 'Neu'], 'TIA1', 'IgG')
    >>> labels['ESC.enrichment'].value_counts()
    """
    labels = per_cell_type(
        label_cell_type,
        cell_types,
        merged=merged,
        top=top,
        bottom=bottom,
        log2fc_threshold=log2fc_threshold,
        alpha=alpha,
    )
    return pd.concat([merged[['gene']]] + list(labels.values()), axis=1)


def enrich_ip(data, log2fc_threshold=None, alpha=None):
    """
    Classify target-bound genes from the target-vs-control comparison.

    Parameters
    ----------
    data : dict
        Output from stat_ip().
    log2fc_threshold : float or dict, optional
        Fold-change cutoff (default: ``enrichment.log2fc_threshold``).
    alpha : float, optional
        Adjusted p-value cutoff (default: ``enrichment.alpha``).

    Returns
    -------
    dict
        Updated data dictionary with:
        - 'enrichment': pd.DataFrame of labels
        - 'enrichment_params': parameters used

    Example
    -------
    >>> data = stat_ip(data)
    >>> data = enrich_ip(data, log2fc_threshold={'ESC': 0.58, 'NPC': 0.58, 'Neu': 1.0})
    """

    print("\n" + "="*80)
    print("ENRICHMENT CLASSIFICATION")
    print("="*80)

    config = data['config']
    params = config['enrichment']
    cell_types = config['samples']['cell_types']

    top = params['comparison']['top']
    bottom = params['comparison']['bottom']
    name = comparison_name(top, bottom)
    log2fc_threshold = params['log2fc_threshold'] if log2fc_threshold is None else log2fc_threshold
    alpha = params['alpha'] if alpha is None else alpha

    if name not in data['stats_results']:
        raise KeyError(f"Comparison {name} was not run by stat_ip()")

    print(f"\nComparison: {name}")
    print(f"  Log2 FC > {log2fc_threshold}")
    print(f"  Adjusted p < {alpha}")

    labels = classify_enrichment(
        data['stats_results'][name],
        cell_types,
        top,
        bottom,
        log2fc_threshold=log2fc_threshold,
        alpha=alpha,
    )

    print(f"\nEnriched genes:")
    for cell_type in cell_types:
        n_enriched = int((labels[f'{cell_type}.enrichment'] == 'Enriched').sum())
        print(f"  {cell_type}: {n_enriched} / {len(labels)}")

    path = os.path.join(data['output_dirs']['tables'], 'enrichment.csv')
    write_table(labels, path)
    print(f"\n  > Saved: enrichment.csv")

    data_updated = copy.copy(data)
    data_updated['enrichment'] = labels
    data_updated['enrichment_params'] = {
        'comparison': name,
        'log2fc_threshold': log2fc_threshold,
        'alpha': alpha,
    }

    output_path = os.path.join(config['data_paths']['output_dir'], 'data_after_enrich.pkl')
    save_data(data_updated, output_path)

    print("\n" + "="*80)
    print("Next step: abundance_ip() for input abundance statistics")
    print("="*80 + "\n")

    return data_updated
