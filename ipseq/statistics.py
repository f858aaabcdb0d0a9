"""
Differential enrichment statistics for IP-seq pipeline.

Fits a negative-binomial GLM (count ~ replicate + treatment) per gene with
PyDESeq2, using externally supplied size factors, and applies multiple
testing correction across the genes of each fit.
"""

import copy
import os
import warnings
from concurrent.futures import ProcessPoolExecutor, as_completed

import numpy as np
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.default_inference import DefaultInference
from pydeseq2.ds import DeseqStats
from statsmodels.stats.multitest import multipletests

from .utils import ConfigurationError, comparison_name, per_cell_type, save_data, write_table

RESULT_COLUMNS = ['gene', 'baseMean', 'log2FoldChange', 'pvalue', 'adjustedPValue']

CORRECTIONS = ('independent_filter', 'fdr_bh')
DISPERSION_TRENDS = ('parametric', 'mean')


def design_metadata(group):
    """
    Sample design table for one comparison.

    Rows are ordered bottom samples first, then top samples. ``treatment``
    has the bottom condition as its first (reference) level.
    """
    bottom, top = group['bottom_condition'], group['top_condition']
    samples = list(group['bottom']) + list(group['top'])
    replicates = [str(r) for r in group['replicates']] * 2
    treatments = [bottom] * len(group['bottom']) + [top] * len(group['top'])

    metadata = pd.DataFrame(
        {
            'replicate': pd.Categorical(replicates, categories=[str(r) for r in group['replicates']]),
            'treatment': pd.Categorical(treatments, categories=[bottom, top]),
        },
        index=pd.Index(samples, name='sample'),
    )
    return metadata


def _inject_size_factors(dds, size_factors):
    """Replace the size factors PyDESeq2 estimated with our own."""
    values = np.asarray(size_factors, dtype=float)
    for store in (dds.obs, dds.obsm):
        if 'size_factors' in store:
            store['size_factors'] = values
    dds.layers['normed_counts'] = np.asarray(dds.X, dtype=float) / values[:, None]


def _adjust_pvalues(pvalues):
    """Benjamini-Hochberg over the non-missing p-values."""
    pvalues = np.asarray(pvalues, dtype=float)
    adjusted = np.full(len(pvalues), np.nan)
    valid_mask = ~np.isnan(pvalues)
    if valid_mask.any():
        _, adj_p, _, _ = multipletests(pvalues[valid_mask], method='fdr_bh')
        adjusted[valid_mask] = adj_p
    return adjusted


def _run_pydeseq2(matrix, metadata, contrast, size_factors=None, alpha=0.05,
                  correction='independent_filter', dispersion_trend='parametric', n_cpus=1):
    """
    Run the PyDESeq2 model for one contrast.

    Returns
    -------
    tuple
        (results_df indexed by gene, list of warning messages)
    """
    inference = DefaultInference(n_cpus=int(n_cpus))

    with warnings.catch_warnings(record=True) as wrec:
        warnings.simplefilter('always')

        dds = DeseqDataSet(
            counts=matrix,
            metadata=metadata,
            design='~replicate + treatment',
            fit_type=dispersion_trend,
            refit_cooks=True,
            inference=inference,
            quiet=True,
        )

        dds.fit_size_factors()
        if size_factors is not None:
            _inject_size_factors(dds, size_factors.loc[matrix.index])

        dds.fit_genewise_dispersions()
        dds.fit_dispersion_trend()
        dds.fit_dispersion_prior()
        dds.fit_MAP_dispersions()
        dds.fit_LFC()
        dds.calculate_cooks()
        if dds.refit_cooks:
            dds.refit()

        stat = DeseqStats(
            dds,
            contrast=list(contrast),
            alpha=float(alpha),
            cooks_filter=True,
            independent_filter=(correction == 'independent_filter'),
            inference=inference,
            quiet=True,
        )
        stat.summary()

    messages = [str(getattr(w, 'message', w)) for w in wrec]
    return stat.results_df.copy(), messages


def fit_comparison(counts, group, size_factors=None, alpha=0.05,
                   correction='independent_filter', dispersion_trend='parametric',
                   n_cpus=1):
    """
    Estimate the treatment effect of one comparison in one cell type.

    Parameters
    ----------
    counts : pd.DataFrame
        Gene-level counts with a ``gene`` column and the group's samples.
    group : dict
        Output from select_samples().
    size_factors : pd.Series, optional
        One factor per sample of the group; used as fixed offsets instead of
        the factors PyDESeq2 would estimate.
    alpha : float, optional
        Significance level used by independent filtering (default: 0.05).
    correction : str, optional
        'independent_filter' (PyDESeq2 independent filtering followed by
        Benjamini-Hochberg, default) or 'fdr_bh' (Benjamini-Hochberg on all
        Wald p-values).
    dispersion_trend : str, optional
        'parametric' (default) or 'mean' dispersion trend.
    n_cpus : int, optional
        Threads PyDESeq2 may use inside this fit (default: 1).

    Returns
    -------
    pd.DataFrame
        ``gene, baseMean, log2FoldChange, pvalue, adjustedPValue``, one row
        per gene in input order. Genes with all-zero counts, or whose fit
        did not produce a finite estimate, carry NA.

    Example
    -------
    >>> group = select_samples(counts, 'ESC', 'TIA1', 'Input')
    >>> res = fit_comparison(counts, group)
    """
    results, _ = _fit(counts, group, size_factors, alpha, correction, dispersion_trend, n_cpus)
    return results


def _fit(counts, group, size_factors, alpha, correction, dispersion_trend, n_cpus):
    if correction not in CORRECTIONS:
        raise ConfigurationError(f"Unknown correction {correction!r}; expected one of {CORRECTIONS}")
    if dispersion_trend not in DISPERSION_TRENDS:
        raise ConfigurationError(
            f"Unknown dispersion trend {dispersion_trend!r}; expected one of {DISPERSION_TRENDS}"
        )

    metadata = design_metadata(group)
    genes = counts['gene'].astype(str)
    matrix = counts[list(metadata.index)].fillna(0).round().astype(np.int64)
    matrix.index = pd.Index(genes, name='gene')
    matrix = matrix.T
    matrix.index.name = 'sample'

    contrast = ('treatment', group['top_condition'], group['bottom_condition'])
    res, messages = _run_pydeseq2(
        matrix,
        metadata,
        contrast,
        size_factors=size_factors,
        alpha=alpha,
        correction=correction,
        dispersion_trend=dispersion_trend,
        n_cpus=n_cpus,
    )

    res = res.reindex(genes.values)
    log2fc = res['log2FoldChange'].to_numpy(dtype=float)
    pvalues = res['pvalue'].to_numpy(dtype=float)

    # degenerate genes: all-zero rows and non-finite estimates
    all_zero = (matrix.sum(axis=0) == 0).reindex(genes.values).to_numpy()
    failed = ~np.isfinite(log2fc) | all_zero
    log2fc = np.where(failed, np.nan, log2fc)
    pvalues = np.where(failed | ~np.isfinite(pvalues), np.nan, pvalues)

    if correction == 'fdr_bh':
        padj = _adjust_pvalues(pvalues)
    else:
        padj = res['padj'].to_numpy(dtype=float)
    padj = np.where(failed | ~np.isfinite(padj), np.nan, padj)

    results = pd.DataFrame({
        'gene': genes.values,
        'baseMean': res['baseMean'].to_numpy(dtype=float),
        'log2FoldChange': log2fc,
        'pvalue': pvalues,
        'adjustedPValue': padj,
    }, columns=RESULT_COLUMNS)

    return results, messages


def _fit_worker(payload):
    """
    Worker: run one (comparison, cell type) fit.
    Returns (key, result_df, meta)
    """
    key = payload['key']
    results, messages = _fit(
        payload['counts'],
        payload['group'],
        payload['size_factors'],
        payload['alpha'],
        payload['correction'],
        payload['dispersion_trend'],
        payload['n_cpus'],
    )
    return key, results, {'warnings': messages}


def merge_comparison(results, top, bottom):
    """
    Outer-join per-cell-type results of one comparison on ``gene``.

    Parameters
    ----------
    results : dict
        Maps cell type to the output of fit_comparison().
    top, bottom : str
        Comparison conditions, used in the column names.

    Returns
    -------
    pd.DataFrame
        ``gene`` plus ``log2_<top>_<bottom>_<cellType>`` and
        ``padj_<cellType>`` for every cell type.
    """
    merged = None
    for cell_type, res in results.items():
        part = res[['gene', 'log2FoldChange', 'adjustedPValue']].rename(columns={
            'log2FoldChange': f'log2_{top}_{bottom}_{cell_type}',
            'adjustedPValue': f'padj_{cell_type}',
        })
        merged = part if merged is None else merged.merge(part, on='gene', how='outer')
    return merged.reset_index(drop=True)


def _summarize_fit(name, cell_type, group, res, meta, alpha):
    lfc = res['log2FoldChange']
    padj = res['adjustedPValue']
    significant = padj < alpha
    return {
        'comparison': name,
        'cell_type': cell_type,
        'replicates': group['replicate_count'],
        'genes': len(res),
        'tested': int(padj.notna().sum()),
        'significant_up': int((significant & (lfc > 0)).sum()),
        'significant_down': int((significant & (lfc < 0)).sum()),
        'na_estimates': int(lfc.isna().sum()),
        'warnings': len(meta['warnings']),
    }


def stat_ip(data, alpha=None, correction=None, dispersion_trend=None, n_jobs=None):
    """
    Run the differential enrichment model for every comparison.

    For each comparison x cell type:
    - Fits count ~ replicate + treatment with the size factors from norm_ip()
    - Extracts log2 fold change and Wald p-value of the treatment effect
    - Applies multiple testing correction

    Results are then merged per comparison across cell types.

    Parameters
    ----------
    data : dict
        Output from norm_ip().
    alpha : float, optional
        Significance level (default: ``statistics.alpha`` from config).
    correction : str, optional
        'independent_filter' or 'fdr_bh' (default: from config).
    dispersion_trend : str, optional
        'parametric' or 'mean' (default: from config).
    n_jobs : int, optional
        Number of fits to run in parallel processes (default: from config).

    Returns
    -------
    dict
        Updated data dictionary with:
        - 'fits': {(comparison, cell_type): per-gene results}
        - 'stats_results': {comparison: merged table}
        - 'stats_summary': pd.DataFrame, one row per fit
        - 'stats_params': parameters used

    Example
    -------
    >>> data = norm_ip(data)
    >>> data = stat_ip(data)
    """

    print("\n" + "="*80)
    print("DIFFERENTIAL ENRICHMENT")
    print("="*80)

    counts = data['counts']
    config = data['config']
    params = config['statistics']
    cell_types = config['samples']['cell_types']

    alpha = params['alpha'] if alpha is None else alpha
    correction = params['correction'] if correction is None else correction
    dispersion_trend = params['dispersion_trend'] if dispersion_trend is None else dispersion_trend
    n_jobs = int(params.get('n_jobs', 1) if n_jobs is None else n_jobs)

    print(f"\nModel: count ~ replicate + treatment (negative binomial)")
    print(f"  Alpha: {alpha}")
    print(f"  Correction: {correction}")
    print(f"  Dispersion trend: {dispersion_trend}")
    print(f"  Parallel jobs: {n_jobs}")

    # =========================================================================
    # 1. BUILD FITS
    # =========================================================================
    print(f"\n[1/3] Preparing {len(config['comparisons']) * len(cell_types)} fits...")

    def _payload(cell_type, name):
        group = data['groups'][(name, cell_type)]
        columns = ['gene'] + list(group['bottom']) + list(group['top'])
        return {
            'key': (name, cell_type),
            'counts': counts[columns],
            'group': group,
            'size_factors': data['size_factors'][(name, cell_type)],
            'alpha': alpha,
            'correction': correction,
            'dispersion_trend': dispersion_trend,
            'n_cpus': 1,
        }

    payloads = []
    for comparison in config['comparisons']:
        name = comparison_name(comparison['top'], comparison['bottom'])
        payloads.extend(per_cell_type(_payload, cell_types, name=name).values())

    # =========================================================================
    # 2. FIT MODELS
    # =========================================================================
    print(f"\n[2/3] Fitting models...")

    outputs = {}
    if n_jobs > 1:
        with ProcessPoolExecutor(max_workers=n_jobs) as ex:
            futs = {ex.submit(_fit_worker, p): p['key'] for p in payloads}
            for fut in as_completed(futs):
                key, res, meta = fut.result()
                outputs[key] = (res, meta)
                print(f"  > Finished {key[0]} [{key[1]}]")
    else:
        for p in payloads:
            key, res, meta = _fit_worker(p)
            outputs[key] = (res, meta)
            print(f"  > Finished {key[0]} [{key[1]}]")

    # =========================================================================
    # 3. MERGE AND SAVE
    # =========================================================================
    print(f"\n[3/3] Merging results per comparison...")

    fits = {}
    stats_results = {}
    summary_rows = []
    tables_dir = data['output_dirs']['tables']

    for comparison in config['comparisons']:
        top, bottom = comparison['top'], comparison['bottom']
        name = comparison_name(top, bottom)

        def _collect(cell_type):
            res, meta = outputs[(name, cell_type)]
            fits[(name, cell_type)] = res
            summary_rows.append(
                _summarize_fit(name, cell_type, data['groups'][(name, cell_type)], res, meta, alpha)
            )
            return res

        merged = merge_comparison(per_cell_type(_collect, cell_types), top, bottom)
        stats_results[name] = merged

        write_table(merged, os.path.join(tables_dir, f'{name}.csv'))
        print(f"  > Saved: {name}.csv ({len(merged)} genes)")

    summary_df = pd.DataFrame(summary_rows)
    write_table(summary_df, os.path.join(tables_dir, 'differential_summary.csv'))
    print(f"  > Saved: differential_summary.csv")

    data_updated = copy.copy(data)
    data_updated['fits'] = fits
    data_updated['stats_results'] = stats_results
    data_updated['stats_summary'] = summary_df
    data_updated['stats_params'] = {
        'alpha': alpha,
        'correction': correction,
        'dispersion_trend': dispersion_trend,
        'n_jobs': n_jobs,
    }

    # Auto-save
    output_path = os.path.join(config['data_paths']['output_dir'], 'data_after_stat.pkl')
    save_data(data_updated, output_path)

    print("\n" + "="*80)
    print("DIFFERENTIAL ENRICHMENT COMPLETE")
    print("="*80)

    print(f"\nResults Summary (padj < {alpha}):")
    for row in summary_rows:
        print(f"  {row['comparison']:<16} {row['cell_type']:<5} "
              f"up: {row['significant_up']:<6} down: {row['significant_down']:<6} "
              f"NA: {row['na_estimates']:<5} warnings: {row['warnings']}")

    print("\n" + "="*80)
    print("Next step: enrich_ip() to classify enriched genes")
    print("="*80 + "\n")

    return data_updated
