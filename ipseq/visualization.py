"""
Visualization functions for IP-seq pipeline.

Generates volcano plots of the enrichment comparison, one per cell type,
and boxplots of the normalized counts of the top enriched genes.
"""

import os

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from adjustText import adjust_text

from .normalization import median_of_ratios, normalize_counts
from .utils import parse_sample_name

# Consistent color palette for an arbitrary number of conditions
_PALETTE = [
    '#1f77b4', '#d62728', '#7f7f7f', '#2ca02c', '#ff7f0e',
    '#9467bd', '#8c564b', '#e377c2', '#bcbd22', '#17becf',
]


def _condition_color_map(conditions):
    """Build a color map for an arbitrary number of conditions."""
    return {cond: _PALETTE[i % len(_PALETTE)] for i, cond in enumerate(conditions)}


def _volcano(ax, lfc, padj, labels, threshold, alpha, title):
    neg_log10_padj = -np.log10(padj.clip(lower=1e-300))

    for category, color in [('Noise', '#CCCCCC'), ('Enriched', '#E74C3C')]:
        mask = (labels == category).to_numpy()
        ax.scatter(
            lfc[mask],
            neg_log10_padj[mask],
            c=color,
            label=category,
            s=12,
            alpha=0.6,
            edgecolors='none'
        )

    ax.axhline(-np.log10(alpha), color='black', linestyle='--',
               linewidth=1, alpha=0.5, label=f'padj = {alpha}')
    ax.axvline(threshold, color='black', linestyle='--',
               linewidth=1, alpha=0.5)

    ax.set_xlabel('Log2 Fold Change', fontsize=12, fontweight='bold')
    ax.set_ylabel('-Log10 Adjusted P-value', fontsize=12, fontweight='bold')
    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.legend(loc='upper left', fontsize=10)
    ax.grid(alpha=0.3)


def viz_ip(data, label_top=0):
    """
    Create volcano plots for the enrichment comparison.

    Parameters
    ----------
    data : dict
        Output from enrich_ip() or any later step.
    label_top : int, optional
        Annotate this many Enriched genes with the largest fold change
        (default: 0).

    Returns
    -------
    list of str
        Paths of the saved figures, saved under results/figures/viz/.

    Example
    -------
    >>> data = enrich_ip(data)
    >>> viz_ip(data, label_top=15)
    """

    print("\n" + "="*80)
    print("CREATING VISUALIZATIONS")
    print("="*80)

    config = data['config']
    params = data['enrichment_params']
    cell_types = config['samples']['cell_types']
    top = config['enrichment']['comparison']['top']
    bottom = config['enrichment']['comparison']['bottom']

    merged = data['stats_results'][params['comparison']]
    labels = data['enrichment']
    viz_dir = data['output_dirs']['viz']
    os.makedirs(viz_dir, exist_ok=True)

    print(f"\nOutput directory: {viz_dir}")

    saved = []
    for cell_type in cell_types:
        threshold = params['log2fc_threshold']
        if isinstance(threshold, dict):
            threshold = threshold[cell_type]

        lfc = merged[f'log2_{top}_{bottom}_{cell_type}']
        padj = merged[f'padj_{cell_type}']
        cell_labels = labels[f'{cell_type}.enrichment']
        plotted = lfc.notna() & padj.notna()

        fig, ax = plt.subplots(figsize=(8, 7))
        _volcano(
            ax, lfc[plotted], padj[plotted], cell_labels[plotted],
            threshold, params['alpha'],
            f'{top} vs {bottom}: {cell_type}',
        )

        if label_top:
            enriched = merged[plotted & (cell_labels == 'Enriched')]
            texts = []
            for _, row in enriched.nlargest(label_top, lfc.name).iterrows():
                texts.append(ax.text(
                    row[lfc.name],
                    -np.log10(max(row[padj.name], 1e-300)),
                    row['gene'],
                    fontsize=8,
                    alpha=0.8
                ))
            if texts:
                adjust_text(texts, ax=ax, arrowprops=dict(arrowstyle='-', color='black', lw=0.5))

        path = os.path.join(viz_dir, f'volcano_{top}_vs_{bottom}_{cell_type}.pdf')
        plt.tight_layout()
        plt.savefig(path, dpi=300, bbox_inches='tight')
        plt.close(fig)

        saved.append(path)
        print(f"  > Saved: {os.path.basename(path)} ({int(plotted.sum())} genes)")

    print("\n" + "="*80)
    print(f"Plots saved to: {viz_dir}")
    print("="*80 + "\n")

    return saved


def boxplot_ip(data, top_n=20):
    """
    Boxplots of normalized counts for the most enriched genes.

    One panel per cell type; each gene is shown across the input, target
    and control samples of that cell type as log2(normalized count + 1).

    Parameters
    ----------
    data : dict
        Output from enrich_ip() or any later step.
    top_n : int, optional
        Number of Enriched genes with the largest fold change to plot per
        cell type (default: 20).

    Returns
    -------
    str or None
        Path of the saved figure, or None when no gene is Enriched.

    Example
    -------
    >>> data = enrich_ip(data)
    >>> boxplot_ip(data, top_n=10)
    """

    print("\n" + "="*80)
    print("CREATING BOXPLOTS OF ENRICHED GENES")
    print("="*80)

    counts = data['counts']
    config = data['config']
    cell_types = config['samples']['cell_types']
    top = config['enrichment']['comparison']['top']
    bottom = config['enrichment']['comparison']['bottom']
    merged = data['stats_results'][data['enrichment_params']['comparison']]
    labels = data['enrichment']

    viz_dir = data['output_dirs']['viz']
    os.makedirs(viz_dir, exist_ok=True)

    conditions = [
        config['samples']['input_condition'],
        config['samples']['target_condition'],
        config['samples']['control_condition'],
    ]
    palette = _condition_color_map(conditions)

    print(f"\nCollecting enriched genes...")

    plot_frames = {}
    for cell_type in cell_types:
        lfc_col = f'log2_{top}_{bottom}_{cell_type}'
        enriched = merged[labels[f'{cell_type}.enrichment'] == 'Enriched']
        genes = enriched.nlargest(top_n, lfc_col)['gene'].tolist()
        print(f"  {cell_type}: {len(genes)} genes")
        if not genes:
            continue

        sample_cols = []
        for col in counts.columns:
            parsed = parse_sample_name(col)
            if parsed and parsed['cell_type'] == cell_type and parsed['condition'] in conditions:
                sample_cols.append(col)

        normed = normalize_counts(counts, median_of_ratios(counts[sample_cols]))
        normed.insert(0, 'gene', counts['gene'])

        long_df = normed[normed['gene'].isin(genes)].melt(
            id_vars='gene', var_name='sample', value_name='count'
        )
        long_df['Condition'] = long_df['sample'].map(lambda s: parse_sample_name(s)['condition'])
        long_df['Log2_Count'] = np.log2(long_df['count'] + 1)
        plot_frames[cell_type] = (long_df, genes)

    if not plot_frames:
        print("  Warning: No enriched genes found!")
        return None

    n_panels = len(plot_frames)
    n_genes = max(len(genes) for _, genes in plot_frames.values())
    fig, axes = plt.subplots(1, n_panels, figsize=(7*n_panels, max(6, n_genes * 0.4)))
    if n_panels == 1:
        axes = [axes]

    for ax, (cell_type, (long_df, genes)) in zip(axes, plot_frames.items()):
        sns.boxplot(data=long_df, y='gene', x='Log2_Count', hue='Condition', order=genes,
                    hue_order=conditions, ax=ax, palette=palette, linewidth=1.5)
        sns.stripplot(data=long_df, y='gene', x='Log2_Count', hue='Condition', order=genes,
                      hue_order=conditions, ax=ax, dodge=True, alpha=0.6, size=4,
                      palette=palette, legend=False)

        ax.set_xlabel('Log2 Normalized Count', fontsize=12, fontweight='bold')
        ax.set_ylabel('Gene', fontsize=12, fontweight='bold')
        ax.set_title(f'{cell_type} ({len(genes)} genes)', fontsize=12, fontweight='bold')
        ax.legend(title='Condition', fontsize=10, title_fontsize=11)
        ax.grid(axis='x', alpha=0.3)

    fig.suptitle(f'Top Enriched Genes ({top} vs {bottom})', fontsize=14, fontweight='bold')

    path = os.path.join(viz_dir, f'boxplot_enriched_{top}_vs_{bottom}.pdf')
    plt.tight_layout()
    plt.savefig(path, dpi=300, bbox_inches='tight')
    plt.close(fig)

    print(f"\n  > Saved: {os.path.basename(path)}")
    print("\n" + "="*80)
    print(f"Plots saved to: {viz_dir}")
    print("="*80 + "\n")

    return path
