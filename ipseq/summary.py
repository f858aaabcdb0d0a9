"""
Final assembly and reporting for IP-seq pipeline.
"""

import copy
import os

from .utils import comparison_name, save_data, write_table


def assemble_final(diff_table, enrichment, abundance):
    """
    Outer-join the target-vs-input table, enrichment labels and abundance
    statistics on ``gene``.

    Every gene observed in any of the three tables gets one row; values a
    table does not have are left missing.
    """
    final = diff_table.merge(enrichment, on='gene', how='outer')
    final = final.merge(abundance, on='gene', how='outer')
    return final.reset_index(drop=True)


def _report_lines(data, final):
    config = data['config']
    cell_types = config['samples']['cell_types']
    lines = [
        "IP-seq enrichment summary",
        "=" * 40,
        f"Experiment: {config['experiment']['name']}",
        f"Genes in final table: {len(final)}",
        f"Sites loaded: {data['metadata']['n_sites']} "
        f"({data['metadata']['n_intergenic_sites']} intergenic removed)",
        "",
        "Replicates per comparison:",
    ]
    for (name, cell_type), group in data['groups'].items():
        dropped = f" (excluded {group['excluded']})" if group['excluded'] else ''
        lines.append(f"  {name:<16} {cell_type:<5} {group['replicate_count']}{dropped}")

    params = data['enrichment_params']
    lines += [
        "",
        f"Enrichment ({params['comparison']}, log2FC > {params['log2fc_threshold']}, "
        f"padj < {params['alpha']}):",
    ]
    for cell_type in cell_types:
        column = f'{cell_type}.enrichment'
        n_enriched = int((final[column] == 'Enriched').sum())
        lines.append(f"  {cell_type}: {n_enriched}")

    lines += ["", f"Normalization: {data['normalization']['method']}, "
                  f"yield ratio {data['normalization']['yield_ratio']} "
                  f"for {data['normalization']['yield_condition']}-referenced comparisons"]
    for (name, cell_type), factors in data['size_factors'].items():
        formatted = ', '.join(f"{sample}={value:.3f}" for sample, value in factors.items())
        lines.append(f"  {name:<16} {cell_type:<5} {formatted}")
    return lines


def summary_ip(data, output_format='txt'):
    """
    Assemble the final table and write the analysis summary.

    Parameters
    ----------
    data : dict
        Output from abundance_ip().
    output_format : str, optional
        'txt' writes ``summary.txt`` next to the tables; 'none' skips it.

    Returns
    -------
    dict
        Updated data dictionary with 'final': the joined gene table.
    """

    print("\n" + "="*80)
    print("FINAL ASSEMBLY")
    print("="*80)

    config = data['config']
    samples = config['samples']
    name = comparison_name(samples['target_condition'], samples['input_condition'])

    if name not in data['stats_results']:
        raise KeyError(f"Comparison {name} was not run by stat_ip()")

    final = assemble_final(data['stats_results'][name], data['enrichment'], data['abundance'])

    tables_dir = data['output_dirs']['tables']
    write_table(final, os.path.join(tables_dir, 'final_table.csv'))
    print(f"\n  > Saved: final_table.csv")
    print(f"    {len(final)} genes x {len(final.columns)} columns")

    if output_format == 'txt':
        report_path = os.path.join(config['data_paths']['output_dir'], 'summary.txt')
        with open(report_path, 'w') as f:
            f.write('\n'.join(_report_lines(data, final)) + '\n')
        print(f"  > Saved: summary.txt")
    elif output_format != 'none':
        raise ValueError(f"Unknown output_format {output_format!r}; use 'txt' or 'none'")

    data_updated = copy.copy(data)
    data_updated['final'] = final

    output_path = os.path.join(config['data_paths']['output_dir'], 'data_after_summary.pkl')
    save_data(data_updated, output_path)

    print("\n" + "="*80)
    print("ANALYSIS COMPLETE")
    print("="*80 + "\n")

    return data_updated


def run_ip(config_path, plots=False):
    """
    Run the whole pipeline from a config file.

    Example
    -------
    >>> data = run_ip('config/experiment.yaml')
    >>> data['final'].head()
    """
    from .abundance import abundance_ip
    from .enrichment import enrich_ip
    from .normalization import norm_ip
    from .prep import prep_ip
    from .statistics import stat_ip

    data = prep_ip(config_path)
    data = norm_ip(data)
    data = stat_ip(data)
    data = enrich_ip(data)
    data = abundance_ip(data)
    data = summary_ip(data)

    if plots:
        from .visualization import viz_ip
        viz_ip(data)

    return data
