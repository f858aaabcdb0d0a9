"""
IP-seq Enrichment Pipeline
==========================

A reusable Python package for calling genes bound by an RNA-binding protein
from paired immunoprecipitation / input / isotype-control sequencing counts.

Main Functions
--------------
prep_ip()       - Load site counts and collapse them into gene counts
norm_ip()       - Median-of-ratios size factors per comparison (yield-corrected)
stat_ip()       - Negative-binomial GLM differential enrichment (PyDESeq2)
enrich_ip()     - Label genes Enriched / Noise per cell type
abundance_ip()  - Input abundance mean, sd and noise per cell type
summary_ip()    - Final joined table and text summary
viz_ip()        - Volcano plots of the enrichment comparison
boxplot_ip()    - Boxplots of the top enriched genes
run_ip()        - All of the above in one call
save_data()     - Save analysis data for later
load_data()     - Load saved analysis data

Example Workflow
----------------
>>> from ipseq import prep_ip, norm_ip, stat_ip, enrich_ip, abundance_ip, summary_ip
>>>
>>> data = prep_ip('config/experiment.yaml')
>>> data = norm_ip(data)
>>> data = stat_ip(data)
>>> data = enrich_ip(data)
>>> data = abundance_ip(data)
>>> data = summary_ip(data)
"""

from .prep import prep_ip, aggregate_sites
from .grouping import build_exclusions, select_samples
from .normalization import norm_ip, median_of_ratios, yield_adjusted_size_factors
from .statistics import stat_ip, fit_comparison, merge_comparison
from .enrichment import enrich_ip, classify_enrichment
from .abundance import abundance_ip, summarize_abundance
from .summary import summary_ip, assemble_final, run_ip
from .visualization import viz_ip, boxplot_ip
from .utils import ConfigurationError, save_data, load_data


__version__ = "0.1.0"

__all__ = [
    'prep_ip',
    'norm_ip',
    'stat_ip',
    'enrich_ip',
    'abundance_ip',
    'summary_ip',
    'viz_ip',
    'boxplot_ip',
    'run_ip',
    'aggregate_sites',
    'build_exclusions',
    'select_samples',
    'median_of_ratios',
    'yield_adjusted_size_factors',
    'fit_comparison',
    'merge_comparison',
    'classify_enrichment',
    'summarize_abundance',
    'assemble_final',
    'ConfigurationError',
    'save_data',
    'load_data',
]
