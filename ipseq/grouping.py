"""
Sample grouping for IP-seq pipeline.

Selects the paired top/bottom sample columns of one comparison within one
cell type, applying the replicate exclusions configured for the experiment.
"""

from .utils import ConfigurationError, parse_sample_name


def build_exclusions(entries):
    """
    Build the replicate exclusion map from its config list.

    Parameters
    ----------
    entries : list of dict
        Items like ``{'cell_type': 'NPC', 'condition': 'IgG', 'exclude': [1]}``.

    Returns
    -------
    dict
        Maps ``(cell_type, condition)`` to a frozenset of replicate numbers.
    """
    exclusions = {}
    for entry in entries or []:
        try:
            key = (entry['cell_type'], entry['condition'])
            replicates = {int(r) for r in entry['exclude']}
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid replicate exclusion entry {entry!r}: {e}") from e
        exclusions[key] = frozenset(exclusions.get(key, frozenset()) | replicates)
    return exclusions


def _columns_by_replicate(columns, cell_type, condition):
    """Map replicate number -> column for one (cell type, condition)."""
    found = {}
    for col in columns:
        parsed = parse_sample_name(col)
        if parsed and parsed['cell_type'] == cell_type and parsed['condition'] == condition:
            found[parsed['replicate']] = col
    return found


def select_samples(counts, cell_type, top, bottom, exclusions=None):
    """
    Select the aligned sample columns for one comparison in one cell type.

    Replicates excluded for ``(cell_type, bottom)`` are dropped from both
    sides so that every remaining replicate has one top and one bottom
    sample.

    Parameters
    ----------
    counts : pd.DataFrame
        Gene-level count matrix with one column per sample.
    cell_type : str
        Cell type label, e.g. 'ESC'.
    top : str
        Numerator condition, e.g. 'TIA1'.
    bottom : str
        Reference condition, e.g. 'Input'.
    exclusions : dict, optional
        Output of build_exclusions().

    Returns
    -------
    dict
        - 'cell_type', 'top_condition', 'bottom_condition'
        - 'top': top-condition columns ordered by replicate
        - 'bottom': bottom-condition columns ordered by replicate
        - 'replicates': replicate numbers kept
        - 'replicate_count': number of replicates kept
        - 'excluded': replicate numbers removed by the exclusion map

    Example
    -------
    >>> group = select_samples(counts, 'NPC', 'TIA1', 'IgG', exclusions)
    >>> group['bottom']
    ['NPC_2_IgG', 'NPC_3_IgG']
    """
    top_cols = _columns_by_replicate(counts.columns, cell_type, top)
    bottom_cols = _columns_by_replicate(counts.columns, cell_type, bottom)

    for condition, found in ((top, top_cols), (bottom, bottom_cols)):
        if not found:
            raise ConfigurationError(
                f"No sample columns found for cell type {cell_type!r}, condition {condition!r}"
            )

    excluded = (exclusions or {}).get((cell_type, bottom), frozenset())
    top_reps = set(top_cols) - excluded
    bottom_reps = set(bottom_cols) - excluded

    if top_reps != bottom_reps:
        raise ConfigurationError(
            f"Replicates of {cell_type} {top} {sorted(top_reps)} do not pair with "
            f"{cell_type} {bottom} {sorted(bottom_reps)}"
        )
    if not top_reps:
        raise ConfigurationError(
            f"All replicates of {cell_type} {top}/{bottom} were excluded"
        )

    replicates = sorted(top_reps)

    return {
        'cell_type': cell_type,
        'top_condition': top,
        'bottom_condition': bottom,
        'top': [top_cols[r] for r in replicates],
        'bottom': [bottom_cols[r] for r in replicates],
        'replicates': replicates,
        'replicate_count': len(replicates),
        'excluded': sorted(excluded & (set(top_cols) | set(bottom_cols))),
    }


def input_samples(counts, cell_type, input_condition):
    """Input (baseline) columns of one cell type, ordered by replicate."""
    found = _columns_by_replicate(counts.columns, cell_type, input_condition)
    if not found:
        raise ConfigurationError(
            f"No sample columns found for cell type {cell_type!r}, condition {input_condition!r}"
        )
    return [found[r] for r in sorted(found)]
