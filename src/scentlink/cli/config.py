"""
Configuration file support for the scentlink CLI.

Supports YAML and JSON config files with CLI argument override. A config
file mirrors the ``scentlink run`` flags, grouped in sections:

    inputs:
      rna: data/rna_counts.mtx.gz
      atac: data/atac_counts.mtx.gz
      metadata: data/cells.tsv
      pairs: data/pairs_batch_1.tsv
      output: results/scent_Tcell.tsv
    model:
      celltype: Tcell
      covariates: [log_nUMI, percent_mito, sample]
      family: negbin
      backend: irls
    bootstrap:
      escalation: sequential
      seed: 1
    parallel:
      cores: 8
      workers: 2
"""

import json
from argparse import Namespace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

# (section, key) -> argparse destination
CONFIG_KEYS = {
    ('inputs', 'rna'): 'rna',
    ('inputs', 'atac'): 'atac',
    ('inputs', 'metadata'): 'metadata',
    ('inputs', 'pairs'): 'pairs',
    ('inputs', 'output'): 'output',
    ('model', 'celltype'): 'celltype',
    ('model', 'celltype_column'): 'celltype_column',
    ('model', 'cell_column'): 'cell_column',
    ('model', 'covariates'): 'covariates',
    ('model', 'family'): 'family',
    ('model', 'backend'): 'backend',
    ('model', 'binarize'): 'binarize',
    ('bootstrap', 'escalation'): 'escalation',
    ('bootstrap', 'base_resamples'): 'base_resamples',
    ('bootstrap', 'min_nonzero_fraction'): 'min_nonzero_fraction',
    ('bootstrap', 'seed'): 'seed',
    ('parallel', 'cores'): 'cores',
    ('parallel', 'workers'): 'workers',
    ('parallel', 'mode'): 'parallel_mode',
}

PATH_ARGS = {'rna', 'atac', 'metadata', 'pairs', 'output'}

# CLI flags whose destination differs from the flag name
FLAG_ALIASES = {
    'no_binarize': 'binarize',
    'o': 'output',
    'm': 'metadata',
    'v': 'verbose',
    'c': 'config',
}

VALID_CHOICES = {
    ('model', 'family'): ('poisson', 'negbin'),
    ('model', 'backend'): ('irls', 'fast'),
    ('bootstrap', 'escalation'): ('sequential', 'banded'),
    ('parallel', 'mode'): ('threads', 'processes'),
}


_PARSERS = {
    '.yaml': (yaml.safe_load, yaml.YAMLError, "YAML"),
    '.yml': (yaml.safe_load, yaml.YAMLError, "YAML"),
    '.json': (json.load, json.JSONDecodeError, "JSON"),
}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Read a YAML (.yaml/.yml) or JSON (.json) run configuration.

    An empty file is an empty configuration.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: Unknown suffix, unparsable content, or a top level that
            is not a mapping

    Examples:
        >>> config = load_config(Path("scent.yaml"))
        >>> config['model']['family']
        'negbin'
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix not in _PARSERS:
        raise ValueError(
            f"Unsupported config format: {suffix or '(no suffix)'}. "
            f"Use one of {', '.join(_PARSERS)}"
        )
    parse, parse_error, kind = _PARSERS[suffix]

    with open(config_path, 'r') as f:
        try:
            config = parse(f)
        except parse_error as e:
            raise ValueError(f"Invalid {kind} in {config_path.name}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(
            f"{config_path.name} must contain a mapping at top level, "
            f"got {type(config).__name__}"
        )
    return config


def _merge_value(cli_value: Any, config_value: Any, was_explicitly_set: bool) -> Any:
    """An explicit flag wins, then a non-null file value, then the argparse default."""
    if was_explicitly_set or config_value is None:
        return cli_value
    return config_value


def _explicit_args(cli_args: Optional[List[str]]) -> set:
    """Destinations of the flags present on the command line."""
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            name = arg[2:].split('=', 1)[0].replace('-', '_')
        elif arg.startswith('-') and len(arg) == 2:
            name = arg[1]
        else:
            continue
        explicit.add(FLAG_ALIASES.get(name, name))
    return explicit


def merge_config_with_args(
    config: Dict[str, Any],
    args: Namespace,
    cli_args: Optional[List[str]] = None,
) -> Namespace:
    """
    Layer config file values under the parsed ``scentlink run`` arguments.

    Flags present in ``cli_args`` keep their command-line value; every other
    destination named in CONFIG_KEYS takes the file value when it is not
    null. Path-valued inputs are converted to ``Path``. ``args`` is not
    modified.

    Parameters:
        config: Mapping returned by load_config()
        args: Parsed CLI arguments
        cli_args: Raw flags after the subcommand; None means nothing was
                  given explicitly

    Returns:
        A new Namespace
    """
    explicit = _explicit_args(cli_args)
    merged = Namespace(**vars(args))

    for (section, key), dest in CONFIG_KEYS.items():
        section_values = config.get(section) or {}
        if key not in section_values:
            continue
        config_value = section_values[key]
        if config_value is not None and dest in PATH_ARGS:
            config_value = Path(config_value)
        setattr(merged, dest, _merge_value(
            getattr(merged, dest, None),
            config_value,
            dest in explicit,
        ))

    return merged


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Raises:
        ValueError: If configuration is invalid
    """
    known_sections = {section for section, _ in CONFIG_KEYS}
    unknown = set(config) - known_sections
    if unknown:
        raise ValueError(
            f"Unknown config section(s): {sorted(unknown)}. "
            f"Expected: {sorted(known_sections)}"
        )

    for section in known_sections & set(config):
        values = config[section]
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Config section '{section}' must be a mapping")
        known_keys = {key for sec, key in CONFIG_KEYS if sec == section}
        unknown_keys = set(values) - known_keys
        if unknown_keys:
            raise ValueError(
                f"Unknown key(s) in '{section}': {sorted(unknown_keys)}. "
                f"Expected: {sorted(known_keys)}"
            )

    for (section, key), choices in VALID_CHOICES.items():
        value = (config.get(section) or {}).get(key)
        if value is not None and value not in choices:
            raise ValueError(
                f"Invalid {section}.{key} '{value}'. Choose from: {', '.join(choices)}"
            )

    bootstrap = config.get('bootstrap') or {}
    base = bootstrap.get('base_resamples')
    if base is not None and (not isinstance(base, int) or base <= 0):
        raise ValueError(f"bootstrap.base_resamples must be a positive integer, got: {base}")

    fraction = bootstrap.get('min_nonzero_fraction')
    if fraction is not None:
        if not isinstance(fraction, (int, float)) or not 0 <= fraction < 1:
            raise ValueError(
                f"bootstrap.min_nonzero_fraction must be in [0, 1), got: {fraction}"
            )

    parallel = config.get('parallel') or {}
    for key in ('cores', 'workers'):
        value = parallel.get(key)
        if value is not None and (not isinstance(value, int) or value <= 0):
            raise ValueError(f"parallel.{key} must be a positive integer, got: {value}")

    covariates = (config.get('model') or {}).get('covariates')
    if covariates is not None and not isinstance(covariates, list):
        raise ValueError(f"model.covariates must be a list, got: {covariates!r}")
