# scrnaseq_qc/cli.py

import argparse
import logging
import sys
from pathlib import Path
import yaml

from .agent import QCWorkflow

log = logging.getLogger("scrnaseq_qc.cli")

DEFAULTS = {
    'output_prefix': "scrnaseq_qc",
    'mito_prefix': "MT-",
    'min_features': 200,
    'min_umi': 500,
    'min_log10_genes_per_umi': 0.8,
    'max_mito_percent': 5.0,
    'min_cells': 10,
    'run_plots': True,
    'plot_dpi': 150,
    'plot_format': "png",
    'allow_empty': False,
}

# Thresholds that may be disabled with null / "none" in the config or on the command line
NULLABLE_KEYS = ['min_features', 'min_umi', 'min_log10_genes_per_umi', 'max_mito_percent']


def _optional_float(value: str):
    if value.lower() in ('none', 'null'):
        return None
    return float(value)


def _optional_int(value: str):
    if value.lower() in ('none', 'null'):
        return None
    return int(value)


def create_parser():
    parser = argparse.ArgumentParser(
        description="Compute per-cell QC metrics for a scRNA-seq count matrix and filter low-quality cells and genes.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        argument_default=argparse.SUPPRESS,
    )

    # --- Input/Output Arguments ---
    parser.add_argument("-i", "--input-path", type=str, required=True, help="Path to input data (10x directory or .h5ad file).")
    parser.add_argument("-o", "--output-dir", type=str, required=True, help="Directory to save results (filtered AnnData, metrics table and plots).")
    parser.add_argument("-c", "--config", type=str, default=None, help="Path to a YAML configuration file with pipeline parameters.")
    parser.add_argument("--output-prefix", type=str, help="Prefix for output files. Overrides config.")

    # --- QC Arguments ---
    parser.add_argument("--mito-prefix", type=str, help="Mitochondrial gene prefix (case-sensitive), e.g. 'MT-' or 'mt-'.")
    parser.add_argument("--min-features", type=_optional_int, help="Keep cells with more than this many detected genes ('none' disables).")
    parser.add_argument("--min-umi", type=_optional_int, help="Keep cells with more than this many counts ('none' disables).")
    parser.add_argument("--min-log10-genes-per-umi", type=_optional_float, help="Keep cells with log10(genes)/log10(UMI) above this ('none' disables).")
    parser.add_argument("--max-mito-percent", type=_optional_float, help="Keep cells with mitochondrial percentage below this ('none' disables).")
    parser.add_argument("--min-cells", type=int, help="Keep genes detected in at least this many surviving cells.")
    parser.add_argument("--allow-empty", action=argparse.BooleanOptionalAction, help="Do not fail when every cell is filtered out.")

    # --- Plotting ---
    parser.add_argument("--run-plots", action=argparse.BooleanOptionalAction, help="Generate QC distribution plots.")
    parser.add_argument("--plot-dpi", type=int, help="DPI for plots.")
    parser.add_argument("--plot-format", type=str, choices=['png', 'pdf', 'svg'], help="Plot file format.")

    return parser


def _read_config(config_path: Path) -> dict:
    """Reads a YAML config; top-level sections (e.g. 'qc:', 'plotting:') are flattened."""
    with open(config_path, 'r') as f:
        config_yaml = yaml.safe_load(f)
    config_params = {}
    if not config_yaml:
        return config_params
    if not isinstance(config_yaml, dict):
        raise ValueError(f"Config file must contain a mapping, got {type(config_yaml).__name__}.")
    for section, params_in_section in config_yaml.items():
        if isinstance(params_in_section, dict):
            config_params.update(params_in_section)
        else:
            config_params[section] = params_in_section
    return config_params


def load_and_merge_params(args: argparse.Namespace) -> argparse.Namespace:
    """Loads config file and merges parameters with CLI args and defaults (CLI > config > defaults)."""
    config_params = {}
    if args.config:
        config_path = Path(args.config)
        if not config_path.is_file(): log.error(f"Config file not found: {config_path}"); sys.exit(1)
        try:
            config_params = _read_config(config_path)
            log.info(f"Loaded parameters from config file: {args.config}")
        except yaml.YAMLError as e: log.error(f"Error parsing config file {args.config}: {e}"); sys.exit(1)
        except Exception as e: log.error(f"Error reading config file {args.config}: {e}", exc_info=True); sys.exit(1)

    unknown = sorted(set(config_params) - set(DEFAULTS))
    if unknown:
        log.warning(f"Ignoring unknown config parameters: {unknown}")

    final_params = argparse.Namespace()
    cli_args_dict = vars(args)

    for key, default_value in DEFAULTS.items():
        param_value = default_value

        if key in config_params:
            config_value = config_params[key]
            if config_value is None or str(config_value).lower() in ('null', 'none'):
                if key in NULLABLE_KEYS:
                    param_value = None
            else:
                param_value = config_value

        # Options not given on the command line are absent from args (argparse.SUPPRESS)
        if key in cli_args_dict:
            param_value = cli_args_dict[key]

        setattr(final_params, key, param_value)

    final_params.input_path = args.input_path
    final_params.output_dir = args.output_dir

    log.debug(f"Final parameters after merge: {vars(final_params)}")
    return final_params


def run_pipeline(params):
    """Initializes and runs the QCWorkflow."""
    try:
        workflow = QCWorkflow(params)
        result = workflow.run()
        log.info(f"Workflow finished. Kept {result.filtered.n_cells} cells and {result.filtered.n_genes} genes.")
        return result
    except Exception:
        log.critical("Pipeline execution failed. See previous logs for details.")
        sys.exit(1)


def main(argv=None):
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    parser = create_parser()
    args = parser.parse_args(argv)
    final_params = load_and_merge_params(args)
    run_pipeline(final_params)


if __name__ == "__main__":
    main()
