# tests/test_cli.py

import pytest

from scrnaseq_qc.cli import DEFAULTS, create_parser, load_and_merge_params, main


def parse(argv):
    return load_and_merge_params(create_parser().parse_args(argv))


def test_defaults_applied(tmp_path):
    params = parse(["-i", "in.h5ad", "-o", str(tmp_path)])
    assert params.input_path == "in.h5ad"
    assert params.output_dir == str(tmp_path)
    for key, value in DEFAULTS.items():
        assert getattr(params, key) == value


def test_config_overrides_defaults(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(
        "qc:\n"
        "  mito_prefix: mt-\n"
        "  min_features: 300\n"
        "  max_mito_percent: null\n"
        "plotting:\n"
        "  plot_format: pdf\n"
        "output_prefix: from_config\n"
    )
    params = parse(["-i", "in.h5ad", "-o", str(tmp_path), "-c", str(config)])
    assert params.mito_prefix == "mt-"
    assert params.min_features == 300
    assert params.max_mito_percent is None
    assert params.plot_format == "pdf"
    assert params.output_prefix == "from_config"
    assert params.min_umi == DEFAULTS['min_umi']


def test_cli_overrides_config(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("qc:\n  min_features: 300\n  min_cells: 5\n")
    params = parse([
        "-i", "in.h5ad", "-o", str(tmp_path), "-c", str(config),
        "--min-features", "250", "--max-mito-percent", "none", "--no-run-plots",
    ])
    assert params.min_features == 250
    assert params.min_cells == 5
    assert params.max_mito_percent is None
    assert params.run_plots is False


def test_missing_config_exits(tmp_path):
    with pytest.raises(SystemExit):
        parse(["-i", "in.h5ad", "-o", str(tmp_path), "-c", str(tmp_path / "nope.yaml")])


def test_invalid_yaml_exits(tmp_path):
    config = tmp_path / "bad.yaml"
    config.write_text("qc: [unclosed\n")
    with pytest.raises(SystemExit):
        parse(["-i", "in.h5ad", "-o", str(tmp_path), "-c", str(config)])


def test_required_arguments():
    with pytest.raises(SystemExit):
        create_parser().parse_args([])


def test_main_end_to_end(poisson_matrix, tmp_path):
    input_path = tmp_path / "raw.h5ad"
    poisson_matrix.to_anndata().write_h5ad(input_path)
    output_dir = tmp_path / "out"
    main([
        "-i", str(input_path), "-o", str(output_dir), "--output-prefix", "cli",
        "--min-features", "50", "--min-umi", "100", "--min-log10-genes-per-umi", "0.5",
        "--max-mito-percent", "20", "--min-cells", "30", "--no-run-plots",
    ])
    assert (output_dir / "cli_filtered.h5ad").is_file()
    assert (output_dir / "cli_cell_metrics.csv").is_file()


def test_main_failure_exits_with_code_1(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["-i", str(tmp_path / "missing.h5ad"), "-o", str(tmp_path / "out")])
    assert excinfo.value.code == 1
