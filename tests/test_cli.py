import json
import warnings

import pandas as pd

from fasi.cli import build_parser, main


def test_parser_defaults():
    args = build_parser().parse_args(["--input", "x.csv"])
    assert args.outdir == "outputs"
    assert args.seed is None
    assert args.log_level == "INFO"


def test_cli_writes_reports(tmp_path, raw_csv):
    config = tmp_path / "analysis.yaml"
    config.write_text("nmds_restarts: 2\nsimulations: 20\n")
    outdir = tmp_path / "out"

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        code = main([
            "--input", str(raw_csv),
            "--outdir", str(outdir),
            "--config", str(config),
            "--permutations", "9",
            "--seed", "77",
            "--log-level", "WARNING",
            "--log-file", str(tmp_path / "logs" / "fasi.log"),
        ])

    assert code == 0
    manifest = json.loads((outdir / "manifest.json").read_text())
    assert manifest["config"]["permutations"] == 9
    assert manifest["config"]["seed"] == 77
    assert manifest["config"]["nmds_restarts"] == 2
    assert manifest["input"].endswith("fasi.csv")

    permanova = pd.read_csv(outdir / "permanova.csv")
    assert set(permanova["seed"]) <= set(manifest["seeds"].values())
    assert (outdir / "anova_log_cn.csv").exists()
    assert (outdir / "pca_fa_loadings.csv").exists()
    assert (tmp_path / "logs" / "fasi.log").exists()
