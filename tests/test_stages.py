"""
tests/test_stages.py
====================
End-to-end tests of the three stages on a synthetic on-disk basin.
Run with:  python -m pytest tests/ -v
"""

from __future__ import annotations

import json
from datetime import date

import numpy as np
import pandas as pd
import pytest


def _config(basin_files, tmp_path, **kw):
    from swe_downscale.config import ModelConfig, PipelineConfig
    base = dict(
        simulation_name="test_basin",
        output_dir=str(tmp_path / "output"),
        na_value=-999,
        start_date="2001-01-14",
        end_date="2001-01-16",
        inputs=basin_files,
        model=ModelConfig(n_estimators=10, permutation_repeats=2, n_jobs=1),
        random_seed=123,
    )
    base.update(kw)
    return PipelineConfig(**base)


# ======================================================================== #
#  Dataset builder                                                          #
# ======================================================================== #

class TestBuildDataset:
    def test_table_schema_and_content(self, basin_files, tmp_path):
        from swe_downscale.config import TRAINING_COLUMNS
        from swe_downscale.dataset import build_training_dataset
        cfg = _config(basin_files, tmp_path)
        table, path = build_training_dataset(cfg)

        assert path.exists()
        assert path.name == "RF_SWE_training_data_test_basin.parquet"
        assert tuple(table.columns) == TRAINING_COLUMNS
        assert (table["swe"] != -999).all()
        assert np.isfinite(table.to_numpy()).all()
        # 3 stations × 30 days, minus one sentinel and the missing ERA5 day
        assert len(table) == 3 * 30 - 1 - 3

    def test_metadata_written(self, basin_files, tmp_path):
        from swe_downscale.dataset import build_training_dataset
        cfg = _config(basin_files, tmp_path)
        build_training_dataset(cfg)
        meta = json.loads((tmp_path / "output" / "test_basin" / "dataset_metadata.json").read_text())
        assert meta["stage"] == "dataset"
        assert meta["n_rows"] == 3 * 30 - 4
        assert meta["aoi_bounds"] == pytest.approx([0.0, 0.0, 40.0, 40.0])
        assert "snowcover.csv" in meta["files_used"]

    def test_rebuild_is_identical(self, basin_files, tmp_path):
        from swe_downscale.dataset import build_training_dataset
        from swe_downscale.export import load_training_table
        cfg = _config(basin_files, tmp_path)
        _, path = build_training_dataset(cfg)
        first = load_training_table(path)
        _, path = build_training_dataset(cfg)
        pd.testing.assert_frame_equal(first, load_training_table(path))

    def test_bad_date_format_fails(self, basin_files, tmp_path):
        from dataclasses import replace
        from swe_downscale.checks import InputFormatError
        from swe_downscale.dataset import build_training_dataset
        inputs = replace(basin_files, date_format="%Y-%m-%d")
        with pytest.raises(InputFormatError):
            build_training_dataset(_config(inputs, tmp_path))

    def test_misaligned_raster_fails(self, basin_files, tmp_path):
        from dataclasses import replace
        from swe_downscale.checks import AlignmentError
        from swe_downscale.dataset import build_training_dataset
        from conftest import make_grid
        path = tmp_path / "slope_coarse.tif"
        make_grid(np.zeros((2, 3))).rio.to_raster(path)
        layers = {**basin_files.static_layers, "slope": str(path)}
        inputs = replace(basin_files, static_layers=layers)
        with pytest.raises(AlignmentError, match="slope"):
            build_training_dataset(_config(inputs, tmp_path))


# ======================================================================== #
#  Model trainer                                                            #
# ======================================================================== #

class TestTrainModel:
    def test_requires_dataset(self, basin_files, tmp_path):
        from swe_downscale.checks import ArtifactNotFoundError
        from swe_downscale.training import train_swe_model
        with pytest.raises(ArtifactNotFoundError) as exc:
            train_swe_model(_config(basin_files, tmp_path))
        assert exc.value.stage == "dataset"

    def test_artifacts_written(self, basin_files, tmp_path):
        from swe_downscale.dataset import build_training_dataset
        from swe_downscale.export import load_model
        from swe_downscale.training import train_swe_model
        cfg = _config(basin_files, tmp_path)
        build_training_dataset(cfg)
        result = train_swe_model(cfg)

        root = tmp_path / "output" / "test_basin"
        assert (root / "RF_SWE_model_test_basin.joblib").exists()
        assert (root / "variable_importance.png").stat().st_size > 0
        report = (root / "model_performance.txt").read_text()
        assert report.startswith("RMSE: ")
        assert "R-squared: " in report
        assert result.n_train + result.n_validation > 0

        model = load_model(result.model_path)
        assert model.feature_names == cfg.feature_columns
        meta = json.loads((root / "training_metadata.json").read_text())
        assert meta["n_train"] == result.n_train

    def test_same_seed_same_model(self, basin_files, tmp_path):
        from swe_downscale.dataset import build_training_dataset
        from swe_downscale.export import load_training_table
        from swe_downscale.training import fit_model
        cfg = _config(basin_files, tmp_path)
        _, path = build_training_dataset(cfg)
        table = load_training_table(path)
        a, split_a = fit_model(table, cfg)
        b, split_b = fit_model(table, cfg)
        assert split_a.train.index.equals(split_b.train.index)
        np.testing.assert_allclose(a.predict(table), b.predict(table))

    def test_non_numeric_target_fails(self, basin_files, tmp_path):
        from swe_downscale.checks import InputFormatError
        from swe_downscale.training import fit_model
        cfg = _config(basin_files, tmp_path)
        table = pd.DataFrame({c: [1.0, 2.0] for c in ["swe", *cfg.feature_columns]})
        table["swe"] = ["a", "b"]
        with pytest.raises(InputFormatError, match="swe"):
            fit_model(table, cfg)


# ======================================================================== #
#  Spatial predictor                                                        #
# ======================================================================== #

class TestPredict:
    def test_requires_model(self, basin_files, tmp_path):
        from swe_downscale.checks import ArtifactNotFoundError
        from swe_downscale.prediction import predict_swe
        with pytest.raises(ArtifactNotFoundError) as exc:
            predict_swe(_config(basin_files, tmp_path))
        assert exc.value.stage == "train"

    def test_full_run_skips_missing_day(self, basin_files, tmp_path):
        import rioxarray
        from swe_downscale.runner import PipelineRunner
        cfg = _config(basin_files, tmp_path)
        with pytest.warns(UserWarning, match="2001-01-15"):
            result = PipelineRunner(cfg).run()

        pred_dir = tmp_path / "output" / "test_basin" / "prediction"
        assert sorted(p.name for p in pred_dir.glob("*.tif")) == [
            "predicted_swe_2001-01-14.tif",
            "predicted_swe_2001-01-16.tif",
        ]
        assert result.prediction.skipped == [date(2001, 1, 15)]

        out = rioxarray.open_rasterio(pred_dir / "predicted_swe_2001-01-14.tif", masked=True)
        assert out.shape == (1, 4, 5)
        assert out.rio.crs is not None
        assert np.isfinite(out.values).any()

        summary = json.loads((tmp_path / "output" / "test_basin" / "prediction_summary.json").read_text())
        assert summary["n_predicted"] == 2
        assert summary["skipped"] == ["2001-01-15"]

    def test_predict_only_reuses_saved_model(self, basin_files, tmp_path):
        from swe_downscale.runner import PipelineRunner
        cfg = _config(basin_files, tmp_path, do_predictions=False)
        PipelineRunner(cfg).run()

        later = cfg.with_overrides(
            create_new_dataset=False, train_new_model=False, do_predictions=True,
            start_date="2001-01-20", end_date="2001-01-21", n_workers=2,
        )
        result = PipelineRunner(later).run()
        assert result.training is None
        assert sorted(result.prediction.predicted) == [date(2001, 1, 20), date(2001, 1, 21)]

    def test_config_snapshot_reloads(self, basin_files, tmp_path):
        from swe_downscale.config import PipelineConfig
        from swe_downscale.runner import PipelineRunner
        cfg = _config(basin_files, tmp_path, create_new_dataset=False,
                      train_new_model=False, do_predictions=False)
        PipelineRunner(cfg).run()
        loaded = PipelineConfig.load(tmp_path / "output" / "test_basin" / "pipeline_config.json")
        assert loaded == cfg


# ======================================================================== #
#  CLI                                                                      #
# ======================================================================== #

class TestCli:
    def test_stage_selection_and_overrides(self, tmp_path):
        import argparse
        from run_downscaling import build_config
        args = argparse.Namespace(
            config=None, write_config=None, stages=["predict"], simulation="alps",
            start_date="2002-01-01", end_date=None, workers=3, seed=None,
        )
        cfg = build_config(args)
        assert (cfg.create_new_dataset, cfg.train_new_model, cfg.do_predictions) == (False, False, True)
        assert cfg.simulation_name == "alps"
        assert cfg.start_date == "2002-01-01"
        assert cfg.end_date == "2001-12-31"
        assert cfg.n_workers == 3
        assert cfg.random_seed == 123

    def test_config_file_roundtrip(self, tmp_path):
        import argparse
        from run_downscaling import build_config, default_config
        path = tmp_path / "basin.json"
        default_config().with_overrides(simulation_name="from_file").save(path)
        args = argparse.Namespace(
            config=str(path), write_config=None, stages=None, simulation=None,
            start_date=None, end_date=None, workers=None, seed=7,
        )
        cfg = build_config(args)
        assert cfg.simulation_name == "from_file"
        assert cfg.random_seed == 7
        assert cfg.do_predictions is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
