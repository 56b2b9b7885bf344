# tests/test_train.py
import numpy as np
import pandas as pd
import pytest

from pydownscale.data import PredictandSet, PredictorGrid, PreparedGrid
from pydownscale.estimators import AnalogModel
from pydownscale.exceptions import (
    AllMissingError,
    OptionsError,
    ShapeMismatchError,
    UnsupportedMethodError,
)
from pydownscale.filters import GreaterThan
from pydownscale.options import GLMOptions, Method
from pydownscale.train import (
    TrainingResult,
    downscale_predict,
    downscale_train,
    fit_site,
)


# ---------------------------------------------------------------------
# Synthetic grids
# ---------------------------------------------------------------------

BETA = np.array([[0.5, 0.1, -1.0], [-0.2, 0.4, 0.3], [0.1, -0.3, 0.8]])
INTERCEPT = np.array([1.0, 2.0, 3.0])


def _make_grid(n: int = 120, gaps: bool = True, local: bool = False, seed: int = 42):
    """
    Three sites, three global predictors, noise-free linear predictands.

    With ``gaps=True`` a couple of observations are missing. With
    ``local=True`` every site also gets its own 2-column neighborhood
    matrix, and its predictand is an exact linear function of it.
    """
    rng = np.random.default_rng(seed)
    dates = pd.date_range("2000-01-01", periods=n, freq="D")
    x = rng.normal(size=(n, 3))

    x_local = None
    if local:
        x_local = [rng.normal(size=(n, 2)) for _ in range(3)]
        y = np.column_stack([2.0 * xl[:, 0] - xl[:, 1] + i for i, xl in enumerate(x_local)])
    else:
        y = INTERCEPT + x @ BETA

    if gaps:
        y[5, 0] = np.nan
        y[10, 1] = np.nan
        y[11, 1] = np.nan

    predictand = PredictandSet(
        y,
        dimension_names=("time", "loc"),
        reference_dates=dates,
        sites=[101, 202, 303],
        metadata={"variable": "tmax", "units": "degC"},
    )
    return PreparedGrid(PredictorGrid(x_global=x, x_local=x_local), predictand)


@pytest.fixture
def grid() -> PreparedGrid:
    return _make_grid()


@pytest.fixture
def scenario() -> PreparedGrid:
    """Single site ``y = [1, NaN, 3, 4]`` on a 4 x 1 predictor."""
    return PreparedGrid(
        PredictorGrid(x_global=[[0.1], [0.2], [0.3], [0.4]]),
        PredictandSet(
            np.array([1.0, np.nan, 3.0, 4.0]),
            reference_dates=pd.date_range("2010-06-01", periods=4, freq="D"),
        ),
    )


# ---------------------------------------------------------------------
# Site model fitter
# ---------------------------------------------------------------------


def test_fit_site_fits_filtered_rows_and_predicts_all(scenario):
    y = scenario.predictand.column(0)
    model, pred = fit_site(0, scenario.predictors, y, "GLM", filt=">2")
    assert pred.shape == (4,)
    # line through (0.3, 3) and (0.4, 4)
    np.testing.assert_allclose(pred, [1.0, 2.0, 3.0, 4.0], atol=1e-8)


def test_fit_site_analog_pool_and_dates(scenario):
    dates = scenario.predictand.reference_dates
    y = scenario.predictand.column(0)
    model, pred = fit_site(
        0,
        scenario.predictors,
        y,
        Method.ANALOGS,
        filt=GreaterThan(2.0),
        options=None,
        reference_dates=dates,
    )
    assert isinstance(model, AnalogModel)
    # only rows {2, 3} entered the pool
    np.testing.assert_allclose(model.y[:, 0], [3.0, 4.0])
    assert list(model.train_dates) == list(dates[[2, 3]])
    # test dates are the full, unfiltered series
    assert list(model.test_dates) == list(dates)
    assert pred.shape == (4,)


def test_fit_site_uses_local_predictors_when_present():
    g = _make_grid(local=True)
    y = g.predictand.column(1)
    _, pred = fit_site(1, g.predictors, y, "GLM")
    expected = 2.0 * g.predictors.x_local[1][:, 0] - g.predictors.x_local[1][:, 1] + 1.0
    # rows missing in the observations are predicted too
    np.testing.assert_allclose(pred, expected, atol=1e-8)


def test_fit_site_row_mismatch(grid):
    with pytest.raises(ShapeMismatchError):
        fit_site(0, grid.predictors, grid.predictand.column(0)[:-1], "GLM")


def test_fit_site_analog_dates_mismatch(grid):
    with pytest.raises(ShapeMismatchError):
        fit_site(
            0,
            grid.predictors,
            grid.predictand.column(0),
            "analogs",
            reference_dates=grid.predictand.reference_dates[:-1],
        )


# ---------------------------------------------------------------------
# Single-site orchestration
# ---------------------------------------------------------------------


def test_singlesite_result_preserves_shape_and_metadata(grid):
    res = downscale_train(grid, "GLM")
    assert isinstance(res, TrainingResult)
    pred, obs = res.predictions, grid.predictand
    assert pred.values.shape == obs.values.shape
    assert pred.dimension_names == ("time", "loc")
    assert pred.sites == [101, 202, 303]
    assert pred.metadata == {"variable": "tmax", "units": "degC"}
    assert pred.reference_dates.equals(obs.reference_dates)
    # predictions exist also where observations are missing
    assert np.isfinite(pred.values).all()


def test_singlesite_configuration(grid):
    res = downscale_train(grid, "glm", family="gaussian")
    conf = res.configuration
    assert conf.method is Method.GLM
    assert conf.singlesite is True
    assert len(conf.models) == 3
    assert conf.options == GLMOptions(family="gaussian")
    assert res.models is conf.models


def test_singlesite_linear_fit_is_exact(grid):
    res = downscale_train(grid, "GLM")
    expected = INTERCEPT + grid.x_global @ BETA
    np.testing.assert_allclose(res.predictions.values, expected, atol=1e-8)


def test_singlesite_filter_is_recorded(grid):
    res = downscale_train(grid, "GLM", filt=">0")
    assert res.configuration.filt == ">0"
    res = downscale_train(grid, "GLM", filt="> 0")
    assert res.configuration.filt == ">0"
    res = downscale_train(grid, "GLM", filt=lambda v: v > 0)
    assert res.configuration.filt.endswith("<lambda>")


def test_integral_float_options_train():
    g = _make_grid(gaps=False)
    res = downscale_train(g, "analogs", n_analogs=4.0, window=1.0)
    assert res.configuration.options.n_analogs == 4
    assert res.predictions.values.shape == (120, 3)
    with pytest.raises(OptionsError):
        downscale_train(g, "analogs", n_analogs=4.5)


def test_singlesite_one_dimensional_predictand(scenario):
    res = downscale_train(scenario, "GLM", filt=">2")
    assert res.predictions.values.shape == (4,)
    assert res.predictions.dimension_names == ("time",)
    np.testing.assert_allclose(res.predictions.values, [1.0, 2.0, 3.0, 4.0], atol=1e-8)


def test_singlesite_analogs_record_full_test_dates(scenario):
    res = downscale_train(scenario, "analogs", filt=">2", n_analogs=1)
    model = res.models[0]
    dates = scenario.predictand.reference_dates
    assert list(model.test_dates) == list(dates)
    assert list(model.train_dates) == list(dates[[2, 3]])
    # nearest pool days: 0.3 -> 3, 0.4 -> 4
    np.testing.assert_allclose(res.predictions.values, [3.0, 3.0, 3.0, 4.0])


def test_singlesite_local_predictors():
    g = _make_grid(local=True)
    res = downscale_train(g, "GLM")
    for i, xl in enumerate(g.predictors.x_local):
        expected = 2.0 * xl[:, 0] - xl[:, 1] + i
        np.testing.assert_allclose(res.predictions.values[:, i], expected, atol=1e-8)


def test_sites_are_isolated_from_each_other():
    g = _make_grid(local=True)
    res = downscale_train(g, "GLM")

    corrupted = list(g.predictors.x_local)
    corrupted[2] = np.random.default_rng(99).normal(size=corrupted[2].shape) * 100.0
    g2 = PreparedGrid(PredictorGrid(x_local=corrupted), g.predictand)
    res2 = downscale_train(g2, "GLM")

    np.testing.assert_allclose(res2.predictions.values[:, :2], res.predictions.values[:, :2])
    assert not np.allclose(res2.predictions.values[:, 2], res.predictions.values[:, 2])


def test_missing_local_entry_raises():
    g = _make_grid(local=True)
    partial = {0: g.predictors.x_local[0], 1: g.predictors.x_local[1]}
    g2 = PreparedGrid(PredictorGrid(x_local=partial), g.predictand)
    with pytest.raises(ShapeMismatchError, match="site 2"):
        downscale_train(g2, "GLM")


def test_all_missing_site_raises(grid):
    y = grid.predictand.values.copy()
    y[:, 1] = np.nan
    g = PreparedGrid(grid.predictors, PredictandSet(y, reference_dates=grid.predictand.reference_dates))
    with pytest.raises(AllMissingError) as err:
        downscale_train(g, "GLM")
    assert err.value.site == 1


def test_filter_removing_everything_raises(grid):
    with pytest.raises(AllMissingError):
        downscale_train(grid, "GLM", filt=">1000")


def test_unsupported_method_raises(grid):
    with pytest.raises(UnsupportedMethodError):
        downscale_train(grid, "XYZ")


def test_unknown_option_raises(grid):
    with pytest.raises(OptionsError):
        downscale_train(grid, "GLM", n_analogs=4)


def test_parallel_matches_sequential(grid):
    seq = downscale_train(grid, "GLM")
    par = downscale_train(grid, "GLM", n_jobs=2)
    np.testing.assert_allclose(par.predictions.values, seq.predictions.values)
    assert len(par.models) == 3


def test_verbose_summary(grid, capsys):
    downscale_train(grid, "GLM", verbose=True)
    out = capsys.readouterr().out
    assert "[pydownscale] GLM single-site" in out
    assert "3 site(s)" in out


# ---------------------------------------------------------------------
# Multi-site orchestration
# ---------------------------------------------------------------------


def test_multisite_moore_penrose():
    g = _make_grid(gaps=False)
    res = downscale_train(g, "GLM", singlesite=False, fitting="MP")
    assert res.configuration.singlesite is False
    assert len(res.models) == 1
    np.testing.assert_allclose(res.predictions.values, g.predictand.values, atol=1e-8)
    assert res.predictions.dimension_names == ("time", "loc")


def test_multisite_glm_requires_joint_fitting():
    g = _make_grid(gaps=False)
    with pytest.raises(OptionsError):
        downscale_train(g, "GLM", singlesite=False)


def test_multisite_analogs_dates(grid):
    res = downscale_train(grid, "analogs", singlesite=False, n_analogs=1)
    model = res.models[0]
    dates = grid.predictand.reference_dates
    assert list(model.train_dates) == list(dates)
    assert list(model.test_dates) == list(dates)
    pred, obs = res.predictions.values, grid.predictand.values
    assert pred.shape == obs.shape
    ok = ~np.isnan(obs)
    # each day is its own closest analog
    np.testing.assert_allclose(pred[ok], obs[ok])


def test_multisite_nn_shape():
    g = _make_grid(gaps=False)
    res = downscale_train(
        g, "NN", singlesite=False, hidden=4, learningrate=0.01, numepochs=10, random_state=0
    )
    assert res.predictions.values.shape == (120, 3)
    assert np.isfinite(res.predictions.values).all()


def test_multisite_ignores_filter_with_warning():
    g = _make_grid(gaps=False)
    with pytest.warns(UserWarning, match="ignored in multi-site"):
        res = downscale_train(g, "GLM", singlesite=False, filt=">0", fitting="MP")
    assert res.configuration.filt is None


def test_multisite_requires_global_predictors():
    g = _make_grid(local=True)
    g2 = PreparedGrid(PredictorGrid(x_local=g.predictors.x_local), g.predictand)
    with pytest.raises(ShapeMismatchError):
        downscale_train(g2, "analogs", singlesite=False)


def test_single_and_multi_site_shapes_agree_on_one_column(scenario):
    single = downscale_train(scenario, "GLM")
    multi = downscale_train(scenario, "GLM", singlesite=False, fitting="MP")
    assert single.predictions.values.shape == multi.predictions.values.shape == (4,)
    assert single.predictions.dimension_names == multi.predictions.dimension_names


# ---------------------------------------------------------------------
# Prediction on new data
# ---------------------------------------------------------------------


def test_downscale_predict_reproduces_training_predictions(grid):
    res = downscale_train(grid, "GLM")
    again = downscale_predict(grid.predictors, res, grid.predictand.reference_dates)
    np.testing.assert_allclose(again.values, res.predictions.values)
    assert again.sites == [101, 202, 303]


def test_downscale_predict_new_period():
    g = _make_grid(gaps=False)
    res = downscale_train(g, "GLM", singlesite=False, fitting="MP")
    new_x = np.random.default_rng(0).normal(size=(30, 3))
    new_dates = pd.date_range("2020-01-01", periods=30, freq="D")
    out = downscale_predict(PredictorGrid(x_global=new_x), res, new_dates)
    assert out.values.shape == (30, 3)
    assert out.reference_dates.equals(new_dates)
    np.testing.assert_allclose(out.values, INTERCEPT + new_x @ BETA, atol=1e-8)


def test_downscale_predict_analogs_does_not_touch_stored_model(grid):
    res = downscale_train(grid, "analogs", n_analogs=2)
    before = res.models[0].test_dates
    new_x = grid.x_global[:10]
    out = downscale_predict(PredictorGrid(x_global=new_x), res)
    assert out.values.shape == (10, 3)
    assert out.reference_dates is None
    assert res.models[0].test_dates is before


def test_downscale_predict_date_length_mismatch(grid):
    res = downscale_train(grid, "GLM")
    with pytest.raises(ShapeMismatchError):
        downscale_predict(grid.predictors, res, pd.date_range("2000-01-01", periods=3))
