import numpy as np
import pandas as pd
import pytest

from fasi.exceptions import MissingDataError, ShapeError
from fasi.ordination import biplot_table, importance_table, pca


def test_loadings_orthonormal(views):
    result = pca(views["fa"])
    loadings = result.loadings.to_numpy()
    np.testing.assert_allclose(loadings.T @ loadings, np.eye(loadings.shape[1]), atol=1e-10)
    scores = result.scores.to_numpy()
    np.testing.assert_allclose(scores.T @ scores, np.eye(scores.shape[1]), atol=1e-10)


def test_proportions_sum_to_one(views):
    result = pca(views["overlap"])
    assert result.proportion_explained.sum() == pytest.approx(1.0)
    assert (np.diff(result.eigenvalues.to_numpy()) <= 1e-12).all()


def test_scaled_eigenvalues_sum_to_marker_count(views):
    result = pca(views["fa"], scale=True)
    assert result.eigenvalues.sum() == pytest.approx(4.0)


def test_matches_covariance_eigenvalues(views):
    x = views["si"].markers.to_numpy()
    result = pca(views["si"], scale=False)
    expected = np.sort(np.linalg.eigvalsh(np.cov(x, rowvar=False)))[::-1]
    np.testing.assert_allclose(result.eigenvalues.to_numpy(), expected[: len(result.eigenvalues)])


def test_sign_convention(views):
    loadings = pca(views["fa"]).loadings
    for axis in loadings.columns:
        col = loadings[axis]
        assert col[col.abs().idxmax()] > 0


def test_axis_labels(views):
    result = pca(views["si"])
    assert result.axes[:2] == ["PC1", "PC2"]
    assert list(result.loadings.index) == ["CN ratio", "d15N", "d13C"]
    assert result.scores.index.equals(views["si"].markers.index)


def test_constant_column_cannot_be_scaled():
    x = pd.DataFrame({"a": [1.0, 2.0, 3.0], "b": [1.0, 1.0, 1.0]})
    with pytest.raises(ValueError, match="constant"):
        pca(x)
    assert pca(x, scale=False).eigenvalues.iloc[0] > 0


def test_input_checks():
    with pytest.raises(MissingDataError):
        pca(pd.DataFrame({"a": [1.0, np.nan, 3.0], "b": [1.0, 2.0, 0.0]}))
    with pytest.raises(ShapeError):
        pca(np.ones((1, 3)))


def test_importance_and_biplot_tables(views):
    result = pca(views["overlap"])
    imp = importance_table(result)
    assert imp["cumulative_proportion"].iloc[-1] == pytest.approx(1.0)
    bi = biplot_table(result, highlight=["16:0", "d13C"])
    assert list(bi.columns) == ["marker", "PC1", "PC2", "highlight"]
    assert set(bi.loc[bi["highlight"], "marker"]) == {"16:0", "d13C"}
    assert biplot_table(result)["highlight"].all()
