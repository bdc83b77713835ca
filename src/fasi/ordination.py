"""
Principal component analysis of marker matrices.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .constants import LOGGER_NAME
from .dissimilarity import as_matrix
from .exceptions import MissingDataError, ShapeError
from .views import DerivedView

logger = logging.getLogger(LOGGER_NAME)


@dataclass(frozen=True, eq=False)
class OrdinationResult:
    """
    PCA output.

    ``scores`` are the left singular vectors (unit-norm columns) and
    ``loadings`` the right singular vectors (orthonormal columns), one
    column per axis.
    """

    scores: pd.DataFrame
    loadings: pd.DataFrame
    eigenvalues: pd.Series
    proportion_explained: pd.Series
    scaled: bool = True

    @property
    def axes(self) -> list[str]:
        return list(self.eigenvalues.index)


def pca(data, scale: bool = True) -> OrdinationResult:
    """
    PCA via singular value decomposition of the standardized matrix.

    Columns are centred and, when ``scale`` is True, divided by their
    sample standard deviation, so the decomposition is that of the
    correlation matrix. The SVD is taken of the standardized matrix
    divided by sqrt(n - 1), making the squared singular values the
    eigenvalues.

    Parameters
    ----------
    data : DerivedView | pd.DataFrame | array-like
        Samples x markers.
    scale : bool, default=True
        Standardize columns to unit variance.

    Returns
    -------
    OrdinationResult

    Raises
    ------
    ShapeError
        With fewer than 2 samples or 2 markers.
    ValueError
        If ``scale`` is set and a column is constant.
    """
    x, index, name = as_matrix(data)
    if np.isnan(x).any():
        raise MissingDataError(f"'{name}' contains missing values; filter the view first")
    n, p = x.shape
    if n < 2 or p < 2:
        raise ShapeError(f"'{name}': PCA needs at least 2 samples and 2 markers, got {x.shape}")

    markers = (
        list(data.markers.columns) if isinstance(data, DerivedView)
        else list(data.columns) if isinstance(data, pd.DataFrame)
        else [f"V{i + 1}" for i in range(p)]
    )

    # Standardize
    z = x - x.mean(axis=0)
    if scale:
        std = x.std(axis=0, ddof=1)
        constant = [m for m, s in zip(markers, std) if s == 0]
        if constant:
            raise ValueError(f"'{name}': cannot scale constant markers {constant}")
        z = z / std

    # SVD
    u, s, vt = np.linalg.svd(z / np.sqrt(n - 1), full_matrices=False)
    eigvals = s ** 2
    keep = eigvals > eigvals.max() * 1e-12
    u, eigvals, vt = u[:, keep], eigvals[keep], vt[keep]

    # Fix the sign of each axis so the largest loading is positive
    signs = np.sign(vt[np.arange(vt.shape[0]), np.abs(vt).argmax(axis=1)])
    signs[signs == 0] = 1
    u, vt = u * signs, vt * signs[:, None]

    axes = [f"PC{i + 1}" for i in range(len(eigvals))]
    var_ratio = eigvals / eigvals.sum()
    logger.info(
        "PCA '%s': %d samples, %d markers, PC1 %.1f%%, PC2 %.1f%%",
        name, n, p, var_ratio[0] * 100, (var_ratio[1] if len(var_ratio) > 1 else 0) * 100,
    )
    return OrdinationResult(
        scores=pd.DataFrame(u, index=index, columns=axes),
        loadings=pd.DataFrame(vt.T, index=markers, columns=axes),
        eigenvalues=pd.Series(eigvals, index=axes, name="eigenvalue"),
        proportion_explained=pd.Series(var_ratio, index=axes, name="proportion_explained"),
        scaled=scale,
    )


def importance_table(result: OrdinationResult) -> pd.DataFrame:
    """Eigenvalue, proportion explained and cumulative proportion per axis."""
    return pd.DataFrame({
        "axis": result.axes,
        "eigenvalue": result.eigenvalues.to_numpy(),
        "proportion_explained": result.proportion_explained.to_numpy(),
        "cumulative_proportion": result.proportion_explained.cumsum().to_numpy(),
    })


def biplot_table(
    result: OrdinationResult,
    highlight: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """
    PC1/PC2 loadings per marker with a flag for markers to label.

    Parameters
    ----------
    result : OrdinationResult
        PCA output.
    highlight : Optional[Iterable[str]]
        Markers to flag, e.g. SIMPER discriminating markers. All markers
        are flagged when None.

    Returns
    -------
    pd.DataFrame
        Columns: marker, PC1, PC2, highlight
    """
    cols = [c for c in ("PC1", "PC2") if c in result.loadings.columns]
    out = result.loadings[cols].rename_axis("marker").reset_index()
    wanted = set(out["marker"]) if highlight is None else set(highlight)
    out["highlight"] = out["marker"].isin(wanted)
    return out
