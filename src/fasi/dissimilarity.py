"""
Distance matrices and hierarchical clustering.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import fcluster, leaves_list, linkage
from scipy.spatial.distance import pdist, squareform

from .constants import DEFAULT_LINKAGE, DEFAULT_METRIC, LOGGER_NAME
from .exceptions import MissingDataError, ShapeError
from .views import DerivedView

logger = logging.getLogger(LOGGER_NAME)

NONNEGATIVE_METRICS = {"braycurtis"}


def as_matrix(data, name: Optional[str] = None) -> tuple[np.ndarray, pd.Index, str]:
    """
    Normalise a view, DataFrame or array to (float matrix, row index, name).
    """
    if isinstance(data, DerivedView):
        if data.long:
            raise ShapeError(f"View '{data.name}' is long-form; analyses need a wide view")
        return data.markers.to_numpy(dtype=float), data.markers.index, name or data.name
    if isinstance(data, pd.DataFrame):
        return data.to_numpy(dtype=float), data.index, name or "matrix"
    arr = np.asarray(data, dtype=float)
    if arr.ndim != 2:
        raise ShapeError(f"Expected a 2-D matrix, got shape {arr.shape}")
    return arr, pd.RangeIndex(arr.shape[0]), name or "matrix"


def prepare_matrix(
    x: np.ndarray,
    metric: str,
    absolute: bool,
    name: str = "matrix",
) -> np.ndarray:
    """
    Check a marker matrix before computing distances.

    Raises
    ------
    MissingDataError
        If the matrix holds NaN.
    ValueError
        If a non-negative metric gets negative values without ``absolute``.
    """
    if np.isnan(x).any():
        raise MissingDataError(f"'{name}' contains missing values; filter the view first")
    if absolute:
        if (x < 0).any():
            logger.info("'%s': using absolute values for %s distances", name, metric)
        return np.abs(x)
    if metric in NONNEGATIVE_METRICS and (x < 0).any():
        raise ValueError(
            f"'{name}' has negative values; {metric} needs non-negative data "
            "(pass absolute=True to use absolute values)"
        )
    return x


def condensed_distance(x: np.ndarray, metric: str = DEFAULT_METRIC) -> np.ndarray:
    """Condensed pairwise distance vector; all-zero row pairs get distance 0."""
    with np.errstate(invalid="ignore", divide="ignore"):
        d = pdist(x, metric=metric)
    return np.nan_to_num(d, nan=0.0)


def distance(
    data,
    metric: str = DEFAULT_METRIC,
    absolute: bool = False,
) -> pd.DataFrame:
    """
    Pairwise dissimilarity between rows.

    Bray-Curtis is sum |x_ik - x_jk| / sum (x_ik + x_jk), bounded in
    [0, 1] for non-negative data.

    Parameters
    ----------
    data : DerivedView | pd.DataFrame | array-like
        Samples x markers.
    metric : str, default="braycurtis"
        Any metric understood by ``scipy.spatial.distance.pdist``.
    absolute : bool, default=False
        Take elementwise absolute values before computing distances.

    Returns
    -------
    pd.DataFrame
        Square, symmetric distance matrix labelled by the row index.
    """
    x, index, name = as_matrix(data)
    x = prepare_matrix(x, metric, absolute, name)
    d = squareform(condensed_distance(x, metric))
    return pd.DataFrame(d, index=index, columns=index)


@dataclass(frozen=True, eq=False)
class Dendrogram:
    """Binary merge tree from agglomerative clustering."""

    linkage: np.ndarray
    labels: list[str]
    method: str = DEFAULT_LINKAGE

    @property
    def n_merges(self) -> int:
        return self.linkage.shape[0]

    @property
    def leaf_order(self) -> list[str]:
        return [self.labels[i] for i in leaves_list(self.linkage)]

    def merges(self) -> pd.DataFrame:
        """One row per merge: the two joined clusters, merge height and size."""
        return pd.DataFrame({
            "step": np.arange(1, self.n_merges + 1),
            "left": self.linkage[:, 0].astype(int),
            "right": self.linkage[:, 1].astype(int),
            "height": self.linkage[:, 2],
            "size": self.linkage[:, 3].astype(int),
        })

    def cut(self, k: int) -> pd.DataFrame:
        """Cluster membership when the tree is cut into ``k`` groups."""
        if not 1 <= k <= len(self.labels):
            raise ValueError(f"k must be between 1 and {len(self.labels)}, got {k}")
        membership = fcluster(self.linkage, t=k, criterion="maxclust")
        return pd.DataFrame({"label": self.labels, "cluster": membership})


def cluster(
    distance_matrix: pd.DataFrame,
    labels: Optional[Sequence[str]] = None,
    method: str = DEFAULT_LINKAGE,
) -> Dendrogram:
    """
    Agglomerative hierarchical clustering of a distance matrix.

    With ``method="ward"`` each step merges the pair of clusters giving the
    smallest increase in within-cluster variance (Lance-Williams update on
    the supplied dissimilarities).

    Parameters
    ----------
    distance_matrix : pd.DataFrame
        Square distance matrix.
    labels : Optional[Sequence[str]]
        Leaf labels, one per row. Defaults to the matrix index.
    method : str, default="ward"
        Linkage method passed to ``scipy.cluster.hierarchy.linkage``.

    Returns
    -------
    Dendrogram
    """
    d = np.asarray(distance_matrix, dtype=float)
    if d.ndim != 2 or d.shape[0] != d.shape[1]:
        raise ShapeError(f"Distance matrix must be square, got shape {d.shape}")
    if d.shape[0] < 2:
        raise ShapeError("Clustering needs at least 2 rows")

    if labels is None:
        labels = [str(i) for i in getattr(distance_matrix, "index", range(d.shape[0]))]
    labels = [str(lab) for lab in labels]
    if len(labels) != d.shape[0]:
        raise ShapeError(f"{len(labels)} labels for {d.shape[0]} rows")

    z = linkage(squareform(d, checks=False), method=method)
    logger.debug("Clustered %d rows with %s linkage", d.shape[0], method)
    return Dendrogram(linkage=z, labels=labels, method=method)
