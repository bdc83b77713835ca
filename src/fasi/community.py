"""
Community-ecology analyses on marker matrices: PERMANOVA, SIMPER and nMDS.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from itertools import combinations
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.spatial.distance import squareform
from sklearn.manifold import MDS

from .constants import (
    DEFAULT_METRIC,
    DEFAULT_PERMUTATIONS,
    DEFAULT_SEED,
    DEFAULT_SIMPER_CUTOFF,
    LOGGER_NAME,
    NMDS_COMPONENTS,
    NMDS_MAX_ITER,
    NMDS_RESTARTS,
    NMDS_TOLERANCE,
)
from .dissimilarity import as_matrix, condensed_distance, prepare_matrix
from .exceptions import ConvergenceWarning, MissingDataError, SchemaError, ShapeError
from .views import DerivedView

logger = logging.getLogger(LOGGER_NAME)

FactorsLike = Union[str, Sequence[str], pd.Series, pd.DataFrame, Mapping[str, Sequence]]

# Tolerance when comparing permuted and observed statistics
_EPS = np.sqrt(np.finfo(float).eps)


def _are_annotation_names(data, factors) -> bool:
    return (
        isinstance(data, DerivedView)
        and isinstance(factors, (list, tuple))
        and len(factors) > 0
        and all(isinstance(f, str) and f in data.annotations.columns for f in factors)
    )


def _factor_frame(data, factors: FactorsLike, index: pd.Index, name: str) -> pd.DataFrame:
    """
    Turn the factor argument into a DataFrame aligned to the matrix rows.

    Strings name annotation columns of a DerivedView. Unknown names raise
    SchemaError rather than being read as labels. Pandas inputs with a
    different index are re-joined by row key.
    """
    if isinstance(factors, str):
        if not isinstance(data, DerivedView):
            raise TypeError(f"Factor name '{factors}' needs a DerivedView to look it up in")
        factors = [factors]
    if (
        isinstance(data, DerivedView)
        and isinstance(factors, (list, tuple))
        and factors
        and all(isinstance(f, str) for f in factors)
        and not _are_annotation_names(data, factors)
    ):
        unknown = [f for f in factors if f not in data.annotations.columns]
        raise SchemaError(
            f"View '{data.name}' has no annotation columns {unknown}; "
            "pass group labels as a pandas Series"
        )
    if _are_annotation_names(data, factors):
        frame = pd.DataFrame({f: data.factor(f) for f in factors})
    elif isinstance(factors, pd.Series):
        frame = factors.to_frame(name=factors.name or "group")
    elif isinstance(factors, pd.DataFrame):
        frame = factors.copy()
    elif isinstance(factors, Mapping):
        frame = pd.DataFrame({k: list(v) for k, v in factors.items()})
    else:
        frame = pd.DataFrame({"group": list(factors)})

    if len(frame) != len(index):
        raise ShapeError(
            f"'{name}': {len(index)} matrix rows but {len(frame)} grouping values"
        )
    if isinstance(factors, (pd.Series, pd.DataFrame)) and not frame.index.equals(index):
        if set(frame.index) != set(index):
            raise ShapeError(f"'{name}': grouping rows do not match matrix rows")
        frame = frame.loc[index]
    else:
        frame.index = index

    if frame.isna().any().any():
        raise MissingDataError(f"'{name}': grouping factors contain missing values")
    return frame.astype(str)


def _hat(x: np.ndarray) -> np.ndarray:
    return x @ np.linalg.pinv(x)


def _sequential_hats(factors: pd.DataFrame) -> tuple[list[np.ndarray], list[int]]:
    """Hat matrices of the cumulative designs 1, 1+f1, 1+f1+f2, ... and their ranks."""
    n = len(factors)
    design = np.ones((n, 1))
    hats = [_hat(design)]
    ranks = [1]
    for col in factors.columns:
        dummies = pd.get_dummies(factors[col], drop_first=True, dtype=float).to_numpy()
        design = np.hstack([design, dummies])
        hats.append(_hat(design))
        ranks.append(int(np.linalg.matrix_rank(design)))
    return hats, ranks


def _term_ss(g: np.ndarray, projectors: list[np.ndarray]) -> np.ndarray:
    """tr(P G) for each projector, using the symmetry of P."""
    return np.array([np.sum(p * g) for p in projectors])


def permanova(
    data,
    factors: FactorsLike,
    metric: str = DEFAULT_METRIC,
    permutations: int = DEFAULT_PERMUTATIONS,
    seed: Optional[int] = DEFAULT_SEED,
    absolute: bool = False,
) -> pd.DataFrame:
    """
    Permutational multivariate analysis of variance on a distance matrix.

    Terms are tested sequentially (type I sums of squares) in the order
    given. Significance comes from permuting the rows of the distance
    matrix against the fixed design; p = (1 + #F_perm >= F) / (N + 1).

    Parameters
    ----------
    data : DerivedView | pd.DataFrame | array-like
        Samples x markers.
    factors : str | list[str] | pd.Series | pd.DataFrame | Mapping
        Grouping factor(s). Strings name annotation columns of ``data``.
        With a DerivedView, pass label sequences as a pd.Series.
    metric : str, default="braycurtis"
        Distance metric.
    permutations : int, default=999
        Number of permutations.
    seed : Optional[int]
        Seed of the permutation generator.
    absolute : bool, default=False
        Take absolute values of the markers before computing distances.

    Returns
    -------
    pd.DataFrame
        Rows per term plus Residual and Total with columns:
        term, df, sum_sq, R2, F, p_value

    Raises
    ------
    ShapeError
        If the factor length differs from the number of matrix rows.
    """
    x, index, name = as_matrix(data)
    groups = _factor_frame(data, factors, index, name)
    x = prepare_matrix(x, metric, absolute, name)
    n = x.shape[0]
    if n < 3:
        raise ShapeError(f"'{name}': PERMANOVA needs at least 3 samples, got {n}")

    d = squareform(condensed_distance(x, metric))
    a = -0.5 * d ** 2
    centre = np.eye(n) - np.ones((n, n)) / n
    g = centre @ a @ centre

    hats, ranks = _sequential_hats(groups)
    projectors = [hats[k] - hats[k - 1] for k in range(1, len(hats))]
    residual = np.eye(n) - hats[-1]
    term_df = np.diff(ranks)
    res_df = n - ranks[-1]

    ss_total = float(np.trace(g))
    ss_terms = _term_ss(g, projectors)
    ss_res = float(np.sum(residual * g))

    def _f(ss: np.ndarray, ss_r: float) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            f = (ss / term_df) / (ss_r / res_df)
        return np.where((term_df > 0) & (res_df > 0), f, np.nan)

    f_obs = _f(ss_terms, ss_res)

    logger.info(
        "PERMANOVA '%s' ~ %s: %d samples, %d permutations, seed=%s",
        name, " + ".join(groups.columns), n, permutations, seed,
    )
    rng = np.random.default_rng(seed)
    exceed = np.zeros(len(projectors))
    for _ in range(permutations):
        perm = rng.permutation(n)
        g_perm = g[np.ix_(perm, perm)]
        f_perm = _f(_term_ss(g_perm, projectors), float(np.sum(residual * g_perm)))
        exceed += f_perm >= f_obs - _EPS

    p_values = np.where(
        np.isnan(f_obs) | (permutations < 1), np.nan, (exceed + 1) / (permutations + 1)
    )
    if res_df <= 0:
        logger.warning("PERMANOVA '%s': no residual degrees of freedom", name)

    rows = [
        {"term": term, "df": int(df_k), "sum_sq": ss, "R2": ss / ss_total, "F": f, "p_value": p}
        for term, df_k, ss, f, p in zip(groups.columns, term_df, ss_terms, f_obs, p_values)
    ]
    rows.append({"term": "Residual", "df": int(res_df), "sum_sq": ss_res,
                 "R2": ss_res / ss_total, "F": np.nan, "p_value": np.nan})
    rows.append({"term": "Total", "df": n - 1, "sum_sq": ss_total,
                 "R2": 1.0, "F": np.nan, "p_value": np.nan})

    table = pd.DataFrame(rows)
    table.attrs.update({"view": name, "metric": metric, "permutations": permutations,
                        "seed": seed, "absolute": absolute})
    return table


def _pair_contributions(xa: np.ndarray, xb: np.ndarray) -> np.ndarray:
    """Per-marker Bray-Curtis contributions for every (row of xa, row of xb) pair."""
    diff = np.abs(xa[:, None, :] - xb[None, :, :])
    total = (xa[:, None, :] + xb[None, :, :]).sum(axis=2, keepdims=True)
    with np.errstate(invalid="ignore", divide="ignore"):
        contrib = np.where(total > 0, diff / total, 0.0)
    return contrib.reshape(-1, xa.shape[1])


def _within_contributions(x: np.ndarray) -> np.ndarray:
    i, j = np.triu_indices(x.shape[0], k=1)
    diff = np.abs(x[i] - x[j])
    total = (x[i] + x[j]).sum(axis=1, keepdims=True)
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(total > 0, diff / total, 0.0)


def _simper_table(
    md: np.ndarray,
    markers: list[str],
    comparison: str,
    mean_a: np.ndarray,
    mean_b: np.ndarray,
) -> pd.DataFrame:
    average = md.mean(axis=0)
    overall = md.sum(axis=1).mean()
    sd = md.std(axis=0, ddof=1) if md.shape[0] > 1 else np.full(md.shape[1], np.nan)
    with np.errstate(invalid="ignore", divide="ignore"):
        ratio = average / sd
    out = pd.DataFrame({
        "comparison": comparison,
        "marker": markers,
        "average": average,
        "sd": sd,
        "ratio": ratio,
        "mean_a": mean_a,
        "mean_b": mean_b,
    })
    out = out.sort_values("average", ascending=False, kind="stable").reset_index(drop=True)
    out["cumsum"] = out["average"].cumsum() / overall if overall > 0 else np.nan
    out.insert(2, "rank", np.arange(1, len(out) + 1))
    out.attrs["overall"] = overall
    return out


def simper(
    data,
    groups: Optional[FactorsLike] = None,
    permutations: int = 0,
    seed: Optional[int] = DEFAULT_SEED,
    absolute: bool = False,
) -> pd.DataFrame:
    """
    Similarity percentage analysis.

    For each pair of groups, every marker's contribution to the Bray-Curtis
    dissimilarity of each cross-group sample pair is averaged over pairs.
    Without groups (or with a single level) all sample pairs are used and
    the comparison is labelled ``total``.

    Parameters
    ----------
    data : DerivedView | pd.DataFrame | array-like
        Samples x markers.
    groups : Optional[str | pd.Series | sequence]
        Grouping factor. Strings name an annotation column of ``data``.
    permutations : int, default=0
        Permutations of the group labels for marker p-values (grouped only).
    seed : Optional[int]
        Seed of the permutation generator.
    absolute : bool, default=False
        Take absolute values of the markers first.

    Returns
    -------
    pd.DataFrame
        Columns: comparison, marker, rank, average, sd, ratio, mean_a, mean_b,
        cumsum, p_value. Sorted by comparison then descending contribution.
    """
    x, index, name = as_matrix(data)
    x = prepare_matrix(x, DEFAULT_METRIC, absolute, name)
    markers = (
        list(data.marker_names) if isinstance(data, DerivedView)
        else list(data.columns) if isinstance(data, pd.DataFrame)
        else [f"V{i + 1}" for i in range(x.shape[1])]
    )

    if groups is None:
        labels = pd.Series("all", index=index)
    else:
        frame = _factor_frame(data, groups, index, name)
        labels = frame.iloc[:, 0]
    levels = sorted(labels.unique())
    lab = labels.to_numpy()

    if len(levels) < 2:
        if x.shape[0] < 2:
            raise ShapeError(f"'{name}': SIMPER needs at least 2 samples")
        col_means = x.mean(axis=0)
        table = _simper_table(_within_contributions(x), markers, "total", col_means, col_means)
        table["p_value"] = np.nan
        logger.info("SIMPER '%s': %d samples, ungrouped", name, x.shape[0])
        return table

    rng = np.random.default_rng(seed)
    perm_sets = [rng.permutation(len(lab)) for _ in range(permutations)]
    tables = []
    for a, b in combinations(levels, 2):
        xa, xb = x[lab == a], x[lab == b]
        table = _simper_table(
            _pair_contributions(xa, xb), markers, f"{a}_{b}", xa.mean(axis=0), xb.mean(axis=0)
        )
        if permutations > 0:
            observed = table.set_index("marker")["average"].reindex(markers).to_numpy()
            exceed = np.zeros(len(markers))
            for perm in perm_sets:
                plab = lab[perm]
                pa, pb = x[plab == a], x[plab == b]
                exceed += _pair_contributions(pa, pb).mean(axis=0) >= observed - _EPS
            pvals = pd.Series((exceed + 1) / (permutations + 1), index=markers)
            table["p_value"] = table["marker"].map(pvals)
        else:
            table["p_value"] = np.nan
        tables.append(table)

    logger.info(
        "SIMPER '%s': %d group pairs, %d permutations, seed=%s",
        name, len(tables), permutations, seed,
    )
    out = pd.concat(tables, ignore_index=True)
    out.attrs.update({"view": name, "permutations": permutations, "seed": seed})
    return out


def discriminating_markers(
    ranking: pd.DataFrame,
    threshold: float = DEFAULT_SIMPER_CUTOFF,
    comparison: Optional[str] = None,
    inclusive: bool = True,
) -> list[str]:
    """
    Top-ranked SIMPER markers up to a cumulative contribution threshold.

    With ``inclusive`` the marker whose cumulative fraction first reaches
    the threshold is kept; otherwise only markers strictly below it.
    """
    comparisons = ranking["comparison"].unique()
    if comparison is None:
        if len(comparisons) != 1:
            raise ValueError(f"Pick one comparison out of {list(comparisons)}")
        comparison = comparisons[0]
    sub = ranking[ranking["comparison"] == comparison].sort_values("rank")
    below = sub["cumsum"] < threshold
    if inclusive:
        n_keep = min(int(below.sum()) + 1, len(sub))
        return sub["marker"].iloc[:n_keep].tolist()
    return sub.loc[below, "marker"].tolist()


@dataclass(frozen=True, eq=False)
class NmdsResult:
    points: pd.DataFrame
    stress: float
    n_iter: int
    converged: bool
    seed: Optional[int]


def nmds(
    data,
    metric: str = DEFAULT_METRIC,
    n_components: int = NMDS_COMPONENTS,
    max_iterations: int = NMDS_MAX_ITER,
    tolerance: float = NMDS_TOLERANCE,
    n_init: int = NMDS_RESTARTS,
    seed: Optional[int] = DEFAULT_SEED,
    absolute: bool = False,
) -> NmdsResult:
    """
    Nonmetric multidimensional scaling.

    Runs SMACOF stress majorization with monotone regression from
    ``n_init`` random starts and keeps the lowest-stress solution. The
    configuration is centred and rotated to its principal axes. When the
    best run stops at ``max_iterations`` a ConvergenceWarning is issued and
    ``converged`` is False; the result is still returned.

    Returns
    -------
    NmdsResult
        Points (MDS1, MDS2, ...) indexed like the input rows, Kruskal stress,
        iterations of the best run, convergence flag and seed.
    """
    x, index, name = as_matrix(data)
    x = prepare_matrix(x, metric, absolute, name)
    if x.shape[0] <= n_components + 1:
        raise ShapeError(f"'{name}': nMDS in {n_components}-D needs more than {n_components + 1} samples")
    d = squareform(condensed_distance(x, metric))

    mds = MDS(
        n_components=n_components,
        metric=False,
        dissimilarity="precomputed",
        n_init=n_init,
        max_iter=max_iterations,
        eps=tolerance,
        random_state=seed,
        normalized_stress="auto",
    )
    coords = mds.fit_transform(d)

    # Centre and rotate to principal axes
    coords = coords - coords.mean(axis=0)
    _, _, vt = np.linalg.svd(coords, full_matrices=False)
    coords = coords @ vt.T

    n_iter = int(mds.n_iter_)
    converged = n_iter < max_iterations
    stress = float(mds.stress_)
    if not converged:
        msg = f"nMDS '{name}' did not converge in {max_iterations} iterations (stress {stress:.4f})"
        logger.warning(msg)
        warnings.warn(msg, ConvergenceWarning, stacklevel=2)
    logger.info("nMDS '%s': stress=%.4f after %d iterations, seed=%s", name, stress, n_iter, seed)

    points = pd.DataFrame(
        coords, index=index, columns=[f"MDS{i + 1}" for i in range(n_components)]
    )
    return NmdsResult(points=points, stress=stress, n_iter=n_iter, converged=converged, seed=seed)
