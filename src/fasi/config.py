"""
Analysis configuration: defaults, YAML loading and per-analysis seeds.
"""

from __future__ import annotations

import zlib
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np
import yaml

from .constants import (
    DEFAULT_CLUSTER_COUNT,
    DEFAULT_PERMUTATIONS,
    DEFAULT_SEED,
    DEFAULT_SIMPER_CUTOFF,
    DEFAULT_SIMULATIONS,
    NMDS_MAX_ITER,
    NMDS_RESTARTS,
    NMDS_TOLERANCE,
    REPORT_DECIMALS,
)


@dataclass(frozen=True)
class AnalysisConfig:
    seed: int = DEFAULT_SEED
    permutations: int = DEFAULT_PERMUTATIONS
    simper_cutoff: float = DEFAULT_SIMPER_CUTOFF
    simper_inclusive: bool = True
    cluster_count: int = DEFAULT_CLUSTER_COUNT
    nmds_max_iterations: int = NMDS_MAX_ITER
    nmds_tolerance: float = NMDS_TOLERANCE
    nmds_restarts: int = NMDS_RESTARTS
    simulations: int = DEFAULT_SIMULATIONS
    decimals: int = REPORT_DECIMALS

    def __post_init__(self):
        if self.permutations < 0:
            raise ValueError(f"permutations must be >= 0, got {self.permutations}")
        if not 0 < self.simper_cutoff <= 1:
            raise ValueError(f"simper_cutoff must be in (0, 1], got {self.simper_cutoff}")
        if self.cluster_count < 1:
            raise ValueError(f"cluster_count must be >= 1, got {self.cluster_count}")
        if self.simulations < 1:
            raise ValueError(f"simulations must be >= 1, got {self.simulations}")

    def seed_for(self, analysis: str) -> int:
        """
        Seed of one stochastic analysis, derived from the base seed and the
        analysis name so that adding or skipping analyses leaves the others
        unchanged.
        """
        sequence = np.random.SeedSequence([self.seed, zlib.crc32(analysis.encode("utf-8"))])
        return int(sequence.generate_state(1)[0])

    def with_overrides(self, **overrides: Any) -> "AnalysisConfig":
        """Copy with the given fields replaced; None values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(config_path: Optional[Union[str, Path]] = None) -> AnalysisConfig:
    """
    Load an AnalysisConfig from a YAML file.

    Keys are AnalysisConfig field names; missing keys keep their defaults.

    Raises
    ------
    ValueError
        On unknown keys or a non-mapping document.
    """
    if config_path is None:
        return AnalysisConfig()

    with open(config_path, "r") as file:
        raw = yaml.safe_load(file) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    known = {f.name for f in fields(AnalysisConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown config keys in {config_path}: {unknown}")
    return AnalysisConfig(**raw)
