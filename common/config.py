"""
Parameter file -> explicit config objects.

The YAML file (default config/params.yaml) is read once by the driver and split
into small dataclasses that are handed to the indexer/matcher constructors, so a
per-tile run never depends on process-wide state.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_PARAMS_PATH = "config/params.yaml"

CELL_POLICIES = ("max", "mean", "last")
SIMILARITY_POLICIES = ("binary", "grouped")


def load_yaml(path: str | Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


@dataclass(slots=True)
class IndexerConfig:
    """
    buffer_capacity_gb: in-memory buffer size before a flush to the index file.
    neighborhood_px: half-width of the pixel window summarized into a class
        histogram per hypothesis (0 = centre pixel only, no histogram stored).
    workers: threads used to classify a batch; output order is unaffected.
    """
    buffer_capacity_gb: float = 1.0
    neighborhood_px: int = 0
    workers: int = 1

    def __post_init__(self) -> None:
        if self.buffer_capacity_gb <= 0:
            raise ValueError("buffer_capacity_gb must be > 0")
        if self.neighborhood_px < 0:
            raise ValueError("neighborhood_px must be >= 0")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")

    @property
    def buffer_capacity_bytes(self) -> int:
        return int(self.buffer_capacity_gb * (1 << 30))


@dataclass(slots=True)
class SimilarityConfig:
    """
    policy: "binary" (1 for the same class, else 0) or "grouped" (classes sharing
        a taxonomy group score adjacent_credit).
    overrides: explicit {class_id: {class_id: score}} entries applied last, symmetric.
    """
    policy: str = "binary"
    adjacent_credit: float = 0.5
    overrides: Dict[int, Dict[int, float]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.policy not in SIMILARITY_POLICIES:
            raise ValueError(f"similarity policy must be one of {SIMILARITY_POLICIES}")
        if not 0.0 <= self.adjacent_credit <= 1.0:
            raise ValueError("adjacent_credit must be in [0, 1]")
        self.overrides = {
            int(a): {int(b): float(s) for b, s in (row or {}).items()}
            for a, row in (self.overrides or {}).items()
        }


@dataclass(slots=True)
class ScalingConfig:
    out_min: int = 10
    out_max: int = 200
    threshold: float = 0.5
    nodata: int = 0

    def __post_init__(self) -> None:
        if not (0 <= self.out_min <= self.out_max <= 255):
            raise ValueError("scaling bounds must satisfy 0 <= out_min <= out_max <= 255")
        if not 0 <= self.nodata <= 255:
            raise ValueError("scaled nodata must fit in uint8")
        if self.out_min <= self.nodata <= self.out_max:
            raise ValueError("scaled nodata must lie outside [out_min, out_max]")


@dataclass(slots=True)
class MatcherConfig:
    """
    weight: importance multiplier when land cover is one signal among several.
    cell_policy: how several hypotheses falling in one output cell combine.
    chunk_size: index records scored per step.
    """
    weight: float = 1.0
    cell_policy: str = "max"
    chunk_size: int = 1 << 20
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)
    scaling: ScalingConfig = field(default_factory=ScalingConfig)

    def __post_init__(self) -> None:
        if self.weight < 0:
            raise ValueError("weight must be >= 0")
        if self.cell_policy not in CELL_POLICIES:
            raise ValueError(f"cell_policy must be one of {CELL_POLICIES}")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")


@dataclass(slots=True)
class PathsConfig:
    nlcd_folder: str = "data/nlcd"
    hypo_folder: str = "data/hypos"
    index_folder: str = "data/index"
    out_folder: str = "outputs"
    tiles_file: str = "config/tiles.yaml"


@dataclass(slots=True)
class Params:
    paths: PathsConfig = field(default_factory=PathsConfig)
    taxonomy: str = "nlcd"
    indexer: IndexerConfig = field(default_factory=IndexerConfig)
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_dict(cls, P: Dict[str, Any]) -> "Params":
        m = dict(P.get("matcher", {}) or {})
        lg = P.get("logging", {}) or {}
        sim = SimilarityConfig(**(m.pop("similarity", {}) or {}))
        scl = ScalingConfig(**(m.pop("scaling", {}) or {}))
        return cls(
            paths=PathsConfig(**(P.get("paths", {}) or {})),
            taxonomy=str(P.get("taxonomy", "nlcd")),
            indexer=IndexerConfig(**(P.get("indexer", {}) or {})),
            matcher=MatcherConfig(similarity=sim, scaling=scl, **m),
            log_level=str(lg.get("level", "INFO")),
            log_file=lg.get("file") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["logging"] = {"level": d.pop("log_level"), "file": d.pop("log_file")}
        return d


def load_params(path: Optional[str | Path] = None) -> Params:
    """
    Load the parameter file. A missing default file yields built-in defaults;
    an explicitly given path must exist.
    """
    if path is None:
        if not Path(DEFAULT_PARAMS_PATH).exists():
            return Params()
        path = DEFAULT_PARAMS_PATH
    if not Path(path).exists():
        raise FileNotFoundError(f"Parameter file not found: {path}")
    return Params.from_dict(load_yaml(path))
