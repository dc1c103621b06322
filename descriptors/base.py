"""
Contracts shared by every descriptor kind.

Land cover is one kind; other kinds (skyline, depth, ...) plug in by providing
the same indexer/matcher operations. The driver picks an implementation from a
registry at construction time instead of subclassing.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

from common.types import Tile


@runtime_checkable
class LandCoverSource(Protocol):
    """
    Read-only classification service.
    Rules:
      - classify*/histogram_many never raise for points without coverage; they
        answer NODATA_ID / all-zero rows instead.
      - results are in input order.
    """
    def classify(self, lat: float, lon: float) -> int: ...
    def classify_many(self, lats: Sequence[float] | np.ndarray, lons: Sequence[float] | np.ndarray) -> np.ndarray: ...
    def histogram_many(self, lats: Sequence[float] | np.ndarray, lons: Sequence[float] | np.ndarray, radius_px: int) -> np.ndarray: ...


@runtime_checkable
class DescriptorIndexer(Protocol):
    def load_tile_hypos(self, hypothesis_source: Any, tile_id: int) -> bool: ...
    def index(self, memory_budget_bytes: Optional[int] = None) -> Path: ...


@runtime_checkable
class DescriptorMatcher(Protocol):
    def create_query_desc(self, location_or_category: Any = None) -> Any: ...
    def matcher(self, query: Any, hypothesis_source: Any, index_source: str | Path, weight: float, tile_id: int) -> np.ndarray: ...
    def write_out(self, output_folder: str | Path, tile_id: int) -> Path: ...
    def create_prob_map(
        self,
        hypothesis_source: Any,
        output_folder: str | Path,
        tile_id: int,
        tile: Tile,
        gt_location: Optional[Tuple[float, ...]],
    ) -> Optional[float]: ...
    def create_scaled_prob_map(
        self,
        output_folder: str | Path,
        tile: Tile,
        tile_id: int,
        out_min: int,
        out_max: int,
        threshold: float,
    ) -> Path: ...
    def create_empty_prob_map(self, output_folder: str | Path, tile_id: int, tile: Tile) -> Path: ...
