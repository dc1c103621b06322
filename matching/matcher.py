from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional, Tuple

import numpy as np

from common.config import MatcherConfig
from common.geo import haversine_m
from common.logging_setup import get_logger
from common.status import ArgumentError, DataError
from common.types import HypothesisSet, Tile
from common.utils import Throughput, iso_now_ms
from descriptors.base import LandCoverSource
from descriptors.land import LandDescriptor
from descriptors.similarity import SimilarityPolicy
from indexing.hypotheses import HypothesisSource, as_source
from indexing.index_file import DescriptorIndex, index_path
from landcover.taxonomy import NLCD, Taxonomy
from matching.prob_map import (
    empty_prob_map,
    prob_map_path,
    rasterize_scores,
    read_prob_map,
    scale_prob_map,
    scaled_prob_map_path,
    value_at,
    write_prob_map,
    write_scaled_prob_map,
)


log = get_logger("landloc.matcher")


def scores_path(folder: str | Path, tile_id: int, suffix: str = ".npy") -> Path:
    return Path(folder) / f"scores_tile_{int(tile_id)}{suffix}"


class LandMatcher:
    """
    Scores a land-cover query against a tile's descriptor index and turns the
    per-hypothesis scores into probability maps.

        m = LandMatcher(LandCoverRaster("data/nlcd"))
        q = m.create_query_desc((32.71, -79.95))      # or m.create_query_desc("Forest")
        m.matcher(q, "data/hypos", "data/index", 1.0, 7)
        m.write_out("outputs", 7)
        gt = m.create_prob_map("data/hypos", "outputs", 7, tile, (32.71, -79.95))
        m.create_scaled_prob_map("outputs", tile, 7, 10, 200, 0.5)

    The persisted index is only read. Scores live in memory until write_out().
    """

    kind = "land"

    def __init__(
        self,
        land_cover: Optional[LandCoverSource] = None,
        taxonomy: Taxonomy = NLCD,
        config: Optional[MatcherConfig] = None,
        query_location: Optional[Tuple[float, ...]] = None,
        query_category: Optional[int | str] = None,
    ):
        self.land_cover = land_cover
        self.taxonomy = taxonomy
        self.config = config or MatcherConfig()
        self.policy = SimilarityPolicy(taxonomy, self.config.similarity)
        self.query_location = query_location
        self.query_category = query_category

        self.query: Optional[LandDescriptor] = None
        self.weight: float = self.config.weight
        self.tile_id: Optional[int] = None
        self.scores: Optional[np.ndarray] = None
        self.hypos: Optional[HypothesisSet] = None

    # -------- query --------

    def create_query_desc(self, location_or_category: Any = None) -> LandDescriptor:
        """
        Query descriptor from a (lat, lon[, elev]) location sampled on the
        land-cover raster, or from a category label (id, class or group name).
        Without an argument the constructor's query_category, then
        query_location, is used.
        """
        arg = location_or_category
        if arg is None:
            arg = self.query_category if self.query_category is not None else self.query_location
        if arg is None:
            raise ArgumentError("no query location or category given")

        if isinstance(arg, (str, int, np.integer)):
            try:
                desc = LandDescriptor.from_category(self.taxonomy, arg)
            except KeyError as e:
                raise ArgumentError(str(e)) from e
            source = "category"
        else:
            loc = tuple(float(v) for v in arg)
            if len(loc) < 2:
                raise ArgumentError(f"query location needs lat and lon, got {arg!r}")
            if self.land_cover is None:
                raise ArgumentError("sampling a query location needs a land-cover raster")
            lat, lon = loc[0], loc[1]
            desc = LandDescriptor.from_sample(self.land_cover, self.taxonomy, lat, lon)
            if not desc.is_known:
                raise DataError(f"no land-cover data at query location lat={lat:.6f} lon={lon:.6f}")
            source = "raster"

        self.query = desc
        log.info(
            "Query descriptor created",
            extra={"extra": {"source": source, "category": desc.category, "name": self.taxonomy.name_of(desc.category)}},
        )
        return desc

    # -------- scoring --------

    def matcher(
        self,
        query: LandDescriptor,
        hypothesis_source: Optional[HypothesisSource | str | Path],
        index_source: str | Path,
        weight: float,
        tile_id: int,
    ) -> np.ndarray:
        """
        Score every indexed hypothesis of tile_id against query:
        score[i] = similarity(query, entry_i) * weight. index_source is the index
        folder (or the index file itself). Returns the float32 score array, also
        kept on the instance for write_out()/create_prob_map().
        """
        if weight < 0:
            raise ArgumentError("weight must be >= 0")
        if query.taxonomy != self.taxonomy.name:
            raise ArgumentError(f"query taxonomy {query.taxonomy} does not match matcher taxonomy {self.taxonomy.name}")

        src = Path(index_source)
        path = src if src.is_file() else index_path(src, tile_id, self.kind)
        try:
            index = DescriptorIndex(path)
        except FileNotFoundError as e:
            raise DataError(str(e)) from e

        with index:
            if index.taxonomy != self.taxonomy.name:
                raise ArgumentError(f"index taxonomy {index.taxonomy} does not match matcher taxonomy {self.taxonomy.name}")
            if index.tile_id != int(tile_id):
                raise DataError(f"{path} belongs to tile {index.tile_id}, not {tile_id}")
            if index.count == 0:
                raise DataError(f"descriptor index of tile {tile_id} is empty")

            hypos = None
            if hypothesis_source is not None:
                hypos = self._load_hypos(hypothesis_source, tile_id)
                if len(hypos) != index.count:
                    raise DataError(f"tile {tile_id}: {len(hypos)} hypotheses but {index.count} index entries")

            row = self.policy.row(query.category)
            scores = np.empty(index.count, dtype=np.float32)
            tp = Throughput()
            pos = 0
            for chunk in index.chunks(self.config.chunk_size):
                k = chunk.shape[0]
                scores[pos : pos + k] = row[chunk["category"]] * np.float32(weight)
                pos += k
                tp.add(k)

        self.query = query
        self.weight = float(weight)
        self.tile_id = int(tile_id)
        self.scores = scores
        self.hypos = hypos
        log.info(
            "Tile scored",
            extra={"extra": {
                "tile_id": self.tile_id,
                "entries": int(scores.shape[0]),
                "matches": int(np.count_nonzero(scores)),
                "max": float(scores.max()),
                "seconds": round(tp.elapsed_s, 3),
            }},
        )
        return scores

    def write_out(self, output_folder: str | Path, tile_id: int) -> Path:
        """Persist the score array (.npy) with a small JSON summary next to it."""
        scores = self._require_scores(tile_id)
        out = Path(output_folder)
        out.mkdir(parents=True, exist_ok=True)
        p = scores_path(out, tile_id)
        np.save(p, scores)
        summary = {
            "ts": iso_now_ms(),
            "tile_id": int(tile_id),
            "kind": self.kind,
            "taxonomy": self.taxonomy.name,
            "query": str(self.query),
            "query_category": self.query.category if self.query else None,
            "weight": self.weight,
            "count": int(scores.shape[0]),
            "min": float(scores.min()),
            "max": float(scores.max()),
            "mean": float(scores.mean()),
        }
        scores_path(out, tile_id, ".json").write_text(json.dumps(summary, indent=2))
        log.info("Scores written", extra={"extra": {"tile_id": int(tile_id), "path": str(p)}})
        return p

    # -------- probability maps --------

    def create_prob_map(
        self,
        hypothesis_source: Optional[HypothesisSource | str | Path],
        output_folder: str | Path,
        tile_id: int,
        tile: Tile,
        gt_location: Optional[Tuple[float, ...]] = None,
    ) -> Optional[float]:
        """
        Rasterize the scores onto the tile grid and write the raw map. Returns
        the raw value in the ground-truth cell, or None when there is no
        ground truth, it lies outside the tile, or its cell holds no hypothesis.
        """
        scores = self._require_scores(tile_id)
        hypos = self.hypos
        if hypos is None or hypos.tile_id != int(tile_id):
            if hypothesis_source is None:
                raise ArgumentError("a hypothesis source is needed to place scores on the grid")
            hypos = self._load_hypos(hypothesis_source, tile_id)
        if len(hypos) != scores.shape[0]:
            raise DataError(f"tile {tile_id}: {len(hypos)} hypotheses but {scores.shape[0]} scores")

        raster = rasterize_scores(tile, hypos.lats, hypos.lons, scores, self.config.cell_policy)
        p = write_prob_map(prob_map_path(output_folder, tile_id), tile, raster)

        gt_score = None
        info = {"tile_id": int(tile_id), "path": str(p), "cell_policy": self.config.cell_policy}
        if gt_location is not None:
            lat, lon = float(gt_location[0]), float(gt_location[1])
            gt_score = value_at(raster, tile, lat, lon)
            best = int(np.argmax(scores))
            info.update({
                "gt_score": gt_score,
                "best_hypothesis": best,
                "best_score": float(scores[best]),
                "best_to_gt_m": round(haversine_m(lat, lon, float(hypos.lats[best]), float(hypos.lons[best])), 1),
            })
        log.info("Probability map written", extra={"extra": info})
        return gt_score

    def create_scaled_prob_map(
        self,
        output_folder: str | Path,
        tile: Tile,
        tile_id: int,
        out_min: Optional[int] = None,
        out_max: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> Path:
        """Rescale/threshold the raw map of tile_id into the uint8 output map."""
        scaling = self.config.scaling
        out_min = scaling.out_min if out_min is None else int(out_min)
        out_max = scaling.out_max if out_max is None else int(out_max)
        threshold = scaling.threshold if threshold is None else float(threshold)

        raw_path = prob_map_path(output_folder, tile_id)
        if not raw_path.exists():
            raise RuntimeError(f"no raw probability map for tile {tile_id}; create_prob_map() or create_empty_prob_map() must run first")
        raw = read_prob_map(raw_path)
        if raw.shape != (tile.nrows, tile.ncols):
            raise DataError(f"{raw_path} grid {raw.shape} does not match tile {tile_id} grid {(tile.nrows, tile.ncols)}")
        try:
            scaled = scale_prob_map(raw, out_min, out_max, threshold, scaling.nodata)
        except ValueError as e:
            raise ArgumentError(str(e)) from e
        p = write_scaled_prob_map(scaled_prob_map_path(output_folder, tile_id), tile, scaled, scaling.nodata)
        log.info(
            "Scaled probability map written",
            extra={"extra": {
                "tile_id": int(tile_id),
                "path": str(p),
                "range": [out_min, out_max],
                "threshold": threshold,
                "cells_above": int(np.count_nonzero(scaled != scaling.nodata)),
            }},
        )
        return p

    def create_empty_prob_map(self, output_folder: str | Path, tile_id: int, tile: Tile) -> Path:
        """Raw map of nothing but nodata over the tile grid; needs no index or scores."""
        p = write_prob_map(prob_map_path(output_folder, tile_id), tile, empty_prob_map(tile))
        log.info("Empty probability map written", extra={"extra": {"tile_id": int(tile_id), "path": str(p)}})
        return p

    # -------- internals --------

    def _require_scores(self, tile_id: int) -> np.ndarray:
        if self.scores is None:
            raise RuntimeError("matcher() must run before scores can be written or mapped")
        if self.tile_id != int(tile_id):
            raise RuntimeError(f"scores belong to tile {self.tile_id}, not {tile_id}")
        return self.scores

    def _load_hypos(self, hypothesis_source: HypothesisSource | str | Path, tile_id: int) -> HypothesisSet:
        src = as_source(hypothesis_source)
        try:
            return src.load(int(tile_id))
        except FileNotFoundError as e:
            raise ArgumentError(str(e)) from e
        except ValueError as e:
            raise DataError(f"hypotheses of tile {tile_id} unreadable: {e}") from e
