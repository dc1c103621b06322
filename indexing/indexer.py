from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

from common.config import IndexerConfig
from common.logging_setup import get_logger
from common.types import HypothesisSet, Tile
from common.utils import Throughput, human_bytes
from descriptors.base import LandCoverSource
from descriptors.land import describe_points
from indexing.hypotheses import HypothesisSource, as_source
from indexing.index_file import DescriptorIndexWriter, IndexHeader, index_path, record_dtype
from landcover.taxonomy import NLCD, Taxonomy


log = get_logger("landloc.indexer")


class LandIndexer:
    """
    Builds the land-cover descriptor index of one tile.

        idx = LandIndexer(LandCoverRaster("data/nlcd"), "data/index")
        if idx.load_tile_hypos("data/hypos", 7):
            idx.index()            # buffer capacity from config (1 GiB default)

    Descriptors are computed in batches no larger than the buffer capacity and
    written in hypothesis order, so the peak buffer never exceeds the budget and
    the file is the same for any budget.
    """

    kind = "land"

    def __init__(
        self,
        land_cover: LandCoverSource,
        out_folder: str | Path,
        taxonomy: Taxonomy = NLCD,
        config: Optional[IndexerConfig] = None,
    ):
        self.land_cover = land_cover
        self.out_folder = Path(out_folder)
        self.taxonomy = taxonomy
        self.config = config or IndexerConfig()
        self.tile_id: Optional[int] = None
        self.hypos: Optional[HypothesisSet] = None

    @property
    def hist_bins(self) -> int:
        return len(self.taxonomy) if self.config.neighborhood_px > 0 else 0

    @property
    def record_dtype(self) -> np.dtype:
        return record_dtype(self.hist_bins)

    def load_tile_hypos(
        self,
        hypothesis_source: HypothesisSource | str | Path,
        tile_id: int,
        tile: Optional[Tile] = None,
    ) -> bool:
        """
        Load the hypotheses of tile_id. Returns False (after logging why) when the
        tile id is invalid or the hypothesis file is missing or unreadable; an
        existing file with no rows loads as an empty set.
        """
        src = as_source(hypothesis_source)
        try:
            hypos = src.load(int(tile_id))
        except FileNotFoundError as e:
            log.error("Hypotheses not found", extra={"extra": {"tile_id": tile_id, "error": str(e)}})
            return False
        except (ValueError, OSError) as e:
            log.error("Hypotheses unreadable", extra={"extra": {"tile_id": tile_id, "source": repr(src), "error": str(e)}})
            return False

        self.tile_id = int(tile_id)
        self.hypos = hypos
        if tile is not None and len(hypos):
            inside = (
                (hypos.lats >= tile.lat_min) & (hypos.lats <= tile.lat_max)
                & (hypos.lons >= tile.lon_min) & (hypos.lons <= tile.lon_max)
            )
            n_out = int((~inside).sum())
            if n_out:
                log.warning(
                    "Hypotheses outside tile extent",
                    extra={"extra": {"tile_id": tile_id, "outside": n_out, "total": len(hypos)}},
                )
        log.info("Hypotheses loaded", extra={"extra": {"tile_id": self.tile_id, "count": len(hypos)}})
        return True

    def index(self, memory_budget_bytes: Optional[int] = None) -> Path:
        """
        Describe every loaded hypothesis and persist the tile index. Returns the
        index path. The buffer holds at most memory_budget_bytes of records
        (default: config.buffer_capacity_gb).
        """
        if self.hypos is None or self.tile_id is None:
            raise RuntimeError("load_tile_hypos() must succeed before index()")
        budget = int(memory_budget_bytes if memory_budget_bytes is not None else self.config.buffer_capacity_bytes)
        dtype = self.record_dtype
        capacity = budget // dtype.itemsize
        if capacity < 1:
            raise ValueError(f"memory budget {budget} B is smaller than one index record ({dtype.itemsize} B)")

        n = len(self.hypos)
        buf = np.zeros(min(capacity, n), dtype=dtype)
        path = index_path(self.out_folder, self.tile_id, self.kind)
        header = IndexHeader(taxonomy=self.taxonomy.name, hist_bins=self.hist_bins, tile_id=self.tile_id)
        log.info(
            "Indexing tile",
            extra={"extra": {
                "tile_id": self.tile_id,
                "hypotheses": n,
                "buffer_records": int(buf.shape[0]),
                "buffer": human_bytes(buf.nbytes),
                "workers": self.config.workers,
            }},
        )

        tp = Throughput()
        pool = ThreadPoolExecutor(max_workers=self.config.workers) if self.config.workers > 1 else None
        try:
            with DescriptorIndexWriter(path, header) as writer:
                for start in range(0, n, capacity):
                    stop = min(start + capacity, n)
                    fill = stop - start
                    self._describe_into(buf[:fill], start, stop, pool)
                    writer.append(buf[:fill])
                    tp.add(fill)
                    log.debug(
                        "Buffer flushed",
                        extra={"extra": {"tile_id": self.tile_id, "done": stop, "total": n, "rate_per_s": round(tp.rate, 1)}},
                    )
        finally:
            if pool is not None:
                pool.shutdown(wait=True)

        log.info(
            "Index written",
            extra={"extra": {"tile_id": self.tile_id, "path": str(path), "records": n, "seconds": round(tp.elapsed_s, 3)}},
        )
        return path

    # -------- internals --------

    def _describe(self, start: int, stop: int) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
        assert self.hypos is not None
        return describe_points(
            self.land_cover,
            self.taxonomy,
            self.hypos.lats[start:stop],
            self.hypos.lons[start:stop],
            self.config.neighborhood_px,
        )

    def _describe_into(self, out: np.ndarray, start: int, stop: int, pool: Optional[ThreadPoolExecutor]) -> None:
        spans = _split(start, stop, self.config.workers if pool is not None else 1)
        if pool is None:
            parts = [self._describe(a, b) for a, b in spans]
        else:
            # map() yields in submission order, so entries stay in hypothesis order
            parts = list(pool.map(lambda ab: self._describe(*ab), spans))
        out["hypo"] = np.arange(start, stop, dtype=np.uint32)
        pos = 0
        for (a, b), (cats, confs, hists) in zip(spans, parts):
            k = b - a
            out["category"][pos : pos + k] = cats
            out["confidence"][pos : pos + k] = confs
            if hists is not None:
                out["hist"][pos : pos + k] = hists
            pos += k


def _split(start: int, stop: int, parts: int) -> List[Tuple[int, int]]:
    n = stop - start
    parts = max(1, min(parts, n))
    step = -(-n // parts)
    return [(a, min(a + step, stop)) for a in range(start, stop, step)]
