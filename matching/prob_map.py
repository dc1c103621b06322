"""
Probability map post-processing: score rasterization, rescale/threshold, and
placeholder maps for tiles without hypotheses.

Raw maps are float32 GeoTIFFs on the tile grid with RAW_NODATA (-1) in cells
that no hypothesis falls into. Scaled maps are uint8 GeoTIFFs for downstream
consumers: cells scoring at least the threshold are spread linearly over
[out_min, out_max], every other cell holds the sentinel.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
import rasterio
from rasterio.transform import from_bounds

from common.geo import cell_of, cells_of
from common.types import Tile


RAW_NODATA = -1.0


def prob_map_path(folder: str | Path, tile_id: int) -> Path:
    return Path(folder) / f"prob_map_tile_{int(tile_id)}.tif"


def scaled_prob_map_path(folder: str | Path, tile_id: int) -> Path:
    return Path(folder) / f"prob_map_scaled_tile_{int(tile_id)}.tif"


def _profile(tile: Tile, dtype: str, nodata: float) -> dict:
    return {
        "driver": "GTiff",
        "height": tile.nrows,
        "width": tile.ncols,
        "count": 1,
        "dtype": dtype,
        "crs": "EPSG:4326",
        "transform": from_bounds(tile.lon_min, tile.lat_min, tile.lon_max, tile.lat_max, tile.ncols, tile.nrows),
        "nodata": nodata,
        "compress": "deflate",
    }


# -------------------------
# Raw maps
# -------------------------
def rasterize_scores(
    tile: Tile,
    lats: np.ndarray,
    lons: np.ndarray,
    scores: np.ndarray,
    policy: str = "max",
) -> np.ndarray:
    """
    Drop per-hypothesis scores onto the tile grid. Several hypotheses in one
    cell combine by policy: "max" (default), "mean", or "last" (highest
    hypothesis index wins). Hypotheses outside the tile are ignored.
    """
    lats = np.asarray(lats, dtype=np.float64)
    lons = np.asarray(lons, dtype=np.float64)
    scores = np.asarray(scores, dtype=np.float32)
    if not (lats.shape == lons.shape == scores.shape):
        raise ValueError("lats/lons/scores must have the same length")
    raster = np.full((tile.nrows, tile.ncols), RAW_NODATA, dtype=np.float32)
    if scores.size == 0:
        return raster
    cols, rows, inside = cells_of(lons, lats, tile.meta)
    rows, cols, vals = rows[inside], cols[inside], scores[inside]
    if policy == "max":
        np.maximum.at(raster, (rows, cols), vals)
    elif policy == "mean":
        total = np.zeros(raster.shape, dtype=np.float64)
        count = np.zeros(raster.shape, dtype=np.int64)
        np.add.at(total, (rows, cols), vals)
        np.add.at(count, (rows, cols), 1)
        hit = count > 0
        raster[hit] = (total[hit] / count[hit]).astype(np.float32)
    elif policy == "last":
        flat = rows * tile.ncols + cols
        # last occurrence of each cell in hypothesis order
        rev_unique, rev_first = np.unique(flat[::-1], return_index=True)
        last = flat.shape[0] - 1 - rev_first
        raster.reshape(-1)[rev_unique] = vals[last]
    else:
        raise ValueError(f"unknown cell policy {policy!r}")
    return raster


def empty_prob_map(tile: Tile) -> np.ndarray:
    return np.full((tile.nrows, tile.ncols), RAW_NODATA, dtype=np.float32)


def write_prob_map(path: str | Path, tile: Tile, raster: np.ndarray) -> Path:
    if raster.shape != (tile.nrows, tile.ncols):
        raise ValueError(f"raster shape {raster.shape} does not match tile grid {(tile.nrows, tile.ncols)}")
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(p, "w", **_profile(tile, "float32", RAW_NODATA)) as dst:
        dst.write(raster.astype(np.float32), 1)
    return p


def read_prob_map(path: str | Path) -> np.ndarray:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Probability map not found: {p}")
    with rasterio.open(p) as ds:
        return ds.read(1)


def value_at(raster: np.ndarray, tile: Tile, lat: float, lon: float) -> Optional[float]:
    """Raw value in the cell containing (lat, lon); None outside the tile or in an empty cell."""
    cell = cell_of(lon, lat, tile.meta)
    if cell is None:
        return None
    col, row = cell
    v = float(raster[row, col])
    if v == RAW_NODATA or not np.isfinite(v):
        return None
    return v


# -------------------------
# Scaled maps
# -------------------------
def scale_prob_map(
    raw: np.ndarray,
    out_min: int,
    out_max: int,
    threshold: float,
    nodata: int = 0,
) -> np.ndarray:
    """
    uint8 map: cells with raw >= threshold map linearly from [threshold, max]
    onto [out_min, out_max] (all to out_max when max == threshold); cells below
    the threshold or without data get `nodata`.
    """
    if not (0 <= out_min <= out_max <= 255):
        raise ValueError("scaling bounds must satisfy 0 <= out_min <= out_max <= 255")
    if out_min <= nodata <= out_max:
        raise ValueError(f"nodata {nodata} collides with the scaled range [{out_min}, {out_max}]")
    raw = np.asarray(raw, dtype=np.float64)
    out = np.full(raw.shape, nodata, dtype=np.uint8)
    valid = np.isfinite(raw) & (raw != RAW_NODATA) & (raw >= threshold)
    if not valid.any():
        return out
    hi = float(raw[valid].max())
    if hi > threshold:
        scaled = out_min + (raw[valid] - threshold) / (hi - threshold) * (out_max - out_min)
    else:
        scaled = np.full(int(valid.sum()), float(out_max))
    out[valid] = np.clip(np.rint(scaled), out_min, out_max).astype(np.uint8)
    return out


def write_scaled_prob_map(path: str | Path, tile: Tile, scaled: np.ndarray, nodata: int = 0) -> Path:
    if scaled.shape != (tile.nrows, tile.ncols):
        raise ValueError(f"raster shape {scaled.shape} does not match tile grid {(tile.nrows, tile.ncols)}")
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(p, "w", **_profile(tile, "uint8", nodata)) as dst:
        dst.write(scaled.astype(np.uint8), 1)
    return p
