from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np
import rasterio
from rasterio.transform import from_bounds
from rasterio.warp import transform as warp_transform
from rasterio.windows import Window

from common.logging_setup import get_logger
from landcover.taxonomy import NLCD, NODATA_ID, Taxonomy


log = get_logger("landloc.landcover")

_WGS84 = "EPSG:4326"
# Largest single window read for a batch; wider batches are read in row strips.
DEFAULT_MAX_WINDOW_PX = 1 << 22
DEFAULT_STRIP_ROWS = 256


class _Layer:
    """
    One classification GeoTIFF. Pixels are read per batch through windows
    covering only the requested points, so memory follows the batch and not
    the file size.
    """

    def __init__(self, path: Path, max_window_px: int = DEFAULT_MAX_WINDOW_PX, strip_rows: int = DEFAULT_STRIP_ROWS):
        if max_window_px < 1 or strip_rows < 1:
            raise ValueError("max_window_px and strip_rows must be >= 1")
        self.path = path
        self._ds = rasterio.open(path)
        self.crs = self._ds.crs
        self.transform = self._ds.transform
        self.width = self._ds.width
        self.height = self._ds.height
        self.nodata = self._ds.nodata
        self.dtype = np.dtype(self._ds.dtypes[0])
        self.max_window_px = int(max_window_px)
        self.strip_rows = int(strip_rows)
        # dataset handles are not thread-safe; indexer workers share this layer
        self._lock = threading.Lock()

    def windows(self, rows: np.ndarray, cols: np.ndarray) -> Iterator[Tuple[np.ndarray, Window]]:
        """
        (selection, window) pairs covering every (row, col). One bounding
        window when it stays under max_window_px, else one per strip of
        strip_rows rows.
        """
        if rows.size == 0:
            return
        r0, r1 = int(rows.min()), int(rows.max())
        c0, c1 = int(cols.min()), int(cols.max())
        if (r1 - r0 + 1) * (c1 - c0 + 1) <= self.max_window_px:
            yield np.arange(rows.size), Window(c0, r0, c1 - c0 + 1, r1 - r0 + 1)
            return
        strips = rows // self.strip_rows
        for s in np.unique(strips):
            sel = np.flatnonzero(strips == s)
            r0, r1 = int(rows[sel].min()), int(rows[sel].max())
            c0, c1 = int(cols[sel].min()), int(cols[sel].max())
            yield sel, Window(c0, r0, c1 - c0 + 1, r1 - r0 + 1)

    def read_pixels(self, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
        """Band values at in-bounds (row, col) pairs, in input order."""
        rows = np.asarray(rows, dtype=np.int64)
        cols = np.asarray(cols, dtype=np.int64)
        out = np.empty(rows.shape, dtype=self.dtype)
        with self._lock:
            for sel, win in self.windows(rows, cols):
                block = self._ds.read(1, window=win)
                out[sel] = block[rows[sel] - int(win.row_off), cols[sel] - int(win.col_off)]
        return out

    def to_pixels(self, lons: np.ndarray, lats: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(rows, cols, inside) for WGS84 points."""
        xs, ys = lons, lats
        if self.crs is not None and self.crs.to_string() != _WGS84:
            xs, ys = warp_transform(_WGS84, self.crs, list(lons), list(lats))
            xs, ys = np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64)
        inv = ~self.transform
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        cols = np.floor(inv.a * xs + inv.b * ys + inv.c).astype(np.int64)
        rows = np.floor(inv.d * xs + inv.e * ys + inv.f).astype(np.int64)
        inside = (rows >= 0) & (rows < self.height) & (cols >= 0) & (cols < self.width)
        return rows, cols, inside

    def close(self) -> None:
        self._ds.close()


class LandCoverRaster:
    """
    Read-only land-cover classification sampler over a folder of GeoTIFFs
    (e.g. NLCD tiles). Points are WGS84 lat/lon; rasters may be in any CRS.

    - The first file (sorted by name) whose grid contains a point answers for it.
    - Points outside every file, raster nodata and values outside the taxonomy
      all classify as NODATA_ID (0).
    """

    def __init__(
        self,
        folder: str | Path,
        taxonomy: Taxonomy = NLCD,
        pattern: str = "*.tif",
        max_window_px: int = DEFAULT_MAX_WINDOW_PX,
        strip_rows: int = DEFAULT_STRIP_ROWS,
    ):
        self.folder = Path(folder)
        self.taxonomy = taxonomy
        paths: List[Path] = sorted(self.folder.glob(pattern)) if self.folder.is_dir() else []
        if self.folder.is_file():
            paths = [self.folder]
        self._layers = [_Layer(p, max_window_px, strip_rows) for p in paths]
        log.info(
            "Land-cover raster opened",
            extra={"extra": {"folder": str(self.folder), "files": len(self._layers), "taxonomy": taxonomy.name}},
        )

    @property
    def exists(self) -> bool:
        return bool(self._layers)

    @property
    def files(self) -> List[Path]:
        return [l.path for l in self._layers]

    def close(self) -> None:
        for l in self._layers:
            l.close()

    def __enter__(self) -> "LandCoverRaster":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------- sampling --------

    def classify(self, lat: float, lon: float) -> int:
        """Taxonomy class id at (lat, lon); NODATA_ID if unknown."""
        return int(self.classify_many(np.array([lat]), np.array([lon]))[0])

    def classify_many(self, lats: Sequence[float] | np.ndarray, lons: Sequence[float] | np.ndarray) -> np.ndarray:
        """Vectorized classify(); returns uint8 class ids in input order."""
        lats = np.asarray(lats, dtype=np.float64).reshape(-1)
        lons = np.asarray(lons, dtype=np.float64).reshape(-1)
        out = np.full(lats.shape, NODATA_ID, dtype=np.uint8)
        todo = np.ones(lats.shape, dtype=bool)
        for layer in self._layers:
            if not todo.any():
                break
            idx = np.flatnonzero(todo)
            rows, cols, inside = layer.to_pixels(lons[idx], lats[idx])
            if not inside.any():
                continue
            hit = idx[inside]
            raw = layer.read_pixels(rows[inside], cols[inside])
            out[hit] = self._normalize(raw, layer.nodata)
            todo[hit] = False
        return out

    def histogram_many(
        self,
        lats: Sequence[float] | np.ndarray,
        lons: Sequence[float] | np.ndarray,
        radius_px: int,
    ) -> np.ndarray:
        """
        Class fractions over the (2r+1)x(2r+1) pixel window around each point.
        Returns float32 array [N, len(taxonomy)] in taxonomy order; rows are all
        zero when the window holds no classified pixel. Windows are clipped to the
        file containing the centre point.
        """
        if radius_px < 0:
            raise ValueError("radius_px must be >= 0")
        lats = np.asarray(lats, dtype=np.float64).reshape(-1)
        lons = np.asarray(lons, dtype=np.float64).reshape(-1)
        nbins = len(self.taxonomy)
        counts = np.zeros((lats.shape[0], nbins), dtype=np.float64)
        todo = np.ones(lats.shape, dtype=bool)
        for layer in self._layers:
            if not todo.any():
                break
            idx = np.flatnonzero(todo)
            rows, cols, inside = layer.to_pixels(lons[idx], lats[idx])
            if not inside.any():
                continue
            hit = idx[inside]
            r0, c0 = rows[inside], cols[inside]
            offs = np.arange(-radius_px, radius_px + 1)
            dr, dc = np.meshgrid(offs, offs, indexing="ij")
            r = r0[:, None] + dr.reshape(1, -1)
            c = c0[:, None] + dc.reshape(1, -1)
            ok = (r >= 0) & (r < layer.height) & (c >= 0) & (c < layer.width)
            owner = np.broadcast_to(hit[:, None], r.shape)[ok]
            ids = self._normalize(layer.read_pixels(r[ok], c[ok]), layer.nodata)
            b = self.taxonomy.bins(ids)
            valid = b >= 0
            np.add.at(counts, (owner[valid], b[valid]), 1.0)
            todo[hit] = False
        totals = counts.sum(axis=1, keepdims=True)
        with np.errstate(invalid="ignore", divide="ignore"):
            frac = np.where(totals > 0, counts / np.maximum(totals, 1.0), 0.0)
        return frac.astype(np.float32)

    def _normalize(self, raw: np.ndarray, nodata: Optional[float]) -> np.ndarray:
        ids = self.taxonomy.normalize(raw)
        if nodata is not None and not np.isnan(nodata):
            ids[np.asarray(raw) == nodata] = NODATA_ID
        return ids


def write_land_cover_tif(
    path: str | Path,
    classes: np.ndarray,
    bbox: Tuple[float, float, float, float],
    nodata: Optional[int] = NODATA_ID,
) -> Path:
    """
    Write a uint8 classification GeoTIFF in EPSG:4326 covering
    bbox = (lon_min, lat_min, lon_max, lat_max); row 0 is the northern edge.
    """
    lon_min, lat_min, lon_max, lat_max = bbox
    data = np.asarray(classes, dtype=np.uint8)
    h, w = data.shape
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    profile = {
        "driver": "GTiff",
        "height": h,
        "width": w,
        "count": 1,
        "dtype": rasterio.uint8,
        "crs": _WGS84,
        "transform": from_bounds(lon_min, lat_min, lon_max, lat_max, w, h),
    }
    if nodata is not None:
        profile["nodata"] = nodata
    with rasterio.open(p, "w", **profile) as dst:
        dst.write(data, 1)
    return p


def open_land_cover(folder: str | Path, taxonomy: Taxonomy = NLCD) -> Optional[LandCoverRaster]:
    """LandCoverRaster for folder, or None when the folder holds no rasters."""
    if not str(folder or "") or not os.path.exists(folder):
        return None
    lc = LandCoverRaster(folder, taxonomy)
    if not lc.exists:
        lc.close()
        return None
    return lc
