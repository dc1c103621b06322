from __future__ import annotations

from typing import Dict, Optional, Tuple
import math
import numpy as np


# -------------------------
# Pixel/Geo helpers for tile grids
# -------------------------
def pix2geo(x: float, y: float, meta: Dict) -> Tuple[float, float]:
    """
    Convert pixel (x,y) in a georeferenced grid to lon/lat (deg).

    Expected metadata keys (see common.types.Tile.meta):
      - top_left_lon, top_left_lat: upper-left corner lon/lat (deg)
      - px_size_lon, px_size_lat: degrees per pixel (lat step is typically negative)
      - width, height: grid dimensions (pixels)

    NOTE: No bounds checking here; caller should ensure x,y in range.
    """
    lon = float(meta["top_left_lon"]) + x * float(meta["px_size_lon"])
    lat = float(meta["top_left_lat"]) + y * float(meta["px_size_lat"])
    return lon, lat


def geo2pix(lon: float, lat: float, meta: Dict) -> Tuple[float, float]:
    """
    Convert lon/lat (deg) to pixel (x,y) for the same metadata schema as pix2geo().
    """
    dx = lon - float(meta["top_left_lon"])
    dy = lat - float(meta["top_left_lat"])
    x = dx / float(meta["px_size_lon"])
    y = dy / float(meta["px_size_lat"])
    return x, y


def cell_of(lon: float, lat: float, meta: Dict) -> Optional[Tuple[int, int]]:
    """
    Integer (col, row) of the grid cell containing lon/lat, or None if outside.
    Points exactly on the right/bottom edge belong to the last column/row.
    """
    cols, rows, inside = cells_of(np.array([lon]), np.array([lat]), meta)
    if not inside[0]:
        return None
    return int(cols[0]), int(rows[0])


def cells_of(lons: np.ndarray, lats: np.ndarray, meta: Dict) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Vectorized cell lookup. Returns (cols, rows, inside_mask); cols/rows are only
    meaningful where inside_mask is True.
    """
    w = int(meta["width"])
    h = int(meta["height"])
    x = (np.asarray(lons, dtype=np.float64) - float(meta["top_left_lon"])) / float(meta["px_size_lon"])
    y = (np.asarray(lats, dtype=np.float64) - float(meta["top_left_lat"])) / float(meta["px_size_lat"])
    inside = (x >= 0.0) & (x <= w) & (y >= 0.0) & (y <= h)
    cols = np.minimum(np.floor(np.where(inside, x, 0.0)).astype(np.int64), w - 1)
    rows = np.minimum(np.floor(np.where(inside, y, 0.0)).astype(np.int64), h - 1)
    return cols, rows, inside


# -------------------------
# Great-circle
# -------------------------
def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance on WGS84 sphere approximation."""
    R = 6371008.8  # mean Earth radius (m)
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dphi = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2.0) ** 2
    return 2 * R * math.asin(math.sqrt(a))
