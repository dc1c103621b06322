#!/usr/bin/env python3
"""
Build a small offline data set for the land-cover demo.

Creates, for a bbox split into two tiles (the northern one flagged empty):
- data/nlcd/land_cover.tif   synthetic NLCD-style classification (water band,
                             forest blocks, developed core, crops, noise)
- config/tiles.yaml          tile catalog
- data/hypos/hypos_tile_0.csv  grid of hypotheses over tile 0
- data/gt.csv                a few ground-truth camera locations
- data/query_cat.txt         category file for --cat

Examples:
  python scripts/build_sample_data.py
  python scripts/build_sample_data.py --bbox -79.98 32.70 -79.96 32.74 --size 400 --step 4
  python -m pipeline.land --tile 0                                   # index
  python -m pipeline.land --tile 0 --match --cat-gt data/gt.csv --id 0
"""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Tuple

import numpy as np
from rasterio.transform import from_bounds

from common.geo import pix2geo
from common.tiles import TileCatalog
from common.types import GroundTruthRecord, Tile
from indexing.hypotheses import write_hypotheses
from landcover.raster import write_land_cover_tif
from matching.ground_truth import write_gt_file


def synthesize_land_cover(size: Tuple[int, int], seed: int = 1234) -> np.ndarray:
    """Blocky classification raster with NLCD ids; row 0 is north."""
    w, h = size
    rng = np.random.default_rng(seed)
    lc = np.full((h, w), 71, dtype=np.uint8)  # grassland background

    # Forest blocks (deciduous / evergreen / mixed)
    for _ in range(12):
        x0, y0 = int(rng.integers(0, w)), int(rng.integers(0, h))
        bw, bh = int(rng.integers(w // 12, w // 4)), int(rng.integers(h // 12, h // 4))
        lc[y0 : y0 + bh, x0 : x0 + bw] = int(rng.choice([41, 42, 43]))

    # Crops and pasture in the south-east
    lc[int(0.65 * h) :, int(0.55 * w) :] = 82
    lc[int(0.80 * h) :, int(0.75 * w) :] = 81

    # Developed core
    cy, cx = int(0.35 * h), int(0.65 * w)
    yy, xx = np.mgrid[0:h, 0:w]
    r = np.hypot(yy - cy, xx - cx)
    lc[r < 0.12 * min(w, h)] = 22
    lc[r < 0.06 * min(w, h)] = 23

    # River along the western side, wetlands on its banks
    river_x = (0.15 * w + 0.05 * w * np.sin(np.linspace(0, 3 * np.pi, h))).astype(int)
    for y in range(h):
        x = river_x[y]
        lc[y, max(0, x - 6) : x + 6] = 90
        lc[y, max(0, x - 3) : x + 3] = 11

    # Salt-and-pepper noise, a few nodata pixels
    noise = rng.random((h, w))
    lc[noise < 0.01] = 52
    lc[noise > 0.999] = 0
    return lc


def split_tiles(bbox: Tuple[float, float, float, float], ncols: int, nrows: int) -> List[Tile]:
    lon_min, lat_min, lon_max, lat_max = bbox
    lat_mid = 0.5 * (lat_min + lat_max)
    return [
        Tile(0, lat_min, lon_min, lat_mid, lon_max, ncols=ncols, nrows=nrows),
        Tile(1, lat_mid, lon_min, lat_max, lon_max, ncols=ncols, nrows=nrows, has_no_hypotheses=True),
    ]


def grid_hypotheses(tile: Tile, step: int) -> List[Tuple[float, float, float]]:
    """Hypotheses at the centre of every step-th cell of the tile grid."""
    meta = tile.meta
    pts = []
    for row in range(0, tile.nrows, step):
        for col in range(0, tile.ncols, step):
            lon, lat = pix2geo(col + 0.5, row + 0.5, meta)
            pts.append((lat, lon, 0.0))
    return pts


def sample_ground_truth(lc: np.ndarray, bbox: Tuple[float, float, float, float], tile: Tile, n: int, seed: int) -> List[GroundTruthRecord]:
    """Random camera locations inside tile, labelled with the class under them."""
    lon_min, lat_min, lon_max, lat_max = bbox
    h, w = lc.shape
    inv = ~from_bounds(lon_min, lat_min, lon_max, lat_max, w, h)
    rng = np.random.default_rng(seed)
    out: List[GroundTruthRecord] = []
    while len(out) < n:
        lat = float(rng.uniform(tile.lat_min, tile.lat_max))
        lon = float(rng.uniform(tile.lon_min, tile.lon_max))
        col = int(np.floor(inv.a * lon + inv.b * lat + inv.c))
        row = int(np.floor(inv.d * lon + inv.e * lat + inv.f))
        if not (0 <= row < h and 0 <= col < w) or lc[row, col] == 0:
            continue
        out.append(GroundTruthRecord(image_id=f"img_{len(out):03d}", lat=lat, lon=lon, elev=0.0, category=str(int(lc[row, col]))))
    return out


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--bbox", nargs=4, type=float, default=[-79.98, 32.70, -79.96, 32.74],
                    metavar=("LON_MIN", "LAT_MIN", "LON_MAX", "LAT_MAX"), help="Demo area")
    ap.add_argument("--size", type=int, default=400, help="Land-cover raster width/height in pixels")
    ap.add_argument("--grid", type=int, default=200, help="Probability map cells per tile side")
    ap.add_argument("--step", type=int, default=2, help="Hypothesis spacing in probability map cells")
    ap.add_argument("--images", type=int, default=5, help="Ground-truth rows to write")
    ap.add_argument("--seed", type=int, default=1234, help="Seed for the synthetic raster")
    ap.add_argument("--root", default=".", help="Project root to write into")
    args = ap.parse_args()

    root = Path(args.root)
    bbox = tuple(args.bbox)  # lon_min, lat_min, lon_max, lat_max

    lc = synthesize_land_cover((args.size, args.size), seed=args.seed)
    lc_path = write_land_cover_tif(root / "data/nlcd/land_cover.tif", lc, bbox)
    print(f"[ok] wrote land cover {lc_path}")

    tiles = split_tiles(bbox, args.grid, args.grid)
    TileCatalog(tiles).to_file(root / "config/tiles.yaml")
    print(f"[ok] wrote catalog {root / 'config/tiles.yaml'} ({len(tiles)} tiles)")

    pts = grid_hypotheses(tiles[0], args.step)
    hp = write_hypotheses(root / "data/hypos", tiles[0].id, pts)
    print(f"[ok] wrote {len(pts)} hypotheses {hp}")

    gts = sample_ground_truth(lc, bbox, tiles[0], args.images, args.seed + 1)
    gp = write_gt_file(root / "data/gt.csv", gts)
    (root / "data/query_cat.txt").write_text("Forest\n")
    print(f"[ok] wrote ground truth {gp} and data/query_cat.txt")

    print("Sample data ready. Index and match tile 0:")
    print("  python -m pipeline.land --tile 0")
    print("  python -m pipeline.land --tile 0 --match --cat-gt data/gt.csv --id 0")


if __name__ == "__main__":
    main()
