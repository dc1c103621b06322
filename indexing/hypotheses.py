from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, Optional, Tuple

import numpy as np

from common.types import HypothesisSet


CSV_HEADER = ["lat", "lon", "elev"]


def hypo_path(folder: str | Path, tile_id: int, suffix: str = ".npy") -> Path:
    return Path(folder) / f"hypos_tile_{int(tile_id)}{suffix}"


class HypothesisSource:
    """
    Folder of per-tile hypothesis files produced by the hypothesis-generation stage:

        folder/
          ├─ hypos_tile_{id}.npy   float array [N, 3] (lat, lon, elev), preferred
          └─ hypos_tile_{id}.csv   header lat,lon,elev

    A missing file raises FileNotFoundError; a file with zero rows is a valid,
    empty hypothesis set.
    """

    def __init__(self, folder: str | Path):
        self.folder = Path(folder)

    def __repr__(self) -> str:
        return f"HypothesisSource({str(self.folder)!r})"

    def path_for(self, tile_id: int) -> Optional[Path]:
        for suffix in (".npy", ".csv"):
            p = hypo_path(self.folder, tile_id, suffix)
            if p.exists():
                return p
        return None

    def load(self, tile_id: int) -> HypothesisSet:
        if tile_id < 0:
            raise ValueError(f"invalid tile id {tile_id}")
        p = self.path_for(tile_id)
        if p is None:
            raise FileNotFoundError(f"No hypotheses for tile {tile_id} in {self.folder}")
        if p.suffix == ".npy":
            lats, lons, elevs = _read_npy(p)
        else:
            lats, lons, elevs = _read_csv(p)
        return HypothesisSet(tile_id=int(tile_id), lats=lats, lons=lons, elevs=elevs)


def as_source(hypothesis_source: "HypothesisSource | str | Path") -> HypothesisSource:
    if isinstance(hypothesis_source, HypothesisSource):
        return hypothesis_source
    return HypothesisSource(hypothesis_source)


def _read_npy(path: Path) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    a = np.load(path, allow_pickle=False)
    if a.size == 0:
        return np.zeros(0), np.zeros(0), np.zeros(0)
    if a.ndim != 2 or a.shape[1] not in (2, 3):
        raise ValueError(f"{path}: expected an [N, 2|3] array, got shape {a.shape}")
    elevs = a[:, 2] if a.shape[1] == 3 else np.zeros(a.shape[0])
    return a[:, 0], a[:, 1], elevs


def _read_csv(path: Path) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    lats, lons, elevs = [], [], []
    with open(path, newline="") as f:
        r = csv.DictReader(f)
        if r.fieldnames is None:
            raise ValueError(f"{path}: empty file, expected header {','.join(CSV_HEADER)}")
        missing = {"lat", "lon"} - set(r.fieldnames)
        if missing:
            raise ValueError(f"{path}: missing columns {sorted(missing)}")
        for row in r:
            lats.append(float(row["lat"]))
            lons.append(float(row["lon"]))
            elevs.append(float(row.get("elev") or 0.0))
    return np.asarray(lats), np.asarray(lons), np.asarray(elevs)


def write_hypotheses(
    folder: str | Path,
    tile_id: int,
    points: Iterable[Tuple[float, float, float]],
    fmt: str = "csv",
) -> Path:
    """Write a tile's hypotheses in the layout HypothesisSource reads."""
    rows = [(float(p[0]), float(p[1]), float(p[2]) if len(p) > 2 else 0.0) for p in points]
    if fmt == "npy":
        p = hypo_path(folder, tile_id, ".npy")
        p.parent.mkdir(parents=True, exist_ok=True)
        np.save(p, np.asarray(rows, dtype=np.float64).reshape(-1, 3))
        return p
    p = hypo_path(folder, tile_id, ".csv")
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(CSV_HEADER)
        for lat, lon, elev in rows:
            w.writerow([f"{lat:.9f}", f"{lon:.9f}", f"{elev:.3f}"])
    return p
