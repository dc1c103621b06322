from __future__ import annotations

import csv
from pathlib import Path
from typing import List

from common.types import GroundTruthRecord


GT_HEADER = ["image_id", "lat", "lon", "elev", "category"]


def read_gt_file(path: str | Path) -> List[GroundTruthRecord]:
    """
    Read a ground-truth CSV (columns image_id, lat, lon[, elev][, category]).
    Row order defines the image id used on the command line (0-based).
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Ground-truth file not found: {p}")
    out: List[GroundTruthRecord] = []
    with open(p, newline="") as f:
        r = csv.DictReader(f)
        for i, row in enumerate(r):
            try:
                out.append(
                    GroundTruthRecord(
                        image_id=(row.get("image_id") or str(i)).strip(),
                        lat=float(row["lat"]),
                        lon=float(row["lon"]),
                        elev=float(row.get("elev") or 0.0),
                        category=(row.get("category") or "").strip() or None,
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ValueError(f"{p}: bad ground-truth row {i}: {e}") from e
    return out


def write_gt_file(path: str | Path, records: List[GroundTruthRecord]) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(GT_HEADER)
        for g in records:
            w.writerow([g.image_id, f"{g.lat:.9f}", f"{g.lon:.9f}", f"{g.elev:.3f}", g.category or ""])
    return p


def read_category_file(path: str | Path) -> str:
    """First non-empty line of a category file: the land type seen around the camera."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Category file not found: {p}")
    for line in p.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            return line
    raise ValueError(f"{p}: no category line")
