from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import yaml

from common.geo import haversine_m
from common.types import Tile


class TileCatalog:
    """
    Ordered, read-only catalog of tiles loaded from a YAML or JSON file:

        tiles:
          - {id: 0, lat_min: 32.0, lon_min: -80.0, lat_max: 33.0, lon_max: -79.0, ncols: 3601, nrows: 3601}
          - {id: 1, ..., has_no_hypotheses: true}

    The tiling itself is produced elsewhere; this class only exposes it.
    """

    def __init__(self, tiles: List[Tile]):
        self._tiles: List[Tile] = list(tiles)
        self._by_id: Dict[int, Tile] = {}
        for t in self._tiles:
            if t.id in self._by_id:
                raise ValueError(f"duplicate tile id {t.id} in catalog")
            self._by_id[t.id] = t

    @classmethod
    def from_file(cls, path: str | Path) -> "TileCatalog":
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Tile catalog not found: {p}")
        text = p.read_text()
        data = json.loads(text) if p.suffix.lower() == ".json" else yaml.safe_load(text)
        rows = (data or {}).get("tiles", []) if isinstance(data, dict) else (data or [])
        return cls([_tile_from_row(r) for r in rows])

    def to_file(self, path: str | Path) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        payload = {"tiles": [t.to_dict() for t in self._tiles]}
        if p.suffix.lower() == ".json":
            p.write_text(json.dumps(payload, indent=2))
        else:
            p.write_text(yaml.safe_dump(payload, sort_keys=False))

    # -------- public API --------

    def get(self, tile_id: int) -> Optional[Tile]:
        return self._by_id.get(int(tile_id))

    def __getitem__(self, tile_id: int) -> Tile:
        t = self.get(tile_id)
        if t is None:
            raise KeyError(f"tile id {tile_id} not in catalog")
        return t

    def __contains__(self, tile_id: object) -> bool:
        return isinstance(tile_id, int) and tile_id in self._by_id

    def __len__(self) -> int:
        return len(self._tiles)

    def __iter__(self) -> Iterator[Tile]:
        return iter(self._tiles)

    @property
    def ids(self) -> List[int]:
        return [t.id for t in self._tiles]

    def find(self, lat: float, lon: float) -> Optional[Tile]:
        """Tile containing (lat, lon); if several do (shared edges), the one whose center is closest."""
        cands = [t for t in self._tiles if t.contains(lat, lon)]
        if not cands:
            return None
        return min(
            cands,
            key=lambda t: haversine_m(lat, lon, 0.5 * (t.lat_min + t.lat_max), 0.5 * (t.lon_min + t.lon_max)),
        )


def _tile_from_row(r: Dict) -> Tile:
    try:
        return Tile(
            id=int(r["id"]),
            lat_min=float(r["lat_min"]),
            lon_min=float(r["lon_min"]),
            lat_max=float(r["lat_max"]),
            lon_max=float(r["lon_max"]),
            ncols=int(r.get("ncols", 3601)),
            nrows=int(r.get("nrows", 3601)),
            has_no_hypotheses=bool(r.get("has_no_hypotheses", False)),
        )
    except KeyError as e:
        raise ValueError(f"tile entry missing key {e}: {r}") from e
