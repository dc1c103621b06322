from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Tuple
import numpy as np


@dataclass(slots=True, frozen=True)
class Hypothesis:
    """
    Candidate camera location inside a tile.

    Attributes:
        index: position in the tile's hypothesis sequence (join key with the index file).
        lat, lon: WGS84 degrees.
        elev: elevation in meters.
    """
    index: int
    lat: float
    lon: float
    elev: float = 0.0


@dataclass(slots=True)
class HypothesisSet:
    """
    Ordered hypotheses of one tile, stored column-wise so that millions of points
    stay compact. Position i in the arrays is hypothesis index i.
    """
    tile_id: int
    lats: np.ndarray
    lons: np.ndarray
    elevs: np.ndarray = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        self.lats = np.asarray(self.lats, dtype=np.float64).reshape(-1)
        self.lons = np.asarray(self.lons, dtype=np.float64).reshape(-1)
        if self.elevs is None:
            self.elevs = np.zeros_like(self.lats)
        self.elevs = np.asarray(self.elevs, dtype=np.float64).reshape(-1)
        if not (self.lats.shape == self.lons.shape == self.elevs.shape):
            raise ValueError("lats/lons/elevs must have the same length")
        if self.tile_id < 0:
            raise ValueError("tile_id must be >= 0")

    @classmethod
    def empty(cls, tile_id: int) -> "HypothesisSet":
        return cls(tile_id=tile_id, lats=np.zeros(0), lons=np.zeros(0), elevs=np.zeros(0))

    def __len__(self) -> int:
        return int(self.lats.shape[0])

    def __getitem__(self, i: int) -> Hypothesis:
        n = len(self)
        if i < 0:
            i += n
        if not 0 <= i < n:
            raise IndexError(f"hypothesis index {i} out of range for {n} hypotheses")
        return Hypothesis(index=i, lat=float(self.lats[i]), lon=float(self.lons[i]), elev=float(self.elevs[i]))

    def __iter__(self) -> Iterator[Hypothesis]:
        for i in range(len(self)):
            yield self[i]


@dataclass(slots=True, frozen=True)
class Tile:
    """
    Geographic rectangle that is indexed and matched independently.

    Attributes:
        id: unique non-negative id; names the index and output files.
        lat_min, lon_min, lat_max, lon_max: extent in WGS84 degrees.
        ncols, nrows: size of the output probability grid.
        has_no_hypotheses: catalog flag for tiles known to be empty.
    """
    id: int
    lat_min: float
    lon_min: float
    lat_max: float
    lon_max: float
    ncols: int = 3601
    nrows: int = 3601
    has_no_hypotheses: bool = False

    def __post_init__(self) -> None:
        if self.id < 0:
            raise ValueError("tile id must be >= 0")
        if not (self.lat_min < self.lat_max and self.lon_min < self.lon_max):
            raise ValueError("tile extent must have min < max")
        if not (-90.0 <= self.lat_min and self.lat_max <= 90.0):
            raise ValueError("lat out of range")
        if self.ncols <= 0 or self.nrows <= 0:
            raise ValueError("ncols/nrows must be > 0")

    @property
    def bbox(self) -> Tuple[float, float, float, float]:
        # [lon_min, lat_min, lon_max, lat_max]
        return (self.lon_min, self.lat_min, self.lon_max, self.lat_max)

    @property
    def meta(self) -> Dict[str, Any]:
        """Tile grid in the project-wide georeferencing schema (see common.geo)."""
        return {
            "crs": "EPSG:4326",
            "top_left_lon": self.lon_min,
            "top_left_lat": self.lat_max,
            "px_size_lon": (self.lon_max - self.lon_min) / float(self.ncols),
            "px_size_lat": (self.lat_min - self.lat_max) / float(self.nrows),  # negative (top-left origin)
            "width": self.ncols,
            "height": self.nrows,
        }

    def contains(self, lat: float, lon: float) -> bool:
        return (self.lon_min <= lon <= self.lon_max) and (self.lat_min <= lat <= self.lat_max)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "lat_min": self.lat_min,
            "lon_min": self.lon_min,
            "lat_max": self.lat_max,
            "lon_max": self.lon_max,
            "ncols": self.ncols,
            "nrows": self.nrows,
            "has_no_hypotheses": self.has_no_hypotheses,
        }


@dataclass(slots=True, frozen=True)
class GroundTruthRecord:
    """One row of a ground-truth file: where a query image was really taken."""
    image_id: str
    lat: float
    lon: float
    elev: float = 0.0
    category: Optional[str] = None

    def __post_init__(self) -> None:
        if not (-90.0 <= self.lat <= 90.0) or not (-180.0 <= self.lon <= 180.0):
            raise ValueError("lat/lon out of range")

    @property
    def location(self) -> Tuple[float, float, float]:
        return (self.lat, self.lon, self.elev)
