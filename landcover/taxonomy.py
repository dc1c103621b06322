from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import yaml


NODATA_ID = 0
# Taxonomy names are stored in a fixed 16-byte ASCII slot of the index header.
MAX_NAME_BYTES = 16


@dataclass(frozen=True, slots=True)
class LandClass:
    """One land-cover class: raster id, display name, coarse group and color."""
    id: int
    name: str
    group: str
    color: str = "#000000"

    def __post_init__(self) -> None:
        if not 1 <= self.id <= 255:
            raise ValueError(f"land class id must be in 1..255 (0 is no-data), got {self.id}")


class Taxonomy:
    """
    Fixed, finite set of land-cover classes shared by indexing and querying.

    Class ids are the values stored in the classification rasters. Histogram bins
    follow the order in which classes are listed.
    """

    def __init__(self, name: str, classes: Sequence[LandClass]):
        if not name:
            raise ValueError("taxonomy needs a name")
        if not name.isascii() or len(name) > MAX_NAME_BYTES:
            raise ValueError(f"taxonomy name {name!r} must be ASCII and at most {MAX_NAME_BYTES} characters")
        self.name = name
        self.classes: Tuple[LandClass, ...] = tuple(classes)
        self._by_id: Dict[int, LandClass] = {}
        self._bin: Dict[int, int] = {}
        for i, c in enumerate(self.classes):
            if c.id in self._by_id:
                raise ValueError(f"duplicate class id {c.id} in taxonomy {name}")
            self._by_id[c.id] = c
            self._bin[c.id] = i
        self._lut = np.zeros(256, dtype=np.uint8)
        for c in self.classes:
            self._lut[c.id] = c.id

    def __len__(self) -> int:
        return len(self.classes)

    def __iter__(self) -> Iterator[LandClass]:
        return iter(self.classes)

    def __contains__(self, class_id: object) -> bool:
        return isinstance(class_id, (int, np.integer)) and int(class_id) in self._by_id

    def __repr__(self) -> str:
        return f"Taxonomy({self.name!r}, {len(self)} classes)"

    @property
    def ids(self) -> List[int]:
        return [c.id for c in self.classes]

    @property
    def groups(self) -> List[str]:
        seen: List[str] = []
        for c in self.classes:
            if c.group not in seen:
                seen.append(c.group)
        return seen

    def get(self, class_id: int) -> Optional[LandClass]:
        return self._by_id.get(int(class_id))

    def name_of(self, class_id: int) -> str:
        c = self.get(class_id)
        return c.name if c else "No Data"

    def bin_of(self, class_id: int) -> int:
        return self._bin[int(class_id)]

    def resolve(self, label: int | str) -> int:
        """
        Class id for a label: an id, a numeric string, a class name or a group name
        (case-insensitive). A group resolves to its first listed class.
        Raises KeyError for anything else.
        """
        if isinstance(label, (int, np.integer)):
            if int(label) in self._by_id:
                return int(label)
            raise KeyError(f"class id {label} not in taxonomy {self.name}")
        text = str(label).strip()
        if text.lstrip("-").isdigit():
            return self.resolve(int(text))
        key = text.lower()
        for c in self.classes:
            if c.name.lower() == key:
                return c.id
        for c in self.classes:
            if c.group.lower() == key:
                return c.id
        raise KeyError(f"unknown land-cover label {label!r} for taxonomy {self.name}")

    def normalize(self, ids: np.ndarray) -> np.ndarray:
        """Map raw raster values to taxonomy ids; anything outside the taxonomy becomes NODATA_ID."""
        a = np.asarray(ids)
        out = np.zeros(a.shape, dtype=np.uint8)
        ok = (a >= 0) & (a <= 255)
        out[ok] = self._lut[a[ok].astype(np.int64)]
        return out

    def bins(self, ids: np.ndarray) -> np.ndarray:
        """Histogram bin per id; -1 for NODATA_ID / unknown ids."""
        lut = np.full(256, -1, dtype=np.int64)
        for c in self.classes:
            lut[c.id] = self._bin[c.id]
        return lut[self.normalize(ids).astype(np.int64)]

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "classes": [{"id": c.id, "name": c.name, "group": c.group, "color": c.color} for c in self.classes],
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "Taxonomy":
        classes = [
            LandClass(id=int(c["id"]), name=str(c["name"]), group=str(c.get("group", c["name"])), color=str(c.get("color", "#000000")))
            for c in d.get("classes", [])
        ]
        return cls(str(d["name"]), classes)


# National Land Cover Database (Anderson Level II) legend.
NLCD = Taxonomy(
    "nlcd",
    [
        LandClass(11, "Open Water", "Water", "#466B9F"),
        LandClass(12, "Perennial Ice/Snow", "Ice", "#D1DEF8"),
        LandClass(21, "Developed, Open Space", "Developed", "#DEC5C5"),
        LandClass(22, "Developed, Low Intensity", "Developed", "#D99282"),
        LandClass(23, "Developed, Medium Intensity", "Developed", "#EB0000"),
        LandClass(24, "Developed, High Intensity", "Developed", "#AB0000"),
        LandClass(31, "Barren Land", "Barren", "#B3AC9F"),
        LandClass(41, "Deciduous Forest", "Forest", "#68AB5F"),
        LandClass(42, "Evergreen Forest", "Forest", "#1C5F2C"),
        LandClass(43, "Mixed Forest", "Forest", "#B5C58F"),
        LandClass(51, "Dwarf Scrub", "Shrubland", "#AF963C"),
        LandClass(52, "Shrub/Scrub", "Shrubland", "#CCB879"),
        LandClass(71, "Grassland/Herbaceous", "Herbaceous", "#DFDFC2"),
        LandClass(72, "Sedge/Herbaceous", "Herbaceous", "#D1D182"),
        LandClass(73, "Lichens", "Herbaceous", "#A3CC51"),
        LandClass(74, "Moss", "Herbaceous", "#82BA9E"),
        LandClass(81, "Pasture/Hay", "Planted", "#DCD939"),
        LandClass(82, "Cultivated Crops", "Planted", "#AB6C28"),
        LandClass(90, "Woody Wetlands", "Wetlands", "#B8D9EB"),
        LandClass(95, "Emergent Herbaceous Wetlands", "Wetlands", "#6C9FB8"),
    ],
)

BUILTIN: Dict[str, Taxonomy] = {"nlcd": NLCD}


def load_taxonomy(spec: str | Path) -> Taxonomy:
    """A built-in taxonomy name ("nlcd") or a YAML file with {name, classes: [...]}."""
    key = str(spec).strip().lower()
    if key in BUILTIN:
        return BUILTIN[key]
    p = Path(spec)
    if not p.exists():
        raise FileNotFoundError(f"Unknown taxonomy {spec!r}: not built-in and no such file")
    return Taxonomy.from_dict(yaml.safe_load(p.read_text()))
