from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from descriptors.base import LandCoverSource
from descriptors.similarity import SimilarityPolicy
from landcover.taxonomy import NODATA_ID, Taxonomy


@dataclass(frozen=True)
class LandDescriptor:
    """
    Land-cover observed at a geographic point.

    Attributes:
        category: taxonomy class id (NODATA_ID when nothing is known).
        taxonomy: name of the taxonomy the id belongs to.
        confidence: [0..1]; 1.0 for a single classified pixel, the agreeing
            neighbourhood fraction when a histogram is attached.
        histogram: optional class fractions in taxonomy order.
    """
    category: int
    taxonomy: str
    confidence: float = 1.0
    histogram: Optional[Tuple[float, ...]] = None

    def __post_init__(self) -> None:
        if not 0 <= int(self.category) <= 255:
            raise ValueError("category must fit in 0..255")
        if not 0.0 <= float(self.confidence) <= 1.0:
            raise ValueError("confidence must be in [0, 1]")

    # -------- construction --------

    @classmethod
    def from_category(cls, taxonomy: Taxonomy, label: int | str, confidence: float = 1.0) -> "LandDescriptor":
        """Descriptor for a known label (class id, class name or group name)."""
        return cls(category=taxonomy.resolve(label), taxonomy=taxonomy.name, confidence=float(confidence))

    @classmethod
    def from_sample(
        cls,
        source: LandCoverSource,
        taxonomy: Taxonomy,
        lat: float,
        lon: float,
        neighborhood_px: int = 0,
    ) -> "LandDescriptor":
        """Classify (lat, lon) with the same rule the indexer applies to every hypothesis."""
        cats, confs, hists = describe_points(source, taxonomy, np.array([lat]), np.array([lon]), neighborhood_px)
        hist = tuple(float(v) for v in hists[0]) if hists is not None else None
        return cls(category=int(cats[0]), taxonomy=taxonomy.name, confidence=float(confs[0]), histogram=hist)

    # -------- queries --------

    @property
    def is_known(self) -> bool:
        return self.category != NODATA_ID

    def similarity(self, other: "LandDescriptor", policy: SimilarityPolicy) -> float:
        """Score in [0, 1] against another descriptor of the same taxonomy."""
        if other.taxonomy != self.taxonomy or policy.taxonomy.name != self.taxonomy:
            raise ValueError(f"cannot compare {self.taxonomy} descriptor with {other.taxonomy} / policy {policy.taxonomy.name}")
        return policy.score(self.category, other.category)

    def describe(self, taxonomy: Optional[Taxonomy] = None, top: int = 3) -> str:
        name = taxonomy.name_of(self.category) if taxonomy else str(self.category)
        s = f"land[{self.taxonomy}] category={self.category} ({name}) confidence={self.confidence:.3f}"
        if self.histogram is not None:
            order = np.argsort(np.asarray(self.histogram))[::-1][:top]
            parts = []
            for b in order:
                frac = self.histogram[int(b)]
                if frac <= 0:
                    continue
                label = taxonomy.classes[int(b)].name if taxonomy else f"bin{int(b)}"
                parts.append(f"{label}:{frac:.2f}")
            s += " hist={" + ", ".join(parts) + "}"
        return s

    def __str__(self) -> str:
        return self.describe()


def describe_points(
    source: LandCoverSource,
    taxonomy: Taxonomy,
    lats: np.ndarray,
    lons: np.ndarray,
    neighborhood_px: int = 0,
) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """
    Vectorized descriptor fields for many points: (categories uint8,
    confidences float32, histograms float32 [N, nbins] or None).
    Category is always the class at the exact point.
    """
    cats = source.classify_many(lats, lons).astype(np.uint8)
    known = cats != NODATA_ID
    if neighborhood_px <= 0:
        return cats, known.astype(np.float32), None
    hists = source.histogram_many(lats, lons, neighborhood_px).astype(np.float32)
    confs = np.zeros(cats.shape, dtype=np.float32)
    if known.any():
        rows = np.flatnonzero(known)
        confs[rows] = hists[rows, taxonomy.bins(cats[rows])]
    return cats, confs, hists
