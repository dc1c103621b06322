from __future__ import annotations

from typing import Optional

import numpy as np

from common.config import SimilarityConfig
from landcover.taxonomy import NODATA_ID, Taxonomy


class SimilarityPolicy:
    """
    Class-to-class score table over a taxonomy, values in [0, 1].

    - Same known class: 1.0.
    - "grouped" policy: classes sharing a taxonomy group score adjacent_credit.
    - Overrides from config are applied last (symmetric).
    - Anything involving NODATA_ID or an id outside the taxonomy: 0.0.

    The table is a 256x256 float32 matrix so that a whole chunk of indexed
    categories is scored with one fancy-indexing lookup.
    """

    def __init__(self, taxonomy: Taxonomy, config: Optional[SimilarityConfig] = None):
        self.taxonomy = taxonomy
        self.config = config or SimilarityConfig()
        self.table = self._build()

    def _build(self) -> np.ndarray:
        t = np.zeros((256, 256), dtype=np.float32)
        ids = self.taxonomy.ids
        if self.config.policy == "grouped":
            for a in self.taxonomy:
                for b in self.taxonomy:
                    if a.group == b.group:
                        t[a.id, b.id] = self.config.adjacent_credit
        for i in ids:
            t[i, i] = 1.0
        for a, row in self.config.overrides.items():
            for b, s in row.items():
                if a not in self.taxonomy or b not in self.taxonomy:
                    raise ValueError(f"similarity override {a}->{b} uses ids outside taxonomy {self.taxonomy.name}")
                if not 0.0 <= s <= 1.0:
                    raise ValueError("similarity override scores must be in [0, 1]")
                t[a, b] = s
                t[b, a] = s
        t[NODATA_ID, :] = 0.0
        t[:, NODATA_ID] = 0.0
        return t

    def score(self, a: int, b: int) -> float:
        return float(self.table[int(a), int(b)])

    def row(self, query_id: int) -> np.ndarray:
        """Scores of query_id against every possible indexed id (length 256)."""
        return self.table[int(query_id)]

    @property
    def max_score(self) -> float:
        return 1.0

    @property
    def min_score(self) -> float:
        return 0.0
