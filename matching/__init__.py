"""
Matching: query descriptor vs. tile index

- Query descriptor from a ground-truth location or a category label
- Per-hypothesis scores (scores_tile_{id}.npy/.json)
- Raw and scaled probability GeoTIFFs, placeholder maps for empty tiles
"""
from .matcher import LandMatcher

__all__ = ["LandMatcher"]
