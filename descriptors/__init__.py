"""
Descriptors: what is observable at a geographic point

- LandDescriptor value type (category, confidence, optional class histogram)
- SimilarityPolicy score table (binary or grouped partial credit)
- Protocol contracts every descriptor kind's indexer/matcher satisfies
"""
from .land import LandDescriptor
from .similarity import SimilarityPolicy

__all__ = ["LandDescriptor", "SimilarityPolicy"]
