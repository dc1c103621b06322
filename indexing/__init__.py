"""
Indexing: per-tile descriptor index

- Reads the tile's hypotheses (hypos_tile_{id}.npy|.csv)
- Classifies every hypothesis on the land-cover raster under a memory budget
- Writes {kind}_index_tile_{id}.bin atomically, records in hypothesis order
"""
from .indexer import LandIndexer

__all__ = ["LandIndexer"]
