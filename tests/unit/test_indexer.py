"""
Unit tests for the land-cover indexer
"""

import logging
import os
import sys
from unittest.mock import patch

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import IndexerConfig
from descriptors.base import DescriptorIndexer
from descriptors.land import LandDescriptor
from indexing.hypotheses import HypothesisSource, write_hypotheses
from indexing.index_file import DescriptorIndex, DescriptorIndexWriter, record_dtype
from indexing.indexer import LandIndexer, _split
from landcover.raster import LandCoverRaster
from landcover.taxonomy import NLCD
from tests.conftest import EMPTY_TILE_ID, FOREST, HYPOS, TILE_ID, WATER


def _many_hypos(n, seed=0):
    """n random points over the test raster, some just outside it."""
    rng = np.random.default_rng(seed)
    lats = rng.uniform(31.999, 32.011, n)
    lons = rng.uniform(-80.001, -79.969, n)
    return [(float(a), float(b), 0.0) for a, b in zip(lats, lons)]


@pytest.fixture
def land_cover(nlcd_folder):
    lc = LandCoverRaster(nlcd_folder)
    yield lc
    lc.close()


class TestLoadTileHypos:
    """Hypothesis loading outcomes"""

    def test_load(self, land_cover, hypo_folder, tmp_path):
        idx = LandIndexer(land_cover, tmp_path / "index")
        assert isinstance(idx, DescriptorIndexer)
        assert idx.load_tile_hypos(hypo_folder, TILE_ID)
        assert len(idx.hypos) == 3
        assert idx.hypos[1].elev == 12.0

    def test_missing_file_fails(self, land_cover, hypo_folder, tmp_path):
        idx = LandIndexer(land_cover, tmp_path / "index")
        assert not idx.load_tile_hypos(hypo_folder, 1234)
        assert idx.hypos is None

    def test_negative_tile_fails(self, land_cover, hypo_folder, tmp_path):
        idx = LandIndexer(land_cover, tmp_path / "index")
        assert not idx.load_tile_hypos(HypothesisSource(hypo_folder), -1)

    def test_malformed_file_fails(self, land_cover, tmp_path):
        (tmp_path / "hypos").mkdir()
        (tmp_path / "hypos" / "hypos_tile_3.csv").write_text("x,y\n1,2\n")
        idx = LandIndexer(land_cover, tmp_path / "index")
        assert not idx.load_tile_hypos(tmp_path / "hypos", 3)

    def test_empty_file_succeeds(self, land_cover, hypo_folder, tmp_path):
        idx = LandIndexer(land_cover, tmp_path / "index")
        assert idx.load_tile_hypos(hypo_folder, EMPTY_TILE_ID)
        assert len(idx.hypos) == 0

    def test_npy_preferred(self, land_cover, tmp_path):
        folder = tmp_path / "hypos"
        write_hypotheses(folder, 5, HYPOS[:1], fmt="csv")
        write_hypotheses(folder, 5, HYPOS, fmt="npy")
        idx = LandIndexer(land_cover, tmp_path / "index")
        assert idx.load_tile_hypos(folder, 5)
        assert len(idx.hypos) == 3

    def test_warns_about_points_outside_tile(self, land_cover, hypo_folder, tile, tmp_path, caplog):
        write_hypotheses(hypo_folder, TILE_ID, HYPOS + [(40.0, -100.0, 0.0)])
        caplog.set_level(logging.WARNING, logger="landloc.indexer")
        idx = LandIndexer(land_cover, tmp_path / "index")
        assert idx.load_tile_hypos(hypo_folder, TILE_ID, tile)
        assert "outside tile" in caplog.text


class TestIndex:
    """Index content and memory budget"""

    def test_entries_match_direct_sampling(self, land_cover, hypo_folder, tmp_path):
        idx = LandIndexer(land_cover, tmp_path / "index")
        idx.load_tile_hypos(hypo_folder, TILE_ID)
        path = idx.index()
        with DescriptorIndex(path) as index:
            assert index.count == 3
            assert index.records["hypo"].tolist() == [0, 1, 2]
            assert index.records["category"].tolist() == [FOREST, WATER, FOREST]
            for h in idx.hypos:
                direct = LandDescriptor.from_sample(land_cover, NLCD, h.lat, h.lon)
                assert index.descriptor(h.index) == direct

    def test_budget_does_not_change_output(self, land_cover, tmp_path):
        """Budgets of B and 2B records produce bit-identical files"""
        write_hypotheses(tmp_path / "hypos", 2, _many_hypos(101))
        itemsize = record_dtype(0).itemsize
        blobs = []
        for records in (7, 14, 1000):
            idx = LandIndexer(land_cover, tmp_path / f"index_{records}")
            idx.load_tile_hypos(tmp_path / "hypos", 2)
            blobs.append(idx.index(records * itemsize).read_bytes())
        assert blobs[0] == blobs[1] == blobs[2]

    def test_budget_with_histograms(self, land_cover, tmp_path):
        write_hypotheses(tmp_path / "hypos", 2, _many_hypos(40, seed=1))
        cfg = IndexerConfig(neighborhood_px=1)
        itemsize = record_dtype(len(NLCD)).itemsize
        blobs = []
        for records in (3, 6):
            idx = LandIndexer(land_cover, tmp_path / f"index_{records}", config=cfg)
            idx.load_tile_hypos(tmp_path / "hypos", 2)
            assert idx.hist_bins == len(NLCD)
            blobs.append(idx.index(records * itemsize).read_bytes())
        assert blobs[0] == blobs[1]

    def test_flushes_never_exceed_budget(self, land_cover, tmp_path):
        write_hypotheses(tmp_path / "hypos", 2, _many_hypos(50))
        itemsize = record_dtype(0).itemsize
        budget = 8 * itemsize + 3
        sizes = []
        original = DescriptorIndexWriter.append

        def spy(self, records):
            sizes.append(records.nbytes)
            return original(self, records)

        idx = LandIndexer(land_cover, tmp_path / "index")
        idx.load_tile_hypos(tmp_path / "hypos", 2)
        with patch.object(DescriptorIndexWriter, "append", spy):
            idx.index(budget)
        assert max(sizes) <= budget
        assert sum(sizes) == 50 * itemsize
        assert len(sizes) == 7

    def test_workers_keep_order(self, land_cover, tmp_path):
        write_hypotheses(tmp_path / "hypos", 2, _many_hypos(97, seed=3))
        blobs = []
        for workers in (1, 4):
            idx = LandIndexer(land_cover, tmp_path / f"index_{workers}", config=IndexerConfig(workers=workers))
            idx.load_tile_hypos(tmp_path / "hypos", 2)
            blobs.append(idx.index(10 * record_dtype(0).itemsize).read_bytes())
        assert blobs[0] == blobs[1]

    def test_empty_set_gives_empty_index(self, land_cover, hypo_folder, tmp_path):
        idx = LandIndexer(land_cover, tmp_path / "index")
        idx.load_tile_hypos(hypo_folder, EMPTY_TILE_ID)
        path = idx.index()
        assert path.name == f"land_index_tile_{EMPTY_TILE_ID}.bin"
        with DescriptorIndex(path) as index:
            assert index.count == 0

    def test_budget_below_one_record(self, land_cover, hypo_folder, tmp_path):
        idx = LandIndexer(land_cover, tmp_path / "index")
        idx.load_tile_hypos(hypo_folder, TILE_ID)
        with pytest.raises(ValueError):
            idx.index(record_dtype(0).itemsize - 1)

    def test_index_before_load(self, land_cover, tmp_path):
        with pytest.raises(RuntimeError):
            LandIndexer(land_cover, tmp_path / "index").index()

    def test_split(self):
        assert _split(0, 10, 3) == [(0, 4), (4, 8), (8, 10)]
        assert _split(5, 7, 8) == [(5, 6), (6, 7)]
