"""
Unit tests for the land-cover matcher
"""

import json
import os
import sys

import numpy as np
import pytest
import rasterio

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import MatcherConfig, SimilarityConfig
from common.status import ArgumentError, DataError
from descriptors.base import DescriptorMatcher
from descriptors.land import LandDescriptor
from indexing.hypotheses import write_hypotheses
from indexing.index_file import index_path
from indexing.indexer import LandIndexer
from landcover.raster import LandCoverRaster
from matching.matcher import LandMatcher, scores_path
from matching.prob_map import RAW_NODATA, prob_map_path, scaled_prob_map_path
from tests.conftest import EMPTY_TILE_ID, FOREST, GT_LAT, GT_LON, HYPOS, TILE_ID, WATER


@pytest.fixture
def land_cover(nlcd_folder):
    lc = LandCoverRaster(nlcd_folder)
    yield lc
    lc.close()


@pytest.fixture
def index_folder(land_cover, hypo_folder, tmp_path):
    folder = tmp_path / "index"
    for tile_id in (TILE_ID, EMPTY_TILE_ID):
        idx = LandIndexer(land_cover, folder)
        assert idx.load_tile_hypos(hypo_folder, tile_id)
        idx.index()
    return folder


class TestQueryDescriptor:
    """Query from a category label or a location"""

    def test_from_category(self):
        m = LandMatcher()
        assert isinstance(m, DescriptorMatcher)
        assert m.create_query_desc("Forest").category == FOREST
        assert m.create_query_desc(11).category == WATER

    def test_constructor_default(self):
        m = LandMatcher(query_category="Open Water")
        assert m.create_query_desc().category == WATER

    def test_unknown_label(self):
        with pytest.raises(ArgumentError):
            LandMatcher().create_query_desc("Lava")

    def test_no_query(self):
        with pytest.raises(ArgumentError):
            LandMatcher().create_query_desc()

    def test_location_needs_raster(self):
        with pytest.raises(ArgumentError):
            LandMatcher().create_query_desc((GT_LAT, GT_LON))

    def test_from_location(self, land_cover):
        m = LandMatcher(land_cover, query_location=(GT_LAT, GT_LON, 10.0))
        q = m.create_query_desc()
        assert q.category == FOREST
        assert m.query == q

    def test_location_outside_coverage(self, land_cover):
        with pytest.raises(DataError):
            LandMatcher(land_cover).create_query_desc((40.0, -100.0))


class TestMatcher:
    """Scoring a tile index"""

    def test_exact_match_max_and_mismatch_zero(self, hypo_folder, index_folder):
        m = LandMatcher()
        scores = m.matcher(m.create_query_desc("Forest"), hypo_folder, index_folder, 1.0, TILE_ID)
        assert scores.dtype == np.float32
        assert scores.tolist() == [1.0, 0.0, 1.0]

    def test_weight_scales_scores(self, index_folder):
        m = LandMatcher()
        scores = m.matcher(m.create_query_desc("Water"), None, index_folder, 2.5, TILE_ID)
        assert scores.tolist() == [0.0, 2.5, 0.0]

    def test_grouped_policy(self, index_folder):
        cfg = MatcherConfig(similarity=SimilarityConfig(policy="grouped", adjacent_credit=0.5))
        m = LandMatcher(config=cfg)
        scores = m.matcher(m.create_query_desc(42), None, index_folder, 1.0, TILE_ID)
        assert scores.tolist() == [0.5, 0.0, 0.5]

    def test_chunk_size_does_not_matter(self, index_folder):
        m = LandMatcher(config=MatcherConfig(chunk_size=1))
        scores = m.matcher(m.create_query_desc("Forest"), None, index_folder, 1.0, TILE_ID)
        assert scores.tolist() == [1.0, 0.0, 1.0]

    def test_index_file_path_accepted(self, index_folder):
        m = LandMatcher()
        q = m.create_query_desc("Forest")
        scores = m.matcher(q, None, index_path(index_folder, TILE_ID), 1.0, TILE_ID)
        assert len(scores) == 3

    def test_index_untouched(self, hypo_folder, index_folder):
        path = index_path(index_folder, TILE_ID)
        before = path.read_bytes()
        m = LandMatcher()
        m.matcher(m.create_query_desc("Forest"), hypo_folder, index_folder, 1.0, TILE_ID)
        assert path.read_bytes() == before

    def test_missing_index(self, tmp_path):
        m = LandMatcher()
        with pytest.raises(DataError):
            m.matcher(m.create_query_desc("Forest"), None, tmp_path, 1.0, TILE_ID)

    def test_empty_index(self, hypo_folder, index_folder):
        m = LandMatcher()
        with pytest.raises(DataError, match="empty"):
            m.matcher(m.create_query_desc("Forest"), hypo_folder, index_folder, 1.0, EMPTY_TILE_ID)

    def test_count_mismatch(self, hypo_folder, index_folder):
        write_hypotheses(hypo_folder, TILE_ID, HYPOS[:2])
        m = LandMatcher()
        with pytest.raises(DataError):
            m.matcher(m.create_query_desc("Forest"), hypo_folder, index_folder, 1.0, TILE_ID)

    def test_taxonomy_mismatch(self, index_folder):
        q = LandDescriptor(category=41, taxonomy="other")
        with pytest.raises(ArgumentError):
            LandMatcher().matcher(q, None, index_folder, 1.0, TILE_ID)


class TestOutputs:
    """Scores, raw map and scaled map"""

    def test_requires_scores(self, tmp_path, tile):
        m = LandMatcher()
        with pytest.raises(RuntimeError):
            m.write_out(tmp_path, TILE_ID)
        with pytest.raises(RuntimeError):
            m.create_prob_map(None, tmp_path, TILE_ID, tile, None)
        with pytest.raises(RuntimeError):
            m.create_scaled_prob_map(tmp_path, tile, TILE_ID, 10, 200, 0.5)

    def test_write_out(self, hypo_folder, index_folder, tmp_path):
        m = LandMatcher()
        m.matcher(m.create_query_desc("Forest"), hypo_folder, index_folder, 1.0, TILE_ID)
        path = m.write_out(tmp_path / "out", TILE_ID)
        assert np.load(path).tolist() == [1.0, 0.0, 1.0]
        summary = json.loads(scores_path(tmp_path / "out", TILE_ID, ".json").read_text())
        assert summary["count"] == 3
        assert summary["max"] == 1.0
        assert summary["query_category"] == FOREST

    def test_prob_map_and_gt_score(self, hypo_folder, index_folder, tile, tmp_path):
        out = tmp_path / "out"
        m = LandMatcher()
        m.matcher(m.create_query_desc("Forest"), hypo_folder, index_folder, 1.0, TILE_ID)
        gt = m.create_prob_map(hypo_folder, out, TILE_ID, tile, (GT_LAT, GT_LON))
        assert gt == 1.0
        with rasterio.open(prob_map_path(out, TILE_ID)) as ds:
            assert ds.read(1).tolist() == [[1.0, 0.0, 1.0]]
        assert m.create_prob_map(hypo_folder, out, TILE_ID, tile, (40.0, -100.0)) is None

        path = m.create_scaled_prob_map(out, tile, TILE_ID, 10, 200, 0.5)
        assert path == scaled_prob_map_path(out, TILE_ID)
        with rasterio.open(path) as ds:
            assert ds.read(1).tolist() == [[200, 0, 200]]

    def test_prob_map_loads_hypotheses_when_not_cached(self, hypo_folder, index_folder, tile, tmp_path):
        m = LandMatcher()
        m.matcher(m.create_query_desc("Water"), None, index_folder, 1.0, TILE_ID)
        assert m.create_prob_map(hypo_folder, tmp_path, TILE_ID, tile, (32.005, -79.985)) == 1.0
        m2 = LandMatcher()
        m2.matcher(m2.create_query_desc("Water"), None, index_folder, 1.0, TILE_ID)
        with pytest.raises(ArgumentError):
            m2.create_prob_map(None, tmp_path, TILE_ID, tile, None)

    def test_scaled_defaults_from_config(self, hypo_folder, index_folder, tile, tmp_path):
        m = LandMatcher()
        m.matcher(m.create_query_desc("Forest"), hypo_folder, index_folder, 0.4, TILE_ID)
        m.create_prob_map(hypo_folder, tmp_path, TILE_ID, tile)
        with rasterio.open(m.create_scaled_prob_map(tmp_path, tile, TILE_ID)) as ds:
            # all scores (0.4) are below the default 0.5 threshold
            assert not ds.read(1).any()

    def test_empty_prob_map(self, tile, tmp_path):
        m = LandMatcher()
        path = m.create_empty_prob_map(tmp_path, TILE_ID, tile)
        with rasterio.open(path) as ds:
            raw = ds.read(1)
            assert ds.width == tile.ncols and ds.height == tile.nrows
        assert np.all(raw == RAW_NODATA)
        with rasterio.open(m.create_scaled_prob_map(tmp_path, tile, TILE_ID, 10, 200, 0.5)) as ds:
            assert np.all(ds.read(1) == 0)
