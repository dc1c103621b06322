"""
Unit tests for land descriptors and similarity policies
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import SimilarityConfig
from descriptors.base import LandCoverSource
from descriptors.land import LandDescriptor, describe_points
from descriptors.similarity import SimilarityPolicy
from landcover.raster import LandCoverRaster
from landcover.taxonomy import NLCD, NODATA_ID
from tests.conftest import FOREST, HYPOS, WATER


class TestLandDescriptor:
    """Construction, rendering and comparison"""

    def test_from_category(self):
        d = LandDescriptor.from_category(NLCD, "Forest")
        assert d.category == FOREST
        assert d.taxonomy == "nlcd"
        assert d.confidence == 1.0
        assert d.is_known

    def test_immutable(self):
        d = LandDescriptor.from_category(NLCD, 11)
        with pytest.raises(AttributeError):
            d.category = 41

    def test_invalid_values(self):
        """Confidence outside [0, 1] and ids above 255 are rejected"""
        with pytest.raises(ValueError):
            LandDescriptor(category=41, taxonomy="nlcd", confidence=1.5)
        with pytest.raises(ValueError):
            LandDescriptor(category=300, taxonomy="nlcd")

    def test_describe_names_the_class(self):
        d = LandDescriptor(category=11, taxonomy="nlcd", confidence=0.75)
        text = d.describe(NLCD)
        assert "Open Water" in text
        assert "0.750" in text
        assert "category=11" in str(d)

    def test_describe_histogram(self):
        """Dominant histogram entries are listed by class name"""
        hist = [0.0] * len(NLCD)
        hist[NLCD.bin_of(41)] = 0.6
        hist[NLCD.bin_of(11)] = 0.4
        d = LandDescriptor(category=41, taxonomy="nlcd", confidence=0.6, histogram=tuple(hist))
        text = d.describe(NLCD)
        assert "Deciduous Forest:0.60" in text
        assert "Open Water:0.40" in text

    def test_similarity_exact_and_mismatch(self):
        policy = SimilarityPolicy(NLCD)
        forest = LandDescriptor.from_category(NLCD, FOREST)
        water = LandDescriptor.from_category(NLCD, WATER)
        assert forest.similarity(forest, policy) == policy.max_score == 1.0
        assert forest.similarity(water, policy) == policy.min_score == 0.0

    def test_similarity_nodata_is_zero(self):
        policy = SimilarityPolicy(NLCD)
        unknown = LandDescriptor(category=NODATA_ID, taxonomy="nlcd", confidence=0.0)
        assert not unknown.is_known
        assert unknown.similarity(unknown, policy) == 0.0

    def test_similarity_across_taxonomies_raises(self):
        policy = SimilarityPolicy(NLCD)
        a = LandDescriptor(category=1, taxonomy="other")
        b = LandDescriptor.from_category(NLCD, FOREST)
        with pytest.raises(ValueError):
            a.similarity(b, policy)


class TestSimilarityPolicy:
    """Binary, grouped and override score tables"""

    def test_binary_default(self):
        policy = SimilarityPolicy(NLCD)
        assert policy.score(41, 42) == 0.0
        assert policy.score(42, 42) == 1.0
        assert policy.table.shape == (256, 256)

    def test_grouped_gives_partial_credit(self):
        policy = SimilarityPolicy(NLCD, SimilarityConfig(policy="grouped", adjacent_credit=0.25))
        assert policy.score(41, 43) == pytest.approx(0.25)
        assert policy.score(41, 41) == 1.0
        assert policy.score(41, 11) == 0.0
        assert policy.score(0, 0) == 0.0

    def test_overrides_are_symmetric(self):
        policy = SimilarityPolicy(NLCD, SimilarityConfig(overrides={90: {41: 0.3}}))
        assert policy.score(90, 41) == pytest.approx(0.3)
        assert policy.score(41, 90) == pytest.approx(0.3)

    def test_override_outside_taxonomy(self):
        with pytest.raises(ValueError):
            SimilarityPolicy(NLCD, SimilarityConfig(overrides={41: {99: 0.5}}))

    def test_row_scores_a_category_array(self):
        policy = SimilarityPolicy(NLCD)
        cats = np.array([41, 11, 41, 0], dtype=np.uint8)
        assert policy.row(41)[cats].tolist() == [1.0, 0.0, 1.0, 0.0]


class TestSampling:
    """Descriptors sampled from a raster"""

    def test_raster_satisfies_source_protocol(self, nlcd_folder):
        with LandCoverRaster(nlcd_folder) as lc:
            assert isinstance(lc, LandCoverSource)

    def test_from_sample(self, nlcd_folder):
        with LandCoverRaster(nlcd_folder) as lc:
            lat, lon, _ = HYPOS[1]
            d = LandDescriptor.from_sample(lc, NLCD, lat, lon)
            assert d.category == WATER
            assert d.confidence == 1.0
            assert d.histogram is None

    def test_describe_points_with_neighborhood(self, nlcd_folder):
        """Confidence is the neighbourhood fraction of the centre class"""
        with LandCoverRaster(nlcd_folder) as lc:
            # pixel (row 5, col 9): 3x3 window holds 6 forest and 3 water pixels
            lats = np.array([32.0045])
            lons = np.array([-79.9905])
            cats, confs, hists = describe_points(lc, NLCD, lats, lons, neighborhood_px=1)
        assert cats.tolist() == [FOREST]
        assert confs[0] == pytest.approx(6.0 / 9.0)
        assert hists.shape == (1, len(NLCD))
        assert hists[0, NLCD.bin_of(WATER)] == pytest.approx(3.0 / 9.0)

    def test_describe_points_outside_coverage(self, nlcd_folder):
        with LandCoverRaster(nlcd_folder) as lc:
            cats, confs, hists = describe_points(lc, NLCD, np.array([40.0]), np.array([-100.0]))
        assert cats.tolist() == [NODATA_ID]
        assert confs.tolist() == [0.0]
        assert hists is None
