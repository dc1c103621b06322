"""
Shared fixtures: a 30x10 px land-cover GeoTIFF split into Forest | Water | Forest
thirds and a 3x1 cell tile with one hypothesis at the centre of each cell.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(project_root)

from common.tiles import TileCatalog
from common.types import GroundTruthRecord, Tile
from indexing.hypotheses import write_hypotheses
from landcover.raster import write_land_cover_tif
from matching.ground_truth import write_gt_file

FOREST = 41
WATER = 11
BBOX = (-80.0, 32.0, -79.97, 32.01)  # lon_min, lat_min, lon_max, lat_max; 0.001 deg pixels
TILE_ID = 7
EMPTY_TILE_ID = 8
FLAGGED_TILE_ID = 9
HYPOS = [(32.005, -79.995, 10.0), (32.005, -79.985, 12.0), (32.005, -79.975, 11.0)]
GT_LAT, GT_LON = 32.0052, -79.9962  # first cell, forest


def _tile(tile_id, **kw):
    return Tile(tile_id, BBOX[1], BBOX[0], BBOX[3], BBOX[2], ncols=3, nrows=1, **kw)


@pytest.fixture
def land_cover_classes():
    classes = np.full((10, 30), FOREST, dtype=np.uint8)
    classes[:, 10:20] = WATER
    return classes


@pytest.fixture
def nlcd_folder(tmp_path, land_cover_classes):
    write_land_cover_tif(tmp_path / "nlcd" / "land_cover.tif", land_cover_classes, BBOX)
    return tmp_path / "nlcd"


@pytest.fixture
def tile():
    return _tile(TILE_ID)


@pytest.fixture
def hypo_folder(tmp_path):
    folder = tmp_path / "hypos"
    write_hypotheses(folder, TILE_ID, HYPOS)
    write_hypotheses(folder, EMPTY_TILE_ID, [])
    return folder


@pytest.fixture
def tiles_file(tmp_path):
    path = tmp_path / "tiles.yaml"
    TileCatalog([
        _tile(TILE_ID),
        _tile(EMPTY_TILE_ID),
        _tile(FLAGGED_TILE_ID, has_no_hypotheses=True),
    ]).to_file(path)
    return path


@pytest.fixture
def gt_file(tmp_path):
    return write_gt_file(
        tmp_path / "gt.csv",
        [
            GroundTruthRecord("img_000", GT_LAT, GT_LON, 10.0, "Forest"),
            GroundTruthRecord("img_001", 32.005, -79.985, 12.0, "Water"),
        ],
    )
