"""
Land cover: taxonomy and raster sampling

- Fixed land-cover taxonomy (NLCD built in, others loadable from YAML)
- Read-only sampling of classification GeoTIFFs at WGS84 points
"""
from .raster import LandCoverRaster, open_land_cover
from .taxonomy import NLCD, NODATA_ID, LandClass, Taxonomy, load_taxonomy

__all__ = ["LandCoverRaster", "open_land_cover", "NLCD", "NODATA_ID", "LandClass", "Taxonomy", "load_taxonomy"]
