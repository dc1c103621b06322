"""
Land-cover descriptor test suite

Structure:
- unit/: Unit tests for individual components
- integration/: Driver runs over a small synthetic tile
- conftest.py: GeoTIFF, hypothesis and catalog fixtures written into tmp_path
"""
