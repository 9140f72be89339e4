"""
Elevation: Tiled DEM Cache

- Web Mercator tile/pixel addressing for WGS84 points (zoom 15 by default)
- Three-tier tile cache: in-process LRU -> persistent repository (memory or
  Redis) -> GSI text tiles, with single-flight remote fetches
- SmartRefreshService: popularity scores with daily decay, and a background
  worker that re-fetches stale, frequently used tiles

Usage:
    from elevation.cache_manager import ElevationCacheManager
    from elevation.tiles import calculate_tile_coord
"""
