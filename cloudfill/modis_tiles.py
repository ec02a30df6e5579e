#!/usr/bin/env python3
"""
MODIS Tile Lookup

MODIS land products are distributed on the sinusoidal grid: 36 x 18 tiles
of 1111950.52 m on a sphere of radius 6371007.181 m. Tile boundaries are
straight lines in sinusoidal coordinates but curve in geographic space,
so a raster footprint is reprojected to the sinusoidal CRS before it is
intersected with the grid.

Examples (verified against MODIS georeference):
- Dehradun (30.32°N, 78.03°E): h24v05
- Belize (17.2°N, 88.5°W): h09v07
"""

import math
import logging
from typing import List, Tuple

import geopandas as gpd
import rasterio
from rasterio.crs import CRS
from shapely.geometry import box

logger = logging.getLogger(__name__)

SPHERE_RADIUS = 6371007.181
TILE_SIZE = 1111950.5197665233
GRID_XMIN = -20015109.355798
GRID_YMAX = 10007554.677899
N_TILES_H = 36
N_TILES_V = 18

MODIS_SINUSOIDAL = CRS.from_proj4(
    f"+proj=sinu +lon_0=0 +x_0=0 +y_0=0 +R={SPHERE_RADIUS} +units=m +no_defs"
)


def format_tile(h: int, v: int) -> str:
    """Tile identifier, e.g. 'h09v07'."""
    return f"h{h:02d}v{v:02d}"


def parse_tile(tile: str) -> Tuple[int, int]:
    """
    Split a tile identifier into its indices.

    Args:
        tile: MODIS tile identifier (e.g., 'h24v05')

    Returns:
        (h, v) tuple
    """
    if len(tile) != 6 or tile[0] != 'h' or tile[3] != 'v':
        raise ValueError(f"Invalid MODIS tile identifier: {tile}")
    h = int(tile[1:3])
    v = int(tile[4:6])
    if not (0 <= h < N_TILES_H and 0 <= v < N_TILES_V):
        raise ValueError(f"MODIS tile outside grid: {tile}")
    return h, v


def tile_bounds(tile: str) -> Tuple[float, float, float, float]:
    """Sinusoidal bounds (left, bottom, right, top) of a tile in metres."""
    h, v = parse_tile(tile)
    left = GRID_XMIN + h * TILE_SIZE
    top = GRID_YMAX - v * TILE_SIZE
    return left, top - TILE_SIZE, left + TILE_SIZE, top


def _tile_index(x: float, y: float) -> Tuple[int, int]:
    h = int(math.floor((x - GRID_XMIN) / TILE_SIZE))
    v = int(math.floor((GRID_YMAX - y) / TILE_SIZE))
    return min(max(h, 0), N_TILES_H - 1), min(max(v, 0), N_TILES_V - 1)


def get_modis_tile_simple(lat: float, lon: float) -> str:
    """
    MODIS tile containing a geographic point.

    Uses the forward sinusoidal projection, so unlike a plain 10° grid
    lookup it is exact away from the poles.

    Args:
        lat: Latitude
        lon: Longitude

    Returns:
        MODIS tile identifier
    """
    x = SPHERE_RADIUS * math.radians(lon) * math.cos(math.radians(lat))
    y = SPHERE_RADIUS * math.radians(lat)
    return format_tile(*_tile_index(x, y))


def get_tiles_for_bounds(bounds, crs, densify: float = None) -> List[str]:
    """
    MODIS tiles whose square intersects a rectangular extent.

    Args:
        bounds: (left, bottom, right, top) in `crs` units
        crs: CRS of `bounds` (anything rasterio / geopandas accepts)
        densify: Max segment length (in `crs` units) of the footprint
            outline before reprojection; defaults to 1/50 of the extent

    Returns:
        Sorted list of tile identifiers
    """
    left, bottom, right, top = bounds
    footprint = box(left, bottom, right, top)
    if densify is None:
        densify = max(right - left, top - bottom) / 50.0
    if densify > 0:
        footprint = footprint.segmentize(densify)

    outline = gpd.GeoSeries([footprint], crs=crs).to_crs(MODIS_SINUSOIDAL)
    sinu = outline.iloc[0]
    xmin, ymin, xmax, ymax = sinu.bounds

    h_min, v_min = _tile_index(xmin, ymax)
    h_max, v_max = _tile_index(xmax, ymin)

    tiles = []
    for h in range(h_min, h_max + 1):
        for v in range(v_min, v_max + 1):
            tile = format_tile(h, v)
            square = box(*tile_bounds(tile))
            # Shared edges alone do not count
            if sinu.intersects(square) and not sinu.touches(square):
                tiles.append(tile)

    return sorted(tiles)


def get_raster_tiles(raster) -> List[str]:
    """
    MODIS tiles covering a raster.

    Args:
        raster: Path to a raster file or an open rasterio dataset

    Returns:
        Sorted list of tile identifiers
    """
    if isinstance(raster, rasterio.io.DatasetReader):
        tiles = get_tiles_for_bounds(raster.bounds, raster.crs)
        name = raster.name
    else:
        with rasterio.open(raster) as src:
            tiles = get_tiles_for_bounds(src.bounds, src.crs)
        name = str(raster)

    logger.info(f"Area covers {len(tiles)} tile(s): {tiles} ({name})")
    return tiles


def get_lonlat_bounds(bounds, crs) -> Tuple[float, float, float, float]:
    """Extent reprojected to WGS84 as (west, south, east, north)."""
    from rasterio.warp import transform_bounds
    return transform_bounds(crs, 'EPSG:4326', *bounds, densify_pts=21)


if __name__ == "__main__":
    test_points = [
        (30.3165, 78.0322, "Dehradun"),
        (17.2, -88.5, "Belize"),
    ]

    print("MODIS Tile Lookup Test")
    print("=" * 70)

    for lat, lon, name in test_points:
        print(f"{name} ({lat}, {lon}): {get_modis_tile_simple(lat, lon)}")
