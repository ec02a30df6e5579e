#!/usr/bin/env python3
"""
MODIS VCF (MOD44B) Data Fetcher

Downloads MOD44B granules into the local MODIS directory ahead of cloud
filling, either for explicit tiles or for the tiles covering a raster.
Granules already present are left alone.

Usage:
    python scripts/fetch_mod44b.py --year 2000 --tiles h09v07 h10v07
    python scripts/fetch_mod44b.py --year 2000 2005 --raster landsat_vcf.tif

Requirements:
    - earthaccess
    - .netrc file with NASA Earthdata credentials
"""

import sys
import argparse
import logging
from pathlib import Path

import rasterio
from tqdm import tqdm

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from cloudfill.errors import CloudFillError
from cloudfill.gap_fill import GapFiller
from cloudfill.granules import GranuleCache
from cloudfill.modis_tiles import get_tiles_for_bounds, get_lonlat_bounds, parse_tile

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Download MODIS VCF (MOD44B) granules')
    parser.add_argument('--year', type=int, nargs='+', required=True, help='Year(s) to download')
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument('--tiles', nargs='+', help='MODIS tiles, e.g. h09v07')
    group.add_argument('--raster', help='Raster whose extent selects the tiles')
    parser.add_argument('--modis-dir', help='Directory where MODIS VCF data are stored')
    parser.add_argument('--config', default='.env', help='Environment file')
    args = parser.parse_args(argv)

    filler = GapFiller(config_path=args.config, modis_dir=args.modis_dir)
    cache = GranuleCache(filler.modis_dir, product=filler.product,
                         day_of_year=filler.day_of_year, lock_timeout=filler.lock_timeout)

    bounding_box = None
    if args.raster:
        with rasterio.open(args.raster) as src:
            tiles = get_tiles_for_bounds(src.bounds, src.crs)
            bounding_box = get_lonlat_bounds(src.bounds, src.crs)
    else:
        tiles = args.tiles
        for tile in tiles:
            parse_tile(tile)

    logger.info(f"Target tiles: {tiles}, years: {args.year}")

    successful = 0
    failed = 0
    for year in args.year:
        for tile in tqdm(tiles, desc=f"MOD44B {year}"):
            try:
                cache.get_or_fetch(year, tile, filler.fetcher, bounding_box)
                successful += 1
            except CloudFillError as e:
                logger.error(f"✗ {tile} {year}: {e}")
                failed += 1

    logger.info(f"MOD44B fetch finished: {successful} available, {failed} failed")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
