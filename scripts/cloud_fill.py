#!/usr/bin/env python3
"""
Landsat VCF Cloud Filling

Fills cloud / shadow gaps of one Landsat VCF raster with MODIS VCF (MOD44B),
downloading the MODIS granules when they are not present locally.

Usage:
    python scripts/cloud_fill.py landsat_vcf.tif -o filled.tif --year 2000
    python scripts/cloud_fill.py landsat_vcf.tif -o filled.tif --year 2000 \
        --alpha alpha.tif --mask 210 211 --co compress=deflate

Requirements:
    - rasterio
    - earthaccess
    - .netrc file with NASA Earthdata credentials (for downloads)
"""

import sys
import argparse
import logging
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from cloudfill.gap_fill import GapFiller, try_fill_gaps

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def parse_creation_options(items):
    """Turn ['compress=deflate', 'zlevel=6'] into {'compress': 'deflate', 'zlevel': '6'}."""
    options = {}
    for item in items or []:
        if '=' not in item:
            raise argparse.ArgumentTypeError(f"Creation option must be KEY=VALUE, got {item}")
        key, value = item.split('=', 1)
        options[key.strip().lower()] = value.strip()
    return options


def build_parser():
    parser = argparse.ArgumentParser(description='Fill Landsat VCF cloud gaps with MODIS VCF')
    parser.add_argument('input', help='Landsat VCF raster')
    parser.add_argument('-o', '--output', required=True, help='Output filename')
    parser.add_argument('--year', type=int, required=True, help='Year of the data')
    parser.add_argument('--threshold', type=float, help='Gap fraction [0,1] above which filling is performed')
    parser.add_argument('--modis-dir', help='Directory where MODIS VCF data are stored or downloaded to')
    parser.add_argument('--alpha', help='Alpha layer locating the gaps')
    parser.add_argument('--mask', type=float, nargs='+', help='Value(s) to be masked (default 210 211)')
    parser.add_argument('--co', action='append', metavar='KEY=VALUE', help='Output creation option')
    parser.add_argument('--resampling', help='Resampling method (nearest, bilinear, cubic, average, mode)')
    parser.add_argument('--config', default='.env', help='Environment file')
    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.resampling:
        overrides['resampling'] = args.resampling
    filler = GapFiller(config_path=args.config, modis_dir=args.modis_dir, **overrides)

    mask_values = None
    if args.mask:
        mask_values = [int(v) if float(v).is_integer() else v for v in args.mask]

    result = try_fill_gaps(
        args.input,
        threshold=args.threshold,
        year=args.year,
        modis_dir=args.modis_dir,
        alpha=args.alpha,
        mask_values=mask_values,
        output_path=args.output,
        filler=filler,
        **parse_creation_options(args.co)
    )

    print(result.message)
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
