#!/usr/bin/env python3
"""
Batch Cloud Filling

Runs cloud filling over every Landsat VCF raster of a directory and writes
a CSV summary (one row per raster) next to the outputs.

Usage:
    python scripts/fill_batch.py data/landsat_vcf data/filled --year 2000
    python scripts/fill_batch.py data/landsat_vcf data/filled --year 2000 --pattern "*_VCF.tif"
"""

import sys
import argparse
import logging
from pathlib import Path

import pandas as pd
from tqdm import tqdm

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from cloudfill.gap_fill import GapFiller, try_fill_gaps

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def run_batch(input_dir, output_dir, year, filler, pattern="*.tif", threshold=None,
              suffix="_filled", **options) -> pd.DataFrame:
    """
    Fill every raster matching `pattern` in `input_dir`.

    Returns:
        DataFrame with one row per raster (status, fraction, paths, message)
    """
    input_dir = Path(input_dir)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    rasters = sorted(input_dir.glob(pattern))
    logger.info(f"Found {len(rasters)} rasters in {input_dir}")

    rows = []
    for raster in tqdm(rasters, desc="Cloud filling"):
        output_path = output_dir / f"{raster.stem}{suffix}{raster.suffix}"
        result = try_fill_gaps(raster, threshold=threshold, year=year, modis_dir=None,
                               output_path=output_path, filler=filler, **options)
        row = result.to_dict()
        row['input_path'] = str(raster)
        rows.append(row)

    columns = ['input_path', 'status', 'fraction', 'threshold', 'output_path',
               'filled_cells', 'unfilled_cells', 'error_kind', 'message']
    summary = pd.DataFrame(rows)
    summary = summary.reindex(columns=columns + [c for c in summary.columns if c not in columns])
    return summary


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Batch Landsat VCF cloud filling')
    parser.add_argument('input_dir', help='Directory of Landsat VCF rasters')
    parser.add_argument('output_dir', help='Directory for filled rasters')
    parser.add_argument('--year', type=int, required=True, help='Year of the data')
    parser.add_argument('--pattern', default='*.tif', help='Glob selecting input rasters')
    parser.add_argument('--threshold', type=float, help='Gap fraction [0,1] above which filling is performed')
    parser.add_argument('--modis-dir', help='Directory where MODIS VCF data are stored or downloaded to')
    parser.add_argument('--summary', default='summary.csv', help='Summary CSV filename (inside output_dir)')
    parser.add_argument('--config', default='.env', help='Environment file')
    args = parser.parse_args(argv)

    filler = GapFiller(config_path=args.config, modis_dir=args.modis_dir)
    summary = run_batch(args.input_dir, args.output_dir, args.year, filler,
                        pattern=args.pattern, threshold=args.threshold)

    summary_path = Path(args.output_dir) / args.summary
    summary.drop(columns=['tiles', 'granules'], errors='ignore').to_csv(summary_path, index=False)

    counts = summary['status'].value_counts().to_dict() if len(summary) else {}
    logger.info(f"Batch finished: {counts}")
    logger.info(f"Summary written to {summary_path}")

    return 1 if counts.get('failed', 0) else 0


if __name__ == "__main__":
    sys.exit(main())
