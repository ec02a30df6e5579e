"""
Landsat VCF Cloud Filling

Fills the cloud and shadow gaps left in a Landsat vegetation continuous
fields (VCF) raster with the MODIS VCF product (MOD44B). MODIS granules are
looked up in a local directory and downloaded when missing.

Pipeline:
1. Measure the gap fraction of the primary raster (or of an alpha layer)
2. Stop if it does not exceed the threshold
3. Find the MODIS tiles covering the raster, fetch missing granules
4. Warp MODIS onto the Landsat grid
5. Replace gap cells and write an unsigned 8-bit raster

Author: CloudFill Team
"""

import os
import logging
import tempfile
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np
import rasterio
from rasterio.errors import RasterioError
from rasterio.transform import array_bounds
from dotenv import load_dotenv

from cloudfill.errors import CloudFillError, InputUnreadableError, WriteError
from cloudfill.granules import GranuleCache, MOD44BFetcher
from cloudfill.modis_tiles import get_tiles_for_bounds, get_lonlat_bounds
from cloudfill.overlay import DEFAULT_MASK_VALUES, gap_mask, gap_fraction, overlay
from cloudfill.results import Skipped, Filled, Failed
from cloudfill.warp import warp_to_grid

logger = logging.getLogger(__name__)

# Nodata of the written raster when the primary nodata is not a uint8 value
OUTPUT_NODATA = 255


def _read_band(path, label: str):
    try:
        with rasterio.open(path) as src:
            return src.read(1), src.profile.copy()
    except RasterioError as e:
        raise InputUnreadableError(f"Cannot read {label} raster {path}: {e}") from e


def to_uint8(data: np.ndarray, nodata=None, fill: int = OUTPUT_NODATA):
    """
    Convert an array to uint8, turning nodata and out-of-range cells into nodata.

    Args:
        data: Array in any numeric dtype
        nodata: Nodata value of `data`, or None
        fill: uint8 nodata used when `nodata` does not fit in 0..255

    Returns:
        (uint8 array, nodata of the converted array or None)
    """
    invalid = (data < 0) | (data > 255)
    if np.issubdtype(data.dtype, np.floating):
        invalid |= np.isnan(data)
    if nodata is not None:
        invalid |= np.isnan(data) if np.isnan(nodata) else data == nodata

    if nodata is not None and 0 <= nodata <= 255 and float(nodata).is_integer():
        out_nodata = int(nodata)
    elif nodata is not None or invalid.any():
        out_nodata = fill
    else:
        out_nodata = None

    n_invalid = int(np.count_nonzero(invalid))
    if n_invalid:
        logger.debug(f"{n_invalid} nodata or out-of-range cells written as {out_nodata}")

    result = np.where(invalid, out_nodata if out_nodata is not None else 0, data)
    return result.astype(np.uint8), out_nodata


def parse_mask_values(text: str) -> tuple:
    """Parse '210,211' into (210, 211)."""
    values = []
    for item in text.split(','):
        item = item.strip()
        if item:
            value = float(item)
            values.append(int(value) if value.is_integer() else value)
    return tuple(values)


class GapFiller:
    """
    Cloud filler for Landsat VCF rasters.

    Settings come from the environment file (see env.example); explicit
    constructor arguments win over it.
    """

    def __init__(self, config_path: str = ".env", modis_dir: Optional[str] = None,
                 fetcher=None, **overrides):
        """
        Initialize gap filler.

        Args:
            config_path: Path to environment file
            modis_dir: Directory where MODIS VCF data are stored or downloaded to
            fetcher: Granule fetcher (defaults to MOD44BFetcher)
            **overrides: Any config attribute (product, collection, day_of_year,
                subdataset, threshold, mask_values, resampling, reference_nodata,
                lock_timeout)
        """
        self.load_config(config_path)

        if modis_dir is not None:
            self.modis_dir = Path(modis_dir)
        for name, value in overrides.items():
            if not hasattr(self, name):
                raise TypeError(f"Unknown GapFiller setting: {name}")
            setattr(self, name, value)

        self.fetcher = fetcher or MOD44BFetcher(
            product=self.product, version=self.collection, day_of_year=self.day_of_year
        )

        logger.info(f"GapFiller initialized with MODIS directory: {self.modis_dir}")

    def load_config(self, config_path: str):
        """Load configuration from environment file."""
        load_dotenv(dotenv_path=config_path)

        self.modis_dir = Path(os.getenv('MODIS_DIR', 'data/raw/modis_vcf'))
        self.product = os.getenv('MODIS_PRODUCT', 'MOD44B')
        self.collection = os.getenv('MODIS_COLLECTION', '061')
        self.day_of_year = int(os.getenv('MODIS_DAY_OF_YEAR', 65))
        self.subdataset = int(os.getenv('MODIS_SUBDATASET', 1))
        self.threshold = float(os.getenv('CLOUD_THRESHOLD', 0.005))
        self.mask_values = parse_mask_values(
            os.getenv('CLOUD_MASK_VALUES', ','.join(str(v) for v in DEFAULT_MASK_VALUES))
        )
        self.resampling = os.getenv('RESAMPLING', 'nearest')
        self.reference_nodata = int(os.getenv('REFERENCE_NODATA', 255))
        self.lock_timeout = float(os.getenv('LOCK_TIMEOUT', -1))

        logger.debug(f"Loaded config: product={self.product}.{self.collection}, "
                     f"threshold={self.threshold}, mask={self.mask_values}, resampling={self.resampling}")

    def gap_fraction(self, primary, alpha=None, mask_values: Optional[Sequence[float]] = None) -> float:
        """
        Fraction of gap cells in the primary raster or its alpha layer.

        Args:
            primary: Path to the Landsat raster
            alpha: Path to an alpha layer, or None / False
            mask_values: Gap values (defaults to config)

        Returns:
            Gap fraction
        """
        mask_values = self.mask_values if mask_values is None else tuple(mask_values)
        source, _ = _read_band(alpha if alpha else primary, "alpha" if alpha else "primary")
        return gap_fraction(source, mask_values)

    def fill_gaps(self, primary, threshold: Optional[float] = None, year: int = None,
                  modis_dir=None, alpha: Union[str, Path, bool, None] = None,
                  mask_values: Optional[Sequence[float]] = None, output_path=None,
                  **options) -> Union[Skipped, Filled]:
        """
        Fill the gaps of a Landsat VCF raster with MODIS VCF.

        Args:
            primary: Path to the Landsat raster
            threshold: Gap fraction [0,1] above which filling is performed
            year: Year of the data, selects the MOD44B granule
            modis_dir: Cache / download directory (defaults to config)
            alpha: Path to an alpha layer locating the gaps, or None / False
                to locate them in the primary raster itself
            mask_values: Gap values (defaults to 210, 211)
            output_path: Output filename, required when filling occurs
            **options: Extra rasterio profile entries for the output
                (e.g. compress='deflate', driver='GTiff')

        Returns:
            Skipped or Filled result

        Raises:
            ValueError: Invalid arguments
            CloudFillError: Any pipeline failure
        """
        threshold = self.threshold if threshold is None else threshold
        mask_values = self.mask_values if mask_values is None else tuple(mask_values)
        modis_dir = Path(modis_dir) if modis_dir is not None else self.modis_dir

        if not 0 <= threshold <= 1:
            raise ValueError(f"Threshold must be within [0, 1], got {threshold}")
        if len(mask_values) == 0:
            raise ValueError("At least one mask value is required")

        # Compare percentage
        data, profile = _read_band(primary, "primary")
        if alpha:
            source, _ = _read_band(alpha, "alpha")
            if source.shape != data.shape:
                raise InputUnreadableError(f"Alpha layer {alpha} shape {source.shape} does not "
                                           f"match primary shape {data.shape}")
        else:
            source = data

        fraction = gap_fraction(source, mask_values)
        if fraction <= threshold:
            result = Skipped(fraction=fraction, threshold=threshold)
            logger.info(result.message)
            return result

        if output_path is None:
            raise ValueError("output_path is required when cloud filling is performed")
        if year is None:
            raise ValueError("year is required when cloud filling is performed")

        logger.info(f"Cloud cover {fraction:.3f} above threshold {threshold:f}, filling {primary}")

        # Define MODIS tiles required
        crs, transform = profile['crs'], profile['transform']
        if crs is None:
            raise InputUnreadableError(f"Primary raster {primary} has no CRS")
        bounds = array_bounds(data.shape[0], data.shape[1], transform)
        tiles = get_tiles_for_bounds(bounds, crs)
        logger.info(f"Area covers {len(tiles)} tile(s), checking whether they already exist locally...")

        # Check if they already exist locally and download (if necessary)
        cache = GranuleCache(modis_dir, product=self.product, day_of_year=self.day_of_year,
                             lock_timeout=self.lock_timeout)
        lonlat = get_lonlat_bounds(bounds, crs)
        granules = [cache.get_or_fetch(year, tile, self.fetcher, lonlat) for tile in tiles]

        # Warp MODIS to Landsat
        reference = warp_to_grid(granules, crs, transform, data.shape[1], data.shape[0],
                                 subdataset=self.subdataset, resampling=self.resampling,
                                 dst_nodata=self.reference_nodata)

        # Perform value replacement
        gaps = gap_mask(source, mask_values)
        filled = overlay(data, reference, gaps, reference_nodata=self.reference_nodata)
        n_gaps = int(np.count_nonzero(gaps))
        unfilled = int(np.count_nonzero(gaps & (reference == self.reference_nodata)))
        if unfilled:
            logger.warning(f"{unfilled}/{n_gaps} gap cells not covered by MODIS, left unfilled")

        self.write_output(filled, profile, output_path, **options)

        result = Filled(
            input_path=str(primary),
            output_path=str(output_path),
            fraction=fraction,
            threshold=threshold,
            tiles=tiles,
            granules=[str(g) for g in granules],
            filled_cells=n_gaps - unfilled,
            unfilled_cells=unfilled,
        )
        logger.info(result.message)
        return result

    def write_output(self, data: np.ndarray, profile: dict, output_path, **options):
        """
        Write an unsigned 8-bit raster on the primary grid.

        The raster is written to a temporary file next to `output_path` and
        moved into place once complete.
        """
        output_path = Path(output_path)

        out_profile = profile.copy()
        out_profile.update({'driver': 'GTiff', 'count': 1})
        for key in ('blockxsize', 'blockysize', 'tiled', 'interleave'):
            out_profile.pop(key, None)
        out_profile.update(options)
        out_profile['dtype'] = 'uint8'

        data, out_profile['nodata'] = to_uint8(data, out_profile.get('nodata'))

        tmp_path = None
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(suffix=output_path.suffix or '.tif',
                                            prefix=f".{output_path.stem}.", dir=output_path.parent)
            os.close(fd)

            with rasterio.open(tmp_path, 'w', **out_profile) as dst:
                dst.write(data, 1)

            os.replace(tmp_path, output_path)
            tmp_path = None
        except (RasterioError, OSError) as e:
            raise WriteError(f"Cannot write {output_path}: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)

        logger.debug(f"Written: {output_path}")


def fill_gaps(primary, threshold: float, year: int, modis_dir, alpha=None,
              mask_values: Sequence[float] = DEFAULT_MASK_VALUES, output_path=None,
              fetcher=None, **options) -> Union[Skipped, Filled]:
    """
    Fill the gaps of a Landsat VCF raster with MODIS VCF.

    Convenience wrapper around GapFiller.fill_gaps with explicit arguments.
    """
    filler = GapFiller(modis_dir=modis_dir, fetcher=fetcher)
    return filler.fill_gaps(primary, threshold=threshold, year=year, alpha=alpha,
                            mask_values=mask_values, output_path=output_path, **options)


def try_fill_gaps(primary, threshold: float, year: int, modis_dir, alpha=None,
                  mask_values: Sequence[float] = DEFAULT_MASK_VALUES, output_path=None,
                  filler: Optional[GapFiller] = None, **options) -> Union[Skipped, Filled, Failed]:
    """
    Like fill_gaps, but pipeline failures come back as a Failed result.

    ValueError (bad arguments) still propagates.
    """
    filler = filler or GapFiller(modis_dir=modis_dir)
    try:
        return filler.fill_gaps(primary, threshold=threshold, year=year, modis_dir=modis_dir,
                                alpha=alpha, mask_values=mask_values,
                                output_path=output_path, **options)
    except CloudFillError as e:
        logger.error(f"Cloud filling failed for {primary}: {e}")
        return Failed(error_kind=e.kind, detail=str(e), input_path=str(primary))
