"""
Warp MODIS to Landsat

Resamples one or more MODIS granules onto the exact grid (CRS, transform,
shape) of a Landsat raster.

Author: CloudFill Team
"""

import logging
from pathlib import Path
from typing import List, Union

import numpy as np
import rasterio
from rasterio.errors import RasterioError
from rasterio.warp import reproject, Resampling

from cloudfill.errors import AcquisitionError, AlignmentError

logger = logging.getLogger(__name__)

RESAMPLING = {
    'nearest': Resampling.nearest,
    'bilinear': Resampling.bilinear,
    'cubic': Resampling.cubic,
    'average': Resampling.average,
    'mode': Resampling.mode,
}


def resolve_subdataset(path: Union[str, Path], subdataset: int = 1) -> str:
    """
    Dataset name to read from a granule.

    HDF-EOS granules expose their layers as subdatasets; `subdataset` is the
    1-based index (1 = Percent_Tree_Cover for MOD44B). Files without
    subdatasets are read directly.

    Args:
        path: Granule path
        subdataset: 1-based subdataset index

    Returns:
        Name accepted by rasterio.open
    """
    try:
        with rasterio.open(path) as container:
            subdatasets = container.subdatasets
    except RasterioError as e:
        raise AcquisitionError(f"Cannot open granule {path}: {e}") from e

    if not subdatasets:
        return str(path)

    if not 1 <= subdataset <= len(subdatasets):
        raise AlignmentError(f"Granule {Path(path).name} has {len(subdatasets)} subdatasets, "
                             f"requested {subdataset}")

    return subdatasets[subdataset - 1]


def warp_to_grid(granules: List[Union[str, Path]], crs, transform, width: int, height: int,
                 subdataset: int = 1, resampling: str = 'nearest',
                 dst_nodata: int = 255) -> np.ndarray:
    """
    Mosaic granules onto a target grid.

    Granules are warped in order into one uint8 array; a cell written by an
    earlier granule is only overwritten by valid data of a later one.

    Args:
        granules: Granule paths (one per tile)
        crs: Target CRS
        transform: Target affine transform
        width: Target width in cells
        height: Target height in cells
        subdataset: 1-based subdataset index inside HDF granules
        resampling: Name of a resampling method in RESAMPLING
        dst_nodata: Value of cells no granule covers

    Returns:
        uint8 array of shape (height, width)
    """
    if resampling not in RESAMPLING:
        raise ValueError(f"Unknown resampling method: {resampling}. Choose from {sorted(RESAMPLING)}")
    if not granules:
        raise AlignmentError("No granules to warp")

    destination = np.full((height, width), dst_nodata, dtype=np.uint8)

    for granule in granules:
        name = resolve_subdataset(granule, subdataset)
        logger.debug(f"Warping {name}")

        try:
            with rasterio.open(name) as src:
                reproject(
                    source=rasterio.band(src, 1),
                    destination=destination,
                    src_transform=src.transform,
                    src_crs=src.crs,
                    src_nodata=src.nodata,
                    dst_transform=transform,
                    dst_crs=crs,
                    dst_nodata=dst_nodata,
                    resampling=RESAMPLING[resampling],
                    init_dest_nodata=False,
                )
        except Exception as e:
            raise AlignmentError(f"Warping {Path(granule).name} failed: {e}") from e

    valid = int(np.count_nonzero(destination != dst_nodata))
    if valid == 0:
        raise AlignmentError("MODIS granules do not overlap the target grid")

    logger.info(f"Warped {len(granules)} granule(s) to {width}x{height} grid, "
                f"{valid}/{destination.size} cells covered")
    return destination
