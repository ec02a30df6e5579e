"""
Shared fixtures for cloud filling tests.

Builds small synthetic Landsat VCF rasters and MOD44B-like granules (plain
GeoTIFFs named like MODIS HDF granules) so no test touches the network.
"""

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from cloudfill.modis_tiles import get_tiles_for_bounds


# ---------------------------------------------------------------------------
# Synthetic geometry: 100 x 100 Landsat grid (30 m) in UTM 16N, over Belize
# ---------------------------------------------------------------------------
CRS = "EPSG:32616"
ORIGIN_X, ORIGIN_Y = 300000.0, 1900000.0
RES = 30.0
SIZE = 100
TRANSFORM = from_origin(ORIGIN_X, ORIGIN_Y, RES, RES)
BOUNDS = (ORIGIN_X, ORIGIN_Y - SIZE * RES, ORIGIN_X + SIZE * RES, ORIGIN_Y)

YEAR = 2000
MODIS_VALUE = 42


def write_raster(path, array, transform=TRANSFORM, crs=CRS, nodata=None, dtype=None):
    """Write a single-band GeoTIFF."""
    dtype = dtype or array.dtype
    with rasterio.open(
        path, 'w', driver='GTiff', height=array.shape[0], width=array.shape[1],
        count=1, dtype=dtype, crs=crs, transform=transform, nodata=nodata
    ) as dst:
        dst.write(array.astype(dtype), 1)
    return path


def vcf_array(seed=0):
    """Tree cover values 0-100, no gaps."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 101, size=(SIZE, SIZE)).astype(np.uint8)


def granule_name(tile, year=YEAR):
    return f"MOD44B.A{year}065.{tile}.061.2020000000000.hdf"


@pytest.fixture
def tile():
    """MODIS tile covering the synthetic grid."""
    tiles = get_tiles_for_bounds(BOUNDS, CRS)
    assert len(tiles) == 1
    return tiles[0]


@pytest.fixture
def make_primary(tmp_path):
    """Factory writing a Landsat VCF raster with given gap cells."""
    def _make(name="landsat_vcf.tif", gaps=None, value=210, array=None):
        data = vcf_array() if array is None else array.copy()
        if gaps is not None:
            data.flat[gaps] = value
        return write_raster(tmp_path / name, data)
    return _make


@pytest.fixture
def modis_dir(tmp_path):
    path = tmp_path / "modis"
    path.mkdir()
    return path


@pytest.fixture
def make_granule(modis_dir):
    """Factory writing a constant MOD44B-like granule covering the grid."""
    def _make(tile, year=YEAR, value=MODIS_VALUE, subdir=None, transform=None, size=40, shape=None):
        # 250 m cells, 10 km square around the Landsat grid
        transform = transform or from_origin(ORIGIN_X - 3000, ORIGIN_Y + 3000, 250, 250)
        folder = modis_dir / subdir if subdir else modis_dir
        folder.mkdir(parents=True, exist_ok=True)
        data = np.full(shape or (size, size), value, dtype=np.uint8)
        return write_raster(folder / granule_name(tile, year), data, transform=transform, nodata=253)
    return _make


class FakeFetcher:
    """Granule fetcher that writes a local granule instead of downloading."""

    def __init__(self, make_granule=None, fail=False):
        self.make_granule = make_granule
        self.fail = fail
        self.calls = []

    def fetch(self, year, tile, dest, bounding_box=None):
        from cloudfill.errors import AcquisitionError

        self.calls.append((year, tile))
        if self.fail:
            raise AcquisitionError(f"No MOD44B granule available for {tile} in {year}")
        return self.make_granule(tile, year=year)


class ForbiddenFetcher:
    """Fetcher that must never be called."""

    def fetch(self, *args, **kwargs):
        raise AssertionError("acquisition should not happen")


@pytest.fixture
def fake_fetcher(make_granule):
    return FakeFetcher(make_granule)


@pytest.fixture
def failing_fetcher():
    return FakeFetcher(fail=True)


@pytest.fixture
def forbidden_fetcher():
    return ForbiddenFetcher()


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep user .env / environment settings out of the tests."""
    for var in ('MODIS_DIR', 'MODIS_PRODUCT', 'MODIS_COLLECTION', 'MODIS_DAY_OF_YEAR',
                'MODIS_SUBDATASET', 'CLOUD_THRESHOLD', 'CLOUD_MASK_VALUES', 'RESAMPLING',
                'REFERENCE_NODATA', 'LOCK_TIMEOUT'):
        # setenv first so values loaded by dotenv during the test get removed afterwards
        monkeypatch.setenv(var, '')
        monkeypatch.delenv(var)
    monkeypatch.chdir(tmp_path)
