"""
MODIS VCF Granule Cache and Fetcher

Keeps MOD44B granules in a local directory and downloads missing ones from
NASA Earthdata with earthaccess. The directory is searched recursively, so
granules already organised in sub-folders (e.g. by year) are reused as-is.

Requires NASA Earthdata credentials (~/.netrc or EARTHDATA_USERNAME /
EARTHDATA_PASSWORD environment variables) for downloads.

Author: CloudFill Team
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, List, Tuple

import earthaccess
from filelock import FileLock, Timeout

from cloudfill.errors import AcquisitionError

logger = logging.getLogger(__name__)


class GranuleCache:
    """
    Directory-backed cache of reference granules keyed by (product, year, tile).

    Lookups go through `manifest.json` at the cache root and fall back to a
    recursive filename search when the manifest has no live entry.
    """

    def __init__(self, reference_dir, product: str = "MOD44B", day_of_year: int = 65,
                 lock_timeout: float = -1):
        """
        Initialize granule cache.

        Args:
            reference_dir: Directory holding (or receiving) granules
            product: MODIS product short name
            day_of_year: Acquisition day encoded in granule names (065 for MOD44B)
            lock_timeout: Seconds to wait for a tile lock, -1 waits forever
        """
        self.reference_dir = Path(reference_dir)
        self.product = product
        self.day_of_year = day_of_year
        self.lock_timeout = lock_timeout
        self.manifest_path = self.reference_dir / "manifest.json"
        self.lock_dir = self.reference_dir / ".locks"

        self.reference_dir.mkdir(parents=True, exist_ok=True)
        self.lock_dir.mkdir(exist_ok=True)

    def date_code(self, year: int) -> str:
        return f"A{year}{self.day_of_year:03d}"

    def pattern(self, year: int, tile: str) -> str:
        """Filename glob for a granule, e.g. '*MOD44B.A2000065.h09v07.*.hdf'."""
        return f"*{self.product}.{self.date_code(year)}.{tile}.*.hdf"

    def key(self, year: int, tile: str) -> str:
        return f"{self.product}.{year}.{tile}"

    def lock(self, year: int, tile: str) -> FileLock:
        """Inter-process lock for one granule key."""
        return FileLock(str(self.lock_dir / f"{self.key(year, tile)}.lock"),
                        timeout=self.lock_timeout)

    def load_manifest(self) -> dict:
        if not self.manifest_path.exists():
            return {'dataset': self.product, 'files': {}}
        with open(self.manifest_path, 'r') as f:
            return json.load(f)

    def _save_manifest(self, manifest: dict):
        tmp_path = self.manifest_path.with_suffix(".json.tmp")
        with open(tmp_path, 'w') as f:
            json.dump(manifest, f, indent=2)
        os.replace(tmp_path, self.manifest_path)

    def scan(self, year: int, tile: str) -> List[Path]:
        """All files under the cache matching the granule pattern, sorted by name."""
        return sorted(p for p in self.reference_dir.rglob(self.pattern(year, tile)) if p.is_file())

    def find(self, year: int, tile: str) -> Optional[Path]:
        """
        Locate a cached granule.

        Args:
            year: Acquisition year
            tile: MODIS tile identifier

        Returns:
            Path to the granule or None if absent. With several matches the
            last by name (latest collection / production date) is returned.
        """
        entry = self.load_manifest()['files'].get(self.key(year, tile))
        if entry:
            path = self.reference_dir / entry['path']
            if path.is_file():
                return path
            logger.debug(f"Stale manifest entry for {self.key(year, tile)}: {path}")

        matches = self.scan(year, tile)
        if not matches:
            return None

        granule = matches[-1]
        self.register(year, tile, granule)
        return granule

    def register(self, year: int, tile: str, path: Path):
        """Record a granule in the manifest."""
        path = Path(path).resolve()
        root = self.reference_dir.resolve()
        # Paths outside the cache root are stored absolute
        stored = path.relative_to(root) if root in path.parents else path

        with FileLock(str(self.lock_dir / "manifest.lock"), timeout=self.lock_timeout):
            manifest = self.load_manifest()
            manifest['files'][self.key(year, tile)] = {
                'filename': path.name,
                'path': str(stored),
                'year': year,
                'tile': tile,
                'size_mb': path.stat().st_size / (1024 * 1024)
            }
            self._save_manifest(manifest)

    def get_or_fetch(self, year: int, tile: str, fetcher, bounding_box=None) -> Path:
        """
        Return the cached granule, downloading it first if needed.

        The existence check and the download run under the key's lock, so
        concurrent callers fetch each granule once.

        Args:
            year: Acquisition year
            tile: MODIS tile identifier
            fetcher: Object with fetch(year, tile, dest, bounding_box) -> Path
            bounding_box: Optional (west, south, east, north) to narrow the search

        Returns:
            Path to the granule
        """
        granule = self.find(year, tile)
        if granule is not None:
            logger.info(f"✓ {tile} {year} found locally: {granule.name}")
            return granule

        try:
            with self.lock(year, tile):
                # Another process may have finished the download while we waited
                granule = self.find(year, tile)
                if granule is not None:
                    logger.info(f"✓ {tile} {year} downloaded by another process: {granule.name}")
                    return granule

                logger.info(f"{tile} {year} not found under {self.reference_dir}, downloading...")
                granule = Path(fetcher.fetch(year, tile, self.reference_dir, bounding_box))
        except Timeout as e:
            raise AcquisitionError(f"Timed out waiting for lock on {self.key(year, tile)}") from e

        self.register(year, tile, granule)
        return granule


class MOD44BFetcher:
    """
    Downloads MODIS VCF (MOD44B) granules from NASA Earthdata.

    Failures are raised as AcquisitionError; there is no retry.
    """

    def __init__(self, product: str = "MOD44B", version: str = "061", day_of_year: int = 65):
        self.product = product
        self.version = version
        self.day_of_year = day_of_year
        self.authenticated = False

    def login(self):
        """Authenticate with NASA Earthdata (once per fetcher)."""
        if self.authenticated:
            return

        try:
            auth = earthaccess.login()
        except Exception as e:
            raise AcquisitionError(f"Earthdata authentication error: {e}") from e

        if not auth or not getattr(auth, 'authenticated', False):
            raise AcquisitionError(
                "Failed to authenticate with NASA Earthdata. Provide ~/.netrc "
                "or EARTHDATA_USERNAME / EARTHDATA_PASSWORD."
            )

        logger.info("✓ Successfully authenticated with NASA Earthdata")
        self.authenticated = True

    def search(self, year: int, tile: str, bounding_box: Optional[Tuple[float, float, float, float]] = None) -> list:
        """
        Search Earthdata for the granule of one tile and year.

        Args:
            year: Acquisition year
            tile: MODIS tile identifier
            bounding_box: Optional (west, south, east, north)

        Returns:
            Matching earthaccess granule results
        """
        date_code = f"A{year}{self.day_of_year:03d}"
        query = {
            'short_name': self.product,
            'version': self.version,
            'temporal': (f"{year}-01-01", f"{year}-12-31"),
            'granule_name': f"{self.product}.{date_code}.{tile}.*",
            'count': 100,
        }
        if bounding_box is not None:
            query['bounding_box'] = tuple(bounding_box)

        try:
            results = earthaccess.search_data(**query)
        except Exception as e:
            raise AcquisitionError(f"Error searching {self.product} {year} {tile}: {e}") from e

        # Annual granules overlap two calendar years; keep the one named for `year`
        filtered = []
        for result in results:
            granule_name = result['umm']['GranuleUR']
            if tile in granule_name and date_code in granule_name:
                filtered.append(result)

        logger.info(f"Found {len(results)} total, filtered to {len(filtered)} "
                    f"{self.product} granules for {tile} {date_code}")
        return filtered

    def fetch(self, year: int, tile: str, dest, bounding_box=None) -> Path:
        """
        Download the granule of one tile and year into `dest`.

        Returns:
            Path to the downloaded HDF file
        """
        self.login()

        results = self.search(year, tile, bounding_box)
        if not results:
            raise AcquisitionError(f"No {self.product} granule available for {tile} in {year}")

        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)

        try:
            logger.info(f"Downloading {self.product} granule for {tile} {year}...")
            downloaded = earthaccess.download(results[:1], local_path=str(dest))
        except Exception as e:
            raise AcquisitionError(f"Download failed for {tile} {year}: {e}") from e

        files = [Path(p) for p in (downloaded or []) if str(p).endswith('.hdf')]
        if not files:
            raise AcquisitionError(f"Download returned no HDF file for {tile} {year}")

        logger.info(f"✓ Downloaded {files[0].name}")
        return files[0]
