"""
Tests for the MOD44B granule cache and Earthdata fetcher.

earthaccess is monkeypatched throughout; nothing is downloaded.
"""

import json
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest

from cloudfill import granules
from cloudfill.errors import AcquisitionError
from cloudfill.granules import GranuleCache, MOD44BFetcher

from conftest import FakeFetcher, ForbiddenFetcher, granule_name


class TestGranuleCache:

    def test_pattern(self, modis_dir):
        cache = GranuleCache(modis_dir)
        assert cache.pattern(2000, 'h09v07') == '*MOD44B.A2000065.h09v07.*.hdf'

    def test_missing(self, modis_dir):
        assert GranuleCache(modis_dir).find(2000, 'h09v07') is None

    def test_finds_nested_granule(self, modis_dir):
        nested = modis_dir / 'MOD44B' / '2000'
        nested.mkdir(parents=True)
        path = nested / granule_name('h09v07')
        path.write_bytes(b'hdf')

        assert GranuleCache(modis_dir).find(2000, 'h09v07') == path

    def test_other_year_or_tile_ignored(self, modis_dir):
        (modis_dir / granule_name('h09v07', year=2001)).write_bytes(b'hdf')
        (modis_dir / granule_name('h10v07')).write_bytes(b'hdf')

        assert GranuleCache(modis_dir).find(2000, 'h09v07') is None

    def test_latest_production_wins(self, modis_dir):
        old = modis_dir / 'MOD44B.A2000065.h09v07.006.2017000000000.hdf'
        new = modis_dir / 'MOD44B.A2000065.h09v07.061.2020000000000.hdf'
        old.write_bytes(b'hdf')
        new.write_bytes(b'hdf')

        assert GranuleCache(modis_dir).find(2000, 'h09v07') == new

    def test_manifest_records_hit(self, modis_dir):
        (modis_dir / granule_name('h09v07')).write_bytes(b'hdf')
        GranuleCache(modis_dir).find(2000, 'h09v07')

        manifest = json.loads((modis_dir / 'manifest.json').read_text())
        entry = manifest['files']['MOD44B.2000.h09v07']
        assert entry['filename'] == granule_name('h09v07')
        assert entry['tile'] == 'h09v07'
        assert entry['year'] == 2000

    def test_stale_manifest_entry_rescans(self, modis_dir):
        first = modis_dir / granule_name('h09v07')
        first.write_bytes(b'hdf')
        cache = GranuleCache(modis_dir)
        cache.find(2000, 'h09v07')

        first.unlink()
        moved = modis_dir / 'archive' / granule_name('h09v07')
        moved.parent.mkdir()
        moved.write_bytes(b'hdf')

        assert cache.find(2000, 'h09v07') == moved

    def test_cache_hit_skips_fetch(self, modis_dir):
        path = modis_dir / granule_name('h09v07')
        path.write_bytes(b'hdf')

        assert GranuleCache(modis_dir).get_or_fetch(2000, 'h09v07', ForbiddenFetcher()) == path

    def test_miss_fetches_once(self, modis_dir, make_granule):
        fetcher = FakeFetcher(make_granule)
        cache = GranuleCache(modis_dir)

        first = cache.get_or_fetch(2000, 'h09v07', fetcher)
        second = cache.get_or_fetch(2000, 'h09v07', fetcher)

        assert first == second
        assert fetcher.calls == [(2000, 'h09v07')]

    def test_fetch_failure_propagates(self, modis_dir, failing_fetcher):
        with pytest.raises(AcquisitionError):
            GranuleCache(modis_dir).get_or_fetch(2000, 'h09v07', failing_fetcher)

    def test_lock_is_per_key(self, modis_dir):
        cache = GranuleCache(modis_dir)
        assert cache.lock(2000, 'h09v07').lock_file != cache.lock(2000, 'h10v07').lock_file

    def test_waiter_reuses_granule_downloaded_under_lock(self, modis_dir):
        cache = GranuleCache(modis_dir)
        checked = threading.Event()
        find = cache.find
        calls = []

        def tracking_find(year, tile):
            found = find(year, tile)
            calls.append(found)
            checked.set()
            return found

        cache.find = tracking_find
        outcome = {}

        def worker():
            try:
                outcome['path'] = cache.get_or_fetch(2000, 'h09v07', ForbiddenFetcher())
            except BaseException as e:
                outcome['error'] = e

        with cache.lock(2000, 'h09v07'):
            thread = threading.Thread(target=worker)
            thread.start()
            assert checked.wait(timeout=10)
            # the other process finishes its download while holding the lock
            path = modis_dir / granule_name('h09v07')
            path.write_bytes(b'hdf')
        thread.join(timeout=10)

        assert not thread.is_alive()
        assert 'error' not in outcome
        assert outcome['path'] == path
        assert calls == [None, path]


def _result(granule_ur):
    return {'umm': {'GranuleUR': granule_ur}}


class TestMOD44BFetcher:

    @pytest.fixture
    def earthaccess(self, monkeypatch):
        state = SimpleNamespace(search_kwargs=None, downloaded=None, results=[], authenticated=True)

        def login():
            return SimpleNamespace(authenticated=state.authenticated)

        def search_data(**kwargs):
            state.search_kwargs = kwargs
            return state.results

        def download(results, local_path):
            state.downloaded = results
            paths = []
            for result in results:
                path = Path(local_path) / (result['umm']['GranuleUR'].split(':')[-1] + '.hdf')
                path.write_bytes(b'hdf')
                paths.append(str(path))
            return paths

        monkeypatch.setattr(granules.earthaccess, 'login', login)
        monkeypatch.setattr(granules.earthaccess, 'search_data', search_data)
        monkeypatch.setattr(granules.earthaccess, 'download', download)
        return state

    def test_search_filters_tile_and_year(self, earthaccess):
        earthaccess.results = [
            _result('LPDAAC_ECS:MOD44B.A1999065.h09v07.061.2020000000000'),
            _result('LPDAAC_ECS:MOD44B.A2000065.h10v07.061.2020000000000'),
            _result('LPDAAC_ECS:MOD44B.A2000065.h09v07.061.2020000000000'),
        ]

        found = MOD44BFetcher().search(2000, 'h09v07', bounding_box=(-89, 17, -88, 18))

        assert [r['umm']['GranuleUR'] for r in found] == [
            'LPDAAC_ECS:MOD44B.A2000065.h09v07.061.2020000000000'
        ]
        assert earthaccess.search_kwargs['short_name'] == 'MOD44B'
        assert earthaccess.search_kwargs['version'] == '061'
        assert earthaccess.search_kwargs['bounding_box'] == (-89, 17, -88, 18)

    def test_search_without_bounding_box_names_tile(self, earthaccess):
        MOD44BFetcher().search(2000, 'h09v07')

        assert earthaccess.search_kwargs['granule_name'] == 'MOD44B.A2000065.h09v07.*'
        assert 'bounding_box' not in earthaccess.search_kwargs

    def test_fetch_downloads_into_dest(self, earthaccess, modis_dir):
        earthaccess.results = [_result('LPDAAC_ECS:MOD44B.A2000065.h09v07.061.2020000000000')]

        path = MOD44BFetcher().fetch(2000, 'h09v07', modis_dir)

        assert path == modis_dir / 'MOD44B.A2000065.h09v07.061.2020000000000.hdf'
        assert path.exists()

    def test_fetch_nothing_available(self, earthaccess, modis_dir):
        with pytest.raises(AcquisitionError, match='No MOD44B granule'):
            MOD44BFetcher().fetch(2000, 'h09v07', modis_dir)

    def test_login_failure(self, earthaccess, modis_dir):
        earthaccess.authenticated = False
        with pytest.raises(AcquisitionError, match='authenticate'):
            MOD44BFetcher().fetch(2000, 'h09v07', modis_dir)

    def test_download_error_wrapped(self, earthaccess, monkeypatch, modis_dir):
        earthaccess.results = [_result('LPDAAC_ECS:MOD44B.A2000065.h09v07.061.2020000000000')]

        def broken(results, local_path):
            raise ConnectionError('connection reset')

        monkeypatch.setattr(granules.earthaccess, 'download', broken)
        with pytest.raises(AcquisitionError, match='connection reset'):
            MOD44BFetcher().fetch(2000, 'h09v07', modis_dir)

    def test_cache_with_fetcher(self, earthaccess, modis_dir):
        earthaccess.results = [_result('LPDAAC_ECS:MOD44B.A2000065.h09v07.061.2020000000000')]
        cache = GranuleCache(modis_dir)

        path = cache.get_or_fetch(2000, 'h09v07', MOD44BFetcher())

        assert cache.find(2000, 'h09v07') == path
