"""
Unit tests for tile URL families, download-or-reuse and request coalescing
"""

import os
import sys
import threading
import time
from unittest.mock import Mock, patch

import pytest
import requests

project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.geo import tile_bounds
from common.types import RasterKind, TileCoordinate
from tiles.fetcher import DONE, FetchError, RequestCoalescer, TileFetcher, fetch_or_reuse
from tiles.providers import TileProviders, mirror_x


def _ok(content=b"raster-bytes"):
    r = Mock()
    r.status_code = 200
    r.content = content
    return r


class TestTileProviders:
    """Test cases for URL/filename templates"""

    def test_imagery_request(self, tmp_path):
        p = TileProviders(cache_root=str(tmp_path))
        req = p.imagery(TileCoordinate(170, 396, 10))
        assert req.url == (
            "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/10/396/170"
        )
        assert req.local_path == tmp_path / "imagery_170_396_10.jpeg"
        assert req.kind == RasterKind.IMAGERY

    def test_opentopography_request(self, tmp_path):
        p = TileProviders(cache_root=str(tmp_path), api_key=None)
        p.api_key = None
        req = p.elevation(TileCoordinate(1, 1, 2))
        west, south, east, north = tile_bounds(1, 1, 2)
        assert req.url == (
            "https://portal.opentopography.org/API/globaldem?demtype=SRTMGL1"
            f"&west=-90&east=0&south=0&north={north!r}&outputFormat=GTiff"
        )
        assert req.local_path == tmp_path / "topo_1_1_2.tiff"

    def test_opentopography_api_key_appended(self, tmp_path):
        p = TileProviders(cache_root=str(tmp_path), api_key="k123")
        assert p.elevation(TileCoordinate(0, 0, 0)).url.endswith("&outputFormat=GTiff&API_Key=k123")

    def test_arcgis_lerc_request(self, tmp_path):
        p = TileProviders(cache_root=str(tmp_path), elevation_source="arcgis_lerc")
        req = p.elevation(TileCoordinate(5, 7, 4))
        assert req.url == (
            "https://services.arcgisonline.com/arcgis/rest/services/WorldElevation3D/Terrain3D/ImageServer/tile/4/7/5"
        )
        assert req.local_path == tmp_path / "topo_5_7_4.lerc"
        assert p.native_elevation_size == 257

    def test_unknown_elevation_source(self):
        with pytest.raises(ValueError, match="elevation_source"):
            TileProviders(elevation_source="srtm_zip")

    def test_mirror_x(self):
        assert mirror_x(0, 3) == 7
        assert mirror_x(7, 3) == 0
        assert mirror_x(2, 3) == 5


class TestFetchOrReuse:
    """Test cases for fetch_or_reuse"""

    @patch("tiles.fetcher.requests.get")
    def test_downloads_then_reuses(self, mock_get, tmp_path):
        """Second call against a cached path makes no network call"""
        mock_get.return_value = _ok(b"abc")
        target = tmp_path / "sub" / "imagery_1_2_3.jpeg"

        assert fetch_or_reuse("https://example/tile", target) == str(target)
        assert target.read_bytes() == b"abc"
        assert mock_get.call_count == 1
        _, kwargs = mock_get.call_args
        assert kwargs["headers"] == {"Referer": "https://www.google.com/maps"}

        assert fetch_or_reuse("https://example/tile", target) == str(target)
        assert mock_get.call_count == 1

    @patch("tiles.fetcher.requests.get")
    def test_existing_file_never_revalidated(self, mock_get, tmp_path):
        target = tmp_path / "topo.tiff"
        target.write_bytes(b"partial")
        assert fetch_or_reuse("https://example/x", target) == str(target)
        mock_get.assert_not_called()
        assert target.read_bytes() == b"partial"

    @patch("tiles.fetcher.requests.get")
    def test_http_error_caches_nothing(self, mock_get, tmp_path):
        r = Mock()
        r.status_code = 404
        r.content = b"not found"
        mock_get.return_value = r
        target = tmp_path / "imagery.jpeg"
        with pytest.raises(FetchError, match="404"):
            fetch_or_reuse("https://example/missing", target)
        assert not target.exists()

    @patch("tiles.fetcher.requests.get")
    def test_transport_error(self, mock_get, tmp_path):
        mock_get.side_effect = requests.ConnectionError("no route")
        target = tmp_path / "imagery.jpeg"
        with pytest.raises(FetchError, match="no route"):
            fetch_or_reuse("https://example/down", target)
        assert not target.exists()

    def test_uses_session_when_given(self, tmp_path):
        session = Mock()
        session.get.return_value = _ok()
        fetch_or_reuse("https://example/s", tmp_path / "a.jpeg", session=session, referer="https://r", timeout=3.0)
        session.get.assert_called_once_with("https://example/s", headers={"Referer": "https://r"}, timeout=3.0)


class TestRequestCoalescer:
    """Test cases for per-key request coalescing"""

    def test_concurrent_callers_share_one_call(self):
        co = RequestCoalescer()
        gate = threading.Event()
        calls = []

        def slow():
            calls.append(1)
            gate.wait(5.0)
            return "path.tiff"

        results = []
        threads = [threading.Thread(target=lambda: results.append(co.run("k", slow))) for _ in range(8)]
        for t in threads:
            t.start()
        time.sleep(0.1)
        gate.set()
        for t in threads:
            t.join(5.0)

        assert len(calls) == 1
        assert results == ["path.tiff"] * 8
        assert co.status("k") == DONE

    def test_failure_is_forgotten(self):
        co = RequestCoalescer()

        def boom():
            raise FetchError("down")

        with pytest.raises(FetchError):
            co.run("k", boom)
        assert co.status("k") is None
        assert co.run("k", lambda: "ok") == "ok"

    def test_waiters_see_failure(self):
        co = RequestCoalescer()
        gate = threading.Event()

        def failing():
            gate.wait(5.0)
            raise FetchError("down")

        errors = []

        def call():
            try:
                co.run("k", failing)
            except FetchError as e:
                errors.append(e)

        threads = [threading.Thread(target=call) for _ in range(4)]
        for t in threads:
            t.start()
        time.sleep(0.1)
        gate.set()
        for t in threads:
            t.join(5.0)
        # late arrivals (after the failure was forgotten) run `failing` themselves
        assert len(errors) == 4

    def test_interrupted_owner_releases_waiters(self):
        """A KeyboardInterrupt in the owner still wakes blocked callers"""
        co = RequestCoalescer()
        errors = []

        def waiter():
            try:
                co.run("k", lambda: "should not run")
            except FetchError as e:
                errors.append(e)

        t = threading.Thread(target=waiter)

        def interrupted():
            t.start()
            time.sleep(0.1)
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            co.run("k", interrupted)
        t.join(5.0)

        assert not t.is_alive()
        assert len(errors) == 1
        assert co.status("k") is None

    def test_distinct_keys_independent(self):
        co = RequestCoalescer()
        assert co.run(("a", 1), lambda: "x") == "x"
        assert co.run(("b", 1), lambda: "y") == "y"


class TestTileFetcher:
    """Test cases for TileFetcher"""

    @patch("tiles.fetcher.requests.get")
    def test_fetch_writes_cache_file_once(self, mock_get, tmp_path):
        mock_get.return_value = _ok(b"jpeg")
        fetcher = TileFetcher(TileProviders(cache_root=str(tmp_path)))
        coord = TileCoordinate(170, 396, 10)

        p1 = fetcher.imagery(coord)
        p2 = fetcher.imagery(coord)
        assert p1 == p2 == str(tmp_path / "imagery_170_396_10.jpeg")
        assert mock_get.call_count == 1

    @patch("tiles.fetcher.requests.get")
    def test_fetch_failure_raises(self, mock_get, tmp_path):
        mock_get.side_effect = requests.Timeout("slow")
        fetcher = TileFetcher(TileProviders(cache_root=str(tmp_path)))
        with pytest.raises(FetchError):
            fetcher.elevation(TileCoordinate(0, 0, 1))
        assert list(tmp_path.iterdir()) == []

    def test_from_config(self, tmp_path):
        cfg = {"tiles": {"cache_root": str(tmp_path), "elevation_source": "arcgis_lerc", "timeout_s": 5}}
        fetcher = TileFetcher.from_config(cfg)
        assert fetcher.timeout == 5.0
        assert fetcher.providers.elevation_source == "arcgis_lerc"
        assert fetcher.session is None
        assert fetcher.session_per_thread is True

    def test_one_session_per_thread(self, tmp_path):
        fetcher = TileFetcher.from_config({"tiles": {"cache_root": str(tmp_path)}})
        main = fetcher.current_session()
        assert isinstance(main, requests.Session)
        assert fetcher.current_session() is main

        seen = []
        t = threading.Thread(target=lambda: seen.append(fetcher.current_session()))
        t.start()
        t.join(5.0)
        assert len(seen) == 1
        assert isinstance(seen[0], requests.Session)
        assert seen[0] is not main

    def test_pool_threads_download_through_own_session(self, tmp_path):
        fetcher = TileFetcher(TileProviders(cache_root=str(tmp_path)), session_per_thread=True)
        used = []

        def fake_get(self, url, **kwargs):
            used.append(self)
            return _ok(b"jpeg")

        with patch.object(requests.Session, "get", fake_get):
            threads = [
                threading.Thread(target=fetcher.imagery, args=(TileCoordinate(i, 0, 3),)) for i in range(3)
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join(5.0)

        assert len(used) == 3
        assert len({id(s) for s in used}) == 3

    def test_shared_session_when_given(self, tmp_path):
        session = Mock()
        fetcher = TileFetcher(TileProviders(cache_root=str(tmp_path)), session=session, session_per_thread=True)
        assert fetcher.current_session() is session
