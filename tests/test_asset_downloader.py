"""
Tests for asset resolution and downloading.

HTTP is served by httpx.MockTransport; storage is a LocalStorageService on a
temp directory, which hands out plain URLs under http://assets.test/storage.
"""

import os

import httpx
import pytest

from conftest import ASSET_ID_A, ASSET_ID_B, make_element
from timeline_export.exceptions import AssetResolutionError
from timeline_export.render.timeline import ExternalAsset
from timeline_export.services.asset_catalog import InMemoryAssetCatalog
from timeline_export.services.asset_downloader import AssetDownloader, extension_from_url
from timeline_export.services.asset_resolver import AssetResolver
from timeline_export.services.retry import RetryPolicy
from timeline_export.services.storage_service import LocalStorageService

BASE_URL = "http://assets.test/storage"


class Server:
    """Maps URL paths to handlers and counts requests per path."""

    def __init__(self, routes):
        self.routes = routes
        self.calls: dict[str, int] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls[path] = self.calls.get(path, 0) + 1
        handler = self.routes.get(path)
        if handler is None:
            return httpx.Response(404)
        if callable(handler):
            return handler(request)
        # Fresh response per request; a consumed stream cannot be replayed
        return httpx.Response(handler.status_code, content=handler.content)


@pytest.fixture
def storage(tmp_path):
    return LocalStorageService(base_path=str(tmp_path / "storage"), base_url=BASE_URL)


@pytest.fixture
def catalog():
    return InMemoryAssetCatalog(
        {ASSET_ID_A: "assets/user/clip-a.mp4", ASSET_ID_B: "assets/user/music.mp3"}
    )


@pytest.fixture
def resolver(catalog, storage):
    return AssetResolver(catalog, storage, url_expiration_minutes=60)


@pytest.fixture
def dest_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return str(path)


def make_downloader(resolver, server, max_size_bytes=10_000):
    return AssetDownloader(
        resolver,
        policy=RetryPolicy(max_attempts=3, initial_delay=0, max_delay=0),
        timeout_seconds=5,
        max_size_bytes=max_size_bytes,
        transport=httpx.MockTransport(server),
    )


class TestExtensionFromUrl:
    @pytest.mark.parametrize(
        "url,ext",
        [
            ("https://cdn.test/a/clip.MOV?sig=1", ".mov"),
            ("https://cdn.test/a/song.mp3", ".mp3"),
            ("https://cdn.test/a/noext", ".mp4"),
            ("https://cdn.test/a/weird.x?y", ".x"),
            ("https://cdn.test/a/file.toolongext", ".mp4"),
        ],
    )
    def test_extension(self, url, ext):
        assert extension_from_url(url) == ext


class TestAssetResolver:
    @pytest.mark.asyncio
    async def test_internal_asset_gets_storage_url(self, resolver):
        resolved = await resolver.resolve(make_element("v1"))
        assert resolved.key == ASSET_ID_A
        assert resolved.url == f"{BASE_URL}/assets/user/clip-a.mp4"

    @pytest.mark.asyncio
    async def test_external_asset_uses_descriptor_url(self, resolver):
        element = make_element("v1", external_asset=ExternalAsset(url="https://stock.test/v.mp4"))
        resolved = await resolver.resolve(element)
        assert resolved.url == "https://stock.test/v.mp4"
        assert resolved.key == "external:https://stock.test/v.mp4"

    @pytest.mark.asyncio
    async def test_unknown_asset(self, resolver):
        with pytest.raises(AssetResolutionError):
            await resolver.resolve(make_element("v1", asset_id="missing-id"))

    @pytest.mark.asyncio
    async def test_text_has_nothing_to_resolve(self, resolver):
        with pytest.raises(AssetResolutionError):
            await resolver.resolve(make_element("t1", kind="text"))


class TestDownloadAll:
    @pytest.mark.asyncio
    async def test_downloads_each_asset_once(self, resolver, dest_dir):
        server = Server({
            "/storage/assets/user/clip-a.mp4": httpx.Response(200, content=b"a" * 100),
            "/storage/assets/user/music.mp3": httpx.Response(200, content=b"m" * 50),
        })
        elements = [
            make_element("v1"),
            make_element("v2", start=5000, end=8000),
            make_element("a1", kind="audio", track_id="track-audio", asset_id=ASSET_ID_B),
            make_element("t1", kind="text", track_id="track-text"),
        ]
        progress: list[float] = []

        paths = await make_downloader(resolver, server).download_all(
            "job1", elements, dest_dir, on_progress=progress.append
        )

        assert set(paths) == {ASSET_ID_A, ASSET_ID_B}
        assert server.calls["/storage/assets/user/clip-a.mp4"] == 1
        assert paths[ASSET_ID_A] == os.path.join(dest_dir, "job1_0.mp4")
        assert paths[ASSET_ID_B].endswith(".mp3")
        assert os.path.getsize(paths[ASSET_ID_A]) == 100
        assert sorted(progress) == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_no_media_reports_done(self, resolver, dest_dir):
        progress: list[float] = []
        paths = await make_downloader(resolver, Server({})).download_all(
            "job1", [make_element("t1", kind="text")], dest_dir, on_progress=progress.append
        )
        assert paths == {}
        assert progress == [1.0]

    @pytest.mark.asyncio
    async def test_external_url_fetched_directly(self, resolver, dest_dir):
        server = Server({"/video/stock.webm": httpx.Response(200, content=b"w" * 10)})
        element = make_element("v1", external_asset=ExternalAsset(url="https://stock.test/video/stock.webm"))

        paths = await make_downloader(resolver, server).download_all("job1", [element], dest_dir)

        assert paths[element.asset_key].endswith("job1_0.webm")

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, resolver, dest_dir):
        server = Server({"/storage/assets/user/clip-a.mp4": httpx.Response(403)})

        paths = await make_downloader(resolver, server).download_all("job1", [make_element("v1")], dest_dir)

        assert paths == {}
        assert server.calls["/storage/assets/user/clip-a.mp4"] == 1
        assert os.listdir(dest_dir) == []

    @pytest.mark.asyncio
    async def test_server_error_retried_then_dropped(self, resolver, dest_dir):
        server = Server({"/storage/assets/user/clip-a.mp4": httpx.Response(503)})

        paths = await make_downloader(resolver, server).download_all("job1", [make_element("v1")], dest_dir)

        assert paths == {}
        assert server.calls["/storage/assets/user/clip-a.mp4"] == 3

    @pytest.mark.asyncio
    async def test_recovers_from_transient_failure(self, resolver, dest_dir):
        responses = [httpx.Response(500), httpx.Response(200, content=b""), httpx.Response(200, content=b"ok")]
        server = Server({"/storage/assets/user/clip-a.mp4": lambda request: responses.pop(0)})

        paths = await make_downloader(resolver, server).download_all("job1", [make_element("v1")], dest_dir)

        assert open(paths[ASSET_ID_A], "rb").read() == b"ok"
        assert server.calls["/storage/assets/user/clip-a.mp4"] == 3

    @pytest.mark.asyncio
    async def test_connection_errors_retried(self, resolver, dest_dir):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        server = Server({"/storage/assets/user/clip-a.mp4": refuse})

        paths = await make_downloader(resolver, server).download_all("job1", [make_element("v1")], dest_dir)

        assert paths == {}
        assert server.calls["/storage/assets/user/clip-a.mp4"] == 3

    @pytest.mark.asyncio
    async def test_oversize_asset_is_terminal(self, resolver, dest_dir):
        server = Server({"/storage/assets/user/clip-a.mp4": httpx.Response(200, content=b"x" * 500)})

        paths = await make_downloader(resolver, server, max_size_bytes=100).download_all(
            "job1", [make_element("v1")], dest_dir
        )

        assert paths == {}
        assert server.calls["/storage/assets/user/clip-a.mp4"] == 1

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_the_rest(self, resolver, dest_dir):
        server = Server({"/storage/assets/user/music.mp3": httpx.Response(200, content=b"m")})
        elements = [
            make_element("v1"),
            make_element("a1", kind="audio", track_id="track-audio", asset_id=ASSET_ID_B),
            make_element("v2", asset_id="not-in-catalog"),
        ]

        paths = await make_downloader(resolver, server).download_all("job1", elements, dest_dir)

        assert list(paths) == [ASSET_ID_B]

    @pytest.mark.asyncio
    async def test_catalog_outage_for_one_asset_keeps_the_rest(self, storage, dest_dir):
        class FlakyCatalog(InMemoryAssetCatalog):
            async def get_storage_key(self, asset_id):
                if asset_id == ASSET_ID_B:
                    raise ConnectionError("catalog unreachable")
                return await super().get_storage_key(asset_id)

        catalog = FlakyCatalog({ASSET_ID_A: "assets/user/clip-a.mp4"})
        resolver = AssetResolver(catalog, storage, url_expiration_minutes=60)
        server = Server({"/storage/assets/user/clip-a.mp4": httpx.Response(200, content=b"a" * 10)})
        elements = [
            make_element("v1"),
            make_element("a1", kind="audio", track_id="track-audio", asset_id=ASSET_ID_B),
        ]

        paths = await make_downloader(resolver, server).download_all("job1", elements, dest_dir)

        assert list(paths) == [ASSET_ID_A]
        assert os.path.getsize(paths[ASSET_ID_A]) == 10

    @pytest.mark.asyncio
    async def test_write_failure_is_retried_then_dropped(self, resolver, tmp_path):
        server = Server({"/storage/assets/user/clip-a.mp4": httpx.Response(200, content=b"a")})
        missing_dir = str(tmp_path / "not-created")

        paths = await make_downloader(resolver, server).download_all(
            "job1", [make_element("v1")], missing_dir
        )

        assert paths == {}
        assert server.calls["/storage/assets/user/clip-a.mp4"] == 3
