"""
Tests for the image fetcher.
"""

import asyncio
import ipaddress

import httpx
import pytest

from converter.config import ConverterSettings
from converter.downloader import ImageFetcher, is_forbidden_ip, validate_download_url
from converter.errors import DownloadError
from converter.models import ImageRecord, Split


def records_for(*urls):
    return [
        ImageRecord(index=i, file=f"img_{i}.png", url=url, width=10, height=10, split=Split.TRAIN)
        for i, url in enumerate(urls)
    ]


async def collect(fetcher, records):
    return [outcome async for outcome in fetcher.fetch_all(records)]


class TestUrlGuard:
    """Tests for the download URL guard."""

    @pytest.mark.parametrize("address", ["127.0.0.1", "10.1.2.3", "192.168.0.10", "169.254.169.254", "::1", "::ffff:10.0.0.1"])
    def test_forbidden_ips(self, address):
        assert is_forbidden_ip(ipaddress.ip_address(address))

    def test_public_ip_allowed(self):
        assert not is_forbidden_ip(ipaddress.ip_address("8.8.8.8"))

    @pytest.mark.parametrize("url", [
        "ftp://example.com/a.png",
        "file:///etc/passwd",
        "http://127.0.0.1/a.png",
        "http://localhost:8000/a.png",
        "http://printer.local/a.png",
        "http:///a.png",
    ])
    def test_rejected_urls(self, url):
        with pytest.raises(DownloadError):
            asyncio.run(validate_download_url(url))

    def test_overlong_label(self):
        """Test a host that cannot be IDNA-encoded is a download error."""
        with pytest.raises(DownloadError, match="invalid host"):
            asyncio.run(validate_download_url("https://" + "a" * 64 + ".com/x.jpg"))

    def test_public_literal_allowed(self):
        """Test a public IP literal passes without a DNS lookup."""
        asyncio.run(validate_download_url("https://8.8.8.8/a.png"))


class TestFetch:
    """Tests for single downloads."""

    def test_success(self, settings, cdn, png_bytes):
        fetcher = ImageFetcher(settings)

        async def run():
            async with cdn.client() as client:
                return await fetcher.fetch(client, "https://cdn.example.com/a.png")

        assert asyncio.run(run()) == png_bytes

    def test_http_error_status(self, settings, cdn):
        fetcher = ImageFetcher(settings)

        async def run():
            async with cdn.client() as client:
                await fetcher.fetch(client, "https://cdn.example.com/missing.png")

        with pytest.raises(DownloadError, match="HTTP 404"):
            asyncio.run(run())

    def test_empty_url(self, settings, cdn):
        fetcher = ImageFetcher(settings)

        async def run():
            async with cdn.client() as client:
                await fetcher.fetch(client, "")

        with pytest.raises(DownloadError, match="no URL"):
            asyncio.run(run())
        assert cdn.requests == []

    def test_size_limit(self, png_bytes):
        """Test bodies over the byte limit are rejected."""
        fetcher = ImageFetcher(ConverterSettings(max_download_bytes=10, block_private_hosts=False))
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=png_bytes))

        async def run():
            async with httpx.AsyncClient(transport=transport) as client:
                await fetcher.fetch(client, "https://cdn.example.com/big.png")

        with pytest.raises(DownloadError, match="too large"):
            asyncio.run(run())

    def test_network_error(self, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = ImageFetcher(settings)

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                await fetcher.fetch(client, "https://cdn.example.com/a.png")

        with pytest.raises(DownloadError, match="connection refused"):
            asyncio.run(run())

    def test_timeout(self, settings):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        fetcher = ImageFetcher(settings)

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                await fetcher.fetch(client, "https://cdn.example.com/a.png")

        with pytest.raises(DownloadError, match="timed out"):
            asyncio.run(run())

    def test_guard_runs_before_request(self, cdn):
        """Test blocked hosts never reach the transport."""
        fetcher = ImageFetcher(ConverterSettings(block_private_hosts=True))

        async def run():
            async with cdn.client() as client:
                await fetcher.fetch(client, "http://127.0.0.1/a.png")

        with pytest.raises(DownloadError, match="private or local"):
            asyncio.run(run())
        assert cdn.requests == []


    def test_follows_redirects(self, settings, png_bytes):
        def handler(request):
            if request.url.path == "/old.png":
                return httpx.Response(302, headers={"location": "/new.png"})
            return httpx.Response(200, content=png_bytes)

        fetcher = ImageFetcher(settings)

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await fetcher.fetch(client, "https://cdn.example.com/old.png")

        assert asyncio.run(run()) == png_bytes

    def test_redirect_to_private_host_blocked(self):
        """Test the host guard runs again on every redirect hop."""
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(302, headers={"location": "http://127.0.0.1/secret.png"})

        fetcher = ImageFetcher(ConverterSettings(block_private_hosts=True))

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                await fetcher.fetch(client, "https://8.8.8.8/a.png")

        with pytest.raises(DownloadError, match="private or local"):
            asyncio.run(run())
        assert requested == ["https://8.8.8.8/a.png"]

    def test_redirect_loop(self, settings):
        def handler(request):
            return httpx.Response(302, headers={"location": "/loop.png"})

        fetcher = ImageFetcher(settings)

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                await fetcher.fetch(client, "https://cdn.example.com/loop.png")

        with pytest.raises(DownloadError, match="redirects"):
            asyncio.run(run())


class TestFetchAll:
    """Tests for the worker pool."""

    def test_one_outcome_per_record(self, settings, cdn):
        """Test failures only affect their own image."""
        records = records_for(
            "https://cdn.example.com/a.png",
            "https://cdn.example.com/missing.png",
            "",
            "https://cdn.example.com/b.png",
        )

        async def run():
            async with cdn.client() as client:
                return await collect(ImageFetcher(settings, client), records)

        outcomes = asyncio.run(run())

        assert sorted(o.index for o in outcomes) == [0, 1, 2, 3]
        assert sorted(o.index for o in outcomes if o.ok) == [0, 3]
        assert len(cdn.requests) == 3

    def test_bad_host_fails_only_its_image(self, cdn):
        """Test an unencodable host is a per-image failure with the guard on."""
        settings = ConverterSettings(download_concurrency=2, block_private_hosts=True)
        records = records_for(
            "https://8.8.8.8/a.png",
            "https://" + "a" * 64 + ".com/x.jpg",
        )

        async def run():
            async with cdn.client() as client:
                return await collect(ImageFetcher(settings, client), records)

        outcomes = {o.index: o for o in asyncio.run(run())}

        assert outcomes[0].ok
        assert not outcomes[1].ok
        assert outcomes[1].error.reason == "invalid host"

    def test_concurrency_bound(self):
        """Test no more than download_concurrency requests run at once."""
        state = {"active": 0, "peak": 0}

        async def handler(request):
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            await asyncio.sleep(0.01)
            state["active"] -= 1
            return httpx.Response(200, content=b"x")

        settings = ConverterSettings(download_concurrency=3, block_private_hosts=False)
        records = records_for(*[f"https://cdn.example.com/{i}.png" for i in range(12)])

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await collect(ImageFetcher(settings, client), records)

        outcomes = asyncio.run(run())

        assert len(outcomes) == 12
        assert all(o.ok for o in outcomes)
        assert state["peak"] <= 3

    def test_no_records(self, settings):
        assert asyncio.run(collect(ImageFetcher(settings), [])) == []

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            ConverterSettings(download_concurrency=0)
