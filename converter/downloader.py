"""
Image fetcher - bounded-concurrency HTTP downloads.

A fixed pool of asyncio workers pulls image records from a work queue and
reports one DownloadOutcome per record on a result queue. A failed download
only affects its own image.
"""

import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence, Union
from urllib.parse import urlsplit

import httpx

from converter.config import ConverterSettings
from converter.errors import DownloadError
from converter.models import ImageRecord

logger = logging.getLogger(__name__)


MAX_REDIRECTS = 5


@dataclass(frozen=True)
class DownloadOutcome:
    """Result message of one download, sent back to the orchestrator."""
    index: int
    file: str
    url: str
    data: Optional[bytes] = None
    error: Optional[DownloadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_forbidden_ip(ip: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]) -> bool:
    """True for private, loopback, link-local and other non-public addresses."""
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return is_forbidden_ip(ip.ipv4_mapped)
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_unspecified
        or ip.is_reserved
    )


async def validate_download_url(url: str) -> None:
    """
    Reject URLs that are not plain HTTP(S) or point at local networks.

    Hostnames are resolved and every resolved address is checked.

    Raises:
        DownloadError: If the URL is not allowed
    """
    try:
        parsed = urlsplit(url)
        port = parsed.port
    except ValueError:
        raise DownloadError(url, "invalid URL") from None

    if parsed.scheme not in ("http", "https"):
        raise DownloadError(url, "only HTTP/HTTPS URLs are allowed")

    host = parsed.hostname
    if not host:
        raise DownloadError(url, "URL must include a hostname")

    try:
        literal = ipaddress.ip_address(host)
    except ValueError:
        literal = None

    if literal is not None:
        if is_forbidden_ip(literal):
            raise DownloadError(url, "private or local IPs are not allowed")
        return

    lowered = host.lower().rstrip(".")
    if lowered == "localhost" or lowered.endswith(".localhost") or lowered.endswith(".local"):
        raise DownloadError(url, "localhost addresses are not allowed")

    if port is None:
        port = 443 if parsed.scheme == "https" else 80

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except UnicodeError:
        raise DownloadError(url, "invalid host") from None
    except (OSError, ValueError):
        raise DownloadError(url, "failed to resolve download host") from None

    if not infos:
        raise DownloadError(url, "failed to resolve download host")

    for info in infos:
        address = ipaddress.ip_address(info[4][0].split("%")[0])
        if is_forbidden_ip(address):
            raise DownloadError(url, "private or local IPs are not allowed")


class ImageFetcher:
    """
    Downloads image bytes with at most `download_concurrency` requests in flight.

    Pass an httpx.AsyncClient to reuse a client (or a mock transport in tests);
    otherwise one is created per fetch_all() call.
    """

    def __init__(
        self,
        settings: Optional[ConverterSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or ConverterSettings()
        self._client = client

    def _make_client(self) -> httpx.AsyncClient:
        concurrency = self.settings.download_concurrency
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.download_timeout),
            limits=httpx.Limits(
                max_connections=concurrency,
                max_keepalive_connections=concurrency,
            ),
        )

    async def fetch(self, client: httpx.AsyncClient, url: str) -> bytes:
        """
        Download one URL.

        Redirects are followed by hand so that every hop passes the host
        guard, not just the first URL.

        Raises:
            DownloadError: On an invalid URL, network error, timeout,
                non-2xx status, oversized body or too many redirects
        """
        if not url:
            raise DownloadError(url, "image has no URL")

        current = url
        try:
            for _ in range(MAX_REDIRECTS + 1):
                if self.settings.block_private_hosts:
                    await validate_download_url(current)

                async with client.stream("GET", current, follow_redirects=False) as response:
                    if response.is_redirect:
                        current = str(response.url.join(response.headers["location"]))
                        logger.debug(f"Redirect {response.status_code}: {url} -> {current}")
                        continue
                    if not response.is_success:
                        raise DownloadError(url, f"HTTP {response.status_code}")
                    return await self._read_limited(response, url)
        except httpx.TimeoutException as e:
            raise DownloadError(url, f"timed out ({type(e).__name__})") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DownloadError(url, str(e) or type(e).__name__) from e
        except UnicodeError:
            raise DownloadError(url, "invalid host") from None

        raise DownloadError(url, f"more than {MAX_REDIRECTS} redirects")

    async def _read_limited(self, response: httpx.Response, url: str) -> bytes:
        max_bytes = self.settings.max_download_bytes

        content_length = response.headers.get("content-length", "")
        if content_length.isdigit() and int(content_length) > max_bytes:
            raise DownloadError(
                url, f"response too large ({content_length} bytes, max {max_bytes})"
            )

        buffer = bytearray()
        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            if len(buffer) > max_bytes:
                raise DownloadError(url, f"response too large (max {max_bytes} bytes)")
        return bytes(buffer)

    async def fetch_all(self, records: Sequence[ImageRecord]) -> AsyncIterator[DownloadOutcome]:
        """
        Download every record's image, yielding outcomes as they finish.

        Outcomes arrive in completion order, not input order. Closing or
        cancelling the iterator abandons the outstanding downloads.
        """
        if not records:
            return

        owns_client = self._client is None
        client = self._client or self._make_client()

        work: asyncio.Queue = asyncio.Queue()
        for record in records:
            work.put_nowait(record)
        results: asyncio.Queue = asyncio.Queue()

        async def worker():
            while True:
                try:
                    record = work.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    data = await self.fetch(client, record.url)
                    outcome = DownloadOutcome(record.index, record.file, record.url, data=data)
                except DownloadError as e:
                    logger.warning(f"Failed to download '{record.file}': {e.reason}")
                    outcome = DownloadOutcome(record.index, record.file, record.url, error=e)
                except Exception as e:
                    # Unexpected failures end the whole run
                    await results.put(e)
                    return
                await results.put(outcome)

        pool_size = min(self.settings.download_concurrency, len(records))
        workers = [asyncio.create_task(worker()) for _ in range(pool_size)]
        try:
            for _ in range(len(records)):
                item = await results.get()
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            if owns_client:
                await client.aclose()
