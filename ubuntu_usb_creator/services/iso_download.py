"""HTTP client for downloading ISO images and their checksum files.

Downloads stream into ``<name>.tmp`` and are renamed into place only after
the whole body has been written, so a partial file is never mistaken for a
complete image.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Callable

import aiohttp

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.exceptions import NetworkError
from ubuntu_usb_creator.logging import LoggerFactory, ThrottledLogger


log = LoggerFactory.for_iso()

CHUNK_SIZE = 1024 * 1024


def partial_path(destination: Path) -> Path:
    return destination.with_name(destination.name + ".tmp")


class IsoDownloader:
    """HTTP client for release artifacts."""

    def __init__(
        self,
        connect_timeout: float = settings.HTTP_CONNECT_TIMEOUT_SECONDS,
        read_timeout: float = settings.HTTP_READ_TIMEOUT_SECONDS,
        chunk_size: int = CHUNK_SIZE,
    ):
        """Initialize downloader.

        Args:
            connect_timeout: Seconds allowed to establish a connection
            read_timeout: Seconds allowed between two received chunks
            chunk_size: Bytes read per chunk
        """
        self.timeout = aiohttp.ClientTimeout(
            total=None, connect=connect_timeout, sock_read=read_timeout
        )
        self.chunk_size = chunk_size
        self.progress_log = ThrottledLogger(log, interval_seconds=5.0)

    async def download(
        self,
        url: str,
        destination: Path,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> Path:
        """Stream url to destination.

        Args:
            url: Source URL
            destination: Final file path
            progress_callback: Optional callback(bytes_done, bytes_total);
                bytes_total is 0 when the server sends no length

        Returns:
            destination, once complete

        Raises:
            NetworkError: Connection failure, timeout or non-200 status
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = partial_path(destination)
        log.info(f"Downloading {url}")

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        raise NetworkError(
                            f"Download failed with HTTP status {resp.status}", url=url
                        )
                    total = resp.content_length or 0
                    done = 0
                    with open(temp_path, "wb") as output:
                        async for chunk in resp.content.iter_chunked(self.chunk_size):
                            output.write(chunk)
                            done += len(chunk)
                            if progress_callback:
                                progress_callback(done, total)
                            if total:
                                self.progress_log.info(
                                    "download",
                                    f"Downloaded {done / 1024**3:.2f} GB of "
                                    f"{total / 1024**3:.2f} GB ({done * 100 // total}%)",
                                )
                    if total and done != total:
                        raise NetworkError(
                            f"Download ended after {done} of {total} bytes", url=url
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            temp_path.unlink(missing_ok=True)
            raise NetworkError(f"Download failed: {error}", url=url) from error
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        os.replace(temp_path, destination)
        log.success(f"Saved {destination}")
        return destination

    async def fetch_bytes(self, url: str, timeout: float | None = None) -> bytes:
        """Fetch a small file into memory.

        Raises:
            NetworkError: Connection failure, timeout or non-200 status
        """
        client_timeout = (
            aiohttp.ClientTimeout(total=timeout) if timeout is not None else self.timeout
        )
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        raise NetworkError(
                            f"Fetching {url} failed with HTTP status {resp.status}", url=url
                        )
                    return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise NetworkError(f"Fetching {url} failed: {error}", url=url) from error
