import asyncio
import logging

import aiohttp

import exception

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class ImageFetcher:
    """Downloads attachment bytes through the bot's shared aiohttp session."""

    def __init__(self, session: aiohttp.ClientSession, max_bytes: int = 20 * 1024 * 1024, timeout: float = 30.0):
        self.session = session
        self.max_bytes = max_bytes
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def fetch(self, url: str) -> bytes:
        """
        Fetch the raw bytes behind an attachment url.

        Raises:
            exception.TransferError: on a non-200 response, a network error, a
                timeout or a body larger than max_bytes.
        """
        try:
            async with self.session.get(url, timeout=self.timeout) as resp:
                if resp.status != 200:
                    raise exception.TransferError(f"request to {url} failed with status {resp.status}")
                if resp.content_length is not None and resp.content_length > self.max_bytes:
                    raise exception.TransferError(f"{url} is {resp.content_length} bytes, limit is {self.max_bytes}")

                buf = bytearray()
                async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                    buf.extend(chunk)
                    if len(buf) > self.max_bytes:
                        raise exception.TransferError(f"{url} exceeded {self.max_bytes} bytes")
                return bytes(buf)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise exception.TransferError(f"request to {url} failed: {exc}") from exc
