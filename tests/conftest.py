"""Test configuration for pytest."""

import io
import logging

import numpy as np
import pytest
from PIL import Image

import exception
from config import Config
from source import Attachment, Message


@pytest.fixture(autouse=True)
def configure_test_logging():
    """Keep the scanner's per-image logging out of test output."""
    logging.getLogger().setLevel(logging.WARNING)


def make_image_bytes(seed: int, size: tuple[int, int] = (64, 64), fmt: str = "PNG") -> bytes:
    """Random noise image, distinct seeds give unrelated fingerprints."""
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(size[1], size[0], 3), dtype=np.uint8)
    buf = io.BytesIO()
    Image.fromarray(pixels, "RGB").save(buf, format=fmt)
    return buf.getvalue()


class FakeFetcher:
    def __init__(self, blobs: dict[str, bytes] | None = None):
        self.blobs = dict(blobs or {})
        self.calls: list[str] = []

    async def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        if url not in self.blobs:
            raise exception.TransferError(f"request to {url} failed with status 404")
        return self.blobs[url]


class FakeSource:
    """Message history served newest first, like a chat channel."""

    def __init__(self, messages: list[Message], location: str = "channel-test", access: bool = True, on_fetch=None):
        self.messages = sorted(messages, key=lambda message: message.id, reverse=True)
        self.location = location
        self.access = access
        self.on_fetch = on_fetch
        self.calls: list[tuple[int | None, int]] = []

    async def has_required_access(self) -> bool:
        return self.access

    async def fetch_batch(self, before: int | None, limit: int) -> list[Message]:
        self.calls.append((before, limit))
        if self.on_fetch is not None:
            self.on_fetch(len(self.calls))
        older = [message for message in self.messages if before is None or message.id < before]
        return older[:limit]


def make_attachment(name: str, content_type: str = "image/png", size: int = 1024) -> Attachment:
    return Attachment(
        url=f"https://cdn.example.com/attachments/1/{name}?ex=abc&is=def",
        content_type=content_type,
        size=size,
        filename=name,
    )


def make_message(message_id: int, author: str = "alice", attachments=(), created_at: int | None = None) -> Message:
    return Message(
        id=message_id,
        author_id=f"id-{author}",
        author_name=author,
        created_at=created_at if created_at is not None else 1_700_000_000_000 + message_id,
        url=f"https://discord.com/channels/1/2/{message_id}",
        attachments=list(attachments),
    )


@pytest.fixture
def config(tmp_path, monkeypatch):
    for name in ("OPERATOR", "SAVEDUPE", "TRACKED_CHANNELS"):
        monkeypatch.delenv(name, raising=False)
    cfg = Config(tmp_path)
    cfg.output_dir = tmp_path / "duplicates"
    cfg.table_dir = tmp_path / "hashtables"
    return cfg


@pytest.fixture
def image_x() -> bytes:
    return make_image_bytes(1)


@pytest.fixture
def image_y() -> bytes:
    return make_image_bytes(2)
