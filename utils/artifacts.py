import asyncio
import logging
import posixpath
from pathlib import Path
from urllib.parse import urlsplit

import exception
from db.models import DuplicateGroup, PostReference

LOGGER = logging.getLogger(__name__)


def _name_of(post: PostReference) -> str:
    if post.filename:
        return post.filename
    if post.attachment_url:
        return posixpath.basename(urlsplit(post.attachment_url).path) or f"{post.id}.img"
    return f"{post.id}.img"


def group_folder(output_dir: Path, group: DuplicateGroup) -> Path:
    return Path(output_dir) / f"{group.group_id:06d}"


def original_name(group: DuplicateGroup) -> str:
    return f"{group.group_id:04d}_ORIG_{_name_of(group.original)}"


def duplicate_name(group: DuplicateGroup, position: int) -> str:
    """Name of the duplicate at 1-based ``position`` in the group."""
    return f"{group.group_id:04d}_DUPE_{position:02d}_{_name_of(group.duplicates[position - 1])}"


def saved_name(group: DuplicateGroup, post: PostReference) -> str:
    """Name ``post`` is saved under in the group folder. Files are named in arrival order."""
    if post is group.original:
        return original_name(group)
    for position, duplicate in enumerate(group.duplicates, start=1):
        if duplicate is post:
            return duplicate_name(group, position)
    raise ValueError(f"message {post.id} is not in group {group.group_id}")


class ArtifactWriter:
    """Saves the original and every duplicate of a group into the group's folder."""

    def __init__(self, fetcher, output_dir: str | Path):
        self.fetcher = fetcher
        self.output_dir = Path(output_dir)

    async def _download(self, url: str, path: Path) -> None:
        data = await self.fetcher.fetch(url)
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)

    async def save_latest(self, group: DuplicateGroup) -> list[Path]:
        """
        Called after a duplicate was appended. The first duplicate of a group
        also pulls the original down.
        """
        folder = group_folder(self.output_dir, group)
        jobs = []
        if len(group.duplicates) == 1:
            jobs.append((group.original, folder / original_name(group)))
        jobs.append((group.duplicates[-1], folder / duplicate_name(group, len(group.duplicates))))

        saved = []
        for post, path in jobs:
            if not post.attachment_url:
                LOGGER.warning(f"No attachment url stored for message {post.id}, cannot save {path.name}")
                continue
            try:
                await self._download(post.attachment_url, path)
                saved.append(path)
            except (exception.TransferError, OSError) as exc:
                LOGGER.error(f"Failed to save {path} for group {group.group_id}: {exc}")
        return saved
