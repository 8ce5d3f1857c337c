import asyncio
import enum
import logging
import time
import typing
from dataclasses import dataclass, field

import exception
from db.index import SimilarityIndex
from db.models import DuplicateGroup
from source import Attachment, Message, MessageSource
from utils.formats import check_attachment
from utils.hashing import PerceptualHasher
from utils.memory import MemoryMonitor
from utils.progress import ScanProgress, estimate_eta

ProgressCallback = typing.Callable[[ScanProgress], typing.Awaitable[None]]


class ScanState(enum.Enum):
    IDLE = "idle"
    COUNTING = "counting"
    SCANNING = "scanning"
    DRAINING = "draining"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ScanStats:
    processed_messages: int = 0
    processed_images: int = 0
    duplicates_found: int = 0
    groups_created: int = 0
    rejected: int = 0
    errors: int = 0
    fetches: int = 0


@dataclass(frozen=True)
class ImageOutcome:
    message: Message
    attachment: Attachment
    group: DuplicateGroup
    is_duplicate: bool
    distance: int = 0
    pixel_difference: float | None = None

    @property
    def is_self_repost(self) -> bool:
        return self.is_duplicate and self.group.original.author.id == self.message.author_id


@dataclass
class ScanResult:
    location: str
    state: ScanState
    stats: ScanStats
    elapsed: float
    groups: int
    total_messages: int | None = None
    outcomes: list[ImageOutcome] = field(default_factory=list)


class IngestionScanner:
    """
    Walks a message source from newest to oldest and feeds every image
    attachment through the hasher into the similarity index.

    One scanner drives one source. Several scanners may share an index (a
    forum scan runs one per post), but only one may run at a time.
    """

    def __init__(
        self,
        source: MessageSource,
        index: SimilarityIndex,
        hasher: PerceptualHasher,
        config,
        memory: MemoryMonitor | None = None,
        artifacts=None,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        clock: typing.Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.index = index
        self.hasher = hasher
        self.config = config
        self.memory = memory
        self.artifacts = artifacts
        self.on_progress = on_progress
        self.cancel_event = cancel_event if cancel_event is not None else asyncio.Event()
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

        self.state = ScanState.IDLE
        self.stats = ScanStats()
        self.batch_size = config.batch_size
        self.cursor: int | None = None
        self.total_messages: int | None = None
        self._started = self.clock()
        self._last_progress = self._started

    @property
    def location(self) -> str:
        return self.source.location

    @property
    def elapsed(self) -> float:
        return self.clock() - self._started

    def snapshot(self) -> ScanProgress:
        elapsed = self.elapsed
        return ScanProgress(
            state=self.state.value,
            location=self.location,
            processed_messages=self.stats.processed_messages,
            processed_images=self.stats.processed_images,
            duplicates_found=self.stats.duplicates_found,
            groups=len(self.index),
            skipped=self.stats.rejected + self.stats.errors,
            elapsed=elapsed,
            total_messages=self.total_messages,
            eta=estimate_eta(elapsed, self.stats.processed_messages, self.total_messages),
            batch_size=self.batch_size,
        )

    def result(self, outcomes: list[ImageOutcome] | None = None) -> ScanResult:
        return ScanResult(
            location=self.location,
            state=self.state,
            stats=self.stats,
            elapsed=self.elapsed,
            groups=len(self.index),
            total_messages=self.total_messages,
            outcomes=outcomes or [],
        )

    async def check_access(self) -> None:
        if not await self.source.has_required_access():
            self.state = ScanState.FAILED
            self.logger.error(f"Missing permissions for {self.location}")
            raise exception.AccessDenied(
                f"Missing required permissions in {self.location} (view channel, read message history, send messages)"
            )

    async def _fetch(self, before: int | None, limit: int) -> list[Message]:
        self.stats.fetches += 1
        return await self.source.fetch_batch(before, limit)

    async def count(self) -> int:
        """Counting pass over the whole history, used for progress bars and ETA."""
        await self.check_access()
        self.state = ScanState.COUNTING
        total = 0
        before = None
        while True:
            messages = await self._fetch(before, self.config.batch_size)
            if not messages:
                break
            total += len(messages)
            before = min(message.id for message in messages)
        self.total_messages = total
        self.logger.info(f"Counted {total} messages in {self.location}")
        return total

    def _check_cancelled(self) -> None:
        reason = None
        if self.cancel_event.is_set():
            reason = "cancelled"
        elif self.config.scan_timeout and self.elapsed > self.config.scan_timeout:
            reason = f"timed out after {self.config.scan_timeout:.0f}s"
        if reason:
            self.state = ScanState.FAILED
            self.logger.warning(f"Scan of {self.location} {reason} at cursor {self.cursor}")
            raise exception.ScanCancelled(f"Scan of {self.location} {reason}", self.result())

    async def _maybe_report(self, force: bool = False) -> None:
        now = self.clock()
        if not force and now - self._last_progress < self.config.progress_interval:
            return
        self._last_progress = now
        progress = self.snapshot()
        self.logger.info(
            f"{self.location}: {progress.processed_messages} messages, {progress.processed_images} images, "
            f"{progress.duplicates_found} duplicates, {progress.groups} groups"
        )
        if self.on_progress is not None:
            await self.on_progress(progress)

    async def run(self) -> ScanResult:
        """
        Scan the source until it runs out of history.

        Raises:
            exception.AccessDenied: before anything is fetched.
            exception.ScanCancelled: at a batch boundary when the cancel event
                is set or the scan timeout passes. The index keeps everything
                processed so far.
        """
        await self.check_access()
        self._started = self.clock()
        self._last_progress = self._started
        self.logger.info(f"Starting scan of {self.location}")
        try:
            while True:
                self.state = ScanState.SCANNING
                self._check_cancelled()
                await self._maybe_report()

                if self.memory is not None:
                    self.batch_size = await self.memory.next_batch_size(self.batch_size)

                messages = await self._fetch(self.cursor, self.batch_size)
                if not messages:
                    break

                self.state = ScanState.DRAINING
                for message in messages:
                    await self.process_message(message)
                self.cursor = min(message.id for message in messages)
        except asyncio.CancelledError:
            self.state = ScanState.FAILED
            self.logger.warning(f"Scan of {self.location} was cancelled at cursor {self.cursor}")
            raise

        self.state = ScanState.COMPLETED
        await self._maybe_report(force=True)
        self.logger.info(
            f"Finished {self.location}: {self.stats.processed_images} images, "
            f"{self.stats.duplicates_found} duplicates, {self.stats.groups_created} new groups"
        )
        return self.result()

    async def process_message(self, message: Message) -> list[ImageOutcome]:
        self.stats.processed_messages += 1
        outcomes = []
        for attachment in message.attachments:
            outcome = await self.process_attachment(message, attachment)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    async def process_attachment(self, message: Message, attachment: Attachment) -> ImageOutcome | None:
        """Hash one attachment and file it. Per-image failures are logged and skipped."""
        if not (attachment.content_type or "").startswith("image/"):
            return None
        try:
            check_attachment(attachment, self.config.allowed_mime_types, self.config.max_attachment_bytes)
        except exception.FormatRejected as exc:
            self.stats.rejected += 1
            self.logger.info(f"Skipping {attachment.filename} in message {message.id}: {exc}")
            return None

        self.stats.processed_images += 1
        try:
            result = await self.hasher.hash_url(attachment.url)
        except (exception.TransferError, exception.DecodeError, exception.FormatRejected) as exc:
            self.stats.errors += 1
            self.logger.warning(f"Failed to process {attachment.url} from message {message.id}: {exc}")
            return None

        post = message.post_reference(self.location, attachment)
        async with self.index.lock:
            match = self.index.find(result.hex, result.pixel_digest)
            if match is None:
                group = self.index.insert(result.hex, result.pixel_digest, post)
                self.stats.groups_created += 1
                return ImageOutcome(message=message, attachment=attachment, group=group, is_duplicate=False)

            self.index.record_duplicate(match.group, post.scored(match.distance, match.pixel_difference))
            self.stats.duplicates_found += 1

        self.logger.info(f"Duplicate of group {match.group.group_id} found in {message.url}")
        if self.artifacts is not None:
            await self.artifacts.save_latest(match.group)
        return ImageOutcome(
            message=message,
            attachment=attachment,
            group=match.group,
            is_duplicate=True,
            distance=match.distance,
            pixel_difference=match.pixel_difference,
        )
