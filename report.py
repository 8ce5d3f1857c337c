import csv
import datetime
import io
import logging
from dataclasses import dataclass
from pathlib import Path

import exception
from db.index import SimilarityIndex
from db.models import DuplicateGroup, PostReference
from utils.artifacts import group_folder, saved_name

LOGGER = logging.getLogger(__name__)

GROUP_HEADER = [
    "Group ID",
    "Original Post URL",
    "Original Poster",
    "Original Location",
    "Upload Date",
    "Number of Duplicates",
    "Users Who Reposted",
    "Locations of Reposts",
    "Stolen Reposts",
    "Self-Reposts",
    "Average Similarity Score",
    "Average Pixel Difference",
    "Local Folder Path",
    "Original Filename",
    "Duplicate Filenames",
]

AUTHOR_HEADER = [
    "Username",
    "Total Reposts",
    "Self Reposts",
    "Stolen Reposts",
    "Times Been Reposted",
    "Repost Ratio",
]


@dataclass(frozen=True)
class GroupRow:
    group_id: int
    original_url: str
    poster: str
    location: str
    upload_date: str
    duplicate_count: int
    reposting_users: list[str]
    repost_locations: list[str]
    stolen_count: int
    self_repost_count: int
    average_hamming: float | None
    average_pixel_difference: float | None
    folder: str
    original_filename: str
    duplicate_filenames: list[str]

    def to_csv(self) -> list:
        return [
            f"{self.group_id:06d}",
            self.original_url,
            self.poster,
            self.location,
            self.upload_date,
            self.duplicate_count,
            ";".join(self.reposting_users),
            ";".join(self.repost_locations),
            self.stolen_count,
            self.self_repost_count,
            _fmt(self.average_hamming),
            _fmt(self.average_pixel_difference),
            self.folder,
            self.original_filename,
            ";".join(self.duplicate_filenames),
        ]


@dataclass(frozen=True)
class AuthorStat:
    author_id: str
    username: str
    self_reposts: int = 0
    stolen_reposts: int = 0
    victim_of: int = 0
    total_reposts: int = 0

    @property
    def ratio(self) -> float:
        if self.total_reposts == 0:
            return 0.0
        return self.stolen_reposts / self.total_reposts

    def to_csv(self) -> list:
        return [
            self.username,
            self.total_reposts,
            self.self_reposts,
            self.stolen_reposts,
            self.victim_of,
            f"{self.ratio:.2f}",
        ]


def _fmt(value: float | None) -> str:
    return "" if value is None else f"{value:.2f}"


def _mean(values) -> float | None:
    values = [v for v in values if v is not None]
    if not values:
        return None
    return sum(values) / len(values)


def resolve_members(group: DuplicateGroup, policy: str = "arrival") -> tuple[PostReference, list[PostReference]]:
    """
    Split a group into (original, reposts) for reporting.

    "arrival" keeps the stored original. "timestamp" picks the earliest post
    of the group instead. The group itself is left untouched.
    """
    if policy != "timestamp":
        return group.original, list(group.duplicates)
    # sorted() is stable, ties keep arrival order
    members = sorted(group.members, key=lambda post: post.timestamp)
    return members[0], members[1:]


def build_group_row(group: DuplicateGroup, policy: str = "arrival", output_dir: str | Path = "duplicates") -> GroupRow:
    original, reposts = resolve_members(group, policy)
    stolen = sum(1 for post in reposts if post.author.id != original.author.id)
    return GroupRow(
        group_id=group.group_id,
        original_url=original.url,
        poster=original.author.username,
        location=original.location,
        upload_date=original.upload_date,
        duplicate_count=len(reposts),
        reposting_users=[post.author.username for post in reposts],
        repost_locations=[post.location for post in reposts],
        stolen_count=stolen,
        self_repost_count=len(reposts) - stolen,
        # Scores are stored on the duplicates in arrival order
        average_hamming=_mean(post.hamming for post in group.duplicates),
        average_pixel_difference=_mean(post.pixel_difference for post in group.duplicates),
        folder=str(group_folder(Path(output_dir), group)),
        original_filename=saved_name(group, original),
        duplicate_filenames=[saved_name(group, post) for post in reposts],
    )


def build_group_rows(index: SimilarityIndex, policy: str = "arrival", output_dir: str | Path = "duplicates") -> list[GroupRow]:
    """One row per group that has at least one duplicate, in index order."""
    return [build_group_row(group, policy, output_dir) for group in index if group.duplicates]


def build_author_stats(index: SimilarityIndex, policy: str = "arrival") -> dict[str, AuthorStat]:
    counters: dict[str, dict] = {}

    def counter(post: PostReference) -> dict:
        if post.author.id not in counters:
            counters[post.author.id] = {
                "username": post.author.username,
                "self_reposts": 0,
                "stolen_reposts": 0,
                "victim_of": 0,
                "total_reposts": 0,
            }
        return counters[post.author.id]

    for group in index:
        original, reposts = resolve_members(group, policy)
        for post in reposts:
            stats = counter(post)
            if post.author.id == original.author.id:
                stats["self_reposts"] += 1
            else:
                stats["stolen_reposts"] += 1
                counter(original)["victim_of"] += 1
            stats["total_reposts"] += 1

    return {author_id: AuthorStat(author_id=author_id, **values) for author_id, values in counters.items()}


class ReportGenerator:
    """Turns a finished index into the duplicate group and author CSV files."""

    def __init__(self, config, channel_id: int | str, started_at: datetime.datetime | None = None):
        self.config = config
        self.channel_id = channel_id
        self.started_at = started_at or datetime.datetime.now(datetime.timezone.utc)
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def _timestamp(value: datetime.datetime) -> str:
        return value.astimezone(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def preamble(self, title: str) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        lines = [
            title,
            f"Channel ID: {self.channel_id}",
            f"Analysis performed by: {self.config.operator}",
            f"Analysis start time: {self._timestamp(self.started_at)} UTC",
            f"Report generated at: {self._timestamp(now)} UTC",
            f"Bot version: {self.config.version}",
            f"Hash method: {self.config.hash_method}",
            f"Match mode: {self.config.match_mode}",
            f"Similarity threshold: {self.config.hamming_threshold}",
            f"Pixel similarity threshold: {self.config.pixel_threshold}",
            f"Original resolution: {self.config.original_policy}",
            f"Output directory: {self.config.output_dir}",
        ]
        return "".join(f"# {line}\n" for line in lines) + "\n"

    def render_groups(self, index: SimilarityIndex) -> str:
        rows = build_group_rows(index, self.config.original_policy, self.config.output_dir)
        buffer = io.StringIO()
        buffer.write(self.preamble("Forum/Channel Analysis Report"))
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(GROUP_HEADER)
        writer.writerows(row.to_csv() for row in rows)
        return buffer.getvalue()

    def render_authors(self, index: SimilarityIndex) -> str:
        stats = build_author_stats(index, self.config.original_policy)
        buffer = io.StringIO()
        buffer.write(self.preamble("Author Repost Report"))
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(AUTHOR_HEADER)
        writer.writerows(stat.to_csv() for stat in stats.values())
        return buffer.getvalue()

    def _write(self, path: Path, content: str) -> Path:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(content)
        except OSError as exc:
            raise exception.ReportError(f"could not write report {path}: {exc}") from exc
        self.logger.info(f"Report written to {path}")
        return path

    def write_group_report(self, index: SimilarityIndex, directory: str | Path | None = None) -> Path:
        directory = Path(directory or self.config.output_dir)
        stamp = int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)
        return self._write(directory / f"duplicate_report_{self.channel_id}_{stamp}.csv", self.render_groups(index))

    def write_author_report(self, index: SimilarityIndex, directory: str | Path | None = None) -> Path:
        directory = Path(directory or self.config.output_dir)
        stamp = int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)
        return self._write(directory / f"author_report_{self.channel_id}_{stamp}.csv", self.render_authors(index))
