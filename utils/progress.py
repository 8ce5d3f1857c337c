from dataclasses import dataclass

BAR_LENGTH = 20


@dataclass(frozen=True)
class ScanProgress:
    state: str
    location: str
    processed_messages: int
    processed_images: int
    duplicates_found: int
    groups: int
    skipped: int
    elapsed: float
    total_messages: int | None = None
    eta: float | None = None
    batch_size: int | None = None

    @property
    def fraction(self) -> float | None:
        if not self.total_messages:
            return None
        return min(1.0, self.processed_messages / self.total_messages)


def format_elapsed(seconds: float) -> str:
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def estimate_eta(elapsed: float, processed: int, total: int | None) -> float | None:
    """Seconds left, or None when nothing has been processed yet or the total is unknown."""
    if not processed or total is None:
        return None
    remaining = max(0, total - processed)
    return (elapsed / processed) * remaining


def progress_bar(fraction: float) -> str:
    fraction = min(1.0, max(0.0, fraction))
    filled = round(fraction * BAR_LENGTH)
    return "█" * filled + "░" * (BAR_LENGTH - filled)


def format_status(progress: ScanProgress, title: str = "Processing") -> str:
    lines = [f"{title} {progress.location}..."]
    if progress.fraction is not None:
        lines.append(progress_bar(progress.fraction))
        lines.append(
            f"Progress: {progress.fraction * 100:.2f}% "
            f"({progress.processed_messages:,}/{progress.total_messages:,} messages)"
        )
    else:
        lines.append(f"Messages: {progress.processed_messages:,}")
    lines.append(f"Images: {progress.processed_images:,}")
    lines.append(f"Duplicates: {progress.duplicates_found:,}")
    lines.append(f"Groups: {progress.groups:,}")
    lines.append(f"Elapsed: {format_elapsed(progress.elapsed)}")
    if progress.eta is not None:
        lines.append(f"ETA: {format_elapsed(progress.eta)}")
    return "\n".join(lines)
