import mimetypes
import posixpath
from urllib.parse import urlsplit

import exception

ANIMATED_TYPES = {"image/gif", "image/apng"}

# mimetypes does not know webp on every platform
mimetypes.add_type("image/webp", ".webp")


def extension_from_url(url: str) -> str:
    """Extension of the last path segment, query string and fragment ignored."""
    path = urlsplit(url).path
    return posixpath.splitext(posixpath.basename(path))[1].lower()


def mime_from_url(url: str) -> str | None:
    ext = extension_from_url(url)
    if not ext:
        return None
    return mimetypes.guess_type(f"file{ext}", strict=False)[0]


def check_attachment(attachment, allowed_types: set[str], max_bytes: int | None = None) -> str:
    """
    Decide whether an attachment may be hashed.

    Args:
        attachment: anything with url, content_type and size attributes
        allowed_types: mime types that are hashed
        max_bytes: attachments above this size are skipped

    Returns:
        The mime type the attachment was accepted as.

    Raises:
        exception.FormatRejected: with the reason the attachment was skipped.
    """
    declared = (attachment.content_type or "").split(";")[0].strip().lower()
    if declared and not declared.startswith("image/"):
        raise exception.FormatRejected(f"not an image ({declared})")
    if declared in ANIMATED_TYPES:
        raise exception.FormatRejected(f"{declared} images are not supported")

    from_url = mime_from_url(attachment.url)
    if from_url is None:
        raise exception.FormatRejected(f"no usable file extension in {attachment.url}")
    if from_url in ANIMATED_TYPES:
        raise exception.FormatRejected(f"{from_url} images are not supported")
    if from_url not in allowed_types:
        raise exception.FormatRejected(f"{from_url} is not an allowed image type")
    if declared and declared != from_url:
        raise exception.FormatRejected(f"declared type {declared} does not match extension type {from_url}")

    if max_bytes is not None and attachment.size and attachment.size > max_bytes:
        raise exception.FormatRejected(f"{attachment.size} bytes is over the {max_bytes} byte limit")
    return from_url
