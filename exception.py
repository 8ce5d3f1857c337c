from discord.ext import commands


class ScanError(Exception):
    """Base class for errors raised by the scanning core."""
    pass

class AccessDenied(ScanError):
    """The bot is missing permissions on the channel it was asked to scan."""
    pass

class TransferError(ScanError):
    """Downloading an attachment failed."""
    pass

class DecodeError(ScanError):
    """Attachment bytes could not be decoded as an image."""
    pass

class FormatRejected(ScanError):
    """Attachment was skipped on purpose (gif, mime mismatch, too large)."""
    pass

class PersistenceError(ScanError):
    """A hash table could not be read or written."""
    pass

class ReportError(ScanError):
    """A report file could not be written."""
    pass

class ScanCancelled(ScanError):
    """Scan was stopped before the channel history ran out."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class InvalidChannelId(commands.CommandInvokeError):
    """User has provided something that is not a channel id."""
    pass

class ChannelNotFound(commands.CommandInvokeError):
    """Channel could not be found."""
    pass

class ScanInProgress(commands.CommandInvokeError):
    """A scan is already running for that channel."""
    pass
