"""
Error taxonomy for archive access.

Reads fail closed and only log these; writes raise them so an edit
workflow can tell the operator what happened.
"""

from typing import Optional


class ArchiveError(Exception):
	"""Base class for every archive-side failure."""
	def __init__(self, message: str, status: Optional[int] = None):
		self.message = message
		self.status = status
		if status is not None:
			super().__init__(f"{message} (HTTP {status})")
		else:
			super().__init__(message)


class NotFoundError(ArchiveError):
	"""The resource or metadata key does not exist."""


class TransportError(ArchiveError):
	"""Network failure, or a non-2xx response other than not-found."""


class MalformedPayloadError(ArchiveError):
	"""The archive answered with a payload of an unusable shape."""


class ConcurrencyConflictError(ArchiveError):
	"""
	A conditional write was rejected because the document changed since it
	was read. Retryable: re-read, re-apply the edit and write again.
	"""


class MetadataWriteError(TransportError):
	"""Every accepted body encoding was rejected by the archive."""
	def __init__(self, message: str, status: Optional[int] = None, attempts: int = 0):
		self.attempts = attempts
		super().__init__(message, status)
