from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class SeriesMatch:
	"""One hit of a series-level find; transient."""
	id: str
	requested_tags_hint: Dict[str, str] = field(default_factory=dict)


@dataclass
class SeriesRow:
	"""Normalized series entry rendered by the browser table."""
	id: str
	slice_count: int = 0
	attributes: Dict[str, str] = field(default_factory=dict)   # archive-native tags
	custom_tags: Dict[str, str] = field(default_factory=dict)  # user-defined tags

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"slices": self.slice_count,
			"attributes": dict(self.attributes),
			"custom_tags": dict(self.custom_tags),
		}

	@classmethod
	def from_dict(cls, data: dict) -> 'SeriesRow':
		return cls(
			id=data.get("id", ""),
			slice_count=int(data.get("slices", 0) or 0),
			attributes=dict(data.get("attributes") or {}),
			custom_tags=dict(data.get("custom_tags") or {}),
		)


@dataclass
class MetadataReadResult:
	"""Custom-tags document plus the version token it was read with."""
	document: Dict[str, str] = field(default_factory=dict)
	etag: Optional[str] = None

	def __iter__(self):
		# Allows `document, etag = client.read(series_id)`
		yield self.document
		yield self.etag


class UploadResult:
	def __init__(self, total: int = 0):
		self.total = total
		self.uploaded: int = 0
		self.error_messages: List[str] = []

	@property
	def success(self) -> bool:
		return not self.error_messages

	def add_error(self, error: str) -> None:
		self.error_messages.append(error)

	def to_dict(self) -> dict:
		return {
			"success": self.success,
			"uploaded": self.uploaded,
			"total": self.total,
			"errors": list(self.error_messages),
		}
