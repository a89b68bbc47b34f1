"""
Custom-tags metadata store client.

The custom tags of a series live in one JSON object stored as the string
value of a single metadata key on the series resource. The archive offers
no per-tag primitive, so every change is a read-merge-write of the whole
document, made conditional on the version token (ETag) seen on read.
"""

import json
import logging
import threading
from typing import Any, Dict, Iterable, Optional

from .errors import ConcurrencyConflictError, MetadataWriteError, TransportError
from .fetcher import ArchiveFetcher, segment
from .models import MetadataReadResult

logger = logging.getLogger(__name__)

DEFAULT_METADATA_KEY = "4096"

PLAIN_CONTENT_TYPE = "text/plain; charset=utf-8"
LEGACY_CONTENT_TYPE = "application/json"


def _as_text(value: Any) -> str:
	if value is None:
		return ""
	if isinstance(value, str):
		return value
	return json.dumps(value, ensure_ascii=False)


def parse_document(raw) -> Dict[str, str]:
	"""
	Decode a stored custom-tags value.

	The text is parsed as JSON once; if that yields a string (written by a
	client that double-encoded the document) it is parsed a second time.
	Only a JSON object is accepted, anything else reads as empty.
	"""
	if raw is None:
		return {}
	if isinstance(raw, (bytes, bytearray)):
		try:
			raw = raw.decode("utf-8")
		except UnicodeDecodeError:
			return {}
	
	text = str(raw).strip()
	if not text:
		return {}
	
	try:
		value = json.loads(text)
		if isinstance(value, str):
			value = json.loads(value)
	except ValueError:
		return {}
	
	if not isinstance(value, dict):
		return {}
	
	return {str(k): _as_text(v) for k, v in value.items()}


def encode_document(document: Dict[str, str]) -> str:
	"""Plain form: the document as JSON text."""
	return json.dumps(document, ensure_ascii=False)


def encode_document_legacy(document: Dict[str, str]) -> str:
	"""Legacy form: the JSON text itself encoded as a JSON string."""
	return json.dumps(encode_document(document), ensure_ascii=False)


def normalize_tags(tags: Dict[Any, Any]) -> Dict[str, str]:
	"""Trim keys, drop empty ones and coerce values to text."""
	result = {}
	for key, value in (tags or {}).items():
		key = str(key).strip()
		if not key:
			continue
		result[key] = _as_text(value)
	return result


class ExistenceCache:
	"""
	Per-series memory of whether the custom-tags key exists.

	True/False once observed, None while unknown. Lives as long as the
	owning client; it is a hint for skipping probes, never a source of truth.
	"""

	def __init__(self):
		self._known: Dict[str, bool] = {}
		self._lock = threading.Lock()

	def get(self, series_id: str) -> Optional[bool]:
		with self._lock:
			return self._known.get(series_id)

	def mark_present(self, series_id: str):
		with self._lock:
			self._known[series_id] = True

	def mark_absent(self, series_id: str):
		with self._lock:
			self._known[series_id] = False

	def invalidate(self, series_id: str):
		"""Forget what is known about one series (back to unknown)."""
		with self._lock:
			self._known.pop(series_id, None)

	def clear(self):
		with self._lock:
			self._known.clear()

	def __contains__(self, series_id: str) -> bool:
		with self._lock:
			return series_id in self._known

	def __len__(self) -> int:
		with self._lock:
			return len(self._known)


class MetadataStoreClient:
	"""Reads and writes the custom-tags document of series resources."""

	def __init__(self, fetcher: ArchiveFetcher, key: str = DEFAULT_METADATA_KEY,
				cache: Optional[ExistenceCache] = None, probe_index: bool = True):
		self.fetcher = fetcher
		self.key = str(key)
		self.cache = cache if cache is not None else ExistenceCache()
		self.probe_index = probe_index

	def _key_path(self, series_id: str) -> str:
		return f"/series/{segment(series_id)}/metadata/{segment(self.key)}"

	def _index_keys(self, index: Any) -> Iterable[str]:
		# The index is either {name: label} or a bare list of names
		if isinstance(index, dict):
			return [str(k) for k in index.keys()]
		if isinstance(index, list):
			return [str(k) for k in index if isinstance(k, (str, int))]
		return []

	def _index_lists_key(self, series_id: str) -> bool:
		"""Ask the metadata index whether our key exists. False when unsure."""
		index = self.fetcher.get_json(f"/series/{segment(series_id)}/metadata")
		if index is None:
			return False
		
		wanted = self.key.lower()
		for name in self._index_keys(index):
			if name.lower() == wanted:
				return True
			try:
				if int(name) == int(self.key):
					return True
			except ValueError:
				pass
		return False

	def _load(self, series_id: str) -> MetadataReadResult:
		"""
		Read for a write: absent (404) comes back empty, any other failure
		raises TransportError so nothing is written from a guessed state.
		"""
		cached = self.cache.get(series_id)
		
		if cached is None and self.probe_index:
			if self._index_lists_key(series_id):
				self.cache.mark_present(series_id)
		
		# Even a silent index falls through to a direct read, whose outcome
		# settles the cache.
		resp = self.fetcher.request("GET", self._key_path(series_id))
		
		if resp.ok:
			self.cache.mark_present(series_id)
			document = parse_document(resp.content)
			logger.debug(f"[{series_id}] custom tags read, keys: {list(document)}")
			return MetadataReadResult(document, resp.headers.get("ETag"))
		
		if resp.status_code == 404:
			self.cache.mark_absent(series_id)
			logger.debug(f"[{series_id}] no custom tags document")
			return MetadataReadResult()
		
		raise TransportError(f"Reading custom tags of series {series_id} failed", resp.status_code)

	def read(self, series_id: str) -> MetadataReadResult:
		"""Return the current document and its version token. Never raises."""
		try:
			return self._load(series_id)
		except TransportError as e:
			# Fail closed: an outage reads as "no custom tags"
			logger.warning(f"[{series_id}] custom tags read failed: {e}")
			return MetadataReadResult()

	def get_tags(self, series_id: str) -> Dict[str, str]:
		return self.read(series_id).document

	def _is_conflict(self, status: int, etag: Optional[str]) -> bool:
		if status == 412:
			return True
		return status == 409 and etag is not None

	def _put_document(self, series_id: str, document: Dict[str, str], etag: Optional[str]):
		"""
		PUT the whole document, plain JSON text first and the legacy
		double-encoded form only if the archive rejects the first.
		"""
		path = self._key_path(series_id)
		attempts = [
			(encode_document(document), PLAIN_CONTENT_TYPE),
			(encode_document_legacy(document), LEGACY_CONTENT_TYPE),
		]
		
		last_status = None
		last_text = ""
		for number, (body, content_type) in enumerate(attempts, 1):
			headers = {"Content-Type": content_type}
			if etag:
				headers["If-Match"] = etag
			
			resp = self.fetcher.request("PUT", path, data=body.encode("utf-8"), headers=headers)
			if resp.ok:
				self.cache.mark_present(series_id)
				logger.info(f"[{series_id}] custom tags written ({len(document)} keys, attempt {number})")
				return
			
			if self._is_conflict(resp.status_code, etag):
				logger.warning(f"[{series_id}] custom tags changed since read (HTTP {resp.status_code})")
				raise ConcurrencyConflictError(
					f"Custom tags of series {series_id} were modified concurrently",
					resp.status_code
				)
			
			last_status = resp.status_code
			last_text = resp.text[:200]
			logger.info(f"[{series_id}] write attempt {number} rejected: {last_status} {last_text}")
		
		logger.error(f"[{series_id}] custom tags write failed: {last_status} {last_text}")
		raise MetadataWriteError(
			f"Writing custom tags of series {series_id} failed: {last_text or 'rejected'}",
			last_status,
			attempts=len(attempts)
		)

	def write(self, series_id: str, patch: Dict[str, Any]) -> Dict[str, str]:
		"""
		Merge `patch` into the stored document (patch wins) and write it back.
		Returns the document as written.
		"""
		current, etag = self._load(series_id)
		merged = dict(current)
		merged.update(normalize_tags(patch))
		self._put_document(series_id, merged, etag)
		return merged

	def replace(self, series_id: str, document: Dict[str, Any], etag: Optional[str]) -> Dict[str, str]:
		"""
		Store exactly `document` as the editor's full tag set.

		`etag` is the version token the editor read the document with (None
		when it saw no document). Any change since then, including a document
		created in the meantime, raises ConcurrencyConflictError.
		"""
		document = normalize_tags(document)
		
		if etag is None:
			current = self._load(series_id)
			if current.etag is not None:
				logger.warning(f"[{series_id}] custom tags created since the editor read them")
				raise ConcurrencyConflictError(
					f"Custom tags of series {series_id} were modified concurrently"
				)
		
		self._put_document(series_id, document, etag)
		return document

	def set_tag(self, series_id: str, key: str, value: Any) -> Dict[str, str]:
		if not str(key).strip():
			raise ValueError("Tag name cannot be empty")
		return self.write(series_id, {key: value})

	def delete_tag(self, series_id: str, key: str) -> Dict[str, str]:
		"""Remove one key and write the remaining document back."""
		current, etag = self._load(series_id)
		
		if key not in current and self.cache.get(series_id) is not True:
			# Nothing stored and nothing to remove
			return current
		
		remaining = {k: v for k, v in current.items() if k != key}
		self._put_document(series_id, remaining, etag)
		return remaining
