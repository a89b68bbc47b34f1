import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import requests

from .aggregator import TagAggregator
from .config import ArchiveConfig, REQUESTED_TAGS_V1
from .fetcher import ArchiveFetcher
from .metadata import ExistenceCache, MetadataStoreClient
from .models import SeriesMatch, SeriesRow

logger = logging.getLogger(__name__)

# Checked in order; archives and versions disagree on the field name
ID_FIELDS = ("ID", "Id", "SeriesID", "Series")
HINT_FIELDS = ("RequestedTags", "requestedTags")


@dataclass
class DecodeFailure:
	"""A find item that does not identify a series."""
	item: Any
	reason: str


def decode_match(item: Any) -> Union[SeriesMatch, DecodeFailure]:
	"""
	Turn one raw find item into a SeriesMatch.

	A bare string is the identifier itself; an object contributes the first
	non-empty string among ID_FIELDS plus an optional hint map.
	"""
	if isinstance(item, str):
		if not item:
			return DecodeFailure(item, "empty identifier")
		return SeriesMatch(id=item)
	
	if isinstance(item, dict):
		series_id = None
		for name in ID_FIELDS:
			value = item.get(name)
			if isinstance(value, str) and value:
				series_id = value
				break
		if series_id is None:
			return DecodeFailure(item, "no identifier field")
		
		hint: Dict[str, str] = {}
		for name in HINT_FIELDS:
			value = item.get(name)
			if isinstance(value, dict):
				hint = {str(k): "" if v is None else str(v) for k, v in value.items()}
				break
		return SeriesMatch(id=series_id, requested_tags_hint=hint)
	
	return DecodeFailure(item, f"unsupported item type {type(item).__name__}")


class CollectionLoader:
	"""
	Loads every series of the archive into rows.

	`rows` is only ever replaced wholesale by `refresh`.
	"""

	def __init__(self, fetcher: ArchiveFetcher, aggregator: TagAggregator,
				requested_tags: Optional[List[str]] = None, max_workers: int = 8):
		self.fetcher = fetcher
		self.aggregator = aggregator
		self.requested_tags = list(requested_tags) if requested_tags is not None else list(REQUESTED_TAGS_V1)
		self.max_workers = max(1, int(max_workers))
		self.rows: List[SeriesRow] = []
		self.loaded_at: Optional[float] = None
		self._lock = threading.Lock()
		# Serializes whole loads; `rows` itself is guarded by `_lock`
		self._load_lock = threading.RLock()

	@classmethod
	def from_config(cls, config: ArchiveConfig, session: Optional[requests.Session] = None) -> 'CollectionLoader':
		"""Wire fetcher, metadata client and aggregator from one config."""
		fetcher = ArchiveFetcher(config.base_url, timeout=config.timeout, session=session)
		metadata = MetadataStoreClient(
			fetcher,
			key=config.metadata_key,
			cache=ExistenceCache(),
			probe_index=config.probe_index
		)
		aggregator = TagAggregator(fetcher, metadata)
		return cls(fetcher, aggregator, requested_tags=config.requested_tags, max_workers=config.max_workers)

	@property
	def metadata(self) -> MetadataStoreClient:
		return self.aggregator.metadata

	def find(self, query: Optional[Dict[str, Any]] = None) -> List[SeriesMatch]:
		raw = self.fetcher.find_series(query or {}, self.requested_tags)
		if raw is None:
			logger.error("Series find failed, treating the archive as empty")
			return []
		
		matches = []
		for item in raw:
			decoded = decode_match(item)
			if isinstance(decoded, DecodeFailure):
				logger.debug(f"Skipping find item ({decoded.reason}): {decoded.item!r}")
				continue
			matches.append(decoded)
		
		logger.debug(f"Find returned {len(raw)} items, {len(matches)} usable")
		return matches

	def _aggregate_all(self, matches: List[SeriesMatch]) -> List[SeriesRow]:
		workers = min(self.max_workers, len(matches))
		with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="aggregate") as pool:
			futures = [
				pool.submit(self.aggregator.aggregate, match.id, match.requested_tags_hint)
				for match in matches
			]
		
		rows = []
		for match, future in zip(matches, futures):
			try:
				rows.append(future.result())
			except Exception:
				# One broken series must not sink the whole load
				logger.exception(f"[{match.id}] aggregation failed")
				rows.append(SeriesRow(id=match.id))
		return rows

	def load(self, query: Optional[Dict[str, Any]] = None) -> List[SeriesRow]:
		"""Find and aggregate, without touching `rows`."""
		start_time = time.time()
		
		matches = self.find(query)
		if not matches:
			logger.info("Find returned no series")
			return []
		
		rows = [row for row in self._aggregate_all(matches) if row.id]
		
		elapsed = (time.time() - start_time) * 1000
		logger.info(f"Loaded {len(rows)} series in {elapsed:.0f} ms")
		return rows

	def refresh(self, query: Optional[Dict[str, Any]] = None) -> List[SeriesRow]:
		with self._load_lock:
			rows = self.load(query)
			with self._lock:
				self.rows = rows
				self.loaded_at = time.time()
		return list(rows)

	def ensure_loaded(self) -> List[SeriesRow]:
		"""Rows, loading them once if nothing has been loaded yet."""
		if not self.is_loaded:
			with self._load_lock:
				# Another request may have finished the load while we waited
				if not self.is_loaded:
					self.refresh()
		return self.snapshot()

	def snapshot(self) -> List[SeriesRow]:
		with self._lock:
			return list(self.rows)

	@property
	def is_loaded(self) -> bool:
		return self.loaded_at is not None
