"""
Series Filter Executor

Evaluates the free-text query and tag predicates against the in-memory
row set. Pure and synchronous: re-run it on every filter change.
"""

import re
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from seriesdeck.models import SeriesRow

from .parser import FilterPredicate, MatchMode, Namespace, SortSpec

# Always searched by the free-text query, ahead of the rest
PRIORITY_FIELDS = (
	"PatientName",
	"SeriesDescription",
	"Modality",
	"BodyPartExamined",
	"SeriesDate",
	"StudyInstanceUID",
	"SeriesInstanceUID",
)

DATE_TOKEN = re.compile(r'^\d{8}$')


@dataclass
class QueryResult:
	"""Result of a query execution."""
	rows: List[SeriesRow]
	total_count: int
	matched_count: int
	query_time_ms: float


def _source(row: SeriesRow, namespace: Namespace) -> Dict[str, str]:
	if namespace == Namespace.CUSTOM:
		return row.custom_tags or {}
	return row.attributes or {}


def _in_range(value: str, predicate: FilterPredicate) -> bool:
	value = value.strip()
	if not DATE_TOKEN.match(value):
		return False
	# Fixed-width digits, so string order is date order
	if predicate.range_from and value < predicate.range_from:
		return False
	if predicate.range_to and value > predicate.range_to:
		return False
	return True


def _value_matches(value: str, needle: str, mode: MatchMode) -> bool:
	value = value.lower()
	if not needle:
		return len(value) > 0
	if mode == MatchMode.EQUALS:
		return value == needle
	if mode == MatchMode.PREFIX:
		return value.startswith(needle)
	if mode == MatchMode.SUFFIX:
		return value.endswith(needle)
	return needle in value


def predicate_matches(row: SeriesRow, predicate: FilterPredicate) -> bool:
	"""True if any candidate key of the predicate's namespace satisfies it."""
	source = _source(row, predicate.namespace)
	key_filter = (predicate.key or "").lower()
	
	if key_filter:
		candidates = [k for k in source if key_filter in k.lower()]
	else:
		candidates = list(source)
	
	if not candidates:
		return False
	
	if predicate.mode == MatchMode.DATE_RANGE:
		return any(_in_range(str(source[k] or ""), predicate) for k in candidates)
	
	needle = (predicate.value or "").lower()
	return any(_value_matches(str(source[k] or ""), needle, predicate.mode) for k in candidates)


def _search_fields(row: SeriesRow) -> Iterable[str]:
	attributes = row.attributes or {}
	for name in PRIORITY_FIELDS:
		value = attributes.get(name)
		if isinstance(value, str):
			yield value
	yield str(row.slice_count)
	for value in attributes.values():
		if isinstance(value, str):
			yield value
	for value in (row.custom_tags or {}).values():
		if isinstance(value, str):
			yield value


def text_matches(row: SeriesRow, query: str) -> bool:
	"""Case-insensitive substring search over every string field of the row."""
	needle = (query or "").strip().lower()
	if not needle:
		return True
	return any(needle in value.lower() for value in _search_fields(row))


def filter_rows(rows: List[SeriesRow], query: str = "",
				predicates: Optional[List[FilterPredicate]] = None) -> List[SeriesRow]:
	"""Rows passing every active predicate and the free-text query."""
	active = [p for p in (predicates or []) if not p.is_inert]
	needle = (query or "").strip()
	
	if not active and not needle:
		return list(rows)
	
	return [
		row for row in rows
		if all(predicate_matches(row, p) for p in active) and text_matches(row, needle)
	]


def _sort_value(row: SeriesRow, key: str):
	if key == "slices":
		return row.slice_count or 0
	raw = (row.attributes or {}).get(key, "")
	raw = "" if raw is None else str(raw)
	if key.endswith("Date"):
		return raw if DATE_TOKEN.match(raw) else ""
	return raw.lower()


def sort_rows(rows: List[SeriesRow], sort: Optional[SortSpec]) -> List[SeriesRow]:
	"""Stable sort by a column; slices numerically, *Date columns as YYYYMMDD."""
	if sort is None:
		return list(rows)
	return sorted(rows, key=lambda row: _sort_value(row, sort.key), reverse=sort.descending)


class QueryExecutor:
	"""Applies a filter state to a row set."""

	def execute(self, rows: List[SeriesRow], query: str = "",
				predicates: Optional[List[FilterPredicate]] = None,
				sort: Optional[SortSpec] = None) -> QueryResult:
		start_time = time.time()
		
		visible = sort_rows(filter_rows(rows, query, predicates), sort)
		
		query_time = (time.time() - start_time) * 1000
		return QueryResult(
			rows=visible,
			total_count=len(rows),
			matched_count=len(visible),
			query_time_ms=round(query_time, 2)
		)
