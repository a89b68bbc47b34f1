"""
Series Filter Parser

Decodes the filter bar's JSON payload (tag predicates and sort order)
into typed predicates the executor can evaluate.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Optional


class ParseError(Exception):
	"""Raised when a filter payload cannot be decoded."""
	def __init__(self, message: str, position: int = 0):
		self.message = message
		self.position = position
		super().__init__(f"{message} at position {position}")


class Namespace(Enum):
	"""Which attribute map a predicate looks at."""
	ARCHIVE = auto()    # archive-native tags
	CUSTOM = auto()     # user-defined tags


class MatchMode(Enum):
	CONTAINS = auto()
	EQUALS = auto()
	PREFIX = auto()
	SUFFIX = auto()
	DATE_RANGE = auto()  # YYYYMMDD bounds, inclusive


NAMESPACE_NAMES = {
	'archive': Namespace.ARCHIVE,
	'archivenative': Namespace.ARCHIVE,
	'native': Namespace.ARCHIVE,
	'dicom': Namespace.ARCHIVE,
	'custom': Namespace.CUSTOM,
}

MODE_NAMES = {
	'contains': MatchMode.CONTAINS,
	'equals': MatchMode.EQUALS,
	'prefix': MatchMode.PREFIX,
	'startswith': MatchMode.PREFIX,
	'suffix': MatchMode.SUFFIX,
	'endswith': MatchMode.SUFFIX,
	'daterange': MatchMode.DATE_RANGE,
	'date_range': MatchMode.DATE_RANGE,
}


@dataclass
class FilterPredicate:
	"""One tag filter row."""
	namespace: Namespace = Namespace.ARCHIVE
	mode: MatchMode = MatchMode.CONTAINS
	key: str = ""
	value: Optional[str] = None
	range_from: Optional[str] = None
	range_to: Optional[str] = None

	@property
	def has_bounds(self) -> bool:
		return bool(self.range_from or self.range_to)

	@property
	def is_inert(self) -> bool:
		"""Nothing to filter on; the predicate is skipped."""
		if self.mode == MatchMode.DATE_RANGE:
			return not self.key and not self.has_bounds
		return not self.key and not self.value

	def to_dict(self) -> Dict[str, Any]:
		return {
			"namespace": self.namespace.name.lower(),
			"mode": self.mode.name.lower(),
			"key": self.key,
			"value": self.value,
			"from": self.range_from,
			"to": self.range_to,
		}


@dataclass
class SortSpec:
	key: str
	descending: bool = False


def _text(data: Dict[str, Any], *names: str) -> Optional[str]:
	"""First present field among `names`, trimmed; None when absent or blank."""
	for name in names:
		value = data.get(name)
		if value is None:
			continue
		value = str(value).strip()
		return value or None
	return None


def _lookup(table: Dict[str, Enum], raw: Optional[str], what: str, position: int, default: Enum) -> Enum:
	if raw is None:
		return default
	found = table.get(raw.replace('-', '').replace(' ', '').lower())
	if found is None:
		found = table.get(raw.lower())
	if found is None:
		raise ParseError(f"Unknown {what} '{raw}'", position)
	return found


def parse_predicate(data: Any, position: int = 0) -> FilterPredicate:
	"""Decode one predicate object. Field names follow the filter bar's JSON."""
	if not isinstance(data, dict):
		raise ParseError("Predicate must be an object", position)
	
	namespace = _lookup(NAMESPACE_NAMES, _text(data, 'namespace', 'scope'),
						"namespace", position, Namespace.ARCHIVE)
	mode = _lookup(MODE_NAMES, _text(data, 'mode', 'matchMode', 'match_mode'),
				   "match mode", position, MatchMode.CONTAINS)
	
	return FilterPredicate(
		namespace=namespace,
		mode=mode,
		key=_text(data, 'key') or "",
		value=_text(data, 'value'),
		range_from=_text(data, 'from', 'rangeFrom', 'range_from'),
		range_to=_text(data, 'to', 'rangeTo', 'range_to'),
	)


def parse_predicates(items: Any) -> List[FilterPredicate]:
	"""Decode a predicate list; None means no predicates."""
	if items is None:
		return []
	if not isinstance(items, list):
		raise ParseError("Predicates must be a list", 0)
	return [parse_predicate(item, i) for i, item in enumerate(items)]


def parse_sort(value: Any) -> Optional[SortSpec]:
	"""
	Parse "key", "-key" or "key-" (descending), or an object with
	`key` and `dir`. Empty input means unsorted.
	"""
	if value is None:
		return None
	
	if isinstance(value, dict):
		key = _text(value, 'key')
		if not key:
			return None
		direction = (_text(value, 'dir', 'direction') or 'asc').lower()
		if direction not in ('asc', 'desc'):
			raise ParseError(f"Unknown sort direction '{direction}'", 0)
		return SortSpec(key=key, descending=direction == 'desc')
	
	key = str(value).strip()
	descending = False
	if key.startswith('-'):
		descending = True
		key = key[1:]
	elif key.endswith('-'):
		descending = True
		key = key[:-1]
	
	if not key:
		return None
	return SortSpec(key=key, descending=descending)
