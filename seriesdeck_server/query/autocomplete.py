"""
Filter Key Catalog

Lists the keys (and their known values) present in the loaded rows, so
the filter bar only offers keys that actually exist.
"""

from typing import Dict, List

from seriesdeck.models import SeriesRow

from .parser import Namespace


def _sorted(values) -> List[str]:
	return sorted(values, key=lambda v: (v.lower(), v))


class KeyCatalog:
	"""Keys and values per namespace, built from a row set."""

	def __init__(self, rows: List[SeriesRow]):
		self.rows = rows

	def _maps(self, namespace: Namespace):
		for row in self.rows:
			if namespace == Namespace.CUSTOM:
				yield row.custom_tags or {}
			else:
				yield row.attributes or {}

	def keys(self, namespace: Namespace) -> List[str]:
		found = set()
		for tags in self._maps(namespace):
			found.update(tags.keys())
		return _sorted(found)

	def values(self, namespace: Namespace, key: str, prefix: str = "", limit: int = 50) -> List[str]:
		"""Distinct non-empty values of `key`, optionally filtered by prefix."""
		prefix = prefix.lower()
		found = set()
		for tags in self._maps(namespace):
			value = tags.get(key)
			if value and str(value).lower().startswith(prefix):
				found.add(str(value))
		return _sorted(found)[:limit]

	def to_dict(self) -> Dict[str, List[str]]:
		return {
			"archive": self.keys(Namespace.ARCHIVE),
			"custom": self.keys(Namespace.CUSTOM),
		}


def collect_keys(rows: List[SeriesRow]) -> Dict[str, List[str]]:
	return KeyCatalog(rows).to_dict()
