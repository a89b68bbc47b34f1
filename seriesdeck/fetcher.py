import json
import logging
import requests
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from .errors import MalformedPayloadError, NotFoundError, TransportError

logger = logging.getLogger(__name__)

RESOURCE_KINDS = ("series", "studies", "patients")


def segment(value: str) -> str:
	"""Percent-encode a single path segment (identifiers, metadata keys)."""
	return quote(str(value), safe="")


class ArchiveFetcher:
	"""
	Stateless access to the archive's REST API.

	`get_json` and the other read helpers never raise: any transport error,
	non-2xx status or undecodable body comes back as None. Mutating calls
	raise `TransportError` / `NotFoundError`.
	"""

	def __init__(self, base_url: str, timeout: float = 30, session: Optional[requests.Session] = None):
		self.base_url = base_url.rstrip("/")
		self.timeout = timeout
		self.session = session if session is not None else requests.Session()
		
		self.session.headers.update({
			"Accept": "application/json",
			"User-Agent": "seriesdeck/1.0",
		})

	def url(self, path: str) -> str:
		"""Absolute URL for an archive path."""
		return f"{self.base_url}{'' if path.startswith('/') else '/'}{path}"

	def request(self, method: str, path: str, **kwargs) -> requests.Response:
		"""
		Modular request wrapper handling timeouts and logging.
		Status codes are left to the caller; only network failures raise.
		"""
		url = self.url(path)
		try:
			kwargs.setdefault("timeout", self.timeout)
			resp = self.session.request(method, url, **kwargs)
			logger.debug(f"{method} {url} -> {resp.status_code}")
			return resp
		except requests.RequestException as e:
			logger.warning(f"Request failed: {method} {url} - {e}")
			raise TransportError(f"{method} {path} failed: {e}") from e

	def get_json(self, path: str) -> Optional[Any]:
		"""GET a JSON document, or None."""
		try:
			resp = self.request("GET", path)
		except TransportError:
			return None
		
		if resp.status_code == 404:
			logger.debug(f"Not found: {path}")
			return None
		if not resp.ok:
			logger.warning(f"GET {path} returned {resp.status_code}: {resp.text[:200]}")
			return None
		
		try:
			return resp.json()
		except ValueError as e:
			logger.warning(f"GET {path} returned invalid JSON: {e}")
			return None

	def get_resource(self, kind: str, resource_id: str) -> Optional[Dict[str, Any]]:
		"""Fetch `/<kind>/<id>` detail; None unless it is a JSON object."""
		if kind not in RESOURCE_KINDS:
			raise ValueError(f"Unknown resource kind: {kind}")
		if not resource_id:
			return None
		
		data = self.get_json(f"/{kind}/{segment(resource_id)}")
		if data is not None and not isinstance(data, dict):
			logger.warning(f"/{kind}/{resource_id} is not an object, ignoring")
			return None
		return data

	def find_series(self, query: Optional[Dict[str, Any]] = None, requested_tags: Optional[List[str]] = None) -> Optional[List[Any]]:
		"""
		Series-level find. Returns the raw item list, [] for a payload that is
		not a list, or None when the archive could not be queried.
		"""
		body = {
			"Level": "Series",
			"Query": query or {},
			"RequestedTags": list(requested_tags or []),
		}
		
		try:
			resp = self.request("POST", "/tools/find", json=body)
		except TransportError:
			return None
		
		if not resp.ok:
			logger.error(f"Find failed: {resp.status_code} {resp.text[:200]}")
			return None
		
		try:
			raw = resp.json()
		except ValueError:
			raw = None
		
		if not isinstance(raw, list):
			err = MalformedPayloadError("Find result is not a list", resp.status_code)
			logger.error(f"{err}: {json.dumps(raw)[:200] if raw is not None else resp.text[:200]}")
			return []
		
		return raw

	def upload_instances(self, data, content_type: str = "application/dicom") -> Any:
		"""POST a dataset (or zip of datasets) to `/instances`."""
		resp = self.request("POST", "/instances", data=data, headers={"Content-Type": content_type})
		if not resp.ok:
			raise TransportError(f"Upload failed: {resp.text[:200]}", resp.status_code)
		
		try:
			return resp.json()
		except ValueError:
			return None

	def delete_series(self, series_id: str) -> None:
		resp = self.request("DELETE", f"/series/{segment(series_id)}")
		if resp.status_code == 404:
			raise NotFoundError(f"Series not found: {series_id}", 404)
		if not resp.ok:
			raise TransportError(f"Delete failed: {resp.text[:200]}", resp.status_code)
		logger.info(f"Deleted series {series_id}")

	def archive_url(self, series_id: str) -> str:
		"""Direct URL of the zip export of a series."""
		return self.url(f"/series/{segment(series_id)}/archive")

	def stream_archive(self, series_id: str) -> requests.Response:
		"""Open a streaming download of the zip export. Caller closes it."""
		resp = self.request("GET", f"/series/{segment(series_id)}/archive", stream=True)
		if resp.status_code == 404:
			resp.close()
			raise NotFoundError(f"Series not found: {series_id}", 404)
		if not resp.ok:
			status = resp.status_code
			resp.close()
			raise TransportError("Archive export failed", status)
		return resp
