"""Pytest configuration and fixtures."""

import json
import threading
from urllib.parse import unquote, urlsplit

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from seriesdeck.fetcher import ArchiveFetcher
from seriesdeck.metadata import MetadataStoreClient

BASE_URL = "http://archive.test"
METADATA_KEY = "4096"


def make_response(status: int = 200, body=b"", headers=None, url: str = "") -> requests.Response:
	"""Build a real, fully consumed requests.Response."""
	headers = dict(headers or {})
	if isinstance(body, (dict, list)):
		body = json.dumps(body).encode("utf-8")
		headers.setdefault("Content-Type", "application/json")
	elif isinstance(body, str):
		body = body.encode("utf-8")
	
	resp = requests.Response()
	resp.status_code = status
	resp._content = body
	resp._content_consumed = True
	resp.headers = CaseInsensitiveDict(headers)
	resp.encoding = "utf-8"
	resp.url = url
	return resp


class FakeArchive(requests.Session):
	"""
	In-memory archive behind the requests.Session seam.

	Routes by (method, path) and records every call in `calls` as
	(method, path, kwargs).
	"""

	def __init__(self):
		super().__init__()
		self.series = {}
		self.studies = {}
		self.patients = {}
		self.metadata = {}          # series id -> (stored text, etag)
		self.find_result = []
		self.index_mode = "dict"    # "dict", "list" or "down"
		self.reject_plain = False   # PUT with text/plain answers 400
		self.reject_all_puts = False
		self.overrides = {}         # (method, path) -> [responses] or exception
		self.uploads = []
		self.deleted = []
		self.calls = []
		self._etag_counter = 0
		self._lock = threading.Lock()

	# ---- fixture helpers ----

	def add_series(self, series_id, tags=None, study=None, instances_count=None, instances=None):
		detail = {"ID": series_id, "MainDicomTags": dict(tags or {})}
		if study:
			detail["ParentStudy"] = study
		if instances_count is not None:
			detail["InstancesCount"] = instances_count
		if instances is not None:
			detail["Instances"] = instances
		self.series[series_id] = detail

	def add_study(self, study_id, tags=None, patient=None):
		detail = {"ID": study_id, "MainDicomTags": dict(tags or {})}
		if patient:
			detail["ParentPatient"] = patient
		self.studies[study_id] = detail

	def add_patient(self, patient_id, tags=None):
		self.patients[patient_id] = {"ID": patient_id, "MainDicomTags": dict(tags or {})}

	def store_tags(self, series_id, text):
		self._etag_counter += 1
		self.metadata[series_id] = (text, f'"rev-{self._etag_counter}"')

	def stored_document(self, series_id):
		from seriesdeck.metadata import parse_document
		entry = self.metadata.get(series_id)
		return parse_document(entry[0]) if entry else None

	def etag_of(self, series_id):
		return self.metadata[series_id][1]

	def calls_to(self, method, path):
		return [c for c in self.calls if c[0] == method and c[1] == path]

	# ---- routing ----

	def request(self, method, url, **kwargs):
		parts = [unquote(p) for p in urlsplit(url).path.split("/") if p]
		path = "/" + "/".join(parts)
		with self._lock:
			self.calls.append((method, path, kwargs))
			
			override = self.overrides.get((method, path))
			if isinstance(override, Exception):
				raise override
			if override:
				return override.pop(0)
			
			return self._route(method, parts, kwargs, url)

	def _route(self, method, parts, kwargs, url):
		if method == "POST" and parts == ["tools", "find"]:
			return make_response(200, self.find_result, url=url)
		
		if method == "POST" and parts == ["instances"]:
			data = kwargs.get("data")
			if hasattr(data, "read"):
				data = data.read()
			self.uploads.append((kwargs.get("headers", {}).get("Content-Type"), data))
			return make_response(200, {"Status": "Success"}, url=url)
		
		if len(parts) == 2 and parts[0] in ("series", "studies", "patients"):
			store = {"series": self.series, "studies": self.studies, "patients": self.patients}[parts[0]]
			if method == "GET":
				if parts[1] in store:
					return make_response(200, store[parts[1]], url=url)
				return make_response(404, {"Message": "Unknown resource"}, url=url)
			if method == "DELETE" and parts[0] == "series":
				if parts[1] not in self.series:
					return make_response(404, url=url)
				del self.series[parts[1]]
				self.deleted.append(parts[1])
				return make_response(200, {}, url=url)
		
		if len(parts) == 3 and parts[0] == "series" and parts[2] == "archive":
			if parts[1] not in self.series:
				return make_response(404, url=url)
			return make_response(200, b"PK\x03\x04zipdata", {"Content-Type": "application/zip"}, url=url)
		
		if len(parts) == 3 and parts[0] == "series" and parts[2] == "metadata":
			if self.index_mode == "down":
				return make_response(500, "index unavailable", url=url)
			names = [METADATA_KEY] if parts[1] in self.metadata else []
			names.append("RemoteAET")
			if self.index_mode == "list":
				return make_response(200, names, url=url)
			return make_response(200, {name: name for name in names}, url=url)
		
		if len(parts) == 4 and parts[0] == "series" and parts[2] == "metadata":
			series_id = parts[1]
			if method == "GET":
				if series_id not in self.metadata:
					return make_response(404, url=url)
				text, etag = self.metadata[series_id]
				return make_response(200, text, {"ETag": etag, "Content-Type": "text/plain"}, url=url)
			if method == "PUT":
				return self._put_metadata(series_id, kwargs, url)
		
		return make_response(404, {"Message": "Unknown route"}, url=url)

	def _put_metadata(self, series_id, kwargs, url):
		headers = kwargs.get("headers") or {}
		if self.reject_all_puts:
			return make_response(400, "Bad request", url=url)
		if self.reject_plain and headers.get("Content-Type", "").startswith("text/plain"):
			return make_response(415, "Unsupported media type", url=url)
		
		expected = headers.get("If-Match")
		if expected is not None and series_id in self.metadata and self.metadata[series_id][1] != expected:
			return make_response(412, "Precondition failed", url=url)
		
		body = kwargs.get("data")
		if isinstance(body, bytes):
			body = body.decode("utf-8")
		self.store_tags(series_id, body)
		return make_response(200, "", url=url)


@pytest.fixture
def archive():
	return FakeArchive()


@pytest.fixture
def fetcher(archive):
	return ArchiveFetcher(BASE_URL, timeout=5, session=archive)


@pytest.fixture
def metadata(fetcher):
	return MetadataStoreClient(fetcher, key=METADATA_KEY)


def tag_path(series_id: str) -> str:
	return f"/series/{series_id}/metadata/{METADATA_KEY}"


def index_path(series_id: str) -> str:
	return f"/series/{series_id}/metadata"
