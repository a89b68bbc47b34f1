import logging
from functools import wraps
from typing import Optional, Tuple
from urllib.parse import quote

from flask import Blueprint, request, jsonify, current_app, Response, stream_with_context

from seriesdeck.errors import (
	ArchiveError, ConcurrencyConflictError, NotFoundError
)
from seriesdeck.models import SeriesRow
from seriesdeck_server.query import (
	QueryExecutor, KeyCatalog, ParseError, parse_predicates, parse_sort
)

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


def get_loader():
	"""Get the collection loader of this app."""
	return current_app.config["SERIESDECK_LOADER"]


def current_rows():
	"""The loaded row set, loading it on first use."""
	return get_loader().ensure_loaded()


def reload_after_edit():
	"""Re-aggregate the rows so listings show the stored tags."""
	loader = get_loader()
	if loader.is_loaded:
		loader.refresh()


def archive_error_response(e: ArchiveError):
	"""Map archive errors onto HTTP statuses."""
	if isinstance(e, ConcurrencyConflictError):
		return jsonify({"error": e.message, "conflict": True, "retryable": True}), 409
	if isinstance(e, NotFoundError):
		return jsonify({"error": e.message}), 404
	return jsonify({"error": e.message, "status": e.status}), 502


def handles_archive_errors(f):
	"""Decorator turning archive write failures into JSON errors."""
	@wraps(f)
	def decorated(*args, **kwargs):
		try:
			return f(*args, **kwargs)
		except ArchiveError as e:
			logger.warning(f"{request.method} {request.path} failed: {e}")
			return archive_error_response(e)
	return decorated


def build_viewer_url(row: SeriesRow, viewer_root: str) -> Optional[str]:
	"""Viewer link for the row's study, None without a study UID."""
	study_uid = (row.attributes or {}).get("StudyInstanceUID")
	if not study_uid:
		return None
	return f"{viewer_root.rstrip('/')}/viewer?StudyInstanceUIDs={quote(study_uid, safe='')}"


def _tags_body() -> Tuple[dict, Optional[str]]:
	"""
	Tags and base version token of an edit. Accepts {"tags": {...}, "etag": ...}
	or a bare tag object; an If-Match header also carries the token.
	"""
	data = request.get_json(silent=True)
	if not isinstance(data, dict):
		raise ParseError("Body must be a JSON object", 0)
	
	if "tags" in data:
		tags = data["tags"]
		etag = data.get("etag")
	else:
		tags = data
		etag = None
	if not isinstance(tags, dict):
		raise ParseError("Tags must be an object", 0)
	
	etag = etag or request.headers.get("If-Match") or None
	return tags, etag


# ============ Rows ============

@api_bp.route("/status", methods=["GET"])
def status():
	"""Archive settings and row set summary."""
	loader = get_loader()
	archive_config = current_app.config["ARCHIVE_CONFIG"]
	
	return jsonify({
		"archive": archive_config.base_url,
		"viewer": archive_config.viewer_root,
		"metadata_key": archive_config.metadata_key,
		"loaded": loader.is_loaded,
		"loaded_at": loader.loaded_at,
		"row_count": len(loader.snapshot()),
	})


@api_bp.route("/series", methods=["GET"])
def list_series():
	"""Every loaded series row."""
	rows = current_rows()
	return jsonify({"series": [row.to_dict() for row in rows], "total": len(rows)})


@api_bp.route("/series/refresh", methods=["POST"])
def refresh_series():
	"""Reload the whole row set from the archive."""
	rows = get_loader().refresh()
	return jsonify({"success": True, "total": len(rows)})


@api_bp.route("/series/query", methods=["POST"])
def query_series():
	"""Filter (and optionally sort) the loaded rows."""
	data = request.get_json(silent=True) or {}
	
	try:
		predicates = parse_predicates(data.get("predicates"))
		sort = parse_sort(data.get("sort"))
	except ParseError as e:
		return jsonify({
			"error": f"Filter parse error: {e.message}",
			"position": e.position
		}), 400
	
	result = QueryExecutor().execute(current_rows(), str(data.get("query") or ""), predicates, sort)
	
	return jsonify({
		"success": True,
		"series": [row.to_dict() for row in result.rows],
		"total": result.total_count,
		"matched": result.matched_count,
		"query_time_ms": result.query_time_ms
	})


@api_bp.route("/keys", methods=["GET"])
def list_keys():
	"""Keys offered by the filter bar, per namespace."""
	return jsonify(KeyCatalog(current_rows()).to_dict())


# ============ Custom Tags ============

@api_bp.route("/series/<series_id>/tags", methods=["GET"])
def get_custom_tags(series_id: str):
	"""Current custom tags document, read from the archive."""
	result = get_loader().metadata.read(series_id)
	return jsonify({"tags": result.document, "etag": result.etag})


@api_bp.route("/series/<series_id>/tags", methods=["PUT"])
@handles_archive_errors
def replace_custom_tags(series_id: str):
	"""
	Store the editor's full tag set. The body carries the etag the editor
	read with; a stale one answers 409.
	"""
	try:
		tags, etag = _tags_body()
	except ParseError as e:
		return jsonify({"error": e.message}), 400
	
	written = get_loader().metadata.replace(series_id, tags, etag)
	reload_after_edit()
	return jsonify({"success": True, "tags": written})


@api_bp.route("/series/<series_id>/tags", methods=["PATCH"])
@handles_archive_errors
def merge_custom_tags(series_id: str):
	"""Merge tags into the stored document."""
	try:
		tags, _ = _tags_body()
	except ParseError as e:
		return jsonify({"error": e.message}), 400
	
	written = get_loader().metadata.write(series_id, tags)
	reload_after_edit()
	return jsonify({"success": True, "tags": written})


@api_bp.route("/series/<series_id>/tags/<path:key>", methods=["PUT"])
@handles_archive_errors
def set_custom_tag(series_id: str, key: str):
	data = request.get_json(silent=True)
	if not isinstance(data, dict) or "value" not in data:
		return jsonify({"error": "value required"}), 400
	
	try:
		written = get_loader().metadata.set_tag(series_id, key, data["value"])
	except ValueError as e:
		return jsonify({"error": str(e)}), 400
	reload_after_edit()
	return jsonify({"success": True, "tags": written})


@api_bp.route("/series/<series_id>/tags/<path:key>", methods=["DELETE"])
@handles_archive_errors
def delete_custom_tag(series_id: str, key: str):
	written = get_loader().metadata.delete_tag(series_id, key)
	reload_after_edit()
	return jsonify({"success": True, "tags": written})


# ============ Series Actions ============

@api_bp.route("/series/<series_id>", methods=["DELETE"])
@handles_archive_errors
def delete_series(series_id: str):
	"""Delete a series from the archive and reload the rows."""
	loader = get_loader()
	loader.fetcher.delete_series(series_id)
	loader.metadata.cache.invalidate(series_id)
	rows = loader.refresh()
	return jsonify({"success": True, "total": len(rows)})


@api_bp.route("/series/<series_id>/archive", methods=["GET"])
@handles_archive_errors
def download_series(series_id: str):
	"""Stream the series as a zip archive."""
	upstream = get_loader().fetcher.stream_archive(series_id)
	
	def generate():
		try:
			for chunk in upstream.iter_content(chunk_size=8192):
				if chunk:
					yield chunk
		finally:
			upstream.close()
	
	return Response(
		stream_with_context(generate()),
		mimetype="application/zip",
		headers={"Content-Disposition": f'attachment; filename="{series_id}.zip"'}
	)


@api_bp.route("/series/<series_id>/viewer", methods=["GET"])
def viewer_link(series_id: str):
	"""Viewer URL for the study containing this series."""
	archive_config = current_app.config["ARCHIVE_CONFIG"]
	
	row = next((r for r in current_rows() if r.id == series_id), None)
	if row is None:
		return jsonify({"error": "Series not found"}), 404
	
	url = build_viewer_url(row, archive_config.viewer_root)
	if url is None:
		return jsonify({"error": "Missing StudyInstanceUID"}), 400
	return jsonify({"url": url})


@api_bp.route("/upload", methods=["POST"])
def upload():
	"""Import uploaded datasets or zip archives, then reload the rows."""
	files = request.files.getlist("files") or request.files.getlist("file")
	if not files:
		return jsonify({"error": "No file provided"}), 400
	
	items = [(f.filename or "file", f.read()) for f in files]
	result = current_app.config["SERIESDECK_INGESTOR"].upload_streams(items)
	
	if result.uploaded:
		get_loader().refresh()
	
	status = 200 if result.success else 502
	return jsonify(result.to_dict()), status
