import logging
import zipfile
from pathlib import Path
from typing import Iterable, List, Union

from .errors import ArchiveError
from .fetcher import ArchiveFetcher
from .models import UploadResult

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"
DICOM_CONTENT_TYPE = "application/dicom"


def is_zip(path: Path) -> bool:
	if path.suffix.lower() == ".zip":
		return True
	try:
		return zipfile.is_zipfile(path)
	except OSError:
		return False


def expand_paths(paths: Iterable[Union[str, Path]]) -> List[Path]:
	"""Files as given, directories walked recursively (hidden entries skipped)."""
	files = []
	for raw in paths:
		path = Path(raw)
		if path.is_dir():
			for child in sorted(path.rglob("*")):
				if child.is_file() and not any(part.startswith(".") for part in child.relative_to(path).parts):
					files.append(child)
		elif path.is_file():
			files.append(path)
		else:
			logger.warning(f"Skipping missing path: {path}")
	return files


class Ingestor:
	"""Pushes datasets or zip archives of datasets into the archive."""

	def __init__(self, fetcher: ArchiveFetcher):
		self.fetcher = fetcher

	def upload_bytes(self, data: bytes, name: str = "file") -> None:
		zipped = name.lower().endswith(".zip") or data[:4] == b"PK\x03\x04"
		content_type = ZIP_CONTENT_TYPE if zipped else DICOM_CONTENT_TYPE
		logger.info(f"Uploading {name} ({content_type})")
		self.fetcher.upload_instances(data, content_type)

	def upload_file(self, path: Path) -> None:
		content_type = ZIP_CONTENT_TYPE if is_zip(path) else DICOM_CONTENT_TYPE
		logger.info(f"Uploading {path.name} ({content_type})")
		with open(path, 'rb') as f:
			self.fetcher.upload_instances(f, content_type)

	def upload_paths(self, paths: Iterable[Union[str, Path]]) -> UploadResult:
		"""
		A lone zip goes up in one request (bulk import); any other batch is
		sent file by file. A failing file is recorded and the batch continues.
		"""
		files = expand_paths(paths)
		result = UploadResult(total=len(files))
		
		for path in files:
			try:
				self.upload_file(path)
				result.uploaded += 1
			except (ArchiveError, OSError) as e:
				message = f"Upload failed ({path.name}): {e}"
				logger.error(message)
				result.add_error(message)
		
		logger.info(f"Uploaded {result.uploaded}/{result.total} item(s)")
		return result

	def upload_streams(self, items: Iterable) -> UploadResult:
		"""Upload (name, bytes) pairs, e.g. files of a multipart request."""
		items = list(items)
		result = UploadResult(total=len(items))
		
		for name, data in items:
			try:
				self.upload_bytes(data, name)
				result.uploaded += 1
			except ArchiveError as e:
				message = f"Upload failed ({name}): {e}"
				logger.error(message)
				result.add_error(message)
		
		return result
