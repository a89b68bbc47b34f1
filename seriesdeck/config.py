import json
from pathlib import Path
from typing import List
from dataclasses import dataclass, asdict, field
import logging
import os

logger = logging.getLogger(__name__)


# Attributes asked for on every series-level find, so the common table
# columns are known without a second round trip. Bump the suffix when the
# set changes.
REQUESTED_TAGS_V1 = [
	"PatientName",
	"PatientID",
	"SeriesDescription",
	"Modality",
	"BodyPartExamined",
	"SeriesNumber",
	"SeriesDate",
	"SeriesTime",
	"StudyInstanceUID",
	"SeriesInstanceUID",
	# Detail panel
	"AccessionNumber",
	"InstitutionName",
	"ReferringPhysicianName",
	"ProtocolName",
	"StudyDescription",
	"StudyID",
]

ENV_PREFIX = "SERIESDECK_"


@dataclass
class ArchiveConfig:
	"""Connection settings for the remote archive."""
	base_url: str = "http://localhost:8042"
	viewer_root: str = "http://localhost/ohif"
	metadata_key: str = "4096"  # Series-level key holding the custom tags document
	timeout: float = 30
	max_workers: int = 8  # Parallel aggregations during a load
	probe_index: bool = True  # Consult the metadata index before a direct read
	requested_tags: List[str] = field(default_factory=lambda: list(REQUESTED_TAGS_V1))
	
	def to_dict(self) -> dict:
		return asdict(self)
	
	@classmethod
	def from_dict(cls, data: dict) -> 'ArchiveConfig':
		# Only use known fields
		known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
		return cls(**known)
	
	def save(self, path: Path):
		"""Save config to JSON file."""
		path = Path(path)
		path.parent.mkdir(parents=True, exist_ok=True)
		with open(path, 'w', encoding='utf-8') as f:
			json.dump(self.to_dict(), f, indent=2)
		logger.debug(f"Saved archive config to {path}")
	
	@classmethod
	def load(cls, path: Path) -> 'ArchiveConfig':
		"""Load config from JSON file, or return defaults if not found."""
		path = Path(path)
		if not path.exists():
			logger.debug(f"No config found at {path}, using defaults")
			return cls()
		
		try:
			with open(path, 'r', encoding='utf-8') as f:
				data = json.load(f)
			if not isinstance(data, dict):
				logger.warning(f"Config at {path} is not an object, using defaults")
				return cls()
			return cls.from_dict(data)
		except (json.JSONDecodeError, IOError) as e:
			logger.warning(f"Failed to load config: {e}, using defaults")
			return cls()
	
	def apply_env(self, environ=None) -> 'ArchiveConfig':
		"""Override fields from SERIESDECK_* environment variables."""
		environ = os.environ if environ is None else environ
		
		if environ.get(f"{ENV_PREFIX}ARCHIVE_URL"):
			self.base_url = environ[f"{ENV_PREFIX}ARCHIVE_URL"]
		if environ.get(f"{ENV_PREFIX}VIEWER_ROOT"):
			self.viewer_root = environ[f"{ENV_PREFIX}VIEWER_ROOT"]
		if environ.get(f"{ENV_PREFIX}METADATA_KEY"):
			self.metadata_key = environ[f"{ENV_PREFIX}METADATA_KEY"]
		
		for name, cast in (("TIMEOUT", float), ("MAX_WORKERS", int)):
			raw = environ.get(f"{ENV_PREFIX}{name}")
			if not raw:
				continue
			try:
				setattr(self, name.lower(), cast(raw))
			except ValueError:
				logger.warning(f"Ignoring invalid {ENV_PREFIX}{name}={raw!r}")
		
		return self
	
	@classmethod
	def from_env(cls, environ=None) -> 'ArchiveConfig':
		return cls().apply_env(environ)
	
	def validate(self) -> bool:
		"""Validate config consistency."""
		if not self.base_url:
			logger.error("Archive base URL is required")
			return False
		if not str(self.metadata_key).strip():
			logger.error("Metadata key cannot be empty")
			return False
		if self.max_workers < 1:
			logger.error("max_workers must be at least 1")
			return False
		if self.timeout <= 0:
			logger.error("Timeout must be positive")
			return False
		return True
