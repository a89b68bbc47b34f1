import logging
from typing import Any, Dict, Optional

from .fetcher import ArchiveFetcher
from .metadata import MetadataStoreClient
from .models import SeriesRow

logger = logging.getLogger(__name__)

# Display fallbacks: (target, source). Applied to the row only, never stored.
FALLBACKS = (
	("StudyDate", "SeriesDate"),
	("PatientName", "PatientID"),
)


def native_attributes(resource: Optional[Dict[str, Any]]) -> Dict[str, str]:
	"""The resource's main tags as a str -> str map."""
	if not resource:
		return {}
	tags = resource.get("MainDicomTags")
	if not isinstance(tags, dict):
		return {}
	return {str(k): "" if v is None else str(v) for k, v in tags.items()}


def slice_count(series: Dict[str, Any]) -> int:
	count = series.get("InstancesCount")
	if isinstance(count, int) and not isinstance(count, bool) and count >= 0:
		return count
	instances = series.get("Instances")
	if isinstance(instances, list):
		return len(instances)
	return 0


def apply_fallbacks(attributes: Dict[str, str]) -> Dict[str, str]:
	for target, source in FALLBACKS:
		if not attributes.get(target) and attributes.get(source):
			attributes[target] = attributes[source]
	return attributes


class TagAggregator:
	"""Builds one SeriesRow from the series, its study, its patient and its custom tags."""

	def __init__(self, fetcher: ArchiveFetcher, metadata: MetadataStoreClient):
		self.fetcher = fetcher
		self.metadata = metadata

	def aggregate(self, series_id: str, hint: Optional[Dict[str, str]] = None) -> SeriesRow:
		"""
		Resolve a series into a row. Missing parents only drop their own
		attributes; a series that cannot be fetched yields an empty row.
		"""
		series = self.fetcher.get_resource("series", series_id)
		if series is None:
			logger.warning(f"[{series_id}] series detail unavailable, emitting empty row")
			return SeriesRow(id=series_id)
		
		# 1. Series
		series_tags = native_attributes(series)
		study_id = series.get("ParentStudy")
		slices = slice_count(series)
		
		# 2. Study
		study_tags: Dict[str, str] = {}
		patient_id = None
		if study_id:
			study = self.fetcher.get_resource("studies", study_id)
			if study is None:
				logger.info(f"[{series_id}] parent study {study_id} unavailable")
			else:
				study_tags = native_attributes(study)
				patient_id = study.get("ParentPatient")
		
		# 3. Patient
		patient_tags: Dict[str, str] = {}
		if patient_id:
			patient = self.fetcher.get_resource("patients", patient_id)
			if patient is None:
				logger.info(f"[{series_id}] parent patient {patient_id} unavailable")
			else:
				patient_tags = native_attributes(patient)
		
		# 4. Most specific level wins, the find hint over everything
		attributes: Dict[str, str] = {}
		attributes.update(patient_tags)
		attributes.update(study_tags)
		attributes.update(series_tags)
		attributes.update({str(k): "" if v is None else str(v) for k, v in (hint or {}).items()})
		
		# 5. Display fallbacks
		apply_fallbacks(attributes)
		
		# 6. Custom tags
		try:
			custom_tags = self.metadata.get_tags(series_id)
		except Exception as e:
			logger.warning(f"[{series_id}] custom tags unavailable: {e}")
			custom_tags = {}
		
		return SeriesRow(
			id=series_id,
			slice_count=slices,
			attributes=attributes,
			custom_tags=custom_tags,
		)
