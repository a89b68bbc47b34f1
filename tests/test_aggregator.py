"""Tests for the tag aggregator."""

import pytest

from seriesdeck.aggregator import TagAggregator, apply_fallbacks, native_attributes, slice_count


@pytest.fixture
def aggregator(fetcher, metadata):
	return TagAggregator(fetcher, metadata)


@pytest.fixture
def hierarchy(archive):
	archive.add_patient("p1", {"PatientID": "X", "PatientName": "Doe^Jane", "PatientSex": "F"})
	archive.add_study("st1", {"PatientID": "Y", "StudyDate": "20240101", "StudyDescription": "Head"}, patient="p1")
	archive.add_series("s1", {"Modality": "CT", "SeriesDate": "20240102", "StudyDescription": "Head CT"},
					   study="st1", instances_count=120)
	return archive


class TestPrecedence:
	"""Tests for attribute merge order."""

	def test_study_overrides_patient(self, hierarchy, aggregator):
		row = aggregator.aggregate("s1")
		assert row.attributes["PatientID"] == "Y"
		assert row.attributes["PatientSex"] == "F"

	def test_series_overrides_study(self, hierarchy, aggregator):
		row = aggregator.aggregate("s1")
		assert row.attributes["StudyDescription"] == "Head CT"

	def test_hint_overrides_everything(self, hierarchy, aggregator):
		row = aggregator.aggregate("s1", {"PatientID": "H", "Modality": "MR", "StudyDescription": "Hinted"})
		assert row.attributes["PatientID"] == "H"
		assert row.attributes["Modality"] == "MR"
		assert row.attributes["StudyDescription"] == "Hinted"

	def test_row_shape(self, hierarchy, aggregator):
		hierarchy.store_tags("s1", '{"Project": "Fenix"}')
		
		row = aggregator.aggregate("s1")
		
		assert row.id == "s1"
		assert row.slice_count == 120
		assert row.custom_tags == {"Project": "Fenix"}


class TestFallbacks:
	"""Tests for display fallbacks."""

	def test_study_date_from_series_date(self, archive, aggregator):
		archive.add_series("s1", {"SeriesDate": "20240102"})
		row = aggregator.aggregate("s1")
		assert row.attributes["StudyDate"] == "20240102"

	def test_existing_study_date_kept(self, hierarchy, aggregator):
		row = aggregator.aggregate("s1")
		assert row.attributes["StudyDate"] == "20240101"

	def test_patient_name_from_patient_id(self, archive, aggregator):
		archive.add_series("s1", {"PatientID": "ANON-7", "PatientName": ""})
		row = aggregator.aggregate("s1")
		assert row.attributes["PatientName"] == "ANON-7"

	def test_fallbacks_are_not_written_back(self, archive, aggregator):
		archive.add_series("s1", {"SeriesDate": "20240102"})
		aggregator.aggregate("s1")
		assert archive.calls_to("PUT", "/series/s1/metadata/4096") == []
		assert "StudyDate" not in archive.series["s1"]["MainDicomTags"]

	def test_apply_fallbacks_without_sources(self):
		assert apply_fallbacks({"Modality": "CT"}) == {"Modality": "CT"}


class TestSliceCount:
	"""Tests for slice counting."""

	def test_explicit_count(self):
		assert slice_count({"InstancesCount": 5, "Instances": ["a"]}) == 5

	def test_instance_list(self):
		assert slice_count({"Instances": ["a", "b", "c"]}) == 3

	def test_default_zero(self):
		assert slice_count({}) == 0

	def test_non_integer_count_ignored(self):
		assert slice_count({"InstancesCount": "7", "Instances": ["a"]}) == 1


class TestDegradation:
	"""Tests for missing levels and failures."""

	def test_missing_study_keeps_series_and_hint(self, archive, aggregator):
		archive.add_series("s1", {"Modality": "CT"}, study="gone", instances=["i1", "i2"])
		
		row = aggregator.aggregate("s1", {"PatientName": "Hinted"})
		
		assert row.attributes == {"Modality": "CT", "PatientName": "Hinted"}
		assert row.slice_count == 2

	def test_missing_patient_keeps_study(self, archive, aggregator):
		archive.add_study("st1", {"StudyDate": "20240101"}, patient="gone")
		archive.add_series("s1", {"Modality": "CT"}, study="st1")
		
		row = aggregator.aggregate("s1")
		
		assert row.attributes == {"Modality": "CT", "StudyDate": "20240101"}

	def test_unresolvable_series_yields_empty_row(self, archive, aggregator):
		row = aggregator.aggregate("missing", {"PatientName": "Hinted"})
		
		assert row.id == "missing"
		assert row.slice_count == 0
		assert row.attributes == {}
		assert row.custom_tags == {}

	def test_metadata_failure_yields_no_custom_tags(self, archive, fetcher):
		class BrokenMetadata:
			def get_tags(self, series_id):
				raise RuntimeError("metadata backend down")
		
		archive.add_series("s1", {"Modality": "CT"})
		row = TagAggregator(fetcher, BrokenMetadata()).aggregate("s1")
		
		assert row.attributes == {"Modality": "CT"}
		assert row.custom_tags == {}

	def test_native_attributes_ignores_bad_shapes(self):
		assert native_attributes(None) == {}
		assert native_attributes({"MainDicomTags": ["x"]}) == {}
		assert native_attributes({"MainDicomTags": {"SeriesNumber": 3}}) == {"SeriesNumber": "3"}
