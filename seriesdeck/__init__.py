from .config import ArchiveConfig, REQUESTED_TAGS_V1
from .errors import (
	ArchiveError, NotFoundError, TransportError, MalformedPayloadError,
	ConcurrencyConflictError, MetadataWriteError
)
from .models import SeriesMatch, SeriesRow, MetadataReadResult, UploadResult
from .fetcher import ArchiveFetcher
from .metadata import MetadataStoreClient, ExistenceCache, parse_document
from .aggregator import TagAggregator
from .loader import CollectionLoader, decode_match
from .ingestor import Ingestor

__version__ = "1.0.0"
