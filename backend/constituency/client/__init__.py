"""
HTTP client library for the constituency API
"""
from .api_client import ConstituencyAPIClient
from .chunked_importer import ChunkedVoterImporter
from .job_watcher import GeocodingJobWatcher

__all__ = ["ConstituencyAPIClient", "ChunkedVoterImporter", "GeocodingJobWatcher"]
