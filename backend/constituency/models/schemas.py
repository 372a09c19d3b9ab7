from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


class ActionResult(BaseModel):
    """Uniform response body: callers branch on ``success``, never on exceptions"""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None


class ChunkImportRequest(BaseModel):
    header_map: Dict[str, int]
    lines: List[str]
    start_row_index: int = Field(0, ge=0)  # zero-based index of the chunk's first data row
    skip_version_check: bool = False


class CsvContentRequest(BaseModel):
    csv_content: str


class ImportResult(BaseModel):
    imported: int = 0
    errors: List[str] = Field(default_factory=list)


class MatchResult(BaseModel):
    matched: int = 0
    unmatched: int = 0
    total: int = 0


class PopulateResult(BaseModel):
    added: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)


class VersionCreate(BaseModel):
    name: str
    description: Optional[str] = None
    election_date: Optional[datetime] = None
    is_active: bool = False


class VersionSummary(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    election_date: Optional[datetime] = None
    is_active: bool = False
    created_at: Optional[datetime] = None
    voter_count: Optional[int] = None


class GeocodingJobStatus(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    target: str = "voters"  # voters, parliaments, localities
    version_id: Optional[int] = None
    status: str  # pending, running, paused, completed, failed
    total_voters: int = 0
    processed_voters: int = 0
    geocoded_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")

    @property
    def percentage(self) -> int:
        if self.total_voters <= 0:
            return 0
        return round(self.processed_voters / self.total_voters * 100)


class ImportProgress(BaseModel):
    current: int
    total: int
    percentage: int


class ChunkedImportResult(BaseModel):
    imported: int = 0
    errors: List[str] = Field(default_factory=list)
    total_rows: int = 0
    chunks: int = 0
    failed_chunks: int = 0
