"""
Client-side chunked upload of SPR voter CSV files

Large files are sent as a sequence of small requests so that no single request
runs into server or proxy timeouts. Each chunk is retried with exponential
backoff; a chunk that still fails is reported as one error and the upload
carries on with the next chunk.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union
from constituency.config import config
from constituency.models.schemas import ActionResult, ChunkedImportResult, ImportProgress
from constituency.services.shared.csv_utils import build_header_map, cap_errors, split_csv_lines
from constituency.services.shared.exceptions import CsvValidationError
from constituency.services.shared.retry import SleepFunc, retry_with_backoff
from constituency.services.spr_voters.columns import REQUIRED_COLUMN
from .api_client import ConstituencyAPIClient

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ImportProgress], Union[None, Awaitable[None]]]
CompleteCallback = Callable[[ChunkedImportResult], Union[None, Awaitable[None]]]


async def _notify(callback, value):
    if callback is None:
        return
    result = callback(value)
    if asyncio.iscoroutine(result):
        await result


class ChunkedVoterImporter:
    """Uploads an SPR CSV file to a voter version in fixed-size chunks"""

    def __init__(
        self,
        client: ConstituencyAPIClient,
        chunk_size: int = config.IMPORT_CHUNK_SIZE,
        max_retries: int = config.IMPORT_MAX_RETRIES,
        base_delay: float = config.IMPORT_RETRY_BASE_DELAY,
        chunk_pause: float = config.IMPORT_CHUNK_PAUSE_SECONDS,
        max_errors: int = config.MAX_REPORTED_ERRORS,
        sleep: SleepFunc = asyncio.sleep
    ):
        self.client = client
        self.chunk_size = max(1, chunk_size)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.chunk_pause = chunk_pause
        self.max_errors = max_errors
        self.sleep = sleep

    async def _send_chunk(
        self,
        version_id: int,
        header_map,
        chunk,
        start_row_index: int,
        skip_version_check: bool
    ) -> ActionResult:
        try:
            return await retry_with_backoff(
                lambda: self.client.import_chunk(
                    version_id, header_map, chunk, start_row_index, skip_version_check
                ),
                is_success=lambda result: result.success,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                sleep=self.sleep,
            )
        except Exception as e:
            return ActionResult(
                success=False,
                error=f"Network error after {self.max_retries} attempts: {str(e) or type(e).__name__}",
            )

    async def import_csv(
        self,
        version_id: int,
        csv_text: str,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None
    ) -> ChunkedImportResult:
        """
        Upload ``csv_text`` to ``version_id``

        Raises:
            CsvValidationError: the file has no ``Nama`` column or no data rows;
                nothing is sent in that case
        """
        lines = split_csv_lines(csv_text)
        if len(lines) < 2:
            raise CsvValidationError("CSV file must have at least a header and one data row")

        header_map = build_header_map(lines[0])
        if REQUIRED_COLUMN not in header_map:
            raise CsvValidationError(
                f"Missing required column: {REQUIRED_COLUMN}",
                missing_columns=[REQUIRED_COLUMN],
            )

        data_rows = lines[1:]
        total_rows = len(data_rows)
        result = ChunkedImportResult(total_rows=total_rows)
        errors = []

        for start in range(0, total_rows, self.chunk_size):
            chunk = data_rows[start:start + self.chunk_size]
            chunk_number = start // self.chunk_size + 1
            result.chunks += 1

            response = await self._send_chunk(
                version_id, header_map, chunk, start, skip_version_check=chunk_number > 1
            )

            if not response.success:
                result.failed_chunks += 1
                message = (
                    f"Chunk {chunk_number} (rows {start + 1}-{start + len(chunk)}): "
                    f"{response.error or 'Failed to import chunk'}"
                )
                logger.warning(message)
                errors.append(message)
            elif response.data:
                result.imported += response.data.get("imported", 0)
                errors.extend(response.data.get("errors", []))

            processed = min(start + self.chunk_size, total_rows)
            await _notify(on_progress, ImportProgress(
                current=processed,
                total=total_rows,
                percentage=round(processed / total_rows * 100),
            ))

            if processed < total_rows:
                await self.sleep(self.chunk_pause)

        result.errors = cap_errors(errors, self.max_errors)
        logger.info(
            f"Chunked import into version {version_id}: {result.imported}/{total_rows} rows imported, "
            f"{result.failed_chunks} of {result.chunks} chunks failed"
        )
        await _notify(on_complete, result)
        return result
