#!/usr/bin/env python3
"""Upload an SPR voter CSV file to a running API server in chunks"""
import asyncio
import sys
from pathlib import Path
from constituency.client import ConstituencyAPIClient, ChunkedVoterImporter
from constituency.models.schemas import ImportProgress
from constituency.services.shared.csv_utils import summarize_errors
from constituency.services.shared.exceptions import CsvValidationError


def print_progress(progress: ImportProgress):
    print(f"  {progress.current}/{progress.total} rows ({progress.percentage}%)")


async def import_voters(base_url: str, email: str, version_id: int, csv_path: Path) -> int:
    """Upload the file and print a summary; returns the process exit code"""
    csv_text = csv_path.read_text(encoding="utf-8-sig")

    async with ConstituencyAPIClient(base_url, user_email=email) as client:
        importer = ChunkedVoterImporter(client)
        print(f"Importing {csv_path.name} into version {version_id}...")
        try:
            result = await importer.import_csv(version_id, csv_text, on_progress=print_progress)
        except CsvValidationError as e:
            print(f"Error: {e.message}")
            return 1

    print(f"\nImported {result.imported} of {result.total_rows} rows")
    if result.failed_chunks:
        print(f"{result.failed_chunks} of {result.chunks} chunks failed")
    if result.errors:
        print(f"\n{len(result.errors)} errors:")
        for line in summarize_errors(result.errors):
            print(f"  {line}")

    return 0 if result.failed_chunks == 0 else 2


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description='Import SPR voters from a CSV file')
    parser.add_argument('csv_file', type=Path, help='SPR CSV export with a Nama column')
    parser.add_argument('--version-id', type=int, required=True, help='Voter version to import into')
    parser.add_argument('--email', required=True, help='Email of a super admin or ADUN staff member')
    parser.add_argument('--base-url', default='http://localhost:8000', help='API server URL')
    args = parser.parse_args()

    exit_code = asyncio.run(import_voters(args.base_url, args.email, args.version_id, args.csv_file))
    sys.exit(exit_code)
