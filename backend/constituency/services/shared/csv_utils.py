"""
CSV helpers shared by the voter and reference-data importers and exporters
"""
import csv
from datetime import datetime, timedelta
from io import StringIO
from typing import Dict, Iterable, List, Optional, Sequence

# Serial day number of 1970-01-01 in spreadsheet date systems
EXCEL_EPOCH_SERIAL = 25569
EXCEL_BASE_DATE = datetime(1900, 1, 1)

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d", "%d.%m.%Y", "%Y-%m-%dT%H:%M:%S")


def split_csv_lines(content: str) -> List[str]:
    """Split CSV text into non-blank lines"""
    return [line.rstrip("\r") for line in content.split("\n") if line.strip()]


def parse_csv_line(line: str) -> List[str]:
    """Parse one CSV line, honouring quoted fields that contain commas"""
    rows = list(csv.reader([line], skipinitialspace=True))
    if not rows:
        return []
    return [value.strip() for value in rows[0]]


def build_header_map(header_line: str) -> Dict[str, int]:
    """Map each header column name to its index"""
    return {name: index for index, name in enumerate(parse_csv_line(header_line))}


def get_value(values: Sequence[str], header_map: Dict[str, int], column: str) -> Optional[str]:
    """Value of ``column`` in a parsed row, or None when absent or empty"""
    index = header_map.get(column)
    if index is None or index >= len(values):
        return None
    return values[index] or None


def parse_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def parse_date_of_birth(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a date of birth cell

    Spreadsheet exports store dates as serial day numbers; anything above the
    1970-01-01 serial is treated as one. Other values are parsed as date strings.
    """
    if not value:
        return None

    value = value.strip()
    try:
        serial = float(value)
    except ValueError:
        serial = None

    if serial is not None:
        if serial > EXCEL_EPOCH_SERIAL:
            # Serial 1 is 1900-01-01 and serial 60 is the nonexistent 1900-02-29
            return EXCEL_BASE_DATE + timedelta(days=int(serial) - 2)
        return None

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def cap_errors(errors: List[str], limit: int = 100) -> List[str]:
    """Keep only the first ``limit`` errors"""
    return errors[:limit]


def summarize_errors(errors: List[str], shown: int = 10) -> List[str]:
    """Display lines for an error list, ending with '...and N more errors' when truncated"""
    lines = list(errors[:shown])
    if len(errors) > shown:
        lines.append(f"...and {len(errors) - shown} more errors")
    return lines


def write_csv(header: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    """Render rows as CSV text; fields containing quotes or commas are quoted with doubled quotes"""
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return output.getvalue()
