"""
CSV export of generated metadata in each marketplace's upload format.
"""

import csv
import io
import logging
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import aiofiles

from ..models import GenerationItem, Platform, PlatformMetadata

logger = logging.getLogger(__name__)


class ExportError(Exception):
    """Raised when metadata cannot be exported."""

    pass


RowBuilder = Callable[[str, PlatformMetadata], List[str]]

# platform -> (header, delimiter, row builder)
_LAYOUTS: Dict[Platform, Tuple[List[str], str, RowBuilder]] = {
    Platform.ADOBE_STOCK: (
        ["Filename", "Title", "Keywords"],
        ",",
        lambda name, m: [name, m.title, ",".join(m.keywords)],
    ),
    Platform.FREEPIK: (
        ["File name", "Title", "Keywords", "Prompt", "Base-Model"],
        ";",
        lambda name, m: [name, m.title, ";".join(m.keywords), "", ""],
    ),
    Platform.SHUTTERSTOCK: (
        ["Filename", "Description", "Keywords"],
        ",",
        lambda name, m: [name, m.description, ",".join(m.keywords)],
    ),
}


def change_extension(filename: str, file_extension: str = "original") -> str:
    """Substitute the configured extension, or keep the name as is."""
    if not file_extension or file_extension == "original":
        return filename
    stem = Path(filename).stem if "." in filename else filename
    return f"{stem}{file_extension}"


def export_filename(platform: Platform, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{Platform(platform).value}-metadata_{today.isoformat()}.csv"


def build_platform_csv(
    items: Sequence[GenerationItem],
    platform: Platform,
    file_extension: str = "original",
) -> str:
    """
    Render the upload CSV for one platform.

    Only items holding a result for the platform are included. Fields are
    quoted only when they contain the delimiter, a quote or a newline.

    Raises:
        ExportError: If no item has metadata for the platform
    """
    platform = Platform(platform)
    header, delimiter, build_row = _LAYOUTS[platform]

    rows = []
    for item in items:
        metadata = item.result_for(platform)
        if metadata is not None:
            rows.append(
                build_row(change_extension(item.display_name, file_extension), metadata)
            )

    if not rows:
        raise ExportError(f"No {platform.value} metadata found to export")

    buffer = io.StringIO()
    writer = csv.writer(
        buffer,
        delimiter=delimiter,
        quoting=csv.QUOTE_MINIMAL,
        lineterminator="\n",
    )
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue().rstrip("\n")


async def write_platform_csv(
    items: Sequence[GenerationItem],
    platform: Platform,
    output_dir: Union[str, Path],
    file_extension: str = "original",
) -> Path:
    """Write the platform CSV into ``output_dir`` and return its path."""
    content = build_platform_csv(items, platform, file_extension)

    directory = Path(output_dir)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / export_filename(platform)
        async with aiofiles.open(path, "w", encoding="utf-8", newline="") as f:
            await f.write(content)
    except OSError as e:
        raise ExportError(f"Failed to write CSV export: {e}") from e

    logger.info(f"Exported {Platform(platform).value} metadata to {path}")
    return path
