"""
I/O utilities for stockmeta package.

This module reads uploaded images from disk and turns them into
``GenerationItem`` records.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Union

import aiofiles

from ..models import GenerationItem

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"

SUPPORTED_EXTENSIONS = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


class FileReadError(Exception):
    """Raised when an image file cannot be read."""

    pass


class UnsupportedImageError(FileReadError):
    """Raised for files that are neither JPG nor PNG."""

    pass


def detect_mime_type(data: bytes, filename: str = "") -> str:
    """
    Determine the mime type of image data.

    The file signature wins over the extension.

    Raises:
        UnsupportedImageError: If the data is neither PNG nor JPEG
    """
    if data.startswith(PNG_SIGNATURE):
        return "image/png"
    if data.startswith(JPEG_SIGNATURE):
        return "image/jpeg"

    mime_type = SUPPORTED_EXTENSIONS.get(Path(filename).suffix.lower())
    if mime_type is None:
        raise UnsupportedImageError(f"Only JPG and PNG images are supported: {filename}")
    return mime_type


async def read_image_from_path(path: Union[str, Path]) -> bytes:
    """
    Read an image file asynchronously.

    Raises:
        FileReadError: If the file is missing, empty or unreadable
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise FileReadError(f"Image file not found: {file_path}")

    try:
        async with aiofiles.open(file_path, "rb") as f:
            data = await f.read()
    except OSError as e:
        raise FileReadError(f"Failed to read image {file_path}: {e}") from e

    if not data:
        raise FileReadError(f"Image file is empty: {file_path}")
    return data


async def load_generation_items(
    paths: Iterable[Union[str, Path]],
) -> List[GenerationItem]:
    """Read each path into a ``GenerationItem``, preserving order."""
    items = []
    for path in paths:
        file_path = Path(path)
        data = await read_image_from_path(file_path)
        items.append(
            GenerationItem(
                display_name=file_path.name,
                image_bytes=data,
                mime_type=detect_mime_type(data, file_path.name),
            )
        )
    logger.debug(f"Loaded {len(items)} images")
    return items
