"""
AI service integration for stockmeta package.

This module provides integration with Google's Generative AI service for
image description, including credential probing and classification of
remote failures into the error taxonomy the retry engine acts on.
"""

import asyncio
import logging
from typing import Optional

import google.genai as genai
from google.genai import errors as genai_errors
from google.genai import types

# Configure logging for this module
logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-1.5-flash"

RATE_LIMIT_MARKERS = (
    "429",
    "quota",
    "rate limit",
    "rate_limit_exceeded",
    "resource has been exhausted",
    "resource_exhausted",
    "too many requests",
)

NETWORK_MARKERS = ("network", "connection", "timeout", "timed out")


class APIError(Exception):
    """Base exception for API-related errors."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(APIError):
    """Raised on HTTP 429 or quota exhaustion; retryable."""

    pass


class RequestRejectedError(APIError):
    """Raised when the endpoint rejects the request (400, 403, other 4xx)."""

    pass


class InvalidResponseError(APIError):
    """Raised when API returns an invalid response."""

    pass


class NetworkError(APIError):
    """Raised for network-related errors."""

    pass


_STATUS_MESSAGES = {
    429: "Rate limit exceeded",
    403: "API key quota exceeded or invalid",
    400: "Invalid request, please check your API key",
}


def _status_code(exc: Exception) -> Optional[int]:
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    return None


def _classify_exception(exc: Exception) -> APIError:
    """
    Classify exceptions into the error taxonomy.

    The HTTP status carried by SDK errors decides first; the lowercase
    message is only inspected when no status is available.

    Args:
        exc: The original exception

    Returns:
        APIError: Classified exception
    """
    if isinstance(exc, APIError):
        return exc

    detail = getattr(exc, "message", None) or str(exc)
    status = _status_code(exc) if isinstance(exc, genai_errors.APIError) else None

    if status is not None:
        summary = _STATUS_MESSAGES.get(status, f"API error {status}")
        message = f"{summary}: {detail}"
        if status == 429:
            return RateLimitedError(message, status_code=status)
        if 400 <= status < 500:
            return RequestRejectedError(message, status_code=status)
        return APIError(message, status_code=status)

    exc_str = str(exc).lower()

    if any(marker in exc_str for marker in RATE_LIMIT_MARKERS):
        return RateLimitedError(f"Rate limit exceeded: {exc}")

    if isinstance(exc, (ConnectionError, TimeoutError)) or any(
        marker in exc_str for marker in NETWORK_MARKERS
    ):
        return NetworkError(f"Network error: {exc}")

    return APIError(f"API error: {exc}")


def is_rate_limit(exc: BaseException) -> bool:
    """Return True if the exception belongs to the rate-limit class."""
    if isinstance(exc, RateLimitedError):
        return True
    if isinstance(exc, APIError) and exc.status_code is not None:
        return exc.status_code == 429
    text = str(exc).lower()
    return any(marker in text for marker in RATE_LIMIT_MARKERS)


def _make_client(api_key: str, base_url: Optional[str] = None) -> genai.Client:
    if base_url:
        return genai.Client(
            api_key=api_key, http_options=types.HttpOptions(base_url=base_url)
        )
    return genai.Client(api_key=api_key)


async def describe_image(
    prompt: str,
    image_bytes: bytes,
    api_key: str,
    model: str = DEFAULT_MODEL,
    mime_type: str = "image/jpeg",
    base_url: Optional[str] = None,
) -> str:
    """
    Ask the model to describe an image and return the raw candidate text.

    Args:
        prompt: Instruction text sent alongside the image
        image_bytes: Raw JPG or PNG data
        api_key: Google Generative AI API key
        model: AI model to use
        mime_type: Mime type of ``image_bytes``
        base_url: Optional override of the endpoint base URL

    Returns:
        str: Text of the first candidate

    Raises:
        RateLimitedError: On 429 or quota exhaustion
        RequestRejectedError: On 400, 403 and other 4xx responses
        InvalidResponseError: When the response carries no text
        NetworkError: For network-related issues
        APIError: For other API errors
        ValueError: For invalid parameters
    """
    if not prompt.strip():
        raise ValueError("Prompt cannot be empty")

    if not api_key.strip():
        raise ValueError("API key cannot be empty")

    if not image_bytes:
        raise ValueError("Image data cannot be empty")

    try:
        client = _make_client(api_key, base_url)

        logger.debug(
            f"Describing image with model {model}, {len(image_bytes)} bytes "
            f"({mime_type})"
        )

        response = await asyncio.to_thread(
            client.models.generate_content,
            model=model,
            contents=[
                prompt,
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
            ],
        )

        if not response or not getattr(response, "candidates", None):
            raise InvalidResponseError("No content generated from API response")

        candidate = response.candidates[0]
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None) if content else None

        text = None
        for part in parts or []:
            part_text = getattr(part, "text", None)
            if isinstance(part_text, str) and part_text.strip():
                text = part_text
                break

        if text is None:
            raise InvalidResponseError("No content generated from API response")

        return text

    except APIError:
        raise
    except Exception as exc:
        classified_exc = _classify_exception(exc)
        logger.debug(f"Image description failed: {classified_exc}")
        raise classified_exc from exc


async def validate_api_key(api_key: str, base_url: Optional[str] = None) -> bool:
    """
    Validate an API key by listing the available models.

    Args:
        api_key: The API key to validate
        base_url: Optional override of the endpoint base URL

    Returns:
        bool: True if the API key is valid, False otherwise
    """
    if not api_key or not api_key.strip():
        return False

    try:
        client = _make_client(api_key.strip(), base_url)
        await asyncio.to_thread(lambda: next(iter(client.models.list()), None))
        return True
    except Exception as exc:
        logger.debug(f"API key probe failed: {_classify_exception(exc)}")
        return False
