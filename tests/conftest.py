"""
Shared pytest fixtures for stockmeta test suite.

This module provides reusable fixtures for common test data and mock objects
used across multiple test modules.
"""

from unittest.mock import AsyncMock

import pytest
from rich.console import Console

from stockmeta.config import Auth, Defaults, Settings
from stockmeta.core.credentials import CredentialPool, CredentialRotator
from stockmeta.models import GenerationConfig, GenerationItem, PlatformMetadata

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"fake_image_data" * 100
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"fake_jpeg_data" * 100

SAMPLE_RESPONSE = (
    "Here is the metadata you asked for:\n"
    "TITLE_AI: Red fox resting in a snowy forest clearing\n"
    "KEYWORDS_AI: fox, snow, winter, forest, wildlife\n"
    "DESCRIPTION_AI: A red fox curled up on fresh snow between pine trees.\n"
)


@pytest.fixture
def sample_auth():
    """Provide a sample Auth configuration for testing."""
    return Auth(api_keys=["AIzaSyTestKeyNumberOne1234", "AIzaSyTestKeyNumberTwo5678"])


@pytest.fixture
def sample_defaults(tmp_path):
    """Provide sample default configuration for testing."""
    return Defaults(
        model="gemini-1.5-flash",
        output_path=tmp_path / "out",
        state_file=tmp_path / "key_state.json",
    )


@pytest.fixture
def sample_settings(sample_auth, sample_defaults):
    """Provide a complete Settings configuration for testing."""
    return Settings(auth=sample_auth, defaults=sample_defaults)


@pytest.fixture
def generation_config():
    """Provide a GenerationConfig with small, easy to reason about bounds."""
    return GenerationConfig(
        min_title_words=3,
        max_title_words=8,
        min_keywords=3,
        max_keywords=10,
        min_description_words=5,
        max_description_words=15,
    )


@pytest.fixture
def sample_metadata():
    """Provide a parsed PlatformMetadata."""
    return PlatformMetadata(
        title="Red fox resting in a snowy forest clearing",
        keywords=["fox", "snow", "winter"],
        description="A red fox curled up on fresh snow between pine trees.",
    )


@pytest.fixture
def sample_item():
    """Provide a PNG GenerationItem."""
    return GenerationItem(
        display_name="fox.png", image_bytes=PNG_BYTES, mime_type="image/png"
    )


@pytest.fixture
def make_items():
    """Factory for a list of JPEG GenerationItems."""

    def _make(count):
        return [
            GenerationItem(display_name=f"image_{i}.jpg", image_bytes=JPEG_BYTES)
            for i in range(1, count + 1)
        ]

    return _make


@pytest.fixture
def accepting_probe():
    """Probe that accepts every secret."""
    return AsyncMock(return_value=True)


@pytest.fixture
def make_pool(accepting_probe):
    """Factory building a pool with the given secrets already admitted."""

    async def _make(*secrets):
        pool = CredentialPool(probe=accepting_probe)
        for secret in secrets:
            await pool.add(secret)
        return pool

    return _make


@pytest.fixture
def make_rotator(make_pool):
    """Factory building a rotator over a freshly admitted pool."""

    async def _make(*secrets):
        return CredentialRotator(await make_pool(*secrets))

    return _make


@pytest.fixture
def image_files(tmp_path):
    """Write a PNG and a JPEG to disk and return their paths."""
    png_path = tmp_path / "fox.png"
    jpg_path = tmp_path / "owl.jpg"
    png_path.write_bytes(PNG_BYTES)
    jpg_path.write_bytes(JPEG_BYTES)
    return [png_path, jpg_path]


class _NoOpLiveComponent:
    """A no-op class to replace Rich's live-rendering components during tests."""

    def __init__(self, *args, **kwargs):
        pass  # Absorb all arguments without action.

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False  # Do not suppress exceptions.

    def update(self, *args, **kwargs):
        pass  # Absorb all update calls.

    def add_task(self, *args, **kwargs):
        return 0  # Return a dummy task ID for Progress compatibility


@pytest.fixture(autouse=True)
def mock_rich_live_display(monkeypatch):
    """
    Automatically mocks Rich live-rendering components and the console
    for all tests to ensure speed and deterministic output.
    """
    import stockmeta.cli

    monkeypatch.setattr(stockmeta.cli, "Status", _NoOpLiveComponent)
    monkeypatch.setattr(stockmeta.cli, "Progress", _NoOpLiveComponent)

    # Non-interactive console that still outputs to stdout for CliRunner
    test_console = Console(
        force_terminal=False,
        force_interactive=False,
        no_color=True,
        emoji=False,
        highlight=False,
        width=120,  # Use a fixed width for consistent output wrapping
    )

    monkeypatch.setattr(stockmeta.cli, "console", test_console)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Isolate configuration lookup from the real environment and home."""
    for name in (
        "GOOGLE_API_KEY",
        "GOOGLE_API_KEYS",
        "STOCKMETA_MODEL",
        "STOCKMETA_OUTPUT_PATH",
        "STOCKMETA_PLATFORM",
        "STOCKMETA_BASE_URL",
        "STOCKMETA_STATE_FILE",
    ):
        monkeypatch.delenv(name, raising=False)

    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    return {"home": home, "work": work}


@pytest.fixture
def sample_response():
    """Provide a model response with surrounding chatter."""
    return SAMPLE_RESPONSE


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def jpeg_bytes():
    return JPEG_BYTES
