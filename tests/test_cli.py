"""
Tests for stockmeta command-line interface.

This module tests the Typer CLI commands, parameter parsing, output validation,
and error handling using CliRunner.
"""

from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from stockmeta import __version__
from stockmeta.api import RequestRejectedError
from stockmeta.cli import app
from stockmeta.core.state import CredentialHealth, KeyState, fingerprint


class TestCLIRunner:
    """Test CLI commands using Typer's CliRunner."""

    runner: CliRunner = None  # type: ignore[assignment]

    def setup_method(self):
        """Set up test runner for each test."""
        self.runner = CliRunner()

    def test_cli_help_command(self):
        """Test main CLI help output."""
        result = self.runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "generate" in result.stdout
        assert "keys" in result.stdout

    def test_version_command(self):
        """Test version command output."""
        result = self.runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert f"stockmeta version {__version__}" in result.stdout

    def test_generate_help_command(self):
        """Test generate command help output."""
        result = self.runner.invoke(app, ["generate", "--help"])

        assert result.exit_code == 0
        assert "--platform" in result.stdout
        assert "--keyword-suffix" in result.stdout


class TestConfigCommand:
    """Test the config command."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_config_command_success(self, sample_settings):
        """Test configuration is shown with masked keys."""
        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ):
            result = self.runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert "gemini-1.5-flash" in result.stdout
        assert "AIzaSyTe...1234" in result.stdout
        assert "AIzaSyTestKeyNumberOne1234" not in result.stdout

    def test_config_command_with_show_path(self, sample_settings, clean_env):
        """Test --show-path reports the file in the working directory."""
        (clean_env["work"] / "stockmeta.toml").write_text("")

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ):
            result = self.runner.invoke(app, ["config", "--show-path"])

        assert result.exit_code == 0
        assert "Configuration file:" in result.stdout

    def test_config_command_environment_only(self, sample_settings, clean_env):
        """Test --show-path without any file."""
        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ):
            result = self.runner.invoke(app, ["config", "--show-path"])

        assert result.exit_code == 0
        assert "Configuration from environment variables" in result.stdout

    def test_config_command_load_error(self):
        """Test config command with a configuration error."""
        with patch(
            "stockmeta.cli.load_config",
            new=AsyncMock(side_effect=FileNotFoundError("No configuration file found")),
        ):
            result = self.runner.invoke(app, ["config"])

        assert result.exit_code == 1
        assert "Error loading configuration" in result.stdout


class TestKeysCommand:
    """Test the keys command."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_keys_command_mixed(self, sample_settings):
        """Test each key is probed and reported masked."""
        probe = AsyncMock(side_effect=[True, False])

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch("stockmeta.cli.validate_api_key", new=probe):
            result = self.runner.invoke(app, ["keys"])

        assert result.exit_code == 0
        assert "1 of 2 keys are valid" in result.stdout
        assert "AIzaSyTe...5678" in result.stdout
        assert probe.await_count == 2

    def test_keys_command_none_valid(self, sample_settings):
        """Test exit code 1 when no key passes the probe."""
        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch("stockmeta.cli.validate_api_key", new=AsyncMock(return_value=False)):
            result = self.runner.invoke(app, ["keys"])

        assert result.exit_code == 1
        assert "0 of 2 keys are valid" in result.stdout


class TestGenerateCommand:
    """Test the generate command."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_generate_command_success(
        self, sample_settings, image_files, sample_response, tmp_path
    ):
        """Test a full batch writes the platform CSV."""
        output_dir = tmp_path / "csv"
        describe = AsyncMock(return_value=sample_response)

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch(
            "stockmeta.cli.validate_api_key", new=AsyncMock(return_value=True)
        ), patch("stockmeta.core.generation.describe_image", new=describe):
            result = self.runner.invoke(
                app,
                [
                    "generate",
                    *[str(p) for p in image_files],
                    "--platform",
                    "freepik",
                    "--output-dir",
                    str(output_dir),
                    "--keyword-suffix",
                    "stock",
                ],
            )

        assert result.exit_code == 0, result.stdout
        assert "Saved to:" in result.stdout
        assert describe.await_count == 2

        exports = list(output_dir.glob("Freepik-metadata_*.csv"))
        assert len(exports) == 1
        lines = exports[0].read_text(encoding="utf-8").split("\n")
        assert lines[0] == "File name;Title;Keywords;Prompt;Base-Model"
        assert lines[1].startswith("fox.png;")
        assert "stock" in lines[1]
        assert lines[2].startswith("owl.jpg;")

    def test_generate_command_file_extension(
        self, sample_settings, image_files, sample_response, tmp_path
    ):
        """Test exported filenames take the requested extension."""
        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch(
            "stockmeta.cli.validate_api_key", new=AsyncMock(return_value=True)
        ), patch(
            "stockmeta.core.generation.describe_image",
            new=AsyncMock(return_value=sample_response),
        ):
            result = self.runner.invoke(
                app,
                [
                    "generate",
                    str(image_files[0]),
                    "--output-dir",
                    str(tmp_path / "csv"),
                    "--file-extension",
                    "jpg",
                ],
            )

        assert result.exit_code == 0, result.stdout
        export = next((tmp_path / "csv").glob("AdobeStock-metadata_*.csv"))
        assert export.read_text(encoding="utf-8").split("\n")[1].startswith("fox.jpg,")

    def test_generate_command_no_valid_keys(self, sample_settings, image_files):
        """Test the batch does not start without an admitted key."""
        describe = AsyncMock()

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch(
            "stockmeta.cli.validate_api_key", new=AsyncMock(return_value=False)
        ), patch("stockmeta.core.generation.describe_image", new=describe):
            result = self.runner.invoke(app, ["generate", str(image_files[0])])

        assert result.exit_code == 1
        assert "No valid API key available" in result.stdout
        describe.assert_not_awaited()

    def test_generate_command_all_items_fail(
        self, sample_settings, image_files, tmp_path
    ):
        """Test exit code 1 and no export when every item fails."""
        output_dir = tmp_path / "csv"

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch(
            "stockmeta.cli.validate_api_key", new=AsyncMock(return_value=True)
        ), patch(
            "stockmeta.core.generation.describe_image",
            new=AsyncMock(side_effect=RequestRejectedError("Forbidden", 403)),
        ), patch(
            "stockmeta.core.generation.asyncio.sleep", new=AsyncMock()
        ):
            result = self.runner.invoke(
                app,
                ["generate", str(image_files[0]), "--output-dir", str(output_dir)],
            )

        assert result.exit_code == 1
        assert "Failed to generate metadata for fox.png" in result.stdout
        assert not output_dir.exists()

    def test_generate_command_config_error(self, image_files):
        """Test generate command with a configuration error."""
        with patch(
            "stockmeta.cli.load_config",
            new=AsyncMock(side_effect=FileNotFoundError("No configuration file found")),
        ):
            result = self.runner.invoke(app, ["generate", str(image_files[0])])

        assert result.exit_code == 1
        assert "No configuration file found" in result.stdout

    def test_generate_command_missing_image(self, sample_settings, tmp_path):
        """Test a missing image is reported before any key is probed."""
        probe = AsyncMock(return_value=True)

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch("stockmeta.cli.validate_api_key", new=probe):
            result = self.runner.invoke(
                app, ["generate", str(tmp_path / "missing.png")]
            )

        assert result.exit_code == 1
        assert "Image file not found" in result.stdout
        probe.assert_not_awaited()

    def test_generate_command_invalid_platform(self, sample_settings, image_files):
        """Test an unknown platform name is rejected."""
        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ):
            result = self.runner.invoke(
                app, ["generate", str(image_files[0]), "--platform", "Pinterest"]
            )

        assert result.exit_code == 1
        assert "Error:" in result.stdout


def _write_key_state(path, health_by_secret):
    state = KeyState(
        credentials={
            fingerprint(secret): CredentialHealth(**health)
            for secret, health in health_by_secret.items()
        }
    )
    path.write_text(state.model_dump_json(), encoding="utf-8")


def _read_key_state(path):
    return KeyState.model_validate_json(path.read_text(encoding="utf-8")).credentials


class TestKeyHealthPersistence:
    """Test that key health is carried between CLI runs."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_generate_records_key_health(
        self, sample_settings, image_files, sample_response, tmp_path
    ):
        """Test failures from a batch are written to the state file."""
        first, second = sample_settings.auth.api_keys
        state_file = sample_settings.defaults.state_file

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch(
            "stockmeta.cli.validate_api_key", new=AsyncMock(return_value=True)
        ), patch(
            "stockmeta.core.generation.describe_image",
            new=AsyncMock(
                side_effect=[
                    RequestRejectedError("Forbidden", 403),
                    sample_response,
                    sample_response,
                ]
            ),
        ), patch(
            "stockmeta.core.generation.asyncio.sleep", new=AsyncMock()
        ):
            result = self.runner.invoke(
                app,
                [
                    "generate",
                    *[str(p) for p in image_files],
                    "--output-dir",
                    str(tmp_path / "csv"),
                ],
            )

        assert result.exit_code == 0, result.stdout
        recorded = _read_key_state(state_file)
        assert recorded[fingerprint(first)].failure_count == 1
        assert recorded[fingerprint(second)].failure_count == 0
        assert recorded[fingerprint(second)].last_used_at is not None
        assert first not in state_file.read_text(encoding="utf-8")

    def test_generate_keeps_recorded_failures(
        self, sample_settings, image_files, sample_response, tmp_path
    ):
        """Test a new run starts from the recorded health instead of resetting it."""
        first, second = sample_settings.auth.api_keys
        state_file = sample_settings.defaults.state_file
        _write_key_state(
            state_file,
            {first: {"failure_count": 15, "is_valid": False}, second: {"failure_count": 4}},
        )

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch(
            "stockmeta.cli.validate_api_key", new=AsyncMock(return_value=True)
        ), patch(
            "stockmeta.core.generation.describe_image",
            new=AsyncMock(return_value=sample_response),
        ):
            result = self.runner.invoke(
                app,
                ["generate", str(image_files[0]), "--output-dir", str(tmp_path / "csv")],
            )

        assert result.exit_code == 0, result.stdout
        recorded = _read_key_state(state_file)
        assert recorded[fingerprint(first)].failure_count == 15
        assert recorded[fingerprint(first)].is_valid is False
        assert recorded[fingerprint(second)].failure_count == 4

    def test_keys_shows_recorded_failures(self, sample_settings):
        """Test the keys table reports exhausted keys from the state file."""
        first, second = sample_settings.auth.api_keys
        _write_key_state(
            sample_settings.defaults.state_file,
            {second: {"failure_count": 16, "is_valid": False}},
        )

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch("stockmeta.cli.validate_api_key", new=AsyncMock(return_value=True)):
            result = self.runner.invoke(app, ["keys"])

        assert result.exit_code == 0
        assert "exhausted" in result.stdout
        assert "16" in result.stdout

    def test_keys_reset_clears_failures(self, sample_settings):
        """Test --reset restores every key and records it."""
        first, second = sample_settings.auth.api_keys
        state_file = sample_settings.defaults.state_file
        _write_key_state(
            state_file,
            {
                first: {"failure_count": 12},
                second: {"failure_count": 15, "is_valid": False},
            },
        )

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch("stockmeta.cli.validate_api_key", new=AsyncMock(return_value=True)):
            result = self.runner.invoke(app, ["keys", "--reset"])

        assert result.exit_code == 0, result.stdout
        assert "Reset failure counts for 2 API keys" in result.stdout
        recorded = _read_key_state(state_file)
        assert [h.failure_count for h in recorded.values()] == [0, 0]
        assert all(h.is_valid for h in recorded.values())

    def test_corrupt_state_is_reported(self, sample_settings):
        """Test an unreadable state file is reported and ignored."""
        sample_settings.defaults.state_file.write_text("{broken", encoding="utf-8")

        with patch(
            "stockmeta.cli.load_config", new=AsyncMock(return_value=sample_settings)
        ), patch("stockmeta.cli.validate_api_key", new=AsyncMock(return_value=True)):
            result = self.runner.invoke(app, ["keys"])

        assert result.exit_code == 0
        assert "Ignoring key state" in result.stdout
        assert "2 of 2 keys are valid" in result.stdout
