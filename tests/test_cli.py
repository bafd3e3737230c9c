"""
Tests for the CLI interface.
"""
import os
import shutil
import tempfile
from unittest.mock import patch

from typer.testing import CliRunner

from omnidev_usage.cli.main import EXIT_CODE_FAIL, EXIT_CODE_PASS, app

runner = CliRunner()


class TestCLI:
    """Test CLI commands against a temporary SQLite ledger."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "usage.db")

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _invoke(self, *args):
        return runner.invoke(app, [*args, "--db", self.db_path])

    def _record_images(self, count):
        for _ in range(count):
            result = self._invoke("record", "alice", "dall-e-3", "--type", "image")
            assert result.exit_code == EXIT_CODE_PASS

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "--help" in result.output

    def test_log_level_defers_to_environment(self):
        with patch("omnidev_usage.cli.main.configure_logging") as mock_configure:
            runner.invoke(app, ["pricing"])
        mock_configure.assert_called_once_with(None, default="WARNING")

    def test_log_level_option_passed_through(self):
        with patch("omnidev_usage.cli.main.configure_logging") as mock_configure:
            runner.invoke(app, ["--log-level", "debug", "pricing"])
        mock_configure.assert_called_once_with("debug", default="WARNING")

    def test_init_creates_database(self):
        result = self._invoke("init")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert os.path.exists(self.db_path)

    def test_record_and_summary(self):
        """Recorded usage shows up in the summary."""
        result = self._invoke(
            "record", "alice", "gpt-5.1-chat",
            "--provider", "openai", "--tokens-in", "500", "--tokens-out", "1500",
        )
        assert result.exit_code == EXIT_CODE_PASS
        assert "Recorded" in result.output
        assert "2,000 tokens" in result.output

        result = self._invoke("summary", "alice")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage for alice" in result.output
        assert "2,000 / 100,000" in result.output
        assert "98,000 remaining" in result.output
        assert "gpt-5.1-chat" in result.output

    def test_summary_with_tier(self):
        self._invoke("record", "alice", "gpt-5.1", "--tokens-in", "1000")
        result = self._invoke("summary", "alice", "--tier", "pro", "--period", "all")
        assert result.exit_code == EXIT_CODE_PASS
        assert "1,000 / 2,000,000" in result.output

    def test_summary_invalid_period(self):
        result = self._invoke("summary", "alice", "--period", "year")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown period" in result.output

    def test_record_invalid_type(self):
        result = self._invoke("record", "alice", "gpt-5.1", "--type", "audio")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown usage type" in result.output

    def test_check_allowed(self):
        result = self._invoke("check", "alice", "tokens", "--amount", "1000")
        assert result.exit_code == EXIT_CODE_PASS
        assert "ALLOWED" in result.output

    def test_check_limit_reached(self):
        """Ten images exhaust the free image quota."""
        self._record_images(10)

        result = self._invoke("check", "alice", "images")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "LIMIT REACHED" in result.output
        assert "0 of 10 remaining" in result.output

    def test_check_unknown_resource(self):
        result = self._invoke("check", "alice", "minutes")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown quota resource" in result.output

    def test_enforced_record_denied(self):
        self._record_images(10)

        result = self._invoke("record", "alice", "dall-e-3", "--type", "image", "--enforce")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "limit reached" in result.output

        result = self._invoke("summary", "alice")
        assert "Images: 10 / 10" in result.output

    def test_enforced_record_allowed_on_higher_tier(self):
        self._record_images(10)
        result = self._invoke(
            "record", "alice", "dall-e-3", "--type", "image", "--enforce", "--tier", "pro"
        )
        assert result.exit_code == EXIT_CODE_PASS

    def test_reset_single_user(self):
        self._invoke("record", "alice", "gpt-5.1", "--tokens-in", "10")
        result = self._invoke("reset", "alice")
        assert result.exit_code == EXIT_CODE_PASS
        assert "1 user(s)" in result.output

        result = self._invoke("summary", "alice")
        assert "Requests: 0" in result.output

    def test_reset_all_requires_confirm(self):
        self._invoke("record", "alice", "gpt-5.1", "--tokens-in", "10")

        result = self._invoke("reset", "--all")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "--confirm" in result.output

        result = self._invoke("summary", "alice")
        assert "Requests: 1" in result.output

    def test_reset_all_confirmed(self):
        self._invoke("record", "alice", "gpt-5.1", "--tokens-in", "10")
        self._invoke("record", "bob", "gpt-5.1", "--tokens-in", "10")

        result = self._invoke("reset", "--all", "--confirm")
        assert result.exit_code == EXIT_CODE_PASS
        assert "2 user(s)" in result.output

    def test_reset_needs_target(self):
        result = self._invoke("reset")
        assert result.exit_code == EXIT_CODE_FAIL

    def test_reset_rejects_user_and_all(self):
        result = self._invoke("reset", "alice", "--all")
        assert result.exit_code == EXIT_CODE_FAIL

    def test_pricing_lists_models(self):
        result = runner.invoke(app, ["pricing"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "dall-e-3" in result.output
        assert "claude-4.5-haiku" in result.output

    def test_serve_runs_uvicorn(self):
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(app, ["serve", "--port", "9000"])
        assert result.exit_code == EXIT_CODE_PASS
        mock_run.assert_called_once()
        args, kwargs = mock_run.call_args
        assert args[0] == "omnidev_usage.api.app:build_app"
        assert kwargs["factory"] is True
        assert kwargs["port"] == 9000
