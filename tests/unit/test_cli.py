"""Unit tests for the command line interface."""

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from newsunfurl.cli import app
from newsunfurl.services.legacy_format import build_legacy_token

runner = CliRunner()


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep the CLI from reconfiguring structlog during tests."""
    with patch("newsunfurl.cli.setup_logging"):
        yield


class TestDecodeCommand:
    """Tests for `newsunfurl decode`."""

    def test_decodes_legacy_token(self) -> None:
        """Should print the destination of a legacy token."""
        token = build_legacy_token(["http://93.184.216.34/news/1"])

        result = runner.invoke(app, ["decode", token])

        assert result.exit_code == 0
        assert "http://93.184.216.34/news/1" in result.output

    def test_blocked_destination_fails(self) -> None:
        """Should exit 1 and report a permanent failure for private targets."""
        token = build_legacy_token(["http://10.0.0.1/admin"])

        result = runner.invoke(app, ["decode", token])

        assert result.exit_code == 1
        assert "SSRF blocked address" in result.output
        assert "permanent" in result.output

    def test_unrecognized_input_fails(self) -> None:
        """Should exit 1 for input that is not a token."""
        result = runner.invoke(app, ["decode", "hello"])

        assert result.exit_code == 1
        assert "not a Google News token" in result.output


class TestClassifyCommand:
    """Tests for `newsunfurl classify`."""

    @pytest.mark.parametrize(
        "message,expected",
        [("HTTP 404", "permanent"), ("HTTP 503", "retryable"), ("odd failure", "retryable")],
    )
    def test_classify(self, message: str, expected: str) -> None:
        """Should print the failure class."""
        result = runner.invoke(app, ["classify", message])

        assert result.exit_code == 0
        assert result.output.strip().splitlines()[-1] == expected


class TestBackoffCommand:
    """Tests for `newsunfurl backoff`."""

    def test_backoff(self) -> None:
        """Should print a delay inside the expected range."""
        result = runner.invoke(app, ["backoff", "1"])

        assert result.exit_code == 0
        seconds = float(result.output.strip().splitlines()[-1].rstrip("s"))
        assert 120 <= seconds < 130

    def test_negative_attempt(self) -> None:
        """Should reject negative attempt counts."""
        result = runner.invoke(app, ["backoff", "--", "-1"])

        assert result.exit_code != 0
