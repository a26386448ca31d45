"""End-to-end tests for the RateStorm CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from ratestorm import __version__
from ratestorm.cli.app import app

if TYPE_CHECKING:
    from tests.conftest import SyncTarget

runner = CliRunner()


@pytest.fixture(autouse=True)
def _fast_windows(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep shutdown quick so CLI runs finish close to their duration."""
    monkeypatch.setenv("RATESTORM_SHUTDOWN_GRACE", "1")
    monkeypatch.setenv("RATESTORM_TIMEOUT", "2")


# ---------------------------------------------------------------------------
# Tests: version and help
# ---------------------------------------------------------------------------


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_version_short_flag():
    result = runner.invoke(app, ["-V"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "ratestorm" in result.output.lower()


def test_schemes():
    result = runner.invoke(app, ["schemes"])
    assert result.exit_code == 0
    assert "h2" in result.output
    assert "HTTP/2" in result.output
    assert "HTTP/1.1" in result.output
    assert "h3" in result.output
    assert "HTTP/3" in result.output


def test_run_help():
    result = runner.invoke(app, ["run", "--help"])
    assert result.exit_code == 0
    assert "--rate" in result.output
    assert "--concurrency" in result.output
    assert "--duration" in result.output


# ---------------------------------------------------------------------------
# Tests: invalid input
# ---------------------------------------------------------------------------


def test_invalid_url_exits_with_error():
    result = runner.invoke(app, ["run", "not-a-url", "-d", "1s"])
    assert result.exit_code == 1
    assert "Error" in result.output
    assert "Invalid URL" in result.output


@pytest.mark.timeout(30)
@pytest.mark.parametrize(
    "make_url",
    [
        lambda base: base.replace("http://", "ftp://", 1) + "/status",
        lambda base: base.removeprefix("http://") + "/status",
        lambda base: base + ":notaport/status",
    ],
    ids=["unsupported-scheme", "missing-scheme", "bad-port"],
)
def test_invalid_url_sends_no_requests(sync_target: SyncTarget, make_url):
    result = runner.invoke(app, ["run", make_url(sync_target.url), "-r", "50", "-c", "5", "-d", "1s"])

    assert result.exit_code == 1
    assert "Invalid URL" in result.output
    assert "Stress test completed." not in result.output
    assert sync_target.hits == []

    # The same server does receive requests for a valid URL
    ok = runner.invoke(app, ["run", f"{sync_target.url}/status", "-r", "10", "-c", "1", "-d", "0.5s"])
    assert ok.exit_code == 0, f"output: {ok.output}"
    assert sync_target.hits


def test_zero_rate_exits_with_error():
    result = runner.invoke(app, ["run", "http://localhost/", "--rate", "0"])
    assert result.exit_code == 1
    assert "rate must be positive" in result.output


def test_bad_duration_exits_with_error():
    result = runner.invoke(app, ["run", "http://localhost/", "--duration", "forever"])
    assert result.exit_code == 1
    assert "invalid duration" in result.output


def test_invalid_env_setting_exits_with_error(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RATESTORM_CHANNEL_CAPACITY", "zero")
    result = runner.invoke(app, ["run", "http://localhost/", "-d", "1s"])
    assert result.exit_code == 1
    assert "RATESTORM_CHANNEL_CAPACITY" in result.output


# ---------------------------------------------------------------------------
# Tests: ratestorm run
# ---------------------------------------------------------------------------


@pytest.mark.timeout(30)
def test_run_basic(sync_target_server: str):
    result = runner.invoke(
        app,
        [
            "run",
            f"{sync_target_server}/status?code=200",
            "--rate",
            "10",
            "--concurrency",
            "2",
            "--duration",
            "2s",
        ],
    )
    assert result.exit_code == 0, f"output: {result.output}"
    assert "Status Code Summary" in result.output
    assert "Final Status Code Summary" in result.output
    assert "Total Requests" in result.output
    assert "Stress test completed." in result.output


@pytest.mark.timeout(30)
def test_run_reports_server_errors(sync_target_server: str):
    result = runner.invoke(
        app,
        ["run", f"{sync_target_server}/status?code=503", "-r", "10", "-c", "2", "-d", "1s"],
    )
    assert result.exit_code == 0, f"output: {result.output}"
    assert "503" in result.output


@pytest.mark.timeout(30)
def test_fail_on_error_rate(refused_url: str):
    result = runner.invoke(
        app,
        ["run", refused_url, "-r", "10", "-c", "2", "-d", "1s", "--fail-on-error-rate", "0.5"],
    )
    assert result.exit_code == 1
    assert "FAIL" in result.output
    assert "Errors by Type" in result.output


@pytest.mark.timeout(30)
def test_run_with_json_logs(sync_target_server: str):
    result = runner.invoke(
        app,
        ["run", f"{sync_target_server}/echo/json", "-r", "5", "-c", "1", "-d", "1s", "--json-logs"],
    )
    assert result.exit_code == 0, f"output: {result.output}"
    assert "Stress test completed." in result.output
