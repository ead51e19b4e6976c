"""
Tests for the operator CLI.
"""

import pytest
from typer.testing import CliRunner

from cli import app
from tests.conftest import sign


runner = CliRunner()


@pytest.fixture
def captured(tmp_path, monkeypatch):
    monkeypatch.delenv("MP_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("MERCADO_PAGO_WEBHOOK_SECRET", raising=False)
    body = b'{"type":"payment","data":{"id":"P1"}}'
    path = tmp_path / "webhook.json"
    path.write_bytes(body)
    return path, body


class TestDiagnoseSignature:
    def test_finds_matching_secret(self, captured):
        path, body = captured

        result = runner.invoke(
            app,
            [
                "diagnose-signature",
                "--body-file", str(path),
                "--header", sign(body, "old-secret"),
                "--secret", "CURRENT=new-secret",
                "--secret", "ROTATED=old-secret",
            ],
        )

        assert result.exit_code == 0
        assert "Signed with ROTATED" in result.output

    def test_reads_environment_candidates(self, captured, monkeypatch):
        path, body = captured
        monkeypatch.setenv("MP_WEBHOOK_SECRET", "env-secret")

        result = runner.invoke(
            app,
            ["diagnose-signature", "--body-file", str(path), "--header", sign(body, "env-secret")],
        )

        assert result.exit_code == 0
        assert "Signed with MP_WEBHOOK_SECRET" in result.output

    def test_no_match(self, captured):
        path, body = captured

        result = runner.invoke(
            app,
            [
                "diagnose-signature",
                "--body-file", str(path),
                "--header", sign(body, "unknown"),
                "--secret", "CURRENT=new-secret",
            ],
        )

        assert result.exit_code == 1

    def test_malformed_secret_option(self, captured):
        path, body = captured

        result = runner.invoke(
            app,
            ["diagnose-signature", "--body-file", str(path), "--header", sign(body), "--secret", "oops"],
        )

        assert result.exit_code == 2


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output
