"""Command-line interface tests."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from retrocsp.__main__ import main


class TestRetrofitCommand:
    def test_prints_header_and_plans(self, capsys):
        assert main(["retrofit", "script-src 'strict-dynamic' https:; navigate-to 'self'"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert "https:" not in result["header"]
        assert result["header"].endswith("form-action 'self'")
        assert result["retrofittingNonce"]
        assert [plan["kind"] for plan in result["plans"]] == ["strict-dynamic", "navigate-to"]

    def test_disable(self, capsys):
        assert main(["retrofit", "navigate-to 'self'", "--disable", "navigate-to"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["header"] == "navigate-to 'self'"
        assert result["plans"] == []
        assert result["retrofittingNonce"] is None

    def test_unknown_disable_choice(self):
        with pytest.raises(SystemExit):
            main(["retrofit", "navigate-to 'self'", "--disable", "bogus"])

    def test_empty_policy(self, capsys):
        assert main(["retrofit", " ; "]) == 1
        assert "no policy found" in capsys.readouterr().err


class TestCheckCommands:
    def test_url_allowed(self, capsys):
        code = main(["check-url", "https://example.com/next", "--policy", "navigate-to 'self'",
                     "--origin", "https://example.com"])
        assert code == 0
        assert capsys.readouterr().out.strip() == "allow"

    def test_url_blocked(self, capsys):
        code = main(["check-url", "https://evil.test/", "--policy", "navigate-to 'self'",
                     "--origin", "https://example.com"])
        assert code == 1
        assert capsys.readouterr().out.strip() == "block"

    def test_url_without_navigate_to(self, capsys):
        code = main(["check-url", "https://evil.test/", "--policy", "script-src 'self'",
                     "--origin", "https://example.com"])
        assert code == 0
        assert capsys.readouterr().out.strip() == "passthrough"

    def test_script_allowed(self, capsys, sha256_source):
        policy = f"script-src 'unsafe-hashes' {sha256_source('alert(1)')}"
        assert main(["check-script", "alert(1)", "--policy", policy]) == 0
        assert capsys.readouterr().out.strip() == "allow"

    def test_script_blocked(self, capsys, sha256_source):
        policy = f"script-src 'unsafe-hashes' {sha256_source('alert(1)')}"
        assert main(["check-script", "alert(2)", "--policy", policy]) == 1
        assert capsys.readouterr().out.strip() == "block"

    def test_script_blocked_by_policy_without_hashes(self, capsys):
        """A script-src with no hashes or 'unsafe-inline' blocks every handler."""
        assert main(["check-script", "alert(1)", "--policy", "script-src 'self'"]) == 1
        assert capsys.readouterr().out.strip() == "block"

    def test_script_blocked_by_default_src(self, capsys):
        assert main(["check-script", "alert(1)", "--policy", "default-src 'self'"]) == 1
        assert capsys.readouterr().out.strip() == "block"

    def test_script_allowed_by_unsafe_inline(self, capsys):
        assert main(["check-script", "alert(1)", "--policy", "script-src 'self' 'unsafe-inline'"]) == 0
        assert capsys.readouterr().out.strip() == "allow"

    def test_script_allowed_without_script_directive(self, capsys):
        assert main(["check-script", "alert(1)", "--policy", "img-src 'self'"]) == 0
        assert capsys.readouterr().out.strip() == "allow"

    def test_script_blocked_when_any_policy_restricts(self, capsys):
        policy = "script-src 'unsafe-inline', script-src 'self'"
        assert main(["check-script", "alert(1)", "--policy", policy]) == 1
        assert capsys.readouterr().out.strip() == "block"


class TestServeCommand:
    def test_runs_uvicorn(self):
        with patch("uvicorn.run") as run:
            assert main(["serve", "--port", "9999"]) == 0
        run.assert_called_once_with("retrocsp.main:app", host="0.0.0.0", port=9999)

    def test_port_from_settings(self, monkeypatch):
        monkeypatch.setenv("RETROCSP_LISTEN_PORT", "8181")
        with patch("uvicorn.run") as run:
            main(["serve"])
        assert run.call_args.kwargs["port"] == 8181


def test_no_command(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_serve_help_mentions_page_runtime(capsys):
    with pytest.raises(SystemExit):
        main(["serve", "--help"])
    assert "window.__retroCSP" in capsys.readouterr().out
