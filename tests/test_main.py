"""Tests for the entry point."""

import sys
from unittest.mock import patch

import pytest

from synaptide import main as entry
from synaptide.config import AppConfig


def test_unknown_command_exits(monkeypatch, capsys) -> None:
    monkeypatch.setattr(sys, "argv", ["synaptide", "bot"])

    with patch.object(entry, "load_dotenv"), pytest.raises(SystemExit) as exc_info:
        entry.main()

    assert exc_info.value.code == 2
    assert "usage" in capsys.readouterr().err


def test_serve_runs_uvicorn(monkeypatch) -> None:
    monkeypatch.setattr(sys, "argv", ["synaptide"])
    config = AppConfig(host="0.0.0.0", port=9000)

    with (
        patch.object(entry, "load_dotenv"),
        patch.object(entry, "load_config", return_value=config),
        patch.object(entry, "uvicorn") as mock_uvicorn,
    ):
        entry.main()

    mock_uvicorn.run.assert_called_once()
    assert mock_uvicorn.run.call_args.kwargs == {"host": "0.0.0.0", "port": 9000}
