"""Tests for the command-line entry point."""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

from piilens.main import DEFAULT_HOST, DEFAULT_PORT, main, parse_args


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestMain:
    def test_defaults(self):
        args = parse_args([])
        assert (args.host, args.port, args.config) == (DEFAULT_HOST, DEFAULT_PORT, None)
        assert (DEFAULT_HOST, DEFAULT_PORT) == ("127.0.0.1", 8910)

    def test_starts_uvicorn(self, monkeypatch):
        monkeypatch.setenv("PIILENS_OCR_ENGINE", "text")
        with patch("piilens.main.uvicorn.run") as run:
            main(["--port", "9000"])
        _, kwargs = run.call_args
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 9000
        assert kwargs["log_config"] is None
