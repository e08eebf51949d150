"""
Tests for CLI command processing and argument handling

Tests cover:
- Argument parsing
- Fetch command output (JSON and table) and exit codes
- Password resolution
- Configuration errors
"""
import asyncio
import io
import json
import threading
from argparse import Namespace
from unittest.mock import patch

import pytest
from rich.console import Console

from mailfetch.cli import (
    _resolve_password,
    display_emails,
    main,
    run_fetch,
    setup_argument_parser,
)
from .test_helpers import FakeIMAPServer, IMAPTestHelper, closed_port


def _console():
    return Console(file=io.StringIO(), width=200)


def _fetch_argv(port, *extra):
    return [
        "fetch",
        "--host", "127.0.0.1",
        "--port", str(port),
        "--user", "test@example.com",
        "--password", "testpass",
        *extra,
    ]


def _messages(*sequences):
    return {n: IMAPTestHelper.create_fetch_response(n) for n in sequences}


@pytest.fixture
def threaded_server():
    """FakeIMAPServer on its own event loop, for code that calls asyncio.run"""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()

    server = FakeIMAPServer(messages=_messages(1, 2), recent=[1, 2])
    asyncio.run_coroutine_threadsafe(server.start(), loop).result(timeout=5)
    yield server

    asyncio.run_coroutine_threadsafe(server.stop(), loop).result(timeout=5)
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()


class TestArgumentParsing:
    """Tests for the argument parser"""

    def test_fetch_arguments(self):
        args = setup_argument_parser().parse_args(_fetch_argv(143, "--json", "--strict"))

        assert args.command == "fetch"
        assert args.port == 143
        assert args.json is True
        assert args.strict is True

    def test_default_port(self):
        args = setup_argument_parser().parse_args(["fetch", "--host", "h", "--user", "u"])

        assert args.port == 993
        assert args.password is None

    def test_host_required(self):
        with pytest.raises(SystemExit):
            setup_argument_parser().parse_args(["fetch", "--user", "u"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            setup_argument_parser().parse_args([])


class TestPasswordResolution:
    """Tests for where the password comes from"""

    def test_argument_wins(self, monkeypatch):
        monkeypatch.setenv("MAILFETCH_PASSWORD", "from-env")

        assert _resolve_password(Namespace(password="from-arg")) == "from-arg"

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("MAILFETCH_PASSWORD", "from-env")

        assert _resolve_password(Namespace(password=None)) == "from-env"

    def test_prompt_last(self):
        with patch("mailfetch.cli.Prompt.ask", return_value="typed") as mock_ask:
            assert _resolve_password(Namespace(password=None)) == "typed"

        assert mock_ask.call_args.kwargs["password"] is True


class TestRunFetch:
    """Tests for the fetch command"""

    @pytest.mark.asyncio
    async def test_json_output(self):
        server = FakeIMAPServer(messages=_messages(1, 2), recent=[1, 2])
        console = _console()

        async with server:
            args = setup_argument_parser().parse_args(_fetch_argv(server.port, "--json"))
            exit_code = await run_fetch(args, console)

        body = json.loads(console.file.getvalue())
        assert exit_code == 0
        assert body["success"] is True
        assert body["count"] == 2
        assert [e["subject"] for e in body["emails"]] == ["Test Subject", "Test Subject"]

    @pytest.mark.asyncio
    async def test_table_output(self):
        server = FakeIMAPServer(messages=_messages(1), recent=[1])
        console = _console()

        async with server:
            args = setup_argument_parser().parse_args(_fetch_argv(server.port))
            exit_code = await run_fetch(args, console)

        output = console.file.getvalue()
        assert exit_code == 0
        assert "Test Subject" in output
        assert "sender@example.com" in output

    @pytest.mark.asyncio
    async def test_rejected_login_exit_code(self):
        server = FakeIMAPServer(login_ok=False)
        console = _console()

        async with server:
            args = setup_argument_parser().parse_args(_fetch_argv(server.port))
            exit_code = await run_fetch(args, console)

        assert exit_code == 1
        assert "Error:" in console.file.getvalue()

    @pytest.mark.asyncio
    async def test_strict_flag_does_not_touch_shared_settings(self):
        from mailfetch.utils.config_manager import get_config_manager

        args = setup_argument_parser().parse_args(_fetch_argv(closed_port(), "--strict"))

        exit_code = await run_fetch(args, _console())

        assert exit_code == 1
        assert get_config_manager().config.imap.strict_mode is False


class TestDisplay:
    """Tests for table rendering"""

    def test_server_text_is_not_markup(self):
        """Test subjects and senders with brackets print literally"""
        console = _console()
        email = {
            "id": "1-0", "date": "2024-01-01T00:00:00+00:00", "from": "[bold]x@y.z",
            "subject": "[/] Offer [red]", "read": True, "starred": False,
            "hasAttachments": False,
        }

        display_emails([email], console)

        output = console.file.getvalue()
        assert "[/] Offer [red]" in output
        assert "[bold]x@y.z" in output

    def test_empty_batch(self):
        console = _console()

        display_emails([], console)

        assert "No emails" in console.file.getvalue()


class TestMain:
    """Tests for the entry point"""

    def test_fetch_json(self, threaded_server, capsys):
        exit_code = main(_fetch_argv(threaded_server.port, "--json"))

        body = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert body["count"] == 2
        assert threaded_server.fetched == [1, 2]

    def test_strict_closed_port(self, capsys):
        exit_code = main(_fetch_argv(closed_port(), "--strict"))

        assert exit_code == 1
        assert "Error:" in capsys.readouterr().out

    def test_closed_port_without_strict_prints_sample(self, capsys):
        exit_code = main(_fetch_argv(closed_port(), "--json"))

        assert exit_code == 0
        assert "Richiesta preventivo abbattitore" in capsys.readouterr().out

    def test_config_error(self, tmp_path, monkeypatch, capsys):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        monkeypatch.setenv("MAILFETCH_CONFIG", str(path))

        exit_code = main(_fetch_argv(143))

        assert exit_code == 1
        assert "Configuration error" in capsys.readouterr().out
