from __future__ import annotations

import json

from udpmux import cli


def test_serve_flags_parse():
    args = cli.build_parser().parse_args(["serve", "--port", "0", "--delay", "--echo"])
    assert args.port == 0
    assert args.no_delay is False
    assert args.echo is True

    args = cli.build_parser().parse_args(["serve"])
    assert args.no_delay is None


def test_serve_runs_for_duration(capsys):
    rc = cli.main(["serve", "--host", "127.0.0.1", "--port", "0", "--duration-s", "0.05", "--json"])
    assert rc == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["role"] == "server"
    assert payload["sessions_created"] == 0


def test_send_without_server_reports_failure(capsys):
    rc = cli.main(["send", "--dest-port", "9", "--wait-ms", "50", "--json"])
    assert rc == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["connected"] is False
    assert payload["sent"] == 0


def test_send_rejects_oversized_message(capsys):
    rc = cli.main(["send", "--dest-port", "9", "--message", "x" * 5000, "--json"])
    assert rc == 2
    assert capsys.readouterr().out == ""
