from __future__ import annotations

import threading

import pytest

from rvchat.cli import build_parser, main


def client_argv(port: int, username: str, *extra: str) -> list:
    return [
        "--log-level", "ERROR",
        "client",
        "--username", username,
        "--server-host", "127.0.0.1",
        "--server-port", str(port),
        "--bind-host", "127.0.0.1",
        "--register-timeout", "0.2",
        *extra,
    ]


def test_taken_username_exits_with_reason(raw_socket, capsys):
    srv = raw_socket()

    def reply() -> None:
        _, addr = srv.recvfrom(1024)
        srv.sendto(b"ERROR:Username already taken", addr)

    t = threading.Thread(target=reply, daemon=True)
    t.start()

    rc = main(client_argv(srv.getsockname()[1], "carol"))
    t.join(timeout=2.0)

    assert rc == 1
    err = capsys.readouterr().err
    assert "Registration failed" in err
    assert "Username already taken" in err


def test_silent_server_exits_after_retries(raw_socket, capsys):
    srv = raw_socket()

    rc = main(client_argv(srv.getsockname()[1], "carol", "--register-attempts", "2"))

    assert rc == 1
    assert "Registration failed" in capsys.readouterr().err
    assert srv.recvfrom(1024)[0].startswith(b"REGISTER:carol,")


def test_invalid_username_exits_2(raw_socket, capsys):
    srv = raw_socket()

    rc = main(client_argv(srv.getsockname()[1], "a:b"))

    assert rc == 2
    assert "Invalid username" in capsys.readouterr().err


def test_flags_map_onto_arguments():
    args = build_parser().parse_args(
        ["server", "--port", "9100", "--client-timeout", "12", "--reap-interval", "1.5", "--workers", "3"]
    )
    assert (args.port, args.client_timeout, args.reap_interval, args.workers) == (9100, 12.0, 1.5, 3)
    assert args.log_level == "INFO"


def test_subcommand_is_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
