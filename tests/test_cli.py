"""Command line entry point and server composition."""

import asyncio
import logging
import socket
from contextlib import suppress

import pytest

from core import server
from infrastructure.configuration import Settings
from infrastructure.monitoring import configure_logging
from tlsgate import cli, metrics
from tlsgate.listener import TLSListener
from tlsgate.tls import TLSServerConfig


@pytest.fixture(autouse=True)
def reset_logging(monkeypatch: pytest.MonkeyPatch):
    for name in ("TLSGATE_PORT", "TLSGATE_HOST", "TLSGATE_HOSTNAMES"):
        monkeypatch.delenv(name, raising=False)
    yield
    logger = logging.getLogger("tlsgate")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


def test_parser_defaults_leave_environment_in_charge() -> None:
    args = cli.build_parser().parse_args([])
    assert all(value is None for value in vars(args).values())


def test_parser_collects_hostnames() -> None:
    args = cli.build_parser().parse_args(
        ["--hostname", "a.test", "--hostname", "::1", "--tickets", "off", "--port", "0"]
    )
    assert args.hostnames == ["a.test", "::1"]
    assert args.tickets == "off"
    assert args.port == 0


def test_unknown_ticket_policy_is_a_usage_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--tickets", "rotate"])
    assert excinfo.value.code == 2


def test_bad_hostname_fails(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--host", "127.0.0.1", "--port", "0", "--hostname", "bad host!"]) == 1
    err = capsys.readouterr().err
    assert err.startswith("FAILED: CERTIFICATE_GENERATION_ERROR")


def test_port_in_use_fails(capsys: pytest.CaptureFixture[str]) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen()
        port = taken.getsockname()[1]
        assert cli.main(["--host", "127.0.0.1", "--port", str(port)]) == 1
    captured = capsys.readouterr()
    assert "FAILED: " in captured.err
    assert "Starting to serve" not in captured.out


def test_invalid_environment_fails(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("TLSGATE_PORT", "eighty")
    assert cli.main([]) == 1
    assert capsys.readouterr().err.startswith("FAILED: TLSGATE_PORT")


def test_serve_prints_url(capsys: pytest.CaptureFixture[str]) -> None:
    async def scenario() -> str:
        task = asyncio.create_task(server.serve(Settings(host="127.0.0.1", port=0)))
        out = ""
        for _ in range(500):
            await asyncio.sleep(0.01)
            out += capsys.readouterr().out
            if out:
                break
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        return out

    out = asyncio.run(scenario())
    assert out.startswith("Starting to serve on https://127.0.0.1:")
    assert int(out.strip().rsplit(":", 1)[1]) > 0


def test_ipv6_url_is_bracketed(tls_config: TLSServerConfig) -> None:
    async def noop(stream, result) -> None:
        return None

    listener = TLSListener(tls_config, noop)
    assert listener.url == "https://[::1]:8001"


def test_metrics_exporter_binds_loopback(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []
    monkeypatch.setattr(metrics, "start_http_server", lambda port, addr: calls.append((port, addr)))
    metrics.start_exporter(9100)
    assert calls == [(9100, "127.0.0.1")]


def test_configure_logging_installs_one_handler() -> None:
    configure_logging("debug")
    logger = configure_logging("WARNING")
    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 1
