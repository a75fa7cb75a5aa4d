from pathlib import Path

import pytest

from geotemp_link import cli


def test_show_config_prints_sections(tmp_path: Path, capsys) -> None:
    config_path = tmp_path / "geotemp-link.cfg"
    config_path.write_text("[broker]\npassword = hunter2\n", encoding="utf-8")

    exit_code = cli.main(["-c", str(config_path), "show-config"])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "[broker]" in output
    assert "[session]" in output
    assert "shared_topic = ENG551/Ashraful/my_temperature" in output
    assert "hunter2" not in output


def test_invalid_config_exits_with_error(tmp_path: Path, capsys) -> None:
    config_path = tmp_path / "geotemp-link.cfg"
    config_path.write_text("[geolocation]\nprovider = satellite\n", encoding="utf-8")

    exit_code = cli.main(["-c", str(config_path), "show-config"])

    assert exit_code == 2
    assert "Invalid configuration" in capsys.readouterr().err


def test_parser_reads_send_arguments() -> None:
    args = cli.build_parser().parse_args(["send", "chat", "hello world"])

    assert args.command == "send"
    assert args.topic == "chat"
    assert args.message == "hello world"


def test_parser_reads_share_temperature() -> None:
    args = cli.build_parser().parse_args(["share", "--temperature", "-5"])

    assert args.temperature == -5


def test_parser_requires_command() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_share_command_uses_app(tmp_path: Path, monkeypatch) -> None:
    calls: list = []

    class FakeApp:
        def __init__(self, config):
            self.config = config

        def configure_logging(self):
            calls.append("logging")

        async def share(self, temperature):
            calls.append(("share", temperature))
            return True

    monkeypatch.setattr(cli, "GeoTempApp", FakeApp)

    exit_code = cli.main(
        ["-c", str(tmp_path / "geotemp-link.cfg"), "share", "--temperature", "12"]
    )

    assert exit_code == 0
    assert calls == ["logging", ("share", 12)]
