from pathlib import Path

import pytest
from typer.testing import CliRunner

from chatrelay import __version__, cli


def test_version_flag() -> None:
    result = CliRunner().invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_run_with_invalid_config_exits(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda **_: None)
    for name in ("TGBOT_API_TOKEN", "OPENAI_API_KEY", "WHITELIST_CHAT_IDS"):
        monkeypatch.delenv(name, raising=False)
    config_file = tmp_path / "chatrelay.toml"
    config_file.write_text('openai_api_key = "sk"\n')

    result = CliRunner().invoke(cli.app, ["run", "--config", str(config_file)])

    assert result.exit_code == 1
    assert "bot_token" in result.output


def test_run_starts_relay_with_settings(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    seen = []

    async def fake_run_relay(settings) -> None:
        seen.append(settings)

    monkeypatch.setattr(cli, "run_relay", fake_run_relay)
    monkeypatch.setattr(cli, "setup_logging", lambda **_: None)
    for name in ("TGBOT_API_TOKEN", "OPENAI_API_KEY", "WHITELIST_CHAT_IDS"):
        monkeypatch.delenv(name, raising=False)
    config_file = tmp_path / "chatrelay.toml"
    config_file.write_text(
        'bot_token = "1:abc"\nopenai_api_key = "sk"\nallowed_chat_ids = [100]\n'
    )

    result = CliRunner().invoke(cli.app, ["run", "--config", str(config_file)])

    assert result.exit_code == 0
    assert seen[0].allowed_chat_ids == [100]
