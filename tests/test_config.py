#!/usr/bin/env python3
"""Configuration loading and the --check report."""

import textwrap

from tradehub_app.cli import check_config
from tradehub_app.models import MAX_BOTS, BotConfig, HubConfig


CONFIG_YAML = textwrap.dedent("""
    bots:
      - name: Bot1
        host: 10.0.0.5
        title: LZA
      - name: Bot2
        ip: 10.0.0.6
        port: 6001
        enabled: false
    queue:
      max_size: 10
    timing:
      poll_interval: 0.25
      response_timeout: null
    titles:
      lza:
        partner_payload_offset: 0x46F12F40
    payloads:
      folder: /srv/payloads
    api:
      enabled: true
      port: 9000
    logging:
      level: DEBUG
""")


def test_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)

    config = HubConfig.from_yaml(str(path))

    assert [b.name for b in config.bots] == ["Bot1", "Bot2"]
    assert config.bots[0].title == "lza"
    assert config.bots[0].port == 6000
    assert config.bots[1].host == "10.0.0.6"
    assert config.bots[1].enabled is False

    assert config.max_queue_size == 10
    assert config.history_size == 200
    assert config.timing.poll_interval == 0.25
    assert config.timing.partner_timeout == 60
    assert config.timing.response_timeout is None
    assert config.titles["lza"]["partner_payload_offset"] == 0x46F12F40
    assert config.payload_folder == "/srv/payloads"
    assert config.api.enabled is True
    assert config.api.port == 9000
    assert config.api.host == "0.0.0.0"
    assert config.log_level == "DEBUG"
    assert config.log_file == "tradehub.log"


def test_empty_file_uses_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")

    config = HubConfig.from_yaml(str(path))
    assert config.bots == []
    assert config.max_queue_size == 50
    assert config.storage.enabled is True
    assert config.api.port == 8100


def test_empty_sections_use_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("bots:\nqueue:\ntiming:\ntitles:\n  lza:\npayloads:\nstorage:\napi:\nlogging:\n")

    config = HubConfig.from_yaml(str(path))
    assert config.bots == []
    assert config.max_queue_size == 50
    assert config.titles == {"lza": {}}
    assert config.payload_folder == "payloads"
    assert config.log_level == "INFO"
    assert config.api.port == 8100


def test_to_dict_reloads():
    config = HubConfig.from_dict({
        "bots": [{"name": "Bot1", "host": "10.0.0.5"}],
        "timing": {"settle_delay": 3},
    })
    assert HubConfig.from_dict(config.to_dict()) == config


def test_bot_count_is_bounded():
    config = HubConfig.from_dict({"bots": [{"name": f"Bot{i}"} for i in range(MAX_BOTS + 5)]})
    assert len(config.bots) == MAX_BOTS


def test_check_config_reports_bad_titles(capsys):
    config = HubConfig(bots=[
        BotConfig(name="Good", title="lza"),
        BotConfig(name="Bad", title="unknown"),
    ])

    assert check_config(config) is False
    output = capsys.readouterr().out
    assert "Legends: Z-A" in output
    assert "Unknown title" in output


def test_check_config_ok(capsys):
    assert check_config(HubConfig(bots=[BotConfig(name="Bot1")])) is True
    assert check_config(HubConfig()) is True
    assert "No bots configured" in capsys.readouterr().out
