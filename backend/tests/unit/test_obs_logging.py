import json
import logging

import pytest

from soulconnect.obs import logging as obs_logging


def _record(msg="connection registered", **extra):
    record = logging.LogRecord("soulconnect.domain.chat.service", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_socket_context_is_attached_to_records():
    formatter = obs_logging.JSONLogFormatter()

    with obs_logging.log_context(connection_id="sid-a", identity_id="alice"):
        payload = json.loads(formatter.format(_record()))

    assert payload["connection_id"] == "sid-a"
    assert payload["identity_id"] == "alice"
    assert payload["msg"] == "connection registered"

    after = json.loads(formatter.format(_record()))
    assert "connection_id" not in after
    assert "identity_id" not in after


def test_explicit_extra_wins_over_bound_context():
    formatter = obs_logging.JSONLogFormatter()

    with obs_logging.log_context(identity_id="alice", job="presence-sweeper"):
        payload = json.loads(formatter.format(_record(identity_id="bob")))

    assert payload["identity_id"] == "bob"
    assert payload["job"] == "presence-sweeper"


def test_message_text_and_credentials_are_redacted():
    formatter = obs_logging.JSONLogFormatter()

    payload = json.loads(
        formatter.format(
            _record(content="a very private confession", access_token="abc", meta={"password": "x", "room_id": "r1"})
        )
    )

    assert payload["content"] == "[redacted]"
    assert payload["access_token"] == "[redacted]"
    assert payload["meta"] == {"password": "[redacted]", "room_id": "r1"}


def test_long_values_are_truncated():
    scrubbed = obs_logging.scrub("detail", "x" * 400)
    assert len(scrubbed) == 257
    assert obs_logging.scrub("ids", list(range(15)))[-1] == "…"


def test_unknown_context_field_is_rejected():
    with pytest.raises(ValueError, match="favourite_colour"):
        obs_logging.bind_context(favourite_colour="black")


def test_chat_records_bypass_info_sampling(monkeypatch):
    monkeypatch.setattr(obs_logging.settings, "obs_log_sampling_rate_info", 0.0)
    sampler = obs_logging.InfoSamplingFilter()

    assert sampler.filter(_record()) is True
    http = logging.LogRecord("soulconnect.http", logging.INFO, __file__, 1, "http_request", (), None)
    assert sampler.filter(http) is False
