import json
import logging

from citychat.obs.logging import JSONLogFormatter, bind_context, reset_context


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("citychat.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_json_with_bound_scope():
    tokens = bind_context(scope="room:r1", user_id="alice")
    try:
        payload = json.loads(JSONLogFormatter().format(_record()))
    finally:
        reset_context(tokens)

    assert payload["msg"] == "hello"
    assert payload["level"] == "info"
    assert payload["scope"] == "room:r1"
    assert payload["user_id"] == "alice"
    assert payload["service"] == "citychat"


def test_formatter_redacts_message_content():
    payload = json.loads(JSONLogFormatter().format(_record(content="secret words", room_id="r1")))

    assert payload["content"] == "[redacted]"
    assert payload["room_id"] == "r1"


def test_context_is_reset():
    tokens = bind_context(scope="private:alice:bob")
    reset_context(tokens)

    payload = json.loads(JSONLogFormatter().format(_record()))

    assert "scope" not in payload


def test_init_configures_json_logging_once(monkeypatch):
    from citychat import obs

    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    monkeypatch.setattr(obs, "_initialised", False)
    try:
        obs.init()
        installed = list(root.handlers)
        obs.init()

        assert len(installed) == 1
        assert isinstance(installed[0].formatter, JSONLogFormatter)
        assert root.handlers == installed
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
