import logging

from panel.core.logging import BotTokenRedactingFilter


def _record(msg, args=None, **extra):
    record = logging.LogRecord("panel.test", logging.WARNING, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_bot_token_is_masked_in_message_and_error():
    record = _record(
        "POST %s failed",
        ("https://api.telegram.org/bot123:SECRET/sendMessage",),
        error="telegram request failed: https://api.telegram.org/bot123:SECRET/sendMessage",
    )

    assert BotTokenRedactingFilter().filter(record) is True
    assert record.getMessage() == "POST https://api.telegram.org/bot***/sendMessage failed"
    assert "SECRET" not in record.error


def test_other_messages_are_untouched():
    record = _record("Alert notification sent", channel_id=3)

    BotTokenRedactingFilter().filter(record)

    assert record.getMessage() == "Alert notification sent"
