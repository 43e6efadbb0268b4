"""Dispatch engine: fan-out, failure isolation and rule bookkeeping."""
import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from panel.models import AlertLog, AlertRule
from panel.services.alert_dispatch import AlertDispatcher, alert_title, with_dedup_marker
from panel.utils.errors import PersistenceError, TransportError
from panel.utils.time import as_utc, utcnow


def _logs(db_session):
    return db_session.scalars(select(AlertLog).order_by(AlertLog.id)).all()


def test_titles_fall_back_to_generic_label():
    assert alert_title("node_offline") == "Node Offline"
    assert alert_title("quota_warning") == "Quota Warning"
    assert alert_title("something_else") == "Alert"


def test_dedup_marker_is_appended_on_its_own_line():
    assert with_dedup_marker("Node x", "quota_warning_node_1_80") == "Node x\n<!-- quota_warning_node_1_80 -->"


def test_trigger_without_rules_is_a_no_op(db_session, dispatcher, notifiers):
    fired = dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down")

    assert fired == 0
    assert notifiers.attempts == []
    assert _logs(db_session) == []


def test_one_failing_channel_does_not_block_siblings(
    db_session, dispatcher, notifiers, metrics, make_channel, make_rule
):
    first = make_channel(name="primary")
    second = make_channel(name="secondary")
    rule = make_rule(type="node_offline", channels=[first, second])
    notifiers.fail(first.id)

    now = utcnow()
    fired = dispatcher.trigger_alert(db_session, "node_offline", "node", 7, "edge-7", "Node edge-7 went offline", now=now)

    assert fired == 1
    assert [attempt[0] for attempt in notifiers.attempts] == [first.id, second.id]
    logs = _logs(db_session)
    assert [(log.channel_id, log.status) for log in logs] == [(first.id, "failed"), (second.id, "sent")]
    assert "status 500" in logs[0].error
    assert logs[1].error is None
    assert all(log.rule_id == rule.id and log.rule_name == rule.name for log in logs)
    assert all(log.target_type == "node" and log.target_id == 7 for log in logs)
    assert metrics.deliveries == [
        ("node_offline", "webhook", "failed"),
        ("node_offline", "webhook", "sent"),
    ]

    db_session.refresh(rule)
    assert as_utc(rule.last_alert_at) == now


def test_title_is_bracketed_type_followed_by_target(db_session, dispatcher, notifiers, make_channel, make_rule):
    channel = make_channel()
    make_rule(type="quota_exceeded", channels=[channel])

    dispatcher.trigger_alert(db_session, "quota_exceeded", "client", 3, "client-alpha", "over quota")

    assert notifiers.sent == [(channel.id, "[Quota Exceeded] client-alpha", "over quota")]


def test_rule_in_cooldown_is_suppressed(db_session, dispatcher, notifiers, metrics, make_channel, make_rule):
    channel = make_channel()
    now = utcnow()
    make_rule(type="node_offline", channels=[channel], cooldown_minutes=30, last_alert_at=now - timedelta(minutes=10))

    fired = dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down", now=now)

    assert fired == 0
    assert notifiers.attempts == []
    assert metrics.suppressions == [("node_offline", "cooldown")]


def test_rule_fires_again_once_cooldown_elapsed(db_session, dispatcher, notifiers, make_channel, make_rule):
    channel = make_channel()
    now = utcnow()
    make_rule(type="node_offline", channels=[channel], cooldown_minutes=30, last_alert_at=now - timedelta(minutes=30))

    assert dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down", now=now) == 1
    assert len(notifiers.sent) == 1


def test_second_trigger_inside_cooldown_sends_nothing(db_session, dispatcher, notifiers, make_channel, make_rule):
    channel = make_channel()
    make_rule(type="node_offline", channels=[channel], cooldown_minutes=30)
    now = utcnow()

    dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down", now=now)
    dispatcher.trigger_alert(db_session, "node_offline", "node", 2, "edge-2", "down", now=now + timedelta(minutes=5))

    assert [sent[1] for sent in notifiers.sent] == ["[Node Offline] edge-1"]


def test_failed_pass_still_starts_cooldown(db_session, dispatcher, notifiers, make_channel, make_rule):
    channel = make_channel()
    rule = make_rule(type="node_offline", channels=[channel])
    notifiers.fail(channel.id)
    now = utcnow()

    dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down", now=now)

    db_session.refresh(rule)
    assert as_utc(rule.last_alert_at) == now
    assert [log.status for log in _logs(db_session)] == ["failed"]


def test_disabled_missing_and_malformed_channel_ids_are_skipped(
    db_session, dispatcher, notifiers, make_channel, make_rule
):
    live = make_channel(name="live")
    disabled = make_channel(name="muted", enabled=False)
    make_rule(type="node_offline", channels=f"{disabled.id}, abc,,9999,{live.id}")

    fired = dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down")

    assert fired == 1
    assert [attempt[0] for attempt in notifiers.attempts] == [live.id]
    assert [log.channel_id for log in _logs(db_session)] == [live.id]


def test_rule_without_channels_still_updates_last_alert_at(db_session, dispatcher, make_rule):
    rule = make_rule(type="node_offline", channels="")
    now = utcnow()

    assert dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down", now=now) == 1

    db_session.refresh(rule)
    assert as_utc(rule.last_alert_at) == now
    assert _logs(db_session) == []


def test_unparseable_channel_config_is_skipped_without_log(
    db_session, dispatcher, notifiers, metrics, make_channel, make_rule
):
    broken = make_channel(name="broken", type="telegram", config="{not json")
    unknown = make_channel(name="pager", type="pagerduty")
    healthy = make_channel(name="healthy")
    make_rule(type="node_offline", channels=[broken, unknown, healthy])

    dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down")

    assert [attempt[0] for attempt in notifiers.attempts] == [healthy.id]
    assert [log.channel_id for log in _logs(db_session)] == [healthy.id]
    assert metrics.suppressions == [("node_offline", "channel_config"), ("node_offline", "channel_config")]


def test_unexpected_notifier_exception_is_logged_as_failure(
    db_session, dispatcher, notifiers, make_channel, make_rule
):
    channel = make_channel()
    make_rule(type="node_offline", channels=[channel])
    notifiers.fail(channel.id, RuntimeError("socket exploded"))

    dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down")

    [log] = _logs(db_session)
    assert log.status == "failed"
    assert log.error == "RuntimeError: socket exploded"


def test_every_enabled_rule_of_the_type_fires(db_session, dispatcher, notifiers, make_channel, make_rule):
    ops = make_channel(name="ops")
    oncall = make_channel(name="oncall")
    make_rule(type="node_offline", channels=[ops], name="ops offline")
    make_rule(type="node_offline", channels=[oncall], name="oncall offline")
    make_rule(type="node_offline", channels=[ops], name="muted", enabled=False)
    make_rule(type="quota_exceeded", channels=[ops])

    fired = dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down")

    assert fired == 2
    assert sorted(log.rule_name for log in _logs(db_session)) == ["oncall offline", "ops offline"]


def test_fire_rule_stamps_dedup_key(db_session, dispatcher, make_channel, make_rule):
    channel = make_channel()
    rule = make_rule(type="quota_warning", channels=[channel], threshold=80)

    assert dispatcher.fire_rule(
        db_session, rule, "quota_warning", "node", 4, "edge-4", "usage", dedup_key="quota_warning_node_4_80"
    )

    [log] = _logs(db_session)
    assert log.dedup_key == "quota_warning_node_4_80"


def test_fire_rule_observes_rule_disabled_after_lookup(db_session, dispatcher, metrics, make_channel, make_rule):
    channel = make_channel()
    rule = make_rule(type="node_offline", channels=[channel])
    db_session.execute(
        AlertRule.__table__.update().where(AlertRule.id == rule.id).values(enabled=False)
    )
    db_session.commit()

    assert not dispatcher.fire_rule(db_session, rule, "node_offline", "node", 1, "edge-1", "down")
    assert metrics.suppressions == [("node_offline", "disabled")]


def test_bookkeeping_failures_are_absorbed(
    db_session, dispatcher, notifiers, metrics, make_channel, make_rule, monkeypatch
):
    channel = make_channel()
    make_rule(type="node_offline", channels=[channel])

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "commit", broken_commit)

    fired = dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down")

    assert fired == 1
    assert len(notifiers.sent) == 1
    assert metrics.persistence_errors == ["append_log", "update_rule"]


def test_default_factory_builds_real_notifiers(db_session, make_channel, make_rule, monkeypatch):
    calls = []

    def fake_send(self, title, body):
        calls.append((type(self).__name__, title))

    monkeypatch.setattr("panel.services.notifiers.WebhookNotifier.send", fake_send)
    channel = make_channel()
    make_rule(type="agent_update", channels=[channel])

    AlertDispatcher().trigger_alert(db_session, "agent_update", "node", 1, "edge-1", "v2 available")

    assert calls == [("WebhookNotifier", "[Agent Update] edge-1")]


def test_transport_error_text_is_recorded(db_session, dispatcher, notifiers, make_channel, make_rule):
    channel = make_channel()
    make_rule(type="node_offline", channels=[channel])
    notifiers.fail(channel.id, TransportError("smtp", "auth", "535 bad credentials"))

    dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down")

    [log] = _logs(db_session)
    assert log.error == "smtp auth failed: 535 bad credentials"


def test_absorbed_write_failure_is_logged_as_persistence_error(
    db_session, dispatcher, make_channel, make_rule, monkeypatch, caplog
):
    channel = make_channel()
    rule = make_rule(type="node_offline", channels=[channel])

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "commit", broken_commit)

    with caplog.at_level(logging.ERROR, logger="panel.services.alert_dispatch"):
        dispatcher.trigger_alert(db_session, "node_offline", "node", 1, "edge-1", "down")

    records = [record for record in caplog.records if record.getMessage() == "Alert bookkeeping failed"]
    assert [record.operation for record in records] == ["append_log", "update_rule"]
    error = records[0].exc_info[1]
    assert isinstance(error, PersistenceError)
    assert error.operation == "append_log"
    assert str(error) == "append_log failed: database is locked"
    assert isinstance(error.__cause__, OperationalError)
    assert records[1].rule_id == rule.id
