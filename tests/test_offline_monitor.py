from datetime import timedelta

from sqlalchemy import select

from panel.models import AlertLog, Node, TargetStatus
from panel.services.events import change_node_status
from panel.services.offline_monitor import check_node_offline, check_offline_nodes
from panel.utils.time import utcnow


def test_sweep_flips_stale_online_nodes_and_alerts(db_session, dispatcher, notifiers, make_channel, make_rule, make_node):
    channel = make_channel()
    make_rule(type="node_offline", channels=[channel], cooldown_minutes=0)
    now = utcnow()
    stale = make_node(name="edge-stale", status="online", last_seen=now - timedelta(minutes=5))
    fresh = make_node(name="edge-fresh", status="online", last_seen=now - timedelta(minutes=1))
    make_node(name="edge-down", status="offline", last_seen=now - timedelta(hours=2))

    flipped = check_offline_nodes(db_session, dispatcher, timeout_minutes=3, now=now)

    assert flipped == [stale.id]
    assert db_session.get(Node, stale.id).status == "offline"
    assert db_session.get(Node, fresh.id).status == "online"
    [(_, title, body)] = notifiers.sent
    assert title == "[Node Offline] edge-stale"
    assert body.startswith("Node edge-stale heartbeat timed out, marked offline\nLast heartbeat: ")


def test_sweep_alerts_once_per_transition(db_session, dispatcher, notifiers, make_channel, make_rule, make_node):
    channel = make_channel()
    make_rule(type="node_offline", channels=[channel], cooldown_minutes=0)
    now = utcnow()
    make_node(status="online", last_seen=now - timedelta(minutes=10))

    assert len(check_offline_nodes(db_session, dispatcher, timeout_minutes=3, now=now)) == 1
    assert check_offline_nodes(db_session, dispatcher, timeout_minutes=3, now=now + timedelta(minutes=1)) == []
    assert len(notifiers.sent) == 1


def test_sweep_ignores_nodes_that_never_reported(db_session, dispatcher, make_node):
    make_node(status="online", last_seen=None)

    assert check_offline_nodes(db_session, dispatcher, timeout_minutes=3) == []


def test_sweep_shares_rule_cooldown_across_nodes(db_session, dispatcher, notifiers, make_channel, make_rule, make_node):
    channel = make_channel()
    make_rule(type="node_offline", channels=[channel], cooldown_minutes=30)
    now = utcnow()
    make_node(name="edge-1", status="online", last_seen=now - timedelta(minutes=10))
    make_node(name="edge-2", status="online", last_seen=now - timedelta(minutes=10))

    flipped = check_offline_nodes(db_session, dispatcher, timeout_minutes=3, now=now)

    assert len(flipped) == 2
    assert [sent[1] for sent in notifiers.sent] == ["[Node Offline] edge-1"]


def test_online_to_offline_transition_alerts(db_session, dispatcher, notifiers, make_channel, make_rule, make_node):
    channel = make_channel()
    make_rule(type="node_offline", channels=[channel])
    node = make_node(name="edge-3", status="online", last_seen=utcnow())

    change_node_status(db_session, node.id, TargetStatus.OFFLINE, dispatcher)

    [log] = db_session.scalars(select(AlertLog)).all()
    assert log.type == "node_offline"
    assert log.target_id == node.id
    assert log.message.startswith("Node edge-3 went offline\nLast seen: ")


def test_other_transitions_do_not_alert(db_session, dispatcher, notifiers, make_channel, make_rule, make_node):
    channel = make_channel()
    make_rule(type="node_offline", channels=[channel], cooldown_minutes=0)
    node = make_node(status="offline")

    assert check_node_offline(db_session, node, "offline", dispatcher) is False
    node.status = "online"
    assert check_node_offline(db_session, node, "offline", dispatcher) is False
    assert check_node_offline(db_session, node, "online", dispatcher) is False
    assert notifiers.attempts == []


def test_offline_message_handles_unknown_last_seen(db_session, dispatcher, notifiers, make_channel, make_rule, make_node):
    channel = make_channel()
    make_rule(type="node_offline", channels=[channel])
    node = make_node(name="edge-4", status="offline", last_seen=None)

    assert check_node_offline(db_session, node, "online", dispatcher) is True
    assert notifiers.sent[0][2] == "Node edge-4 went offline\nLast seen: never"
