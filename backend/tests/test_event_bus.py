"""Event fan-out tests."""
from unittest import mock

import redis

from rollcall.services.event_bus import (
    InMemoryEventBus, RedisEventBus, build_event_bus, dashboard_topic, session_topic
)


def test_topics():
    assert session_topic(3, 'token') == 'session:3:token'
    assert dashboard_topic(9) == 'dashboard:9'
    assert dashboard_topic(None) == 'dashboard:unassigned'


def test_subscribe_matches_patterns():
    bus = InMemoryEventBus()
    exact, wildcard = [], []
    bus.subscribe('session:1:status', exact.append)
    bus.subscribe('session:*', wildcard.append)

    bus.publish('session:1:status', {'status': 'active'})
    bus.publish('session:2:token', {'token': 'x'})
    bus.publish('dashboard:4', {})

    assert [e.payload for e in exact] == [{'status': 'active'}]
    assert [e.topic for e in wildcard] == ['session:1:status', 'session:2:token']


def test_unsubscribe():
    bus = InMemoryEventBus()
    seen = []
    unsubscribe = bus.subscribe('*', seen.append)

    bus.publish('a', {})
    unsubscribe()
    bus.publish('b', {})

    assert len(seen) == 1


def test_failing_subscriber_does_not_break_publish():
    bus = InMemoryEventBus()
    seen = []

    def broken(event):
        raise RuntimeError('boom')

    bus.subscribe('*', broken)
    bus.subscribe('*', seen.append)

    bus.publish('session:1:status', {})

    assert len(seen) == 1


def test_history_is_bounded_and_filterable():
    bus = InMemoryEventBus(history_size=3)
    for i in range(5):
        bus.publish(f'session:{i}:status', {'i': i})

    history = bus.history()
    assert [e.payload['i'] for e in history] == [2, 3, 4]
    assert [e.payload['i'] for e in bus.history('session:4:*')] == [4]
    assert [e.payload['i'] for e in bus.history(since=history[1].sequence)] == [4]


def test_redis_bus_publishes_json():
    client = mock.Mock()
    bus = RedisEventBus(client=client)

    bus.publish('session:1:status', {'status': 'active'})

    client.publish.assert_called_once_with('session:1:status', '{"status":"active"}')


def test_redis_errors_are_swallowed():
    client = mock.Mock()
    client.publish.side_effect = redis.ConnectionError('down')

    RedisEventBus(client=client).publish('session:1:status', {})


def test_build_event_bus_defaults_to_memory():
    assert isinstance(build_event_bus({'EVENT_BUS_URL': None}), InMemoryEventBus)
    assert isinstance(build_event_bus({'EVENT_BUS_URL': 'redis://localhost:6379/0'}), RedisEventBus)
