"""Tests for queue introspection."""

import pytest

from agent_pool.core import queues as queues_mod
from agent_pool.core.dispatcher import Dispatcher
from agent_pool.core.pool import UnknownAgentError


@pytest.fixture
def dispatcher(pool, store, config):
    return Dispatcher(pool, store, config)


class TestQueueStatus:
    def test_all_agents_listed(self, pool, store):
        depths = queues_mod.queue_status(pool, store)
        assert [(d.agent_name, d.role, d.depth) for d in depths] == [
            ("planner", "planner", 0),
            ("executor-1", "executor", 0),
            ("executor-2", "executor", 0),
            ("tester", "tester", 0),
        ]

    def test_depths(self, pool, store, dispatcher):
        dispatcher.dispatch("executor-1", "a")
        dispatcher.dispatch("executor-1", "b")
        dispatcher.dispatch("tester", "c")
        depths = {d.agent_name: d.depth for d in queues_mod.queue_status(pool, store)}
        assert depths == {"planner": 0, "executor-1": 2, "executor-2": 0, "tester": 1}


class TestPeek:
    def test_peek_in_order(self, pool, store, dispatcher):
        for content in ["first", "second", "third"]:
            dispatcher.dispatch("executor-2", content)
        tasks = queues_mod.peek_queue(pool, store, "executor-2", 2)
        assert [t.content for t in tasks] == ["first", "second"]
        assert store.length("queue:executor-2") == 3

    def test_peek_unknown_agent(self, pool, store):
        with pytest.raises(UnknownAgentError):
            queues_mod.peek_queue(pool, store, "ghost")


class TestClear:
    def test_clear_one(self, pool, store, dispatcher):
        dispatcher.dispatch("executor-1", "a")
        dispatcher.dispatch("executor-2", "b")
        assert queues_mod.clear_queue(pool, store, "executor-1") == 1
        assert store.length("queue:executor-1") == 0
        assert store.length("queue:executor-2") == 1

    def test_clear_empty_queue(self, pool, store):
        assert queues_mod.clear_queue(pool, store, "executor-1") == 0

    @pytest.mark.parametrize("target", ["*", "all"])
    def test_clear_all(self, pool, store, dispatcher, redis_client, target):
        dispatcher.dispatch("executor-1", "a")
        dispatcher.dispatch("tester", "b")
        redis_client.rpush("queue:responses:task-1", "{}")
        redis_client.set("unrelated", "keep")

        assert queues_mod.clear_queue(pool, store, target) == 3
        assert store.keys("queue:*") == []
        assert redis_client.get("unrelated") == "keep"

    def test_clear_unknown_agent(self, pool, store):
        with pytest.raises(UnknownAgentError):
            queues_mod.clear_queue(pool, store, "ghost")
