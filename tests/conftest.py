"""
Shared fixtures: an in-memory Redis and a scripted command executor
"""
import json

import fakeredis
import pytest

from async_redis_reliable import AsyncReliableRedis
from handlers import HandlerContext
from task_queue import AsyncTaskQueue
from zone_commands import CommandResult, ZoneCommands
from zone_store import ZoneStore

HOST = 'testhost'


class FakeExecutor:
    """
    Records every command and answers from scripted rules. A rule matches
    when its tokens prefix the command; the longest matching rule wins and
    unmatched commands succeed with no output. Exact rules take precedence,
    so `zadm show` for every zone never answers a single-zone lookup.
    """

    def __init__(self):
        self.commands = ZoneCommands()
        self.calls = []
        self.rules = {}
        self.exact = {}
        self.pipelines = []

    def on(self, *prefix, stdout='', stderr='', returncode=0):
        self.rules[tuple(prefix)] = (returncode, stdout, stderr)

    def fail(self, *prefix, stderr='failed'):
        self.on(*prefix, stderr=stderr, returncode=1)

    def zone_config(self, name, config):
        self.on('zadm', 'show', name, stdout=json.dumps(config))

    def all_zone_configs(self, configs, returncode=0):
        self.exact[('zadm', 'show')] = (returncode, json.dumps(configs), '' if returncode == 0 else 'failed')
        for name, config in configs.items():
            self.zone_config(name, config)

    def zone_state(self, name, state):
        self.on('zoneadm', '-z', name, 'list', '-p',
                stdout=f'1:{name}:{state}:/zones/{name}/path:uuid:lipkg:excl')

    async def execute(self, cmd):
        cmd = list(cmd)
        self.calls.append(cmd)
        matches = [p for p in self.rules if tuple(cmd[:len(p)]) == p]
        if tuple(cmd) in self.exact:
            returncode, stdout, stderr = self.exact[tuple(cmd)]
        elif matches:
            returncode, stdout, stderr = self.rules[max(matches, key=len)]
        else:
            returncode, stdout, stderr = 0, '', ''
        return CommandResult(returncode=returncode, stdout=stdout, stderr=stderr, command=cmd)

    async def execute_pipeline(self, producer, consumer):
        """Recorded as the producer then the consumer; the first failure answers"""
        first = await self.execute(producer)
        second = await self.execute(consumer)
        self.pipelines.append((list(producer), list(consumer)))
        return first if not first.success else second

    def ran(self, *prefix) -> bool:
        return any(tuple(c[:len(prefix)]) == prefix for c in self.calls)

    def index(self, *prefix) -> int:
        for i, c in enumerate(self.calls):
            if tuple(c[:len(prefix)]) == prefix:
                return i
        raise AssertionError(f"{' '.join(prefix)} was never run")


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def redis_client():
    client = AsyncReliableRedis()
    client.client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    return client


@pytest.fixture
def store(redis_client):
    return ZoneStore(redis_client, key_prefix='test')


@pytest.fixture
def kills():
    return []


@pytest.fixture
def context(executor, store, kills):
    return HandlerContext(
        executor=executor,
        store=store,
        host=HOST,
        restart_settle_seconds=0,
        kill_process=lambda pid, sig: kills.append((pid, sig)),
    )


@pytest.fixture
def queue(store, context):
    return AsyncTaskQueue(store, context, poll_interval=0.01)
