"""
Record encoding and the task status machine
"""
from datetime import datetime, timezone

import pytest

from errors import InvalidTransitionError
from models import NetworkInterface, Task, TaskStatus, Zone


def make_task(status=TaskStatus.PENDING):
    return Task(id='t1', zone_name='web01', operation='start', priority=60,
                status=status, created_by='api')


class TestTaskTransitions:
    def test_running_sets_started_at(self):
        task = make_task()
        task.transition(TaskStatus.RUNNING)
        assert task.status == TaskStatus.RUNNING
        assert task.started_at is not None
        assert task.completed_at is None

    def test_terminal_sets_completed_at(self):
        task = make_task()
        task.transition(TaskStatus.RUNNING)
        task.transition(TaskStatus.FAILED)
        assert task.is_terminal
        assert task.completed_at >= task.started_at

    def test_prepared_only_releases_to_pending(self):
        task = make_task(TaskStatus.PREPARED)
        with pytest.raises(InvalidTransitionError):
            task.transition(TaskStatus.RUNNING)
        task.transition(TaskStatus.PENDING)
        assert task.status == TaskStatus.PENDING

    @pytest.mark.parametrize('status', [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED])
    def test_terminal_states_are_final(self, status):
        task = make_task(status)
        for target in TaskStatus:
            with pytest.raises(InvalidTransitionError):
                task.transition(target)

    def test_running_cannot_be_cancelled(self):
        task = make_task(TaskStatus.RUNNING)
        with pytest.raises(InvalidTransitionError) as exc:
            task.transition(TaskStatus.CANCELLED)
        assert exc.value.current == 'running'
        assert exc.value.target == 'cancelled'


class TestRedisEncoding:
    def test_task_roundtrip_keeps_types(self):
        task = make_task()
        task.metadata = {'cleanup_datasets': True}
        task.sequence = 7
        restored = Task.from_redis(task.to_redis())
        assert restored == task

    def test_none_fields_are_not_written(self):
        data = make_task().to_redis()
        assert 'started_at' not in data
        assert 'depends_on' not in data
        assert data['status'] == 'pending'

    def test_unknown_fields_are_ignored(self):
        data = Zone(name='web01', host='h1').to_redis()
        data['legacy_column'] = 'x'
        assert Zone.from_redis(data).name == 'web01'

    def test_zone_booleans(self):
        zone = Zone(name='web01', host='h1', auto_discovered=True,
                    last_seen=datetime(2024, 1, 1, tzinfo=timezone.utc))
        data = zone.to_redis()
        assert data['auto_discovered'] == '1'
        assert data['is_orphaned'] == '0'
        assert Zone.from_redis(data) == zone

    def test_interface_json_fields(self):
        iface = NetworkInterface(host='h1', link='vnic0', link_class='vnic', over=['e1000g0'],
                                 vid=12, properties={'maxbw': '100M'})
        restored = NetworkInterface.from_redis(iface.to_redis())
        assert restored.over == ['e1000g0']
        assert restored.vid == 12
        assert restored.is_virtual
