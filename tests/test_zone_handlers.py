"""
Zone lifecycle handlers against a scripted executor
"""
import signal

import pytest

from errors import StoreError
from handlers.zone import (delete_zone, discover_zones, restart_zone, start_zone, stop_zone,
                           terminate_console)
from models import (ConsoleSession, IPAddress, NetworkInterface, NetworkUsage, Task, TaskStatus,
                    Zone, utcnow)
from task_metadata import decode_metadata

from conftest import HOST

WEB01 = {'zonepath': '/rpool/zones/web01/path', 'brand': 'lipkg', 'uuid': 'u-web01'}


def make_task(operation, zone='web01'):
    return Task(id=f'{operation}-{zone}', zone_name=zone, operation=operation, priority=60,
                status=TaskStatus.RUNNING, created_by='api')


async def run(handler, operation, context, metadata=None, zone='web01'):
    return await handler(make_task(operation, zone), decode_metadata(operation, metadata), context)


async def add_zone(store, name, config, status='installed'):
    await store.create_zone(Zone(name=name, host=HOST, status=status, configuration=config))


class TestStartStop:
    @pytest.mark.asyncio
    async def test_start_resets_zonepath_mode(self, context, executor, store):
        await add_zone(store, 'web01', WEB01)
        result = await run(start_zone, 'start', context)

        assert result.success
        assert result.message == 'Zone web01 started successfully'
        assert executor.calls == [['zoneadm', '-z', 'web01', 'boot'],
                                  ['chmod', '700', '/rpool/zones/web01/path']]
        zone = await store.get_zone('web01')
        assert zone.status == 'running'
        assert zone.is_orphaned is False

    @pytest.mark.asyncio
    async def test_chmod_failure_does_not_fail_start(self, context, executor, store):
        await add_zone(store, 'web01', WEB01)
        executor.fail('chmod')
        assert (await run(start_zone, 'start', context)).success

    @pytest.mark.asyncio
    async def test_boot_failure(self, context, executor):
        executor.fail('zoneadm', '-z', 'web01', 'boot', stderr='zone is not installed')
        result = await run(start_zone, 'start', context)
        assert not result.success
        assert result.error == 'Failed to start zone web01: zone is not installed'

    @pytest.mark.asyncio
    async def test_stop_falls_back_to_halt(self, context, executor, store):
        await add_zone(store, 'web01', WEB01, status='running')
        executor.fail('zoneadm', '-z', 'web01', 'shutdown')
        result = await run(stop_zone, 'stop', context)

        assert result.success
        assert executor.ran('zoneadm', '-z', 'web01', 'halt')
        assert (await store.get_zone('web01')).status == 'installed'

    @pytest.mark.asyncio
    async def test_stop_terminates_console(self, context, store, kills):
        await store.save_console_session(ConsoleSession(zone_name='web01', pid=4242))
        assert (await run(stop_zone, 'stop', context)).success
        assert kills == [(4242, signal.SIGTERM)]
        assert (await store.get_console_session('web01')).status == 'stopped'

    @pytest.mark.asyncio
    async def test_console_kill_error_is_tolerated(self, context, store):
        def gone(pid, sig):
            raise ProcessLookupError(pid)

        context.kill_process = gone
        await store.save_console_session(ConsoleSession(zone_name='web01', pid=4242))
        await terminate_console(context, 'web01')
        assert (await store.get_console_session('web01')).status == 'stopped'

    @pytest.mark.asyncio
    async def test_restart(self, context, executor):
        result = await run(restart_zone, 'restart', context)
        assert result.success
        assert result.message == 'Zone web01 restarted successfully'
        assert executor.index('zoneadm', '-z', 'web01', 'shutdown') < \
            executor.index('zoneadm', '-z', 'web01', 'boot')

    @pytest.mark.asyncio
    async def test_restart_does_not_boot_after_failed_stop(self, context, executor):
        executor.fail('zoneadm', '-z', 'web01', 'shutdown')
        executor.fail('zoneadm', '-z', 'web01', 'halt', stderr='halt failed')
        result = await run(restart_zone, 'restart', context)
        assert not result.success
        assert result.error == 'Failed to stop zone web01: halt failed'
        assert not executor.ran('zoneadm', '-z', 'web01', 'boot')

    @pytest.mark.asyncio
    async def test_store_failure_is_reported_not_raised(self, context, store, monkeypatch):
        async def broken(*args, **kwargs):
            raise StoreError('redis unavailable')

        monkeypatch.setattr(store, 'update_zone', broken)
        result = await run(start_zone, 'start', context)
        assert result.success
        assert result.details['cleanup_error'] == 'redis unavailable'


class TestDeleteZone:
    @pytest.mark.asyncio
    async def test_destroys_root_dataset(self, context, executor, store):
        await add_zone(store, 'web01', WEB01)
        executor.all_zone_configs({'web01': WEB01})
        executor.zone_state('web01', 'installed')

        result = await run(delete_zone, 'delete', context, {'cleanup_datasets': True})

        assert result.success
        assert result.message == 'Zone web01 deleted successfully (datasets cleaned up)'
        assert result.details['datasets_destroyed'] == ['rpool/zones/web01']
        assert not executor.ran('zoneadm', '-z', 'web01', 'halt')
        assert executor.index('zonecfg', '-z', 'web01', 'delete', '-F') < \
            executor.index('zfs', 'destroy', '-r', 'rpool/zones/web01')
        assert await store.get_zone('web01') is None
        assert result.details['cleanup_summary']['zone_records'] == 1

    @pytest.mark.asyncio
    async def test_shared_dataset_survives(self, context, executor, store):
        web01 = dict(WEB01, disk=[{'path': 'rpool/shared/data'}])
        web02 = {'zonepath': '/rpool/zones/web02/path', 'disk': [{'path': 'rpool/shared/data'}]}
        await add_zone(store, 'web01', web01)
        await add_zone(store, 'web02', web02)
        executor.all_zone_configs({'web01': web01, 'web02': web02})

        result = await run(delete_zone, 'delete', context, {'cleanup_datasets': True})

        assert result.success
        assert 'dataset_errors' not in result.details
        assert result.details['datasets_protected'] == ['rpool/shared/data']
        assert not executor.ran('zfs', 'destroy', '-r', 'rpool/shared/data')
        assert await store.get_zone('web02') is not None

    @pytest.mark.asyncio
    async def test_missing_record_is_recovered_first(self, context, executor, store):
        web03 = {'zonepath': '/rpool/zones/web03/path', 'brand': 'bhyve',
                 'bootdisk': {'path': 'rpool/zones/web03/root'}}
        executor.all_zone_configs({'web03': web03})
        executor.zone_state('web03', 'running')

        result = await run(delete_zone, 'delete', context, {'cleanup_datasets': True}, zone='web03')

        assert result.success
        assert executor.index('zadm', 'show', 'web03') < executor.index('zfs', 'list')
        assert executor.ran('zoneadm', '-z', 'web03', 'halt')
        assert result.details['datasets_destroyed'] == ['rpool/zones/web03']
        assert await store.get_zone('web03') is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize('state', ['ready', 'down', 'shutting_down', None])
    async def test_live_or_unknown_zone_is_halted_before_uninstall(self, context, executor, state):
        if state:
            executor.zone_state('web01', state)
        else:
            executor.fail('zoneadm', '-z', 'web01', 'list')

        assert (await run(delete_zone, 'delete', context)).success
        assert executor.index('zoneadm', '-z', 'web01', 'halt') < \
            executor.index('zoneadm', '-z', 'web01', 'uninstall')

    @pytest.mark.asyncio
    async def test_failed_halt_still_uninstalls(self, context, executor):
        executor.zone_state('web01', 'down')
        executor.fail('zoneadm', '-z', 'web01', 'halt', stderr='zone not running')
        assert (await run(delete_zone, 'delete', context)).success
        assert executor.ran('zoneadm', '-z', 'web01', 'uninstall')

    @pytest.mark.asyncio
    async def test_configured_zone_is_not_uninstalled(self, context, executor):
        executor.zone_state('web01', 'configured')
        assert (await run(delete_zone, 'delete', context)).success
        assert not executor.ran('zoneadm', '-z', 'web01', 'uninstall')
        assert executor.ran('zonecfg', '-z', 'web01', 'delete', '-F')

    @pytest.mark.asyncio
    async def test_failed_unconfigure_keeps_record(self, context, executor, store):
        await add_zone(store, 'web01', WEB01)
        executor.fail('zonecfg', '-z', 'web01', 'delete', stderr='zone busy')
        result = await run(delete_zone, 'delete', context)
        assert not result.success
        assert 'zone busy' in result.error
        assert await store.get_zone('web01') is not None

    @pytest.mark.asyncio
    async def test_dataset_errors_fail_task_after_cleanup(self, context, executor, store):
        await add_zone(store, 'web01', WEB01)
        executor.all_zone_configs({'web01': WEB01})
        executor.fail('zfs', 'destroy', stderr='dataset is busy')

        result = await run(delete_zone, 'delete', context, {'cleanup_datasets': True})

        assert not result.success
        assert result.details['dataset_errors'] == ['Failed to destroy rpool/zones/web01: dataset is busy']
        assert result.details['datasets_destroyed'] == []
        assert await store.get_zone('web01') is None

    @pytest.mark.asyncio
    async def test_network_cleanup(self, context, executor, store):
        await add_zone(store, 'web01', WEB01)
        await store.save_network_interface(NetworkInterface(host=HOST, link='web01net0',
                                                            link_class='vnic', zone='web01'))
        await store.save_network_interface(NetworkInterface(host=HOST, link='e1000g1',
                                                            link_class='phys', zone='web01'))
        await store.add_ip_address(IPAddress(host=HOST, addrobj='web01net0/v4', interface='web01net0',
                                             scan_timestamp=utcnow(), addr='10.0.0.5/24'))

        result = await run(delete_zone, 'delete', context, {'cleanup_networking': True})

        assert result.success
        assert executor.index('ipadm', 'delete-addr', 'web01net0/v4') < \
            executor.index('dladm', 'delete-vnic', 'web01net0')
        assert executor.ran('ipadm', 'delete-if', 'web01net0')
        assert not executor.ran('dladm', 'delete-vnic', 'e1000g1')
        assert await store.get_network_interface(HOST, 'vnic', 'web01net0') is None
        assert (await store.get_network_interface(HOST, 'phys', 'e1000g1')).zone is None
        assert await store.list_ip_addresses(HOST) == []

    @pytest.mark.asyncio
    async def test_interfaces_disassociated_without_network_cleanup(self, context, executor, store):
        await store.save_network_interface(NetworkInterface(host=HOST, link='web01net0',
                                                            link_class='vnic', zone='web01'))
        result = await run(delete_zone, 'delete', context)
        assert result.details['cleanup_summary']['interfaces_disassociated'] == 1
        assert not executor.ran('dladm')
        assert (await store.get_network_interface(HOST, 'vnic', 'web01net0')).zone is None

    @pytest.mark.asyncio
    async def test_similarly_named_zone_keeps_its_rows(self, context, executor, store):
        await add_zone(store, 'web1', WEB01)
        await store.save_network_interface(NetworkInterface(host=HOST, link='vnicweb1',
                                                            link_class='vnic', zone='web1'))
        for link in ('web1net0', 'vnicweb1', 'web10net0'):
            await store.add_network_usage(NetworkUsage(host=HOST, link=link, scan_timestamp=utcnow()))
            await store.add_ip_address(IPAddress(host=HOST, addrobj=f'{link}/v4', interface=link,
                                                 scan_timestamp=utcnow()))

        result = await run(delete_zone, 'delete', context, zone='web1')

        assert result.details['cleanup_summary']['usage_rows'] == 2
        assert result.details['cleanup_summary']['ip_rows'] == 2
        assert [u.link for u in await store.list_network_usage(HOST)] == ['web10net0']
        assert [a.interface for a in await store.list_ip_addresses(HOST)] == ['web10net0']

    @pytest.mark.asyncio
    async def test_pending_zone_tasks_cancelled(self, queue, context, store):
        pending = await queue.enqueue('web01', 'start')
        result = await run(delete_zone, 'delete', context)
        assert result.details['cleanup_summary']['cancelled_tasks'] == 1
        assert (await store.get_task(pending.id)).status == TaskStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_console_session_removed(self, context, store, kills):
        await store.save_console_session(ConsoleSession(zone_name='web01', pid=77))
        assert (await run(delete_zone, 'delete', context)).success
        assert kills == [(77, signal.SIGTERM)]
        assert await store.get_console_session('web01') is None

    @pytest.mark.asyncio
    async def test_cleanup_failure_attaches_error(self, context, store, monkeypatch):
        async def broken(*args, **kwargs):
            raise StoreError('connection reset')

        monkeypatch.setattr(store, 'delete_console_session', broken)
        result = await run(delete_zone, 'delete', context)
        assert result.success
        assert 'connection reset' in result.details['cleanup_error']


class TestDiscoverHandler:
    @pytest.mark.asyncio
    async def test_enumeration_failure(self, context, executor):
        executor.all_zone_configs({}, returncode=1)
        result = await run(discover_zones, 'discover', context, zone='system')
        assert not result.success
        assert 'enumeration unavailable' in result.error

    @pytest.mark.asyncio
    async def test_summary_message(self, context, executor):
        executor.all_zone_configs({'web01': WEB01})
        result = await run(discover_zones, 'discover', context, zone='system')
        assert result.message == 'Discovery completed: 1 new zones discovered, 0 zones orphaned'
        assert result.details['discovered'] == 1
