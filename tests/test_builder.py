"""
Command construction tests, plus pipelines run against local programs
"""
import pytest

from zone_commands import AsyncCommandExecutor, CommandResult, ZoneCommands

cmds = ZoneCommands()


class TestZoneLifecycleCommands:
    def test_boot_and_halt(self):
        assert cmds.zone_boot('web01') == ['zoneadm', '-z', 'web01', 'boot']
        assert cmds.zone_halt('web01') == ['zoneadm', '-z', 'web01', 'halt']

    def test_uninstall_and_unconfigure_are_forced(self):
        assert cmds.zone_uninstall('web01') == ['zoneadm', '-z', 'web01', 'uninstall', '-F']
        assert cmds.zone_unconfigure('web01') == ['zonecfg', '-z', 'web01', 'delete', '-F']

    def test_zone_config_all_and_single(self):
        assert cmds.zone_config() == ['zadm', 'show']
        assert cmds.zone_config('web01') == ['zadm', 'show', 'web01']

    def test_configure_joins_subcommands(self):
        assert cmds.zone_configure('web01', ['create', 'set brand=bhyve']) == \
            ['zonecfg', '-z', 'web01', 'create; set brand=bhyve']
        assert cmds.zone_install('web01') == ['zoneadm', '-z', 'web01', 'install']


class TestDatasetCommands:
    def test_create_filesystem_and_volume(self):
        assert cmds.dataset_create('rpool/zones/web01') == ['zfs', 'create', '-p', 'rpool/zones/web01']
        assert cmds.volume_create('rpool/zones/web01/root', '30G') == \
            ['zfs', 'create', '-p', '-s', '-V', '30G', 'rpool/zones/web01/root']
        assert cmds.volume_create('tank/d0', '1G', sparse=False) == \
            ['zfs', 'create', '-p', '-V', '1G', 'tank/d0']

    def test_clone_and_stream(self):
        assert cmds.dataset_clone('t/omnios@ready', 'z/root') == \
            ['zfs', 'clone', '-p', 't/omnios@ready', 'z/root']
        assert cmds.send_snapshot('t/omnios@ready') == ['zfs', 'send', 't/omnios@ready']
        assert cmds.receive_snapshot('z/root') == ['zfs', 'receive', '-F', 'z/root']


class TestDatalinkCommands:
    def test_vnic_factory_mac_uses_slot(self):
        cmd = cmds.vnic_create('vnic0', 'e1000g0', mac_address='factory', slot=2)
        assert cmd == ['dladm', 'create-vnic', '-l', 'e1000g0', '-m', 'factory', '-n', '2', 'vnic0']

    def test_vnic_random_mac_with_prefix_vlan_and_properties(self):
        cmd = cmds.vnic_create('vnic0', 'e1000g0', mac_address='random', mac_prefix='02:08:20',
                               vlan_id=12, properties={'maxbw': '100M', 'priority': 'high'},
                               temporary=True)
        assert cmd == ['dladm', 'create-vnic', '-t', '-l', 'e1000g0', '-m', 'random',
                       '-r', '02:08:20', '-v', '12', '-p', 'maxbw=100M,priority=high', 'vnic0']

    def test_set_linkprop_joins_properties(self):
        cmd = cmds.link_set_properties('vnic0', {'mtu': '9000', 'maxbw': '1G'})
        assert cmd == ['dladm', 'set-linkprop', '-p', 'mtu=9000,maxbw=1G', 'vnic0']

    def test_aggregate_omits_dladm_defaults(self):
        cmd = cmds.aggr_create('aggr0', ['e1000g0', 'e1000g1'],
                               policy='L4', lacp_mode='off', lacp_timer='short')
        assert cmd == ['dladm', 'create-aggr', '-l', 'e1000g0', '-l', 'e1000g1', 'aggr0']

    def test_aggregate_with_lacp(self):
        cmd = cmds.aggr_create('aggr0', ['e1000g0'], policy='L2', lacp_mode='active',
                               lacp_timer='long', unicast_address='02:00:00:00:00:01')
        assert cmd == ['dladm', 'create-aggr', '-P', 'L2', '-L', 'active', '-T', 'long',
                       '-u', '02:00:00:00:00:01', '-l', 'e1000g0', 'aggr0']

    def test_aggregate_link_actions(self):
        assert cmds.aggr_modify_links('aggr0', 'remove', ['e1000g1']) == \
            ['dladm', 'remove-aggr', '-l', 'e1000g1', 'aggr0']
        with pytest.raises(ValueError):
            cmds.aggr_modify_links('aggr0', 'swap', ['e1000g1'])

    def test_vlan_without_name(self):
        assert cmds.vlan_create(10, 'e1000g0', force=True) == \
            ['dladm', 'create-vlan', '-f', '-l', 'e1000g0', '-v', '10']

    def test_link_list_by_class(self):
        assert cmds.link_list('vnic') == ['dladm', 'show-vnic', '-p', '-o', 'link']
        assert cmds.link_list('etherstub') == ['dladm', 'show-etherstub', '-p']


class TestIPCommands:
    def test_static_address(self):
        cmd = cmds.ip_address_create('vnic0/v4', 'static', address='10.0.0.5/24', down=True)
        assert cmd == ['ipadm', 'create-addr', '-T', 'static', '-d', '-a', '10.0.0.5/24', 'vnic0/v4']

    def test_dhcp_address(self):
        cmd = cmds.ip_address_create('vnic0/dhcp', 'dhcp', primary=True, wait=30, temporary=True)
        assert cmd == ['ipadm', 'create-addr', '-t', '-T', 'dhcp', '-1', '-w', '30', 'vnic0/dhcp']

    def test_unknown_address_type(self):
        with pytest.raises(ValueError):
            cmds.ip_address_create('vnic0/x', 'bogus')

    def test_delete_with_release(self):
        assert cmds.ip_address_delete('vnic0/dhcp', release=True) == \
            ['ipadm', 'delete-addr', '-r', 'vnic0/dhcp']

    def test_enable_and_disable(self):
        assert cmds.ip_address_enable('vnic0/v4') == ['ipadm', 'enable-addr', 'vnic0/v4']
        assert cmds.ip_address_disable('vnic0/v4', temporary=True) == \
            ['ipadm', 'disable-addr', '-t', 'vnic0/v4']


class TestBootEnvironmentCommands:
    def test_create_from_source_with_properties(self):
        cmd = cmds.be_create('be2', description='patched', source='be1', zpool='rpool',
                             properties={'compression': 'lz4'})
        assert cmd == ['beadm', 'create', '-d', 'patched', '-e', 'be1', '-p', 'rpool',
                       '-o', 'compression=lz4', 'be2']

    def test_destroy_flags(self):
        assert cmds.be_destroy('be2', force=True, snapshots=True) == \
            ['beadm', 'destroy', '-F', '-s', 'be2']

    def test_mount_shared_mode(self):
        assert cmds.be_mount('be2', '/mnt', shared_mode='ro') == \
            ['beadm', 'mount', '-s', 'ro', 'be2', '/mnt']


class TestCommandResult:
    def test_error_falls_back_to_exit_code(self):
        result = CommandResult(returncode=3, stdout='', stderr='  ', command=['zfs', 'list'])
        assert not result.success
        assert result.error == 'Command exited with code 3'

    def test_success_has_no_error(self):
        result = CommandResult(returncode=0, stdout=' out \n', stderr='warning')
        assert result.output == 'out'
        assert result.error == ''


class TestPipelineExecution:
    @pytest.mark.asyncio
    async def test_producer_output_reaches_consumer(self):
        executor = AsyncCommandExecutor(privilege_prefix=[])
        result = await executor.execute_pipeline(['printf', 'stream'], ['tr', 'a-z', 'A-Z'])
        assert result.success
        assert result.output == 'STREAM'
        assert result.command == ['printf', 'stream', '|', 'tr', 'a-z', 'A-Z']

    @pytest.mark.asyncio
    async def test_failing_producer_fails_pipeline(self):
        executor = AsyncCommandExecutor(privilege_prefix=[])
        result = await executor.execute_pipeline(['false'], ['cat'])
        assert not result.success

    @pytest.mark.asyncio
    async def test_missing_program(self):
        executor = AsyncCommandExecutor(privilege_prefix=[])
        result = await executor.execute_pipeline(['printf', 'x'], ['no-such-program-here'])
        assert result.returncode == -1
