"""
Zone Command Builder - Pure command construction
Single source of truth for zoneadm/zonecfg/zadm/zfs/dladm/ipadm/beadm syntax
"""
from typing import Dict, List, Optional


def _prop_list(properties: Dict[str, str]) -> str:
    return ','.join(f'{key}={value}' for key, value in properties.items())


class ZoneCommands:
    """
    Pure command builder with no execution logic.
    All methods are static and return command arrays ready for execution.
    Privilege escalation is added by the executor, not here.
    """

    # ==================== ZONE LIFECYCLE ====================

    @staticmethod
    def zone_boot(zone: str) -> List[str]:
        """Build zoneadm boot command"""
        return ['zoneadm', '-z', zone, 'boot']

    @staticmethod
    def zone_shutdown(zone: str) -> List[str]:
        """Build graceful zoneadm shutdown command"""
        return ['zoneadm', '-z', zone, 'shutdown']

    @staticmethod
    def zone_halt(zone: str) -> List[str]:
        """Build forced zoneadm halt command"""
        return ['zoneadm', '-z', zone, 'halt']

    @staticmethod
    def zone_uninstall(zone: str) -> List[str]:
        """Build zoneadm uninstall command"""
        return ['zoneadm', '-z', zone, 'uninstall', '-F']

    @staticmethod
    def zone_unconfigure(zone: str) -> List[str]:
        """Build zonecfg delete command"""
        return ['zonecfg', '-z', zone, 'delete', '-F']

    @staticmethod
    def zone_status(zone: str) -> List[str]:
        """Build parseable zoneadm list command (id:name:state:path:uuid:brand:ip-type)"""
        return ['zoneadm', '-z', zone, 'list', '-p']

    @staticmethod
    def zone_config(zone: Optional[str] = None) -> List[str]:
        """Build zadm show command; without a zone name every zone is returned"""
        cmd = ['zadm', 'show']
        if zone:
            cmd.append(zone)
        return cmd

    @staticmethod
    def zone_configure(zone: str, subcommands: List[str]) -> List[str]:
        """Build zonecfg command running subcommands as one semicolon-separated script"""
        return ['zonecfg', '-z', zone, '; '.join(subcommands)]

    @staticmethod
    def zone_install(zone: str) -> List[str]:
        """Build zoneadm install command"""
        return ['zoneadm', '-z', zone, 'install']

    @staticmethod
    def set_path_mode(path: str, mode: str = '700') -> List[str]:
        """Build chmod command"""
        return ['chmod', mode, path]

    # ==================== DATASET OPERATIONS ====================

    @staticmethod
    def dataset_exists(dataset: str) -> List[str]:
        """Build command to check if dataset exists"""
        return ['zfs', 'list', '-H', '-o', 'name', dataset]

    @staticmethod
    def dataset_create(dataset: str, parents: bool = True) -> List[str]:
        """Build zfs create command for a filesystem"""
        cmd = ['zfs', 'create']
        if parents:
            cmd.append('-p')
        cmd.append(dataset)
        return cmd

    @staticmethod
    def volume_create(dataset: str, size: str, sparse: bool = True) -> List[str]:
        """Build zfs create -V command for a volume"""
        cmd = ['zfs', 'create', '-p']
        if sparse:
            cmd.append('-s')
        cmd.extend(['-V', size, dataset])
        return cmd

    @staticmethod
    def dataset_clone(snapshot: str, target: str) -> List[str]:
        """Build zfs clone command; snapshot is dataset@name"""
        return ['zfs', 'clone', '-p', snapshot, target]

    @staticmethod
    def send_snapshot(snapshot: str) -> List[str]:
        """Build zfs send command; snapshot is dataset@name"""
        return ['zfs', 'send', snapshot]

    @staticmethod
    def receive_snapshot(dataset: str, force: bool = True) -> List[str]:
        """Build zfs receive command reading the stream from stdin"""
        cmd = ['zfs', 'receive']
        if force:
            cmd.append('-F')
        cmd.append(dataset)
        return cmd

    @staticmethod
    def dataset_destroy(dataset: str, recursive: bool = False) -> List[str]:
        """Build zfs destroy command"""
        cmd = ['zfs', 'destroy']
        if recursive:
            cmd.append('-r')
        cmd.append(dataset)
        return cmd

    # ==================== DATALINK OPERATIONS ====================

    @staticmethod
    def vnic_create(name: str, link: str,
                    mac_address: Optional[str] = None,
                    mac_prefix: Optional[str] = None,
                    slot: Optional[int] = None,
                    vlan_id: Optional[int] = None,
                    properties: Optional[Dict[str, str]] = None,
                    temporary: bool = False) -> List[str]:
        """Build dladm create-vnic command"""
        cmd = ['dladm', 'create-vnic']
        if temporary:
            cmd.append('-t')
        cmd.extend(['-l', link])

        if mac_address == 'factory':
            cmd.extend(['-m', 'factory'])
            if slot is not None:
                cmd.extend(['-n', str(slot)])
        elif mac_address == 'random':
            cmd.extend(['-m', 'random'])
            if mac_prefix:
                cmd.extend(['-r', mac_prefix])
        elif mac_address:
            # 'auto' or an explicit address
            cmd.extend(['-m', mac_address])

        if vlan_id:
            cmd.extend(['-v', str(vlan_id)])
        if properties:
            cmd.extend(['-p', _prop_list(properties)])
        cmd.append(name)
        return cmd

    @staticmethod
    def vnic_delete(name: str, temporary: bool = False) -> List[str]:
        """Build dladm delete-vnic command"""
        cmd = ['dladm', 'delete-vnic']
        if temporary:
            cmd.append('-t')
        cmd.append(name)
        return cmd

    @staticmethod
    def vnic_list_over(link: str) -> List[str]:
        """Build command listing VNIC names created over a link"""
        return ['dladm', 'show-vnic', '-l', link, '-p', '-o', 'link']

    @staticmethod
    def link_set_properties(link: str, properties: Dict[str, str],
                            temporary: bool = False) -> List[str]:
        """Build dladm set-linkprop command applying every property at once"""
        cmd = ['dladm', 'set-linkprop']
        if temporary:
            cmd.append('-t')
        cmd.extend(['-p', _prop_list(properties), link])
        return cmd

    @staticmethod
    def link_list(link_class: str) -> List[str]:
        """Build parseable dladm show-<class> command returning link names"""
        if link_class == 'etherstub':
            return ['dladm', 'show-etherstub', '-p']
        return ['dladm', f'show-{link_class}', '-p', '-o', 'link']

    @staticmethod
    def vlan_create(vid: int, link: str, name: Optional[str] = None,
                    force: bool = False, temporary: bool = False) -> List[str]:
        """Build dladm create-vlan command"""
        cmd = ['dladm', 'create-vlan']
        if force:
            cmd.append('-f')
        if temporary:
            cmd.append('-t')
        cmd.extend(['-l', link, '-v', str(vid)])
        if name:
            cmd.append(name)
        return cmd

    @staticmethod
    def vlan_delete(name: str, temporary: bool = False) -> List[str]:
        """Build dladm delete-vlan command"""
        cmd = ['dladm', 'delete-vlan']
        if temporary:
            cmd.append('-t')
        cmd.append(name)
        return cmd

    @staticmethod
    def aggr_create(name: str, links: List[str],
                    policy: Optional[str] = None,
                    lacp_mode: Optional[str] = None,
                    lacp_timer: Optional[str] = None,
                    unicast_address: Optional[str] = None,
                    temporary: bool = False) -> List[str]:
        """Build dladm create-aggr command (L4/off/short are dladm defaults)"""
        cmd = ['dladm', 'create-aggr']
        if temporary:
            cmd.append('-t')
        if policy and policy != 'L4':
            cmd.extend(['-P', policy])
        if lacp_mode and lacp_mode != 'off':
            cmd.extend(['-L', lacp_mode])
        if lacp_timer and lacp_timer != 'short':
            cmd.extend(['-T', lacp_timer])
        if unicast_address:
            cmd.extend(['-u', unicast_address])
        for link in links:
            cmd.extend(['-l', link])
        cmd.append(name)
        return cmd

    @staticmethod
    def aggr_delete(name: str, temporary: bool = False) -> List[str]:
        """Build dladm delete-aggr command"""
        cmd = ['dladm', 'delete-aggr']
        if temporary:
            cmd.append('-t')
        cmd.append(name)
        return cmd

    @staticmethod
    def aggr_modify_links(name: str, action: str, links: List[str],
                          temporary: bool = False) -> List[str]:
        """Build dladm add-aggr / remove-aggr command"""
        if action not in ('add', 'remove'):
            raise ValueError(f"Unknown aggregate link action: {action}")
        cmd = ['dladm', f'{action}-aggr']
        if temporary:
            cmd.append('-t')
        for link in links:
            cmd.extend(['-l', link])
        cmd.append(name)
        return cmd

    @staticmethod
    def etherstub_create(name: str, temporary: bool = False) -> List[str]:
        """Build dladm create-etherstub command"""
        cmd = ['dladm', 'create-etherstub']
        if temporary:
            cmd.append('-t')
        cmd.append(name)
        return cmd

    @staticmethod
    def etherstub_delete(name: str, temporary: bool = False) -> List[str]:
        """Build dladm delete-etherstub command"""
        cmd = ['dladm', 'delete-etherstub']
        if temporary:
            cmd.append('-t')
        cmd.append(name)
        return cmd

    # ==================== IP OPERATIONS ====================

    @staticmethod
    def ip_address_create(addrobj: str, address_type: str,
                          address: Optional[str] = None,
                          primary: bool = False,
                          wait: Optional[int] = None,
                          down: bool = False,
                          temporary: bool = False) -> List[str]:
        """Build ipadm create-addr command"""
        cmd = ['ipadm', 'create-addr']
        if temporary:
            cmd.append('-t')

        if address_type == 'static':
            cmd.extend(['-T', 'static'])
            if down:
                cmd.append('-d')
            cmd.extend(['-a', address])
        elif address_type == 'dhcp':
            cmd.extend(['-T', 'dhcp'])
            if primary:
                cmd.append('-1')
            if wait:
                cmd.extend(['-w', str(wait)])
        elif address_type == 'addrconf':
            cmd.extend(['-T', 'addrconf'])
        else:
            raise ValueError(f"Unknown address type: {address_type}")

        cmd.append(addrobj)
        return cmd

    @staticmethod
    def ip_address_delete(addrobj: str, release: bool = False) -> List[str]:
        """Build ipadm delete-addr command"""
        cmd = ['ipadm', 'delete-addr']
        if release:
            cmd.append('-r')
        cmd.append(addrobj)
        return cmd

    @staticmethod
    def ip_address_enable(addrobj: str, temporary: bool = False) -> List[str]:
        """Build ipadm enable-addr command"""
        cmd = ['ipadm', 'enable-addr']
        if temporary:
            cmd.append('-t')
        cmd.append(addrobj)
        return cmd

    @staticmethod
    def ip_address_disable(addrobj: str, temporary: bool = False) -> List[str]:
        """Build ipadm disable-addr command"""
        cmd = ['ipadm', 'disable-addr']
        if temporary:
            cmd.append('-t')
        cmd.append(addrobj)
        return cmd

    @staticmethod
    def ip_address_list() -> List[str]:
        """Build parseable ipadm show-addr command"""
        return ['ipadm', 'show-addr', '-p', '-o', 'addrobj,addr,type,state']

    @staticmethod
    def ip_interface_delete(interface: str) -> List[str]:
        """Build ipadm delete-if command"""
        return ['ipadm', 'delete-if', interface]

    # ==================== BOOT ENVIRONMENT OPERATIONS ====================

    @staticmethod
    def be_create(name: str,
                  description: Optional[str] = None,
                  source: Optional[str] = None,
                  zpool: Optional[str] = None,
                  properties: Optional[Dict[str, str]] = None) -> List[str]:
        """Build beadm create command; source is a BE name or a snapshot"""
        cmd = ['beadm', 'create']
        if description:
            cmd.extend(['-d', description])
        if source:
            cmd.extend(['-e', source])
        if zpool:
            cmd.extend(['-p', zpool])
        if properties:
            for key, value in properties.items():
                cmd.extend(['-o', f'{key}={value}'])
        cmd.append(name)
        return cmd

    @staticmethod
    def be_destroy(name: str, force: bool = False, snapshots: bool = False) -> List[str]:
        """Build beadm destroy command"""
        cmd = ['beadm', 'destroy']
        if force:
            cmd.append('-F')
        if snapshots:
            cmd.append('-s')
        cmd.append(name)
        return cmd

    @staticmethod
    def be_activate(name: str, temporary: bool = False) -> List[str]:
        """Build beadm activate command"""
        cmd = ['beadm', 'activate']
        if temporary:
            cmd.append('-t')
        cmd.append(name)
        return cmd

    @staticmethod
    def be_mount(name: str, mountpoint: str, shared_mode: Optional[str] = None) -> List[str]:
        """Build beadm mount command"""
        cmd = ['beadm', 'mount']
        if shared_mode:
            cmd.extend(['-s', shared_mode])
        cmd.extend([name, mountpoint])
        return cmd

    @staticmethod
    def be_unmount(name: str, force: bool = False) -> List[str]:
        """Build beadm unmount command"""
        cmd = ['beadm', 'unmount']
        if force:
            cmd.append('-f')
        cmd.append(name)
        return cmd
