"""
Resource handlers.

A handler is `async def handler(task, payload, ctx) -> HandlerResult`, where
payload is the decoded metadata for the task's operation.
"""
from typing import Callable, Dict

from task_metadata import Operation

from .aggregate import create_aggregate, delete_aggregate, modify_aggregate_links
from .base import HandlerContext, HandlerResult, Step, StepPlan
from .boot_environment import (activate_boot_environment, create_boot_environment,
                               delete_boot_environment, mount_boot_environment,
                               unmount_boot_environment)
from .etherstub import create_etherstub, delete_etherstub
from .ip_address import create_ip_address, delete_ip_address, disable_ip_address, enable_ip_address
from .vlan import create_vlan, delete_vlan
from .vnic import create_vnic, delete_vnic, set_vnic_properties
from .zone import delete_zone, discover_zones, restart_zone, start_zone, stop_zone
from .zone_create import create_zone

DEFAULT_HANDLERS: Dict[str, Callable] = {
    Operation.CREATE.value: create_zone,
    Operation.START.value: start_zone,
    Operation.STOP.value: stop_zone,
    Operation.RESTART.value: restart_zone,
    Operation.DELETE.value: delete_zone,
    Operation.DISCOVER.value: discover_zones,
    Operation.CREATE_VNIC.value: create_vnic,
    Operation.DELETE_VNIC.value: delete_vnic,
    Operation.SET_VNIC_PROPERTIES.value: set_vnic_properties,
    Operation.CREATE_VLAN.value: create_vlan,
    Operation.DELETE_VLAN.value: delete_vlan,
    Operation.CREATE_AGGREGATE.value: create_aggregate,
    Operation.DELETE_AGGREGATE.value: delete_aggregate,
    Operation.MODIFY_AGGREGATE_LINKS.value: modify_aggregate_links,
    Operation.CREATE_ETHERSTUB.value: create_etherstub,
    Operation.DELETE_ETHERSTUB.value: delete_etherstub,
    Operation.CREATE_IP_ADDRESS.value: create_ip_address,
    Operation.DELETE_IP_ADDRESS.value: delete_ip_address,
    Operation.ENABLE_IP_ADDRESS.value: enable_ip_address,
    Operation.DISABLE_IP_ADDRESS.value: disable_ip_address,
    Operation.BEADM_CREATE.value: create_boot_environment,
    Operation.BEADM_DELETE.value: delete_boot_environment,
    Operation.BEADM_ACTIVATE.value: activate_boot_environment,
    Operation.BEADM_MOUNT.value: mount_boot_environment,
    Operation.BEADM_UNMOUNT.value: unmount_boot_environment,
}

__all__ = [
    'DEFAULT_HANDLERS',
    'HandlerContext',
    'HandlerResult',
    'Step',
    'StepPlan',
]
