"""
VNIC handlers
"""
import logging

from models import NetworkInterface, Task, utcnow
from task_metadata import VnicCreatePayload, VnicDeletePayload, VnicPropertiesPayload

from .base import HandlerContext, HandlerResult, remove_link_records, store_cleanup

logger = logging.getLogger(__name__)


async def create_vnic(task: Task, payload: VnicCreatePayload, ctx: HandlerContext) -> HandlerResult:
    cmd = ctx.executor.commands.vnic_create(
        payload.name, payload.link,
        mac_address=payload.mac_address,
        mac_prefix=payload.mac_prefix,
        slot=payload.slot,
        vlan_id=payload.vlan_id,
        properties=payload.properties,
        temporary=payload.temporary,
    )
    result = await ctx.executor.execute(cmd)
    if not result.success:
        return HandlerResult.fail(f"Failed to create VNIC {payload.name}: {result.error}")

    logger.info(f"VNIC {payload.name} created over {payload.link}")

    async def cleanup():
        await ctx.store.save_network_interface(NetworkInterface(
            host=ctx.host,
            link=payload.name,
            link_class='vnic',
            over=[payload.link],
            vid=payload.vlan_id,
            zone=payload.zone,
            properties=payload.properties,
        ))
        return None

    return await store_cleanup(
        HandlerResult.ok(f"VNIC {payload.name} created successfully over {payload.link}"), cleanup)


async def delete_vnic(task: Task, payload: VnicDeletePayload, ctx: HandlerContext) -> HandlerResult:
    cmd = ctx.executor.commands.vnic_delete(payload.vnic, temporary=payload.temporary)
    result = await ctx.executor.execute(cmd)
    if not result.success:
        return HandlerResult.fail(f"Failed to delete VNIC {payload.vnic}: {result.error}")

    return await store_cleanup(
        HandlerResult.ok(f"VNIC {payload.vnic} deleted successfully"),
        lambda: remove_link_records(ctx, 'vnic', payload.vnic))


async def set_vnic_properties(task: Task, payload: VnicPropertiesPayload,
                              ctx: HandlerContext) -> HandlerResult:
    cmd = ctx.executor.commands.link_set_properties(payload.vnic, payload.properties,
                                                    temporary=payload.temporary)
    result = await ctx.executor.execute(cmd)
    if not result.success:
        return HandlerResult.fail(f"Failed to set VNIC {payload.vnic} properties: {result.error}")

    async def cleanup():
        iface = await ctx.store.get_network_interface(ctx.host, 'vnic', payload.vnic)
        if iface:
            iface.properties = {**(iface.properties or {}), **payload.properties}
            iface.scan_timestamp = utcnow()
            await ctx.store.save_network_interface(iface)
        return None

    return await store_cleanup(
        HandlerResult.ok(f"VNIC {payload.vnic} properties set successfully"), cleanup)
