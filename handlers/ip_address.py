"""
IP address handlers
"""
import logging
from typing import List, Optional

from models import IPAddress, Task, utcnow
from task_metadata import IPAddressCreatePayload, IPAddressDeletePayload, IPAddressStatePayload

from .base import HandlerContext, HandlerResult, store_cleanup

logger = logging.getLogger(__name__)


async def create_ip_address(task: Task, payload: IPAddressCreatePayload,
                            ctx: HandlerContext) -> HandlerResult:
    cmd = ctx.executor.commands.ip_address_create(
        payload.addrobj, payload.type,
        address=payload.address,
        primary=payload.primary,
        wait=payload.wait,
        down=payload.down,
        temporary=payload.temporary,
    )
    result = await ctx.executor.execute(cmd)
    if not result.success:
        return HandlerResult.fail(f"Failed to create IP address {payload.addrobj}: {result.error}")

    async def cleanup():
        await ctx.store.add_ip_address(IPAddress(
            host=ctx.host,
            addrobj=payload.addrobj,
            interface=payload.interface,
            scan_timestamp=utcnow(),
            type=payload.type,
            state='down' if payload.down else 'ok',
            addr=payload.address,
        ))
        return None

    return await store_cleanup(
        HandlerResult.ok(f"IP address {payload.addrobj} created successfully"), cleanup)


async def _remaining_addrobjs(ctx: HandlerContext) -> Optional[List[str]]:
    result = await ctx.executor.execute(ctx.executor.commands.ip_address_list())
    if not result.success:
        return None
    return [line.split(':', 1)[0] for line in result.output.splitlines() if line.strip()]


async def delete_ip_address(task: Task, payload: IPAddressDeletePayload,
                            ctx: HandlerContext) -> HandlerResult:
    """Delete an address; the IP interface goes too once its last address is removed"""
    cmds = ctx.executor.commands
    result = await ctx.executor.execute(cmds.ip_address_delete(payload.addrobj, release=payload.release))
    if not result.success:
        return HandlerResult.fail(f"Failed to delete IP address {payload.addrobj}: {result.error}")

    interface = payload.interface
    interface_deleted = False
    remaining = await _remaining_addrobjs(ctx)
    if remaining is not None and not any(a.split('/')[0] == interface for a in remaining):
        if_result = await ctx.executor.execute(cmds.ip_interface_delete(interface))
        interface_deleted = if_result.success
        if not if_result.success:
            logger.warning(f"Could not remove IP interface {interface}: {if_result.error}")

    async def cleanup():
        return {
            'ip_addresses': await ctx.store.delete_ip_addresses(ctx.host, addrobj=payload.addrobj),
            'ip_interface_deleted': interface_deleted,
        }

    return await store_cleanup(
        HandlerResult.ok(f"IP address {payload.addrobj} deleted successfully"), cleanup)


async def _set_address_state(payload: IPAddressStatePayload, ctx: HandlerContext,
                             enabled: bool) -> HandlerResult:
    cmds = ctx.executor.commands
    verb = 'enable' if enabled else 'disable'
    build = cmds.ip_address_enable if enabled else cmds.ip_address_disable
    result = await ctx.executor.execute(build(payload.addrobj, temporary=payload.temporary))
    if not result.success:
        return HandlerResult.fail(f"Failed to {verb} IP address {payload.addrobj}: {result.error}")

    async def cleanup():
        # Address rows are samples; record the new state as a fresh one
        samples = await ctx.store.list_ip_addresses(ctx.host, addrobj=payload.addrobj)
        latest = max(samples, key=lambda a: a.scan_timestamp) if samples else None
        await ctx.store.add_ip_address(IPAddress(
            host=ctx.host,
            addrobj=payload.addrobj,
            interface=latest.interface if latest else payload.interface,
            scan_timestamp=utcnow(),
            type=latest.type if latest else 'static',
            state='ok' if enabled else 'disabled',
            addr=latest.addr if latest else None,
        ))
        return None

    return await store_cleanup(
        HandlerResult.ok(f"IP address {payload.addrobj} {verb}d successfully"), cleanup)


async def enable_ip_address(task: Task, payload: IPAddressStatePayload,
                            ctx: HandlerContext) -> HandlerResult:
    return await _set_address_state(payload, ctx, enabled=True)


async def disable_ip_address(task: Task, payload: IPAddressStatePayload,
                             ctx: HandlerContext) -> HandlerResult:
    return await _set_address_state(payload, ctx, enabled=False)
