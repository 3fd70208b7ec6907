"""
Link aggregation handlers
"""
import logging

from models import NetworkInterface, Task, utcnow
from task_metadata import AggregateCreatePayload, AggregateDeletePayload, AggregateLinksPayload

from .base import HandlerContext, HandlerResult, remove_link_records, store_cleanup

logger = logging.getLogger(__name__)


async def create_aggregate(task: Task, payload: AggregateCreatePayload,
                           ctx: HandlerContext) -> HandlerResult:
    cmd = ctx.executor.commands.aggr_create(
        payload.name, payload.links,
        policy=payload.policy,
        lacp_mode=payload.lacp_mode,
        lacp_timer=payload.lacp_timer,
        unicast_address=payload.unicast_address,
        temporary=payload.temporary,
    )
    result = await ctx.executor.execute(cmd)
    if not result.success:
        return HandlerResult.fail(f"Failed to create aggregate {payload.name}: {result.error}")

    async def cleanup():
        await ctx.store.save_network_interface(NetworkInterface(
            host=ctx.host, link=payload.name, link_class='aggr',
            over=list(payload.links), macaddress=payload.unicast_address))
        return None

    return await store_cleanup(
        HandlerResult.ok(f"Aggregate {payload.name} created successfully with links "
                         f"{', '.join(payload.links)}"), cleanup)


async def delete_aggregate(task: Task, payload: AggregateDeletePayload,
                           ctx: HandlerContext) -> HandlerResult:
    result = await ctx.executor.execute(
        ctx.executor.commands.aggr_delete(payload.aggregate, temporary=payload.temporary))
    if not result.success:
        return HandlerResult.fail(f"Failed to delete aggregate {payload.aggregate}: {result.error}")

    return await store_cleanup(
        HandlerResult.ok(f"Aggregate {payload.aggregate} deleted successfully"),
        lambda: remove_link_records(ctx, 'aggr', payload.aggregate))


async def modify_aggregate_links(task: Task, payload: AggregateLinksPayload,
                                 ctx: HandlerContext) -> HandlerResult:
    cmd = ctx.executor.commands.aggr_modify_links(payload.aggregate, payload.operation,
                                                  payload.links, temporary=payload.temporary)
    result = await ctx.executor.execute(cmd)
    if not result.success:
        return HandlerResult.fail(
            f"Failed to {payload.operation} links on aggregate {payload.aggregate}: {result.error}")

    async def cleanup():
        iface = await ctx.store.get_network_interface(ctx.host, 'aggr', payload.aggregate)
        if iface:
            members = list(iface.over or [])
            if payload.operation == 'add':
                members.extend(link for link in payload.links if link not in members)
            else:
                members = [link for link in members if link not in payload.links]
            iface.over = members
            iface.scan_timestamp = utcnow()
            await ctx.store.save_network_interface(iface)
        return None

    direction = 'to' if payload.operation == 'add' else 'from'
    verb = 'Added' if payload.operation == 'add' else 'Removed'
    return await store_cleanup(
        HandlerResult.ok(f"{verb} links {', '.join(payload.links)} {direction} "
                         f"aggregate {payload.aggregate}"), cleanup)
