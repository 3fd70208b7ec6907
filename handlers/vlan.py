"""
VLAN handlers
"""
from models import NetworkInterface, Task
from task_metadata import VlanCreatePayload, VlanDeletePayload

from .base import HandlerContext, HandlerResult, remove_link_records, store_cleanup


async def create_vlan(task: Task, payload: VlanCreatePayload, ctx: HandlerContext) -> HandlerResult:
    cmd = ctx.executor.commands.vlan_create(payload.vid, payload.link, name=payload.name,
                                            force=payload.force, temporary=payload.temporary)
    result = await ctx.executor.execute(cmd)
    label = payload.name or f"{payload.link} VLAN {payload.vid}"
    if not result.success:
        return HandlerResult.fail(f"Failed to create VLAN {label}: {result.error}")

    async def cleanup():
        # dladm picks the name when none is given; discovery records it later
        if payload.name:
            await ctx.store.save_network_interface(NetworkInterface(
                host=ctx.host, link=payload.name, link_class='vlan',
                over=[payload.link], vid=payload.vid))
        return None

    return await store_cleanup(
        HandlerResult.ok(f"VLAN {label} created successfully over {payload.link}"), cleanup)


async def delete_vlan(task: Task, payload: VlanDeletePayload, ctx: HandlerContext) -> HandlerResult:
    result = await ctx.executor.execute(
        ctx.executor.commands.vlan_delete(payload.vlan, temporary=payload.temporary))
    if not result.success:
        return HandlerResult.fail(f"Failed to delete VLAN {payload.vlan}: {result.error}")

    return await store_cleanup(
        HandlerResult.ok(f"VLAN {payload.vlan} deleted successfully"),
        lambda: remove_link_records(ctx, 'vlan', payload.vlan))
