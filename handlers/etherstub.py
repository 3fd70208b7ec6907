"""
Etherstub handlers
"""
import logging
from typing import List

from models import NetworkInterface, Task
from task_metadata import EtherstubCreatePayload, EtherstubDeletePayload

from .base import HandlerContext, HandlerResult, Step, StepPlan, remove_link_records, store_cleanup

logger = logging.getLogger(__name__)


async def create_etherstub(task: Task, payload: EtherstubCreatePayload,
                           ctx: HandlerContext) -> HandlerResult:
    result = await ctx.executor.execute(
        ctx.executor.commands.etherstub_create(payload.name, temporary=payload.temporary))
    if not result.success:
        return HandlerResult.fail(f"Failed to create etherstub {payload.name}: {result.error}")

    async def cleanup():
        await ctx.store.save_network_interface(NetworkInterface(
            host=ctx.host, link=payload.name, link_class='etherstub'))
        return None

    return await store_cleanup(
        HandlerResult.ok(f"Etherstub {payload.name} created successfully"), cleanup)


async def _attached_vnics(ctx: HandlerContext, etherstub: str) -> List[str]:
    result = await ctx.executor.execute(ctx.executor.commands.vnic_list_over(etherstub))
    if not result.success:
        logger.warning(f"Could not list VNICs on etherstub {etherstub}: {result.error}")
        return []
    return [line.strip() for line in result.output.splitlines() if line.strip()]


async def delete_etherstub(task: Task, payload: EtherstubDeletePayload,
                           ctx: HandlerContext) -> HandlerResult:
    """
    Delete an etherstub. With force, VNICs created over it are deleted first
    since dladm refuses to remove a stub that still carries links.
    """
    cmds = ctx.executor.commands
    stub = payload.etherstub

    vnics = await _attached_vnics(ctx, stub) if payload.force else []
    steps = [Step(f'delete VNIC {vnic}', cmds.vnic_delete(vnic, temporary=payload.temporary))
             for vnic in vnics]
    steps.append(Step(f'delete etherstub {stub}', cmds.etherstub_delete(stub, temporary=payload.temporary)))

    plan = await StepPlan(steps).run(ctx.executor)

    # Steps abort on the first failure, so completed VNIC steps are a prefix
    removed_vnics = vnics[:len(plan.completed)]
    stub_deleted = plan.success

    async def cleanup():
        summary = {'network_interfaces': 0, 'network_usage': 0}
        links = [('vnic', vnic) for vnic in removed_vnics]
        if stub_deleted:
            links.append(('etherstub', stub))
        for link_class, link in links:
            counts = await remove_link_records(ctx, link_class, link)
            for key, count in counts.items():
                summary[key] += count
        return summary

    if not stub_deleted:
        return await store_cleanup(
            HandlerResult.fail(f"Failed to delete etherstub {stub}: {plan.error}",
                               removed_vnics=removed_vnics), cleanup)

    message = f"Etherstub {stub} deleted successfully"
    if removed_vnics:
        message += f" (removed VNICs: {', '.join(removed_vnics)})"
    return await store_cleanup(HandlerResult.ok(message, removed_vnics=removed_vnics), cleanup)
