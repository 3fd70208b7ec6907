"""
Boot environment handlers (beadm)
"""
import logging

from models import Task
from task_metadata import (BootEnvironmentActivatePayload, BootEnvironmentCreatePayload,
                           BootEnvironmentDeletePayload, BootEnvironmentMountPayload,
                           BootEnvironmentUnmountPayload)

from .base import HandlerContext, HandlerResult, Step, StepPlan

logger = logging.getLogger(__name__)


async def create_boot_environment(task: Task, payload: BootEnvironmentCreatePayload,
                                  ctx: HandlerContext) -> HandlerResult:
    """
    Create a boot environment, optionally activating it. Activation is a
    separate step; if it fails the new environment is destroyed again.
    """
    cmds = ctx.executor.commands
    steps = [Step(f"create boot environment '{payload.name}'",
                  cmds.be_create(payload.name, description=payload.description,
                                 source=payload.source, zpool=payload.zpool,
                                 properties=payload.properties))]
    if payload.activate:
        steps.append(Step(f"activate boot environment '{payload.name}'",
                          cmds.be_activate(payload.name)))

    compensations = [Step(f"destroy boot environment '{payload.name}'",
                          cmds.be_destroy(payload.name, force=True))]

    plan = await StepPlan(steps, compensations).run(ctx.executor)
    if not plan.success:
        return HandlerResult.fail(
            f"Failed to create boot environment '{payload.name}': {plan.last_result.error}")

    suffix = ' and activated' if payload.activate else ''
    return HandlerResult.ok(f"Boot environment '{payload.name}' created successfully{suffix}")


async def delete_boot_environment(task: Task, payload: BootEnvironmentDeletePayload,
                                  ctx: HandlerContext) -> HandlerResult:
    result = await ctx.executor.execute(
        ctx.executor.commands.be_destroy(payload.name, force=payload.force,
                                         snapshots=payload.snapshots))
    if not result.success:
        return HandlerResult.fail(f"Failed to delete boot environment '{payload.name}': {result.error}")
    return HandlerResult.ok(f"Boot environment '{payload.name}' deleted successfully")


async def activate_boot_environment(task: Task, payload: BootEnvironmentActivatePayload,
                                    ctx: HandlerContext) -> HandlerResult:
    result = await ctx.executor.execute(
        ctx.executor.commands.be_activate(payload.name, temporary=payload.temporary))
    if not result.success:
        return HandlerResult.fail(f"Failed to activate boot environment '{payload.name}': {result.error}")
    mode = ' for next boot only' if payload.temporary else ''
    return HandlerResult.ok(f"Boot environment '{payload.name}' activated successfully{mode}")


async def mount_boot_environment(task: Task, payload: BootEnvironmentMountPayload,
                                 ctx: HandlerContext) -> HandlerResult:
    result = await ctx.executor.execute(
        ctx.executor.commands.be_mount(payload.name, payload.mountpoint,
                                       shared_mode=payload.shared_mode))
    if not result.success:
        return HandlerResult.fail(f"Failed to mount boot environment '{payload.name}': {result.error}")
    return HandlerResult.ok(
        f"Boot environment '{payload.name}' mounted successfully at {payload.mountpoint}")


async def unmount_boot_environment(task: Task, payload: BootEnvironmentUnmountPayload,
                                   ctx: HandlerContext) -> HandlerResult:
    result = await ctx.executor.execute(
        ctx.executor.commands.be_unmount(payload.name, force=payload.force))
    if not result.success:
        return HandlerResult.fail(f"Failed to unmount boot environment '{payload.name}': {result.error}")
    return HandlerResult.ok(f"Boot environment '{payload.name}' unmounted successfully")
