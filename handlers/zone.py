"""
Zone lifecycle handlers: start, stop, restart, delete and discover
"""
import asyncio
import logging
import re
import signal
from typing import Any, Dict, List, Optional

from dataset_safety import DatasetSafetyAnalyzer, extract_datasets
from errors import StoreError, ZoneConfigError
from models import NetworkInterface, Task, utcnow
from reconciliation import DiscoveryEngine
from task_metadata import EmptyPayload, ZoneDeletePayload
from zone_config import get_zone_status, sync_zone_to_store

from .base import HandlerContext, HandlerResult, Step, StepPlan, store_cleanup

logger = logging.getLogger(__name__)

# Live states in which the zone has no running kernel state to halt
HALTED_STATES = ('configured', 'installed', 'incomplete')


def zone_link_pattern(zone_name: str, owned_links: List[str]) -> str:
    """
    Regex matching the datalinks a zone owns: links recorded against it plus
    the <zone>net<N> names it is provisioned with. Matched whole, so web1
    never claims web10's links.
    """
    names = [re.escape(zone_name) + r'net\d+'] + [re.escape(link) for link in owned_links]
    return '|'.join(names)


async def terminate_console(ctx: HandlerContext, zone_name: str):
    """Stop the zone's active console process, if any"""
    try:
        session = await ctx.store.get_console_session(zone_name)
        if not session or session.status != 'active':
            return
        if session.pid:
            try:
                ctx.kill_process(session.pid, signal.SIGTERM)
            except OSError as e:
                logger.warning(f"Failed to kill console process {session.pid} for zone {zone_name}: {e}")
        session.status = 'stopped'
        await ctx.store.save_console_session(session)
        logger.info(f"Terminated console session for zone {zone_name}")
    except StoreError as e:
        logger.warning(f"Failed to terminate console session for zone {zone_name}: {e}")


async def _zonepath(ctx: HandlerContext, zone_name: str) -> Optional[str]:
    zone = await ctx.store.get_zone(zone_name)
    if zone and zone.configuration:
        return zone.configuration.get('zonepath')
    return None


async def start_zone(task: Task, payload: EmptyPayload, ctx: HandlerContext) -> HandlerResult:
    zone_name = task.zone_name
    cmds = ctx.executor.commands

    steps = [Step('boot zone', cmds.zone_boot(zone_name))]
    zonepath = await _zonepath(ctx, zone_name)
    if zonepath:
        # Booting resets the zonepath mode
        steps.append(Step('reset zonepath permissions',
                          cmds.set_path_mode(zonepath, ctx.zonepath_mode), required=False))

    plan = await StepPlan(steps).run(ctx.executor)
    if not plan.success:
        return HandlerResult.fail(f"Failed to start zone {zone_name}: {plan.last_result.error}")

    async def cleanup():
        await ctx.store.update_zone(zone_name, status='running', is_orphaned=False,
                                    last_seen=utcnow())
        return None

    return await store_cleanup(HandlerResult.ok(f"Zone {zone_name} started successfully"), cleanup)


async def stop_zone(task: Task, payload: EmptyPayload, ctx: HandlerContext) -> HandlerResult:
    zone_name = task.zone_name
    cmds = ctx.executor.commands

    result = await ctx.executor.execute(cmds.zone_shutdown(zone_name))
    if not result.success:
        logger.warning(f"Graceful shutdown of zone {zone_name} failed, halting")
        result = await ctx.executor.execute(cmds.zone_halt(zone_name))
    if not result.success:
        return HandlerResult.fail(f"Failed to stop zone {zone_name}: {result.error}")

    async def cleanup():
        await ctx.store.update_zone(zone_name, status='installed', last_seen=utcnow())
        return None

    outcome = await store_cleanup(HandlerResult.ok(f"Zone {zone_name} stopped successfully"), cleanup)
    await terminate_console(ctx, zone_name)
    return outcome


async def restart_zone(task: Task, payload: EmptyPayload, ctx: HandlerContext) -> HandlerResult:
    stopped = await stop_zone(task, payload, ctx)
    if not stopped.success:
        return stopped

    await asyncio.sleep(ctx.restart_settle_seconds)

    started = await start_zone(task, payload, ctx)
    if started.success:
        started.message = f"Zone {task.zone_name} restarted successfully"
    return started


async def _release_interface(ctx: HandlerContext, iface: NetworkInterface) -> List[str]:
    """Release an interface's addresses, then delete it if virtual or disassociate it"""
    cmds = ctx.executor.commands
    errors = []

    addresses = await ctx.store.list_ip_addresses(ctx.host, interface=iface.link)
    for addrobj in dict.fromkeys(a.addrobj for a in addresses):
        result = await ctx.executor.execute(cmds.ip_address_delete(addrobj))
        if result.success:
            await ctx.store.delete_ip_addresses(ctx.host, addrobj=addrobj)
        else:
            errors.append(f"Failed to release {addrobj}: {result.error}")

    if iface.is_virtual:
        plan = await StepPlan([
            Step('remove IP interface', cmds.ip_interface_delete(iface.link), required=False),
            Step('delete VNIC', cmds.vnic_delete(iface.link)),
        ]).run(ctx.executor)
        if plan.success:
            await ctx.store.delete_network_interfaces(ctx.host, link_class='vnic', link=iface.link)
            await ctx.store.delete_network_usage(ctx.host, link=iface.link)
        else:
            errors.append(f"Failed to delete {iface.link}: {plan.last_result.error}")
    else:
        await ctx.store.update_network_interfaces(ctx.host, {'zone': None},
                                                  link_class=iface.link_class, link=iface.link)
    return errors


async def _cleanup_networking(ctx: HandlerContext, zone_name: str) -> List[str]:
    interfaces = await ctx.store.list_network_interfaces(ctx.host, zone=zone_name)
    outcomes = await asyncio.gather(*(_release_interface(ctx, iface) for iface in interfaces),
                                    return_exceptions=True)
    errors = []
    for iface, outcome in zip(interfaces, outcomes):
        if isinstance(outcome, Exception):
            errors.append(f"{iface.link}: {outcome}")
        else:
            errors.extend(outcome)
    return errors


async def delete_zone(task: Task, payload: ZoneDeletePayload, ctx: HandlerContext) -> HandlerResult:
    """
    Delete a zone and, on request, its datasets and network resources.

    Datasets referenced by any other live zone are never destroyed. Leftover
    datasets fail the task even though the zone itself is gone.
    """
    zone_name = task.zone_name
    cmds = ctx.executor.commands
    analyzer = DatasetSafetyAnalyzer(ctx.executor, ctx.store, ctx.host)

    candidates: List[str] = []
    protected = set()
    if payload.cleanup_datasets:
        zone = await ctx.store.get_zone(zone_name)
        config = zone.configuration if zone else None
        if not config:
            logger.info(f"Zone {zone_name} has no stored configuration, synchronizing from system")
            try:
                config = (await sync_zone_to_store(ctx.executor, ctx.store, ctx.host, zone_name)).configuration
            except ZoneConfigError as e:
                logger.warning(f"Zone {zone_name} not found in store or on system: {e}")
        candidates = await analyzer.verify_existing(extract_datasets(config))
        protected = await analyzer.protected_datasets(zone_name)
        logger.info(f"Dataset candidates for zone {zone_name}: {candidates}")

    await terminate_console(ctx, zone_name)

    # Collected before network cleanup disassociates or removes the rows
    owned_links = [iface.link for iface in
                   await ctx.store.list_network_interfaces(ctx.host, zone=zone_name)]

    state = await get_zone_status(ctx.executor, zone_name)
    steps = []
    if state not in HALTED_STATES:
        # Includes unknown states; a failed halt is tolerated
        steps.append(Step('halt zone', cmds.zone_halt(zone_name), required=False))
    if state != 'configured':
        steps.append(Step('uninstall zone', cmds.zone_uninstall(zone_name)))
    steps.append(Step('delete zone configuration', cmds.zone_unconfigure(zone_name)))

    plan = await StepPlan(steps).run(ctx.executor)
    if not plan.success:
        return HandlerResult.fail(f"Failed to delete zone {zone_name}: {plan.error}")

    details: Dict[str, Any] = {}
    dataset_errors: List[str] = []
    if candidates:
        report = await analyzer.destroy(candidates, protected)
        dataset_errors = report.errors
        details['datasets_destroyed'] = report.destroyed
        if report.protected:
            details['datasets_protected'] = report.protected

    if payload.cleanup_networking:
        network_errors = await _cleanup_networking(ctx, zone_name)
        if network_errors:
            details['network_errors'] = network_errors

    link_pattern = zone_link_pattern(zone_name, owned_links)

    async def cleanup():
        jobs = {
            'zone_records': ctx.store.delete_zone(zone_name),
            'usage_rows': ctx.store.delete_network_usage(ctx.host, link_pattern=link_pattern),
            'ip_rows': ctx.store.delete_ip_addresses(ctx.host, interface_pattern=link_pattern),
            'console_sessions': ctx.store.delete_console_session(zone_name),
        }
        if not payload.cleanup_networking:
            jobs['interfaces_disassociated'] = ctx.store.update_network_interfaces(
                ctx.host, {'zone': None}, zone=zone_name)
        if ctx.cancel_zone_tasks:
            jobs['cancelled_tasks'] = ctx.cancel_zone_tasks(zone_name)

        outcomes = await asyncio.gather(*jobs.values(), return_exceptions=True)
        failures = [str(o) for o in outcomes if isinstance(o, Exception)]
        if failures:
            raise StoreError('; '.join(failures))
        return {name: int(count) for name, count in zip(jobs, outcomes)}

    message = f"Zone {zone_name} deleted successfully"
    if payload.cleanup_datasets and not dataset_errors:
        message += " (datasets cleaned up)"
    result = await store_cleanup(HandlerResult.ok(message, **details), cleanup)

    if dataset_errors:
        return HandlerResult.fail(
            f"Zone {zone_name} deleted but {len(dataset_errors)} dataset(s) could not be destroyed",
            dataset_errors=dataset_errors, **result.details)
    return result


async def discover_zones(task: Task, payload: EmptyPayload, ctx: HandlerContext) -> HandlerResult:
    summary = await DiscoveryEngine(ctx.executor, ctx.store, ctx.host).run()
    if summary is None:
        return HandlerResult.fail("Zone discovery failed: live zone enumeration unavailable")
    return HandlerResult.ok(
        f"Discovery completed: {summary['discovered']} new zones discovered, "
        f"{summary['orphaned']} zones orphaned", **summary)
