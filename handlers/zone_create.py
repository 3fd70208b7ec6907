"""
Zone creation: storage, zonecfg resources and installation, rolled back as a unit
"""
import logging
from typing import Any, List, Optional

from dataset_safety import DatasetSafetyAnalyzer, is_protected
from errors import ZoneConfigError
from models import Task, Zone
from task_metadata import VolumeSpec, ZoneCreatePayload
from zone_config import get_zone_status, sync_zone_to_store

from .base import HandlerContext, HandlerResult, Step, StepPlan, store_cleanup

logger = logging.getLogger(__name__)

BOOT_VOLUME_NAME = 'root'
BOOT_VOLUME_SIZE = '30G'
DISK_SIZE = '50G'


def _attr_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def attr_resource(name: str, value: Any) -> List[str]:
    return ['add attr', f'set name={name}', f'set value="{_attr_value(value)}"',
            'set type=string', 'end']


def zvol_device(dataset: str) -> List[str]:
    return ['add device', f'set match=/dev/zvol/rdsk/{dataset}', 'end']


def cdrom_resources(paths: List[str]) -> List[str]:
    """A single CD is attr `cdrom`, several are cdrom0..N; each is a read-only lofs mount"""
    script = []
    for i, path in enumerate(paths):
        name = 'cdrom' if len(paths) == 1 else f'cdrom{i}'
        script += attr_resource(name, path)
        script += ['add fs', f'set dir={path}', f'set special={path}', 'set type=lofs',
                   'add options ro', 'add options nodevices', 'end']
    return script


def net_resources(payload: ZoneCreatePayload) -> List[str]:
    script = []
    for nic in payload.nics:
        script += ['add net', f'set physical={nic.physical}']
        if nic.global_nic:
            script.append(f'set global-nic={nic.global_nic}')
        if nic.vlan_id:
            script.append(f'set vlan-id={nic.vlan_id}')
        if nic.mac_addr:
            script.append(f'set mac-addr={nic.mac_addr}')
        if nic.allowed_address:
            script.append(f'set allowed-address={nic.allowed_address}')
        script.append('end')
    return script


def zone_script(zone_name: str, payload: ZoneCreatePayload, bootdisk: Optional[str],
                disks: List[str]) -> List[str]:
    """zonecfg subcommands for the whole zone, committed by zonecfg as one unit"""
    script = ['create',
              f'set zonepath={payload.zone_path(zone_name)}',
              f'set brand={payload.brand}',
              f'set autoboot={_attr_value(payload.autoboot)}',
              f'set ip-type={payload.ip_type}']
    for name, value in payload.attributes.items():
        script += attr_resource(name, value)
    if bootdisk:
        script += attr_resource('bootdisk', bootdisk) + zvol_device(bootdisk)
    for i, disk in enumerate(disks):
        script += attr_resource(f'disk{i}', disk) + zvol_device(disk)
    script += cdrom_resources([cdrom.path for cdrom in payload.cdroms])
    script += net_resources(payload)
    return script


async def _check_existing_volumes(analyzer: DatasetSafetyAnalyzer, zone_name: str,
                                  payload: ZoneCreatePayload) -> Optional[str]:
    """Error for an attached dataset that is missing or used by another zone, else None"""
    volumes = [payload.boot_volume] + payload.additional_disks
    existing = [v.existing_dataset for v in volumes if v and v.existing_dataset]
    if not existing:
        return None

    for dataset in existing:
        if not await analyzer.dataset_exists(dataset):
            return f"Dataset {dataset} does not exist"

    if payload.force:
        return None
    protected = await analyzer.protected_datasets(zone_name)
    for dataset in existing:
        if is_protected(dataset, protected):
            return f"Dataset {dataset} is already in use by another zone"
    return None


def _volume_path(root: str, spec: VolumeSpec, default_name: str) -> str:
    return spec.existing_dataset or f'{root}/{spec.volume_name or default_name}'


async def create_zone(task: Task, payload: ZoneCreatePayload, ctx: HandlerContext) -> HandlerResult:
    """
    Create and install a zone.

    New volumes and template copies live under <pool>/<dataset>/<zone>. If any
    step fails, the zone configuration and every dataset this task created are
    removed again; attached existing datasets are never touched.
    """
    zone_name = task.zone_name
    cmds = ctx.executor.commands
    analyzer = DatasetSafetyAnalyzer(ctx.executor, ctx.store, ctx.host)

    if await get_zone_status(ctx.executor, zone_name) is not None:
        return HandlerResult.fail(f"Zone {zone_name} already exists on the system")

    error = await _check_existing_volumes(analyzer, zone_name, payload)
    if error:
        return HandlerResult.fail(f"Failed to create zone {zone_name}: {error}")

    root = payload.root_dataset(zone_name)
    boot = payload.boot_volume
    steps: List[Step] = []
    created: List[str] = []

    needs_root = payload.source or any(
        v and v.create_new for v in [boot] + payload.additional_disks)
    created_root = bool(needs_root) and not await analyzer.dataset_exists(root)
    if created_root:
        steps.append(Step('create zone dataset', cmds.dataset_create(root)))

    bootdisk = None
    if boot:
        bootdisk = _volume_path(root, boot, BOOT_VOLUME_NAME)
        if boot.create_new:
            steps.append(Step('create boot volume',
                              cmds.volume_create(bootdisk, boot.size or BOOT_VOLUME_SIZE, boot.sparse)))
            created.append(bootdisk)

    if payload.source:
        bootdisk = f'{root}/{boot.volume_name if boot and boot.volume_name else BOOT_VOLUME_NAME}'
        snapshot = f'{payload.source.template_dataset}@{payload.source.snapshot}'
        if payload.source.clone_strategy == 'copy':
            steps.append(Step('copy template', cmds.send_snapshot(snapshot),
                              pipe_to=cmds.receive_snapshot(bootdisk)))
        else:
            steps.append(Step('clone template', cmds.dataset_clone(snapshot, bootdisk)))
        created.append(bootdisk)

    disks = []
    for i, disk in enumerate(payload.additional_disks):
        path = _volume_path(root, disk, f'disk{i}')
        if disk.create_new:
            steps.append(Step(f'create disk {i}',
                              cmds.volume_create(path, disk.size or DISK_SIZE, disk.sparse)))
            created.append(path)
        disks.append(path)

    steps.append(Step('configure zone',
                      cmds.zone_configure(zone_name, zone_script(zone_name, payload, bootdisk, disks))))
    steps.append(Step('install zone', cmds.zone_install(zone_name)))

    compensations = [
        Step('uninstall zone', cmds.zone_uninstall(zone_name)),
        Step('delete zone configuration', cmds.zone_unconfigure(zone_name)),
    ]
    if created_root:
        compensations.append(Step('destroy zone dataset', cmds.dataset_destroy(root, recursive=True)))
    else:
        compensations += [Step(f'destroy {dataset}', cmds.dataset_destroy(dataset, recursive=True))
                          for dataset in reversed(created)]

    plan = await StepPlan(steps, compensations).run(ctx.executor)
    if not plan.success:
        return HandlerResult.fail(f"Zone creation failed: {plan.error}")

    logger.info(f"Zone {zone_name} created (brand {payload.brand}, bootdisk {bootdisk})")

    async def cleanup():
        try:
            await sync_zone_to_store(ctx.executor, ctx.store, ctx.host, zone_name, status='installed')
        except ZoneConfigError as e:
            logger.warning(f"Recording zone {zone_name} without live configuration: {e}")
            await ctx.store.save_zone(Zone(
                name=zone_name, host=ctx.host, zone_id=zone_name, status='installed',
                brand=payload.brand,
                configuration={'zonepath': payload.zone_path(zone_name), 'brand': payload.brand},
            ))
        return None

    details = {'datasets_created': ([root] if created_root else []) + created}
    if bootdisk:
        details['bootdisk'] = bootdisk
    return await store_cleanup(HandlerResult.ok(f"Zone {zone_name} created successfully", **details),
                               cleanup)
