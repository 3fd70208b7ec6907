"""
Dataset safety analysis for zone teardown.

Collects every dataset a zone configuration references, drops those that no
longer exist, and refuses to destroy anything another zone still depends on.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from zone_commands import AsyncCommandExecutor
from zone_config import get_all_zone_configs
from zone_store import ZoneStore

logger = logging.getLogger(__name__)

ZVOL_PREFIX = re.compile(r'^/dev/zvol/r?dsk/')
DISK_ATTR = re.compile(r'^disk\d+$')


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _zvol_dataset(path: Optional[str]) -> Optional[str]:
    if path and ZVOL_PREFIX.match(path):
        return ZVOL_PREFIX.sub('', path)
    return None


def root_dataset(zonepath: Optional[str]) -> Optional[str]:
    """/rpool/zones/web01/path -> rpool/zones/web01"""
    if not zonepath:
        return None
    parts = zonepath.lstrip('/').split('/')
    if len(parts) < 2:
        return None
    return '/'.join(parts[:-1])


def extract_datasets(config: Optional[Dict[str, Any]]) -> List[str]:
    """
    Every dataset referenced by a zone configuration, in first-seen order.

    Sources: root dataset derived from zonepath, bootdisk, disk entries,
    legacy diskN attributes, zvol paths in device matches and filesystem
    specials, zfs filesystem specials and explicit dataset declarations.
    """
    if not config:
        return []

    found = [root_dataset(config.get('zonepath'))]

    bootdisk = config.get('bootdisk')
    found.append(bootdisk.get('path') if isinstance(bootdisk, dict) else bootdisk)

    for disk in _as_list(config.get('disk')):
        found.append(disk.get('path') if isinstance(disk, dict) else disk)

    for attr in _as_list(config.get('attr')):
        if isinstance(attr, dict) and DISK_ATTR.match(str(attr.get('name', ''))):
            found.append(attr.get('value'))

    for device in _as_list(config.get('device')):
        if isinstance(device, dict):
            found.append(_zvol_dataset(device.get('match')))

    for fs in _as_list(config.get('fs')):
        if not isinstance(fs, dict):
            continue
        special = fs.get('special')
        zvol = _zvol_dataset(special)
        if zvol:
            found.append(zvol)
        elif fs.get('type') == 'zfs':
            found.append(special)

    for dataset in _as_list(config.get('dataset')):
        found.append(dataset.get('name') if isinstance(dataset, dict) else dataset)

    cleaned = (d.strip() for d in found if isinstance(d, str))
    return list(dict.fromkeys(d for d in cleaned if d))


def is_protected(candidate: str, protected: Iterable[str]) -> bool:
    """True if candidate equals, or is a path-segment ancestor of, a protected dataset"""
    prefix = candidate + '/'
    return any(p == candidate or p.startswith(prefix) for p in protected)


def destruction_order(candidates: Iterable[str]) -> List[str]:
    """Parents before children: shortest name first, ties by name"""
    return sorted(set(candidates), key=lambda d: (len(d), d))


@dataclass
class DestroyReport:
    destroyed: List[str] = field(default_factory=list)
    protected: List[str] = field(default_factory=list)
    covered: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class DatasetSafetyAnalyzer:
    def __init__(self, executor: AsyncCommandExecutor, store: ZoneStore, host: str):
        self.executor = executor
        self.store = store
        self.host = host

    async def dataset_exists(self, dataset: str) -> bool:
        result = await self.executor.execute(self.executor.commands.dataset_exists(dataset))
        return result.success

    async def verify_existing(self, candidates: List[str]) -> List[str]:
        """Keep the candidates that still exist, preserving order"""
        outcomes = await asyncio.gather(*(self.dataset_exists(d) for d in candidates),
                                        return_exceptions=True)
        verified = []
        for dataset, outcome in zip(candidates, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"Could not verify dataset {dataset}: {outcome}")
            elif outcome:
                verified.append(dataset)
            else:
                logger.info(f"Dataset {dataset} no longer exists, skipping")
        return verified

    async def protected_datasets(self, zone_name: str) -> Set[str]:
        """Datasets referenced by every other live zone"""
        protected = set()

        live_configs = await get_all_zone_configs(self.executor)
        if live_configs is None:
            logger.warning("Live zone enumeration failed, protecting stored zones only")
            live_configs = {}
        for name, config in live_configs.items():
            if name != zone_name:
                protected.update(extract_datasets(config))

        for zone in await self.store.list_zones(self.host):
            if zone.name != zone_name and zone.name not in live_configs and not zone.is_orphaned:
                protected.update(extract_datasets(zone.configuration))

        return protected

    async def destroy(self, candidates: List[str], protected: Set[str]) -> DestroyReport:
        """Recursively destroy unprotected candidates, parents first"""
        report = DestroyReport()

        for dataset in destruction_order(candidates):
            if is_protected(dataset, protected):
                logger.info(f"Dataset {dataset} is used by another zone, not destroying")
                report.protected.append(dataset)
                continue
            if any(dataset.startswith(parent + '/') for parent in report.destroyed):
                report.covered.append(dataset)
                continue

            result = await self.executor.execute(
                self.executor.commands.dataset_destroy(dataset, recursive=True))
            if result.success:
                logger.info(f"Destroyed dataset {dataset}")
                report.destroyed.append(dataset)
            else:
                report.errors.append(f"Failed to destroy {dataset}: {result.error}")

        if report.errors:
            logger.warning(f"{len(report.errors)} dataset(s) could not be destroyed: {report.errors}")
        return report
