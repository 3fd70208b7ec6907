"""
Discovery engine: reconciles stored zone and datalink records with the live system
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from errors import StoreError
from models import Zone, utcnow
from zone_commands import AsyncCommandExecutor
from zone_config import get_all_zone_configs, get_zone_status, preserve_user_config
from zone_store import ZoneStore

logger = logging.getLogger(__name__)

RECONCILED_LINK_CLASSES = ('vnic', 'vlan', 'aggr', 'etherstub')


class DiscoveryEngine:
    """
    Each run re-enumerates the live system from scratch. Live-only zones are
    created, store-only zones are flagged orphaned (never deleted), and zones
    present in both are refreshed with operator sections carried forward.
    """

    def __init__(self, executor: AsyncCommandExecutor, store: ZoneStore, host: str):
        self.executor = executor
        self.store = store
        self.host = host

    async def run(self) -> Optional[Dict[str, Any]]:
        """Returns counts and errors, or None when live zones cannot be enumerated"""
        live_configs = await get_all_zone_configs(self.executor)
        if live_configs is None:
            return None

        stored = {zone.name: zone for zone in await self.store.list_zones(self.host)}

        work = []
        kinds = []
        for name, config in live_configs.items():
            if name in stored:
                work.append(self._refresh(stored[name], config))
                kinds.append(('updated', name))
            else:
                work.append(self._create(name, config))
                kinds.append(('discovered', name))
        for name, zone in stored.items():
            if name not in live_configs:
                work.append(self._orphan(zone))
                kinds.append(('orphaned', name))

        outcomes = await asyncio.gather(*work, return_exceptions=True)

        summary = {'discovered': 0, 'orphaned': 0, 'updated': 0, 'errors': []}
        for (kind, name), outcome in zip(kinds, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Discovery failed for zone {name}: {outcome}")
                summary['errors'].append(f"{name}: {outcome}")
            elif outcome:
                summary[kind] += 1

        link_summary = await self.reconcile_network_links()
        summary['links_removed'] = link_summary['removed']
        summary['errors'].extend(link_summary['errors'])

        logger.info(f"Discovery completed: {summary['discovered']} discovered, "
                    f"{summary['orphaned']} orphaned, {summary['updated']} updated")
        return summary

    async def _create(self, name: str, config: Dict[str, Any]) -> bool:
        status = await get_zone_status(self.executor, name) or 'configured'
        await self.store.create_zone(Zone(
            name=name,
            host=self.host,
            zone_id=config.get('uuid') or name,
            status=status,
            brand=config.get('brand', 'unknown'),
            configuration=config,
            auto_discovered=True,
        ))
        logger.info(f"Discovered zone {name} ({status})")
        return True

    async def _orphan(self, zone: Zone) -> bool:
        if zone.is_orphaned:
            return False
        zone.is_orphaned = True
        await self.store.save_zone(zone)
        logger.warning(f"Zone {zone.name} no longer exists on the system, marked orphaned")
        return True

    async def _refresh(self, zone: Zone, config: Dict[str, Any]) -> bool:
        status = await get_zone_status(self.executor, zone.name)
        zone.status = status or zone.status
        zone.brand = config.get('brand') or zone.brand
        zone.configuration = preserve_user_config(zone.configuration, config)
        zone.last_seen = utcnow()
        zone.is_orphaned = False
        await self.store.save_zone(zone)
        return True

    async def _live_links(self, link_class: str) -> Optional[Set[str]]:
        result = await self.executor.execute(self.executor.commands.link_list(link_class))
        if not result.success:
            return None
        return {line.split(':')[0].strip() for line in result.output.splitlines() if line.strip()}

    async def reconcile_network_links(self) -> Dict[str, Any]:
        """Drop stored datalink rows whose link no longer exists"""
        removed = 0
        errors: List[str] = []
        for link_class in RECONCILED_LINK_CLASSES:
            live = await self._live_links(link_class)
            if live is None:
                logger.warning(f"Could not enumerate {link_class} links, skipping reconciliation")
                continue
            try:
                for iface in await self.store.list_network_interfaces(self.host, link_class=link_class):
                    if iface.link not in live:
                        removed += await self.store.delete_network_interfaces(
                            self.host, link_class=link_class, link=iface.link)
                        logger.info(f"Removed stale {link_class} record {iface.link}")
            except StoreError as e:
                errors.append(f"{link_class} reconciliation: {e}")
        return {'removed': removed, 'errors': errors}
