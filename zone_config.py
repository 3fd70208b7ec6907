"""
Live zone configuration helpers built on `zadm show` and `zoneadm list -p`
"""
import json
import logging
from typing import Any, Dict, Optional

from errors import ZoneConfigError
from models import Zone, utcnow
from zone_commands import AsyncCommandExecutor
from zone_store import ZoneStore

logger = logging.getLogger(__name__)

# Operator-authored sections that zadm never reports
USER_SECTIONS = ('settings', 'zones', 'networks', 'disks', 'provisioner')


def _parse_json(output: str, what: str) -> Optional[Any]:
    try:
        return json.loads(output)
    except ValueError as e:
        logger.error(f"Failed to parse {what}: {e}")
        return None


async def get_zone_config(executor: AsyncCommandExecutor, zone_name: str) -> Optional[Dict[str, Any]]:
    """Live configuration of one zone, or None if unavailable"""
    result = await executor.execute(executor.commands.zone_config(zone_name))
    if not result.success:
        logger.warning(f"Could not read configuration of zone {zone_name}: {result.error}")
        return None
    config = _parse_json(result.output, f"configuration of zone {zone_name}")
    return config if isinstance(config, dict) else None


async def get_all_zone_configs(executor: AsyncCommandExecutor) -> Optional[Dict[str, Dict[str, Any]]]:
    """Mapping of zone name to live configuration, or None if enumeration failed"""
    result = await executor.execute(executor.commands.zone_config())
    if not result.success:
        logger.error(f"Failed to enumerate zone configurations: {result.error}")
        return None
    if not result.output:
        return {}
    configs = _parse_json(result.output, "zone configurations")
    return configs if isinstance(configs, dict) else None


async def get_zone_status(executor: AsyncCommandExecutor, zone_name: str) -> Optional[str]:
    """Live state from the third field of `zoneadm list -p`, or None"""
    result = await executor.execute(executor.commands.zone_status(zone_name))
    if not result.success:
        return None
    parts = result.output.split(':')
    return parts[2] if len(parts) > 2 and parts[2] else None


def preserve_user_config(existing: Optional[Dict[str, Any]], live_config: Dict[str, Any]) -> Dict[str, Any]:
    """Carry operator sections from the stored configuration into a live one"""
    if existing:
        for section in USER_SECTIONS:
            if existing.get(section) and not live_config.get(section):
                live_config[section] = existing[section]
    return live_config


async def sync_zone_to_store(executor: AsyncCommandExecutor, store: ZoneStore, host: str,
                             zone_name: str, status: Optional[str] = None,
                             config: Optional[Dict[str, Any]] = None) -> Zone:
    """
    Upsert a zone record from live state.

    Used when a zone exists on the system but is missing from the store.
    New records are created as explicitly managed (auto_discovered=False).

    Raises:
        ZoneConfigError: the live configuration could not be read
    """
    if config is None:
        config = await get_zone_config(executor, zone_name)
        if config is None:
            raise ZoneConfigError(f"Zone {zone_name} configuration unavailable from live system")

    if status is None:
        status = await get_zone_status(executor, zone_name) or 'configured'

    existing = await store.get_zone(zone_name)
    if existing:
        preserve_user_config(existing.configuration, config)
        existing.zone_id = config.get('uuid') or zone_name
        existing.host = host
        existing.status = status
        existing.brand = config.get('brand', 'unknown')
        existing.configuration = config
        existing.last_seen = utcnow()
        await store.save_zone(existing)
        logger.info(f"Synchronized zone {zone_name} from live system")
        return existing

    zone = Zone(
        name=zone_name,
        host=host,
        zone_id=config.get('uuid') or zone_name,
        status=status,
        brand=config.get('brand', 'unknown'),
        configuration=config,
        auto_discovered=False,
    )
    await store.create_zone(zone)
    logger.info(f"Recovered missing store record for zone {zone_name}")
    return zone
