"""
Zone Store - Redis-backed persistence for tasks, zones and network records.

Every record lives in its own hash keyed by its natural key, so concurrent
cleanup writes touch independent keys. Index sets hold the member keys for
enumeration. Pending tasks are additionally indexed in a sorted set ordered
by priority tier then enqueue sequence; removing a member from that set is
the exclusive claim used by dispatch and cancel.
"""
import logging
import re
from dataclasses import fields
from typing import Dict, Iterable, List, Optional, Type

from async_redis_reliable import AsyncReliableRedis
from errors import DuplicateRecordError
from models import (Task, TaskStatus, Zone, NetworkInterface, NetworkUsage,
                    IPAddress, ConsoleSession, RedisRecord)

logger = logging.getLogger(__name__)

PRIORITY_SPAN = 10 ** 12


def queue_score(priority: int, sequence: int) -> int:
    """Sort key: higher priority first, then oldest sequence first"""
    return (255 - priority) * PRIORITY_SPAN + sequence


class ZoneStore:
    def __init__(self, redis_client: AsyncReliableRedis, key_prefix: str = 'zones'):
        self.redis = redis_client
        self.prefix = key_prefix

    def _key(self, *parts) -> str:
        return ':'.join((self.prefix,) + tuple(str(p) for p in parts))

    async def _write(self, key: str, record: RedisRecord):
        """Write a record, clearing fields that are now unset"""
        data = record.to_redis()
        await self.redis.hset(key, mapping=data)
        stale = [f.name for f in fields(record) if f.name not in data]
        if stale:
            await self.redis.hdel(key, *stale)

    async def _read(self, key: str, record_type: Type[RedisRecord]):
        data = await self.redis.hgetall(key)
        if not data:
            return None
        return record_type.from_redis(data)

    async def _read_many(self, keys: Iterable[str], record_type: Type[RedisRecord]) -> list:
        records = []
        for key in keys:
            record = await self._read(key, record_type)
            if record is not None:
                records.append(record)
        return records

    async def _insert_unique(self, key: str, record: RedisRecord, first_field: str):
        data = record.to_redis()
        if not await self.redis.hsetnx(key, first_field, data[first_field]):
            raise DuplicateRecordError(f"Record {key} already exists")
        await self.redis.hset(key, mapping=data)

    # ==================== TASKS ====================

    async def next_sequence(self) -> int:
        return await self.redis.incr(self._key('task_seq'))

    async def save_task(self, task: Task):
        await self._write(self._key('task', task.id), task)
        await self.redis.sadd(self._key('tasks'), task.id)
        await self.redis.sadd(self._key('zone_tasks', task.zone_name), task.id)

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await self._read(self._key('task', task_id), Task)

    async def queue_task(self, task: Task):
        """Make a pending task visible to dispatch"""
        await self.redis.zadd(self._key('task_queue'),
                              {task.id: queue_score(task.priority, task.sequence)})

    async def peek_queue(self, limit: int, offset: int = 0) -> List[str]:
        """Queued task ids in dispatch order, one page at a time"""
        return await self.redis.zrange(self._key('task_queue'), offset, offset + limit - 1)

    async def remove_from_queue(self, task_id: str) -> bool:
        """Remove a task from the pending index; True for exactly one caller"""
        return await self.redis.zrem(self._key('task_queue'), task_id) == 1

    async def queue_length(self) -> int:
        return await self.redis.zcard(self._key('task_queue'))

    async def zone_task_ids(self, zone_name: str) -> List[str]:
        return sorted(await self.redis.smembers(self._key('zone_tasks', zone_name)))

    async def list_tasks(self, status: Optional[TaskStatus] = None,
                         zone_name: Optional[str] = None,
                         operation: Optional[str] = None,
                         operation_ne: Optional[str] = None,
                         since=None,
                         limit: Optional[int] = None) -> List[Task]:
        """List tasks newest first"""
        if zone_name:
            task_ids = await self.zone_task_ids(zone_name)
        else:
            task_ids = await self.redis.smembers(self._key('tasks'))
        tasks = await self._read_many((self._key('task', tid) for tid in task_ids), Task)

        def wanted(task: Task) -> bool:
            if status and task.status != status:
                return False
            if zone_name and task.zone_name != zone_name:
                return False
            if operation and task.operation != operation:
                return False
            if operation_ne and task.operation == operation_ne:
                return False
            if since and task.created_at < since:
                return False
            return True

        tasks = [t for t in tasks if wanted(t)]
        tasks.sort(key=lambda t: (t.created_at, t.sequence), reverse=True)
        return tasks[:limit] if limit else tasks

    async def delete_task(self, task_id: str) -> bool:
        task = await self.get_task(task_id)
        if not task:
            return False
        await self.redis.zrem(self._key('task_queue'), task_id)
        await self.redis.delete(self._key('task', task_id))
        await self.redis.srem(self._key('tasks'), task_id)
        await self.redis.srem(self._key('zone_tasks', task.zone_name), task_id)
        return True

    # ==================== ZONES ====================

    async def create_zone(self, zone: Zone) -> Zone:
        """Insert a zone record; names are unique across hosts"""
        await self._insert_unique(self._key('zone', zone.name), zone, 'name')
        await self.redis.sadd(self._key('zone_names'), zone.name)
        return zone

    async def save_zone(self, zone: Zone):
        await self._write(self._key('zone', zone.name), zone)
        await self.redis.sadd(self._key('zone_names'), zone.name)

    async def get_zone(self, name: str) -> Optional[Zone]:
        return await self._read(self._key('zone', name), Zone)

    async def list_zones(self, host: Optional[str] = None) -> List[Zone]:
        names = sorted(await self.redis.smembers(self._key('zone_names')))
        zones = await self._read_many((self._key('zone', n) for n in names), Zone)
        if host:
            zones = [z for z in zones if z.host == host]
        return zones

    async def update_zone(self, name: str, **changes) -> Optional[Zone]:
        zone = await self.get_zone(name)
        if not zone:
            return None
        for attr, value in changes.items():
            setattr(zone, attr, value)
        await self._write(self._key('zone', name), zone)
        return zone

    async def delete_zone(self, name: str) -> bool:
        removed = await self.redis.delete(self._key('zone', name))
        await self.redis.srem(self._key('zone_names'), name)
        return removed > 0

    # ==================== NETWORK INTERFACES ====================

    def _interface_key(self, host: str, link_class: str, link: str) -> str:
        return self._key('netif', host, link_class, link)

    async def save_network_interface(self, iface: NetworkInterface):
        """Upsert on the host+class+link natural key"""
        await self._write(self._interface_key(iface.host, iface.link_class, iface.link), iface)
        await self.redis.sadd(self._key('netifs', iface.host), f'{iface.link_class}:{iface.link}')

    async def get_network_interface(self, host: str, link_class: str,
                                    link: str) -> Optional[NetworkInterface]:
        return await self._read(self._interface_key(host, link_class, link), NetworkInterface)

    async def list_network_interfaces(self, host: str, link_class: Optional[str] = None,
                                      link: Optional[str] = None,
                                      zone: Optional[str] = None) -> List[NetworkInterface]:
        members = sorted(await self.redis.smembers(self._key('netifs', host)))
        keys = []
        for member in members:
            member_class, member_link = member.split(':', 1)
            if link_class and member_class != link_class:
                continue
            if link and member_link != link:
                continue
            keys.append(self._interface_key(host, member_class, member_link))
        interfaces = await self._read_many(keys, NetworkInterface)
        if zone:
            interfaces = [i for i in interfaces if i.zone == zone]
        return interfaces

    async def update_network_interfaces(self, host: str, changes: Dict[str, object],
                                        link_class: Optional[str] = None,
                                        link: Optional[str] = None,
                                        zone: Optional[str] = None) -> int:
        interfaces = await self.list_network_interfaces(host, link_class, link, zone)
        for iface in interfaces:
            for attr, value in changes.items():
                setattr(iface, attr, value)
            await self._write(self._interface_key(host, iface.link_class, iface.link), iface)
        return len(interfaces)

    async def delete_network_interfaces(self, host: str, link_class: Optional[str] = None,
                                        link: Optional[str] = None,
                                        zone: Optional[str] = None) -> int:
        interfaces = await self.list_network_interfaces(host, link_class, link, zone)
        for iface in interfaces:
            await self.redis.delete(self._interface_key(host, iface.link_class, iface.link))
            await self.redis.srem(self._key('netifs', host), f'{iface.link_class}:{iface.link}')
        return len(interfaces)

    # ==================== NETWORK USAGE ====================

    async def add_network_usage(self, usage: NetworkUsage):
        """Append a usage sample; host+link+scan_timestamp is unique"""
        stamp = usage.scan_timestamp.isoformat()
        await self._insert_unique(self._key('usage', usage.host, usage.link, stamp), usage, 'host')
        await self.redis.sadd(self._key('usages', usage.host), f'{usage.link}|{stamp}')

    async def _usage_members(self, host: str, link: Optional[str],
                             link_pattern: Optional[str]) -> List[str]:
        members = []
        for member in sorted(await self.redis.smembers(self._key('usages', host))):
            member_link = member.rsplit('|', 1)[0]
            if link and member_link != link:
                continue
            if link_pattern and not re.fullmatch(link_pattern, member_link):
                continue
            members.append(member)
        return members

    async def list_network_usage(self, host: str, link: Optional[str] = None,
                                 link_pattern: Optional[str] = None) -> List[NetworkUsage]:
        members = await self._usage_members(host, link, link_pattern)
        keys = (self._key('usage', host, *m.rsplit('|', 1)) for m in members)
        return await self._read_many(keys, NetworkUsage)

    async def delete_network_usage(self, host: str, link: Optional[str] = None,
                                   link_pattern: Optional[str] = None) -> int:
        members = await self._usage_members(host, link, link_pattern)
        for member in members:
            await self.redis.delete(self._key('usage', host, *member.rsplit('|', 1)))
            await self.redis.srem(self._key('usages', host), member)
        return len(members)

    # ==================== IP ADDRESSES ====================

    async def add_ip_address(self, address: IPAddress):
        """Append an address sample; host+addrobj+scan_timestamp is unique"""
        stamp = address.scan_timestamp.isoformat()
        await self._insert_unique(self._key('ip', address.host, address.addrobj, stamp),
                                  address, 'host')
        await self.redis.sadd(self._key('ips', address.host), f'{address.addrobj}|{stamp}')

    async def list_ip_addresses(self, host: str, addrobj: Optional[str] = None,
                                interface: Optional[str] = None,
                                interface_pattern: Optional[str] = None) -> List[IPAddress]:
        members = sorted(await self.redis.smembers(self._key('ips', host)))
        if addrobj:
            members = [m for m in members if m.rsplit('|', 1)[0] == addrobj]
        keys = (self._key('ip', host, *m.rsplit('|', 1)) for m in members)
        addresses = await self._read_many(keys, IPAddress)
        if interface:
            addresses = [a for a in addresses if a.interface == interface]
        if interface_pattern:
            addresses = [a for a in addresses if re.fullmatch(interface_pattern, a.interface)]
        return addresses

    async def delete_ip_addresses(self, host: str, addrobj: Optional[str] = None,
                                  interface: Optional[str] = None,
                                  interface_pattern: Optional[str] = None) -> int:
        addresses = await self.list_ip_addresses(host, addrobj, interface, interface_pattern)
        for address in addresses:
            stamp = address.scan_timestamp.isoformat()
            await self.redis.delete(self._key('ip', host, address.addrobj, stamp))
            await self.redis.srem(self._key('ips', host), f'{address.addrobj}|{stamp}')
        return len(addresses)

    # ==================== CONSOLE SESSIONS ====================

    async def save_console_session(self, session: ConsoleSession):
        await self._write(self._key('console', session.zone_name), session)

    async def get_console_session(self, zone_name: str) -> Optional[ConsoleSession]:
        return await self._read(self._key('console', zone_name), ConsoleSession)

    async def delete_console_session(self, zone_name: str) -> bool:
        return await self.redis.delete(self._key('console', zone_name)) > 0
