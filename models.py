"""
Record types persisted by the zone store
"""
import json
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(Enum):
    PREPARED = "prepared"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    TaskStatus.PREPARED: {TaskStatus.PENDING},
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.CANCELLED},
    TaskStatus.RUNNING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}


class TaskPriority(IntEnum):
    """Dispatch tiers; a higher value is always dispatched first"""
    CRITICAL = 100
    HIGH = 80
    MEDIUM = 60
    BACKGROUND = 30
    LOW = 20


class RedisRecord:
    """
    Mixin converting dataclass records to and from flat Redis hashes.
    None values are not stored; complex fields are JSON encoded.
    """
    _json_fields: tuple = ()
    _datetime_fields: tuple = ()
    _bool_fields: tuple = ()
    _int_fields: tuple = ()
    _enum_fields: Dict[str, type] = {}

    def to_redis(self) -> Dict[str, str]:
        clean_data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            if f.name in self._json_fields:
                clean_data[f.name] = json.dumps(value)
            elif isinstance(value, datetime):
                clean_data[f.name] = value.isoformat()
            elif isinstance(value, bool):
                clean_data[f.name] = '1' if value else '0'
            else:
                clean_data[f.name] = str(value)
        return clean_data

    @classmethod
    def from_redis(cls, data: Dict[Any, Any]):
        record_data = {k.decode() if isinstance(k, bytes) else k:
                       v.decode() if isinstance(v, bytes) else v
                       for k, v in data.items()}
        known = {f.name for f in fields(cls)}
        record_data = {k: v for k, v in record_data.items() if k in known}

        for name in cls._json_fields:
            if name in record_data:
                record_data[name] = json.loads(record_data[name])
        for name in cls._datetime_fields:
            if record_data.get(name):
                record_data[name] = datetime.fromisoformat(record_data[name])
        for name in cls._bool_fields:
            if name in record_data:
                record_data[name] = record_data[name] == '1'
        for name in cls._int_fields:
            if name in record_data:
                record_data[name] = int(record_data[name])
        for name, enum_type in cls._enum_fields.items():
            if name in record_data:
                record_data[name] = enum_type(record_data[name])

        return cls(**record_data)


@dataclass
class Task(RedisRecord):
    id: str
    zone_name: str
    operation: str
    priority: int
    status: TaskStatus
    created_by: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    message: Optional[str] = None
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    depends_on: Optional[str] = None
    sequence: int = 0

    _json_fields = ('metadata', 'result')
    _datetime_fields = ('created_at', 'updated_at', 'started_at', 'completed_at')
    _int_fields = ('priority', 'sequence')
    _enum_fields = {'status': TaskStatus}

    def transition(self, new_status: TaskStatus):
        """Move to new_status, enforcing the monotonic status machine"""
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.id, self.status.value, new_status.value)
        now = utcnow()
        self.status = new_status
        self.updated_at = now
        if new_status == TaskStatus.RUNNING:
            self.started_at = now
        elif new_status in TERMINAL_STATUSES:
            self.completed_at = now

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class Zone(RedisRecord):
    name: str
    host: str
    zone_id: Optional[str] = None
    status: str = 'configured'
    brand: Optional[str] = None
    configuration: Optional[Dict[str, Any]] = None
    auto_discovered: bool = False
    is_orphaned: bool = False
    last_seen: datetime = field(default_factory=utcnow)

    _json_fields = ('configuration',)
    _datetime_fields = ('last_seen',)
    _bool_fields = ('auto_discovered', 'is_orphaned')


@dataclass
class NetworkInterface(RedisRecord):
    host: str
    link: str
    link_class: str
    over: Optional[List[str]] = None
    vid: Optional[int] = None
    zone: Optional[str] = None
    macaddress: Optional[str] = None
    properties: Optional[Dict[str, str]] = None
    scan_timestamp: datetime = field(default_factory=utcnow)

    _json_fields = ('over', 'properties')
    _datetime_fields = ('scan_timestamp',)
    _int_fields = ('vid',)

    @property
    def is_virtual(self) -> bool:
        return self.link_class == 'vnic'


@dataclass
class NetworkUsage(RedisRecord):
    host: str
    link: str
    scan_timestamp: datetime
    rbytes: int = 0
    obytes: int = 0
    ipackets: int = 0
    opackets: int = 0

    _datetime_fields = ('scan_timestamp',)
    _int_fields = ('rbytes', 'obytes', 'ipackets', 'opackets')


@dataclass
class IPAddress(RedisRecord):
    host: str
    addrobj: str
    interface: str
    scan_timestamp: datetime
    type: str = 'static'
    state: str = 'ok'
    addr: Optional[str] = None

    _datetime_fields = ('scan_timestamp',)


@dataclass
class ConsoleSession(RedisRecord):
    zone_name: str
    pid: Optional[int] = None
    status: str = 'active'
    started_at: datetime = field(default_factory=utcnow)

    _datetime_fields = ('started_at',)
    _int_fields = ('pid',)
