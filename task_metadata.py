"""
Per-operation task metadata.

Every operation kind carries its own payload dataclass. Metadata is decoded
once when a task is enqueued (rejecting malformed documents before anything
is stored) and again when the task is dispatched to its handler.
"""
import json
import typing
from dataclasses import MISSING, asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from errors import MetadataValidationError


class Operation(str, Enum):
    # Zone lifecycle
    CREATE = "create"
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    DELETE = "delete"
    DISCOVER = "discover"
    # Datalinks
    CREATE_VNIC = "create_vnic"
    DELETE_VNIC = "delete_vnic"
    SET_VNIC_PROPERTIES = "set_vnic_properties"
    CREATE_VLAN = "create_vlan"
    DELETE_VLAN = "delete_vlan"
    CREATE_AGGREGATE = "create_aggregate"
    DELETE_AGGREGATE = "delete_aggregate"
    MODIFY_AGGREGATE_LINKS = "modify_aggregate_links"
    CREATE_ETHERSTUB = "create_etherstub"
    DELETE_ETHERSTUB = "delete_etherstub"
    # IP addresses
    CREATE_IP_ADDRESS = "create_ip_address"
    DELETE_IP_ADDRESS = "delete_ip_address"
    ENABLE_IP_ADDRESS = "enable_ip_address"
    DISABLE_IP_ADDRESS = "disable_ip_address"
    # Boot environments
    BEADM_CREATE = "beadm_create"
    BEADM_DELETE = "beadm_delete"
    BEADM_ACTIVATE = "beadm_activate"
    BEADM_MOUNT = "beadm_mount"
    BEADM_UNMOUNT = "beadm_unmount"


# Operations in the same category never run concurrently within one queue
OPERATION_CATEGORIES = {
    Operation.CREATE_VNIC: 'network_datalink',
    Operation.DELETE_VNIC: 'network_datalink',
    Operation.SET_VNIC_PROPERTIES: 'network_datalink',
    Operation.CREATE_VLAN: 'network_datalink',
    Operation.DELETE_VLAN: 'network_datalink',
    Operation.CREATE_AGGREGATE: 'network_datalink',
    Operation.DELETE_AGGREGATE: 'network_datalink',
    Operation.MODIFY_AGGREGATE_LINKS: 'network_datalink',
    Operation.CREATE_ETHERSTUB: 'network_datalink',
    Operation.DELETE_ETHERSTUB: 'network_datalink',
    Operation.CREATE_IP_ADDRESS: 'network_ip',
    Operation.DELETE_IP_ADDRESS: 'network_ip',
    Operation.ENABLE_IP_ADDRESS: 'network_ip',
    Operation.DISABLE_IP_ADDRESS: 'network_ip',
    Operation.BEADM_CREATE: 'boot_environment',
    Operation.BEADM_DELETE: 'boot_environment',
    Operation.BEADM_ACTIVATE: 'boot_environment',
    Operation.BEADM_MOUNT: 'boot_environment',
    Operation.BEADM_UNMOUNT: 'boot_environment',
}


def operation_category(operation: str) -> Optional[str]:
    try:
        return OPERATION_CATEGORIES.get(Operation(operation))
    except ValueError:
        return None


def _is_payload(expected: Any) -> bool:
    return isinstance(expected, type) and issubclass(expected, Payload)


def _matches(value: Any, expected: Any) -> bool:
    origin = typing.get_origin(expected)
    if origin is Union:
        return any(_matches(value, arg) for arg in typing.get_args(expected))
    if expected is type(None):
        return value is None
    if origin is list:
        (item_type,) = typing.get_args(expected) or (Any,)
        return isinstance(value, list) and all(_matches(v, item_type) for v in value)
    if origin is dict:
        return isinstance(value, dict)
    if expected is Any:
        return True
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if _is_payload(expected):
        return isinstance(value, dict)
    return isinstance(value, expected)


def _convert(value: Any, expected: Any) -> Any:
    """Decode nested payload documents into their dataclasses"""
    origin = typing.get_origin(expected)
    if origin is Union:
        for arg in typing.get_args(expected):
            if arg is not type(None) and _matches(value, arg):
                return _convert(value, arg)
        return value
    if origin is list:
        (item_type,) = typing.get_args(expected) or (Any,)
        return [_convert(v, item_type) for v in value]
    if _is_payload(expected):
        return expected.from_dict(value)
    return value


class Payload:
    """Base for typed metadata payloads"""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        hints = typing.get_type_hints(cls)
        values = {}
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                if f.default is MISSING and f.default_factory is MISSING:
                    raise MetadataValidationError(f"Missing required field '{f.name}'")
                continue
            value = data[f.name]
            if not _matches(value, hints[f.name]):
                raise MetadataValidationError(
                    f"Field '{f.name}' has invalid value {value!r}")
            try:
                values[f.name] = _convert(value, hints[f.name])
            except MetadataValidationError as e:
                raise MetadataValidationError(f"{f.name}: {e}")
        payload = cls(**values)
        payload.validate()
        return payload

    def validate(self):
        pass

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _require_name(value: str, label: str):
    if not value or not value.strip():
        raise MetadataValidationError(f"{label} must not be empty")


@dataclass
class EmptyPayload(Payload):
    pass


@dataclass
class ZoneDeletePayload(Payload):
    cleanup_datasets: bool = False
    cleanup_networking: bool = False


@dataclass
class VolumeSpec(Payload):
    """A zvol to create under the zone's dataset, or an existing one to attach"""
    create_new: bool = False
    existing_dataset: Optional[str] = None
    size: Optional[str] = None
    sparse: bool = True
    volume_name: Optional[str] = None

    def validate(self):
        if self.create_new == bool(self.existing_dataset):
            raise MetadataValidationError("Volume needs exactly one of create_new or existing_dataset")


@dataclass
class TemplateSource(Payload):
    template_dataset: str
    clone_strategy: str = 'clone'
    snapshot: str = 'ready'

    def validate(self):
        _require_name(self.template_dataset, 'Template dataset')
        if self.clone_strategy not in ('clone', 'copy'):
            raise MetadataValidationError(f"Invalid clone strategy: {self.clone_strategy}")


@dataclass
class NicSpec(Payload):
    physical: str
    global_nic: Optional[str] = None
    vlan_id: Optional[int] = None
    mac_addr: Optional[str] = None
    allowed_address: Optional[str] = None

    def validate(self):
        _require_name(self.physical, 'NIC physical link')
        if self.vlan_id is not None and not 1 <= self.vlan_id <= 4094:
            raise MetadataValidationError(f"VLAN id {self.vlan_id} out of range 1-4094")


@dataclass
class CdromSpec(Payload):
    path: str


@dataclass
class ZoneCreatePayload(Payload):
    brand: str
    zonepath: Optional[str] = None
    pool: str = 'rpool'
    dataset: str = 'zones'
    autoboot: bool = False
    ip_type: str = 'exclusive'
    boot_volume: Optional[VolumeSpec] = None
    source: Optional[TemplateSource] = None
    additional_disks: List[VolumeSpec] = field(default_factory=list)
    cdroms: List[CdromSpec] = field(default_factory=list)
    nics: List[NicSpec] = field(default_factory=list)
    # zonecfg attr resources: ram, vcpus, bootrom, cloud-init, sshkey, ...
    attributes: Dict[str, Any] = field(default_factory=dict)
    force: bool = False

    def validate(self):
        _require_name(self.brand, 'Brand')
        if self.ip_type not in ('exclusive', 'shared'):
            raise MetadataValidationError(f"Invalid ip-type: {self.ip_type}")
        if self.source and self.boot_volume and self.boot_volume.create_new:
            raise MetadataValidationError("A template source cannot be combined with a new boot volume")

    def root_dataset(self, zone_name: str) -> str:
        return f'{self.pool}/{self.dataset}/{zone_name}'

    def zone_path(self, zone_name: str) -> str:
        # Zone teardown derives the root dataset from the zonepath's parent
        return self.zonepath or f'/{self.root_dataset(zone_name)}/path'


@dataclass
class VnicCreatePayload(Payload):
    name: str
    link: str
    mac_address: Optional[str] = None
    mac_prefix: Optional[str] = None
    slot: Optional[int] = None
    vlan_id: Optional[int] = None
    properties: Optional[Dict[str, str]] = None
    temporary: bool = False
    zone: Optional[str] = None

    def validate(self):
        _require_name(self.name, 'VNIC name')
        _require_name(self.link, 'Underlying link')
        if self.mac_address == 'factory' and self.slot is None:
            raise MetadataValidationError("Factory MAC address requires a slot")
        if self.vlan_id is not None and not 1 <= self.vlan_id <= 4094:
            raise MetadataValidationError(f"VLAN id {self.vlan_id} out of range 1-4094")


@dataclass
class VnicDeletePayload(Payload):
    vnic: str
    temporary: bool = False


@dataclass
class VnicPropertiesPayload(Payload):
    vnic: str
    properties: Dict[str, str]
    temporary: bool = False

    def validate(self):
        if not self.properties:
            raise MetadataValidationError("At least one property is required")


@dataclass
class VlanCreatePayload(Payload):
    vid: int
    link: str
    name: Optional[str] = None
    force: bool = False
    temporary: bool = False

    def validate(self):
        if not 1 <= self.vid <= 4094:
            raise MetadataValidationError(f"VLAN id {self.vid} out of range 1-4094")
        _require_name(self.link, 'Underlying link')


@dataclass
class VlanDeletePayload(Payload):
    vlan: str
    temporary: bool = False


@dataclass
class AggregateCreatePayload(Payload):
    name: str
    links: List[str]
    policy: Optional[str] = None
    lacp_mode: Optional[str] = None
    lacp_timer: Optional[str] = None
    unicast_address: Optional[str] = None
    temporary: bool = False

    def validate(self):
        _require_name(self.name, 'Aggregate name')
        if not self.links:
            raise MetadataValidationError("Aggregate requires at least one link")
        if self.lacp_mode and self.lacp_mode not in ('off', 'active', 'passive'):
            raise MetadataValidationError(f"Invalid LACP mode: {self.lacp_mode}")
        if self.lacp_timer and self.lacp_timer not in ('short', 'long'):
            raise MetadataValidationError(f"Invalid LACP timer: {self.lacp_timer}")


@dataclass
class AggregateDeletePayload(Payload):
    aggregate: str
    temporary: bool = False


@dataclass
class AggregateLinksPayload(Payload):
    aggregate: str
    operation: str
    links: List[str]
    temporary: bool = False

    def validate(self):
        if self.operation not in ('add', 'remove'):
            raise MetadataValidationError(f"Invalid link operation: {self.operation}")
        if not self.links:
            raise MetadataValidationError("At least one link is required")


@dataclass
class EtherstubCreatePayload(Payload):
    name: str
    temporary: bool = False


@dataclass
class EtherstubDeletePayload(Payload):
    etherstub: str
    temporary: bool = False
    force: bool = False


@dataclass
class IPAddressCreatePayload(Payload):
    interface: str
    type: str
    addrobj: str
    address: Optional[str] = None
    primary: bool = False
    wait: Optional[int] = None
    temporary: bool = False
    down: bool = False

    def validate(self):
        if self.type not in ('static', 'dhcp', 'addrconf'):
            raise MetadataValidationError(f"Unknown address type: {self.type}")
        if self.type == 'static' and not self.address:
            raise MetadataValidationError("Static address requires 'address'")
        if '/' not in self.addrobj:
            raise MetadataValidationError(f"Address object must be interface/name: {self.addrobj}")


@dataclass
class IPAddressDeletePayload(Payload):
    addrobj: str
    release: bool = False

    @property
    def interface(self) -> str:
        return self.addrobj.split('/')[0]


@dataclass
class IPAddressStatePayload(Payload):
    addrobj: str
    temporary: bool = False

    @property
    def interface(self) -> str:
        return self.addrobj.split('/')[0]


@dataclass
class BootEnvironmentCreatePayload(Payload):
    name: str
    description: Optional[str] = None
    source_be: Optional[str] = None
    snapshot: Optional[str] = None
    activate: bool = False
    zpool: Optional[str] = None
    properties: Optional[Dict[str, str]] = None

    def validate(self):
        _require_name(self.name, 'Boot environment name')

    @property
    def source(self) -> Optional[str]:
        return self.source_be or self.snapshot


@dataclass
class BootEnvironmentDeletePayload(Payload):
    name: str
    force: bool = False
    snapshots: bool = False


@dataclass
class BootEnvironmentActivatePayload(Payload):
    name: str
    temporary: bool = False


@dataclass
class BootEnvironmentMountPayload(Payload):
    name: str
    mountpoint: str
    shared_mode: Optional[str] = None

    def validate(self):
        if self.shared_mode and self.shared_mode not in ('ro', 'rw'):
            raise MetadataValidationError(f"Invalid shared mode: {self.shared_mode}")


@dataclass
class BootEnvironmentUnmountPayload(Payload):
    name: str
    force: bool = False


PAYLOAD_TYPES = {
    Operation.CREATE: ZoneCreatePayload,
    Operation.START: EmptyPayload,
    Operation.STOP: EmptyPayload,
    Operation.RESTART: EmptyPayload,
    Operation.DELETE: ZoneDeletePayload,
    Operation.DISCOVER: EmptyPayload,
    Operation.CREATE_VNIC: VnicCreatePayload,
    Operation.DELETE_VNIC: VnicDeletePayload,
    Operation.SET_VNIC_PROPERTIES: VnicPropertiesPayload,
    Operation.CREATE_VLAN: VlanCreatePayload,
    Operation.DELETE_VLAN: VlanDeletePayload,
    Operation.CREATE_AGGREGATE: AggregateCreatePayload,
    Operation.DELETE_AGGREGATE: AggregateDeletePayload,
    Operation.MODIFY_AGGREGATE_LINKS: AggregateLinksPayload,
    Operation.CREATE_ETHERSTUB: EtherstubCreatePayload,
    Operation.DELETE_ETHERSTUB: EtherstubDeletePayload,
    Operation.CREATE_IP_ADDRESS: IPAddressCreatePayload,
    Operation.DELETE_IP_ADDRESS: IPAddressDeletePayload,
    Operation.ENABLE_IP_ADDRESS: IPAddressStatePayload,
    Operation.DISABLE_IP_ADDRESS: IPAddressStatePayload,
    Operation.BEADM_CREATE: BootEnvironmentCreatePayload,
    Operation.BEADM_DELETE: BootEnvironmentDeletePayload,
    Operation.BEADM_ACTIVATE: BootEnvironmentActivatePayload,
    Operation.BEADM_MOUNT: BootEnvironmentMountPayload,
    Operation.BEADM_UNMOUNT: BootEnvironmentUnmountPayload,
}


def decode_metadata(operation: str, raw: Union[str, Dict[str, Any], None]):
    """
    Decode a metadata document for operation.

    Known operations return their typed payload. Operations owned by external
    collaborators (e.g. artifact_upload_process) get the document back as a
    plain dict.

    Raises:
        MetadataValidationError: document is not a JSON object or fails validation
    """
    if raw is None:
        data = {}
    elif isinstance(raw, str):
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            raise MetadataValidationError(f"Invalid JSON metadata: {e}")
    else:
        data = raw

    if not isinstance(data, dict):
        raise MetadataValidationError(f"Metadata must be an object, got {type(data).__name__}")

    try:
        kind = Operation(operation)
    except ValueError:
        return dict(data)

    try:
        return PAYLOAD_TYPES[kind].from_dict(data)
    except MetadataValidationError as e:
        raise MetadataValidationError(f"{operation}: {e}")
