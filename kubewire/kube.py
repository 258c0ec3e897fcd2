"""Kubernetes object models read by the mappers, and the service identity resolver."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, ClassVar, Iterable, Optional, Sequence, TypeVar, Union

SERVICE_ID_ANNOTATION = "kubewire.io/service-id"

REVISION_ANNOTATION = "deployment.kubernetes.io/revision"
CHANGE_CAUSE_ANNOTATION = "kubernetes.io/change-cause"

DEPLOYMENT_PROGRESSING = "Progressing"
DEPLOYMENT_AVAILABLE = "Available"

NODE_READY = "Ready"
NODE_MEMORY_PRESSURE = "MemoryPressure"
NODE_DISK_PRESSURE = "DiskPressure"
NODE_PID_PRESSURE = "PIDPressure"

POD_PENDING = "Pending"
POD_RUNNING = "Running"
POD_SUCCEEDED = "Succeeded"
POD_FAILED = "Failed"


class MapperError(Exception):
    """Raised when an object cannot be mapped, for example when identity lookup fails."""


class ConditionStatus(str, Enum):
    """Status of a resource condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass
class ObjectReference:
    """Points at another object by kind, namespace and name."""

    kind: str = ""
    namespace: str = ""
    name: str = ""


@dataclass
class ObjectMeta:
    """Standard object metadata."""

    name: str = ""
    namespace: str = ""
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    creation_timestamp: Optional[datetime] = None
    owner_references: list[ObjectReference] = field(default_factory=list)


@dataclass
class _Object:
    kind: ClassVar[str] = ""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.annotations

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.labels


@dataclass
class DeploymentCondition:
    """One entry of a Deployment's status conditions."""

    type: str
    status: Union[ConditionStatus, str] = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None
    last_update_time: Optional[datetime] = None


@dataclass
class Deployment(_Object):
    """A Deployment; ``replicas`` of None means the default of one."""

    kind: ClassVar[str] = "Deployment"

    replicas: Optional[int] = None
    conditions: list[DeploymentCondition] = field(default_factory=list)
    updated_replicas: int = 0
    ready_replicas: int = 0


@dataclass
class StatefulSet(_Object):
    """A StatefulSet with its rollout revisions."""

    kind: ClassVar[str] = "StatefulSet"

    replicas: Optional[int] = None
    update_revision: str = ""
    current_revision: str = ""
    ready_replicas: int = 0


@dataclass
class DaemonSet(_Object):
    """A DaemonSet with its scheduling counters."""

    kind: ClassVar[str] = "DaemonSet"

    observed_generation: int = 0
    updated_number_scheduled: int = 0
    desired_number_scheduled: int = 0


@dataclass
class NodeCondition:
    """One entry of a Node's status conditions."""

    type: str
    status: Union[ConditionStatus, str] = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None
    last_heartbeat_time: Optional[datetime] = None


@dataclass
class Node(_Object):
    """A cluster node."""

    kind: ClassVar[str] = "Node"

    conditions: list[NodeCondition] = field(default_factory=list)


@dataclass
class ContainerStatus:
    """State of one container; the termination fields apply when ``terminated`` is set."""

    name: str = ""
    restart_count: int = 0
    terminated: bool = False
    termination_reason: str = ""
    exit_code: int = 0
    finished_at: Optional[datetime] = None


@dataclass
class Pod(_Object):
    """A Pod with its lifecycle phase and container states."""

    kind: ClassVar[str] = "Pod"

    phase: str = ""
    node_name: str = ""
    start_time: Optional[datetime] = None
    container_statuses: list[ContainerStatus] = field(default_factory=list)


@dataclass
class HorizontalPodAutoscaler(_Object):
    """A HorizontalPodAutoscaler with its scale target and replica counts."""

    kind: ClassVar[str] = "HorizontalPodAutoscaler"

    scale_target_name: str = ""
    min_replicas: Optional[int] = None
    max_replicas: int = 0
    current_replicas: int = 0
    desired_replicas: int = 0
    last_scale_time: Optional[datetime] = None


@dataclass
class EventSeries:
    """Repetition data of an event."""

    count: int = 0
    last_observed_time: Optional[datetime] = None


@dataclass
class K8sEvent(_Object):
    """An event of the events API group."""

    kind: ClassVar[str] = "Event"

    reason: str = ""
    regarding: ObjectReference = field(default_factory=ObjectReference)
    note: str = ""
    action: str = ""
    reporting_controller: str = ""
    event_time: Optional[datetime] = None
    deprecated_first_timestamp: Optional[datetime] = None
    series: Optional[EventSeries] = None


@dataclass
class CoreEvent(_Object):
    """A legacy core event."""

    kind: ClassVar[str] = "Event"

    reason: str = ""
    involved_object: ObjectReference = field(default_factory=ObjectReference)
    message: str = ""
    source_component: str = ""
    source_host: str = ""
    reporting_controller: str = ""
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    event_time: Optional[datetime] = None
    count: int = 0
    series: Optional[EventSeries] = None


_Condition = TypeVar("_Condition", DeploymentCondition, NodeCondition)


def find_condition(
    conditions: Sequence[_Condition], condition_type: str
) -> Optional[_Condition]:
    """Return the first condition of the given type, or None."""
    return next((c for c in conditions if c.type == condition_type), None)


@dataclass(frozen=True)
class Resolution:
    """Service identity of an object; empty strings mean unknown."""

    service_id: str = ""
    owner_kind: str = ""
    owner_name: str = ""


Fetch = Callable[[str, str, str], Optional[Any]]


class Resolver:
    """Resolves the service identity of cluster objects.

    Objects are looked up with ``fetch(kind, namespace, name)`` when given,
    otherwise in the objects handed to the constructor. Errors raised by
    ``fetch`` propagate to the caller.
    """

    def __init__(self, objects: Iterable[Any] = (), fetch: Optional[Fetch] = None):
        self._store = {
            (obj.kind.casefold(), obj.namespace, obj.name): obj for obj in objects
        }
        self._fetch = fetch or self._lookup

    def _lookup(self, kind: str, namespace: str, name: str) -> Optional[Any]:
        return self._store.get((kind.casefold(), namespace, name))

    def resolve_ref(self, kind: str, namespace: str, name: str) -> Resolution:
        """Resolve an object by reference; unknown objects give an empty resolution."""
        obj = self._fetch(kind, namespace, name)
        if obj is None:
            return Resolution()
        return self.resolve(obj)

    def resolve(self, obj: Any) -> Resolution:
        """Resolve an object from its annotations and first owner reference."""
        metadata: ObjectMeta = obj.metadata
        owner = metadata.owner_references[0] if metadata.owner_references else None
        return Resolution(
            service_id=metadata.annotations.get(SERVICE_ID_ANNOTATION, ""),
            owner_kind=owner.kind if owner else "",
            owner_name=owner.name if owner else "",
        )