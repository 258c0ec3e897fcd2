"""Wire format v2 payload types for skeleton-mode ingest batches.

The operator only produces infrastructure and deployment-domain events, so
application-domain fields (trace ids, span ids, status codes, durations and
detail blocks) have no place in these types.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union

SPEC_VERSION = "2"


class CaptureMode(str, Enum):
    """Batch capture mode. The operator always sends SKELETON."""

    SKELETON = "SKELETON"
    FULL = "FULL"


class AgentType(str, Enum):
    """Type of the sending agent."""

    K8S_OPERATOR = "k8s_operator"


class Severity(str, Enum):
    """Event severity levels."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class Domain(str, Enum):
    """Internal classification of event kinds."""

    APPLICATION = "application"
    INFRASTRUCTURE = "infrastructure"
    DEPLOYMENT = "deployment"
    INCIDENT = "incident"


class Kind(str, Enum):
    """Event kinds produced by the operator."""

    K8S_POD_CRASH = "K8S_POD_CRASH"
    K8S_OOM_KILL = "K8S_OOM_KILL"
    K8S_EVICTION = "K8S_EVICTION"
    K8S_SCHEDULE_FAIL = "K8S_SCHEDULE_FAIL"
    K8S_IMAGE_PULL_FAIL = "K8S_IMAGE_PULL_FAIL"
    K8S_NODE_PRESSURE = "K8S_NODE_PRESSURE"
    K8S_HPA_SCALE = "K8S_HPA_SCALE"
    K8S_POD_STARTED = "K8S_POD_STARTED"
    K8S_POD_TERMINATED = "K8S_POD_TERMINATED"
    K8S_DEPLOY_ROLLOUT = "K8S_DEPLOY_ROLLOUT"

    DEPLOY_STARTED = "DEPLOY_STARTED"
    DEPLOY_SUCCEEDED = "DEPLOY_SUCCEEDED"
    DEPLOY_FAILED = "DEPLOY_FAILED"
    DEPLOY_CANCELLED = "DEPLOY_CANCELLED"
    DEPLOY_ROLLED_BACK = "DEPLOY_ROLLED_BACK"

    @property
    def domain(self) -> Domain:
        return kind_domain(self)


def _text(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def kind_domain(kind: Union[Kind, str]) -> Domain:
    """Classify a kind by its prefix; unknown prefixes are application kinds."""
    name = _text(kind)
    if name.startswith(("K8S_", "CLOUD_")):
        return Domain.INFRASTRUCTURE
    if name.startswith("DEPLOY_"):
        return Domain.DEPLOYMENT
    if name.startswith("INCIDENT_"):
        return Domain.INCIDENT
    return Domain.APPLICATION


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def time_to_unix_nano(t: Optional[datetime]) -> int:
    """Convert a datetime to Unix nanoseconds; None or the zero time give 0.

    Naive datetimes are taken to be UTC.
    """
    if t is None:
        return 0
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    if t == _ZERO_TIME:
        return 0
    delta = t - _EPOCH
    seconds = delta.days * 86_400 + delta.seconds
    return seconds * 1_000_000_000 + delta.microseconds * 1_000


@dataclass
class Resource:
    """Origin of a batch; serialised as a flat JSON object of its attributes."""

    attributes: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, str]:
        return dict(self.attributes or {})

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Resource":
        if data is None:
            return cls({})
        if not isinstance(data, Mapping):
            raise ValueError(
                f"resource must be a JSON object, not {type(data).__name__}"
            )
        attributes: dict[str, str] = {}
        for key, value in data.items():
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise ValueError(f"resource attribute {key!r} must be a string")
            attributes[str(key)] = value
        return cls(attributes)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "Resource":
        if not text:
            return cls({})
        return cls.from_dict(json.loads(text))


@dataclass
class AgentTelemetry:
    """Optional agent self-metrics; zero fields are left out of the payload."""

    queue_depth: int = 0
    dropped_ce_count: int = 0
    flush_latency_ms: int = 0
    ring_buffer_size: int = 0

    def to_dict(self) -> dict[str, int]:
        fields = {
            "queue_depth": self.queue_depth,
            "dropped_ce_count": self.dropped_ce_count,
            "flush_latency_ms": self.flush_latency_ms,
            "ring_buffer_size": self.ring_buffer_size,
        }
        return {key: value for key, value in fields.items() if value}


@dataclass
class Agent:
    """The sending agent."""

    version: str = ""
    workspace_id: str = ""
    type: AgentType = AgentType.K8S_OPERATOR
    telemetry: Optional[AgentTelemetry] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": _text(self.type),
            "version": self.version,
            "workspace_id": self.workspace_id,
        }
        if self.telemetry is not None:
            out["telemetry"] = self.telemetry.to_dict()
        return out


@dataclass
class Series:
    """Deduplication metadata for repeated events (count >= 2)."""

    count: int
    first_at: int
    last_at: int

    def to_dict(self) -> dict[str, int]:
        return {
            "count": self.count,
            "first_at": self.first_at,
            "last_at": self.last_at,
        }


@dataclass
class Event:
    """A single causal event."""

    id: str
    kind: Union[Kind, str]
    severity: Union[Severity, str]
    occurred_at: int
    service_id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    series: Optional[Series] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "kind": _text(self.kind),
            "severity": _text(self.severity),
            "occurred_at": self.occurred_at,
            "service_id": self.service_id,
        }
        if self.attributes:
            out["attributes"] = {
                key: _text(value) if isinstance(value, Enum) else value
                for key, value in self.attributes.items()
            }
        if self.series is not None:
            out["series"] = self.series.to_dict()
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class IngestBatch:
    """Top-level payload envelope."""

    resource: Resource = field(default_factory=Resource)
    agent: Agent = field(default_factory=Agent)
    events: list[Event] = field(default_factory=list)
    flushed_at: int = 0
    spec_version: str = SPEC_VERSION
    capture_mode: CaptureMode = CaptureMode.SKELETON

    def to_dict(self) -> dict[str, Any]:
        return {
            "specversion": self.spec_version,
            "resource": self.resource.to_dict(),
            "agent": self.agent.to_dict(),
            "capture_mode": _text(self.capture_mode),
            "flushed_at": self.flushed_at,
            "events": [event.to_dict() for event in self.events],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())