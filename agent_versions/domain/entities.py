from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Union


class Family(str, Enum):
    """Which kind of project an entry tracks; decides the output shape."""
    AGENT     = "agent"
    TELEMETRY = "telemetry"


@dataclass(frozen=True)
class AgentProject:
    """
    Immutable registry entry for an APM language agent.

    One repository, one pattern. The pattern's first capturing group is
    the version number inside the release tag.
    """
    display_name:    str
    repository:      str
    version_pattern: str

    @property
    def family(self) -> Family:
        return Family.AGENT


@dataclass(frozen=True)
class TelemetryProject:
    """
    Immutable registry entry for an OpenTelemetry SDK.

    The auto-instrumentation repository and pattern are optional and
    independent of each other.
    """
    display_name:         str
    sdk_repository:       str
    sdk_version_pattern:  str
    auto_repository:      str | None = None
    auto_version_pattern: str | None = None

    @property
    def family(self) -> Family:
        return Family.TELEMETRY


ProjectEntry = Union[AgentProject, TelemetryProject]


@dataclass(frozen=True)
class AgentVersion:
    latest_version: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.latest_version is not None

    def to_dict(self) -> dict[str, str | None]:
        return {"latest_version": self.latest_version}


@dataclass(frozen=True)
class TelemetryVersion:
    sdk_latest_version:  str | None = None
    auto_latest_version: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.sdk_latest_version is not None and self.auto_latest_version is not None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "sdk_latest_version":  self.sdk_latest_version,
            "auto_latest_version": self.auto_latest_version,
        }


VersionRecord = Union[AgentVersion, TelemetryVersion]


def empty_record(entry: ProjectEntry) -> VersionRecord:
    """All-absent record with the right shape for the entry's family."""
    if entry.family is Family.AGENT:
        return AgentVersion()
    return TelemetryVersion()


@dataclass(frozen=True)
class Snapshot:
    """
    The complete display_name → VersionRecord mapping of one run.

    This is the only thing that gets persisted. Absent versions are
    written as JSON null so each record always carries its family's keys.
    """
    records: Mapping[str, VersionRecord] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "records", MappingProxyType(dict(self.records)))

    def __len__(self) -> int:
        return len(self.records)

    def to_dict(self) -> dict[str, dict[str, str | None]]:
        return {name: record.to_dict() for name, record in self.records.items()}

    def to_json(self) -> bytes:
        """Canonical encoding: sorted keys, compact separators, UTF-8."""
        return json.dumps(
            self.to_dict(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")

    def misses(self) -> int:
        return sum(1 for record in self.records.values() if not record.is_complete)


@dataclass(frozen=True)
class CollectionResult:
    """
    Immutable value object summarising one collection run.
    Returned by the application service whether the run succeeded or not.
    """
    status:        str
    entries:       int
    misses:        int
    elapsed_secs:  float
    object_key:    str
    revision:      int | None = None
    error:         Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"
