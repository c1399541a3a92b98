"""Configuration of the Stackdriver metrics exporter."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Mapping

from .durations import format_duration

__all__ = ["GceMetadata", "StackdriverExporterConfig"]

DEFAULT_EXPORT_PERIOD = format_duration(timedelta(seconds=60))
DEFAULT_ENDPOINT = "monitoring.googleapis.com:443"
DEFAULT_METADATA_FETCH_TIMEOUT = format_duration(timedelta(seconds=600))
DEFAULT_METADATA_FETCH_INTERVAL = format_duration(timedelta(seconds=10))

_FIELDS = ("project_id", "zone", "instance_id", "instance_name")


@dataclass
class GceMetadata:
    project_id: str = ""
    zone: str = ""
    instance_id: str = ""
    instance_name: str = ""

    def has_missing_field(self) -> bool:
        return any(not getattr(self, name) for name in _FIELDS)

    def populate_from_gce(self, fetch: Callable[[str], str]) -> None:
        """Fill every empty field by calling ``fetch`` with the field's name.

        Fields are fetched in order; the first failure propagates and leaves
        the later fields untouched.
        """
        for name in _FIELDS:
            if not getattr(self, name):
                setattr(self, name, fetch(name))


@dataclass
class StackdriverExporterConfig:
    export_period: str = ""
    api_endpoint: str = ""
    gce_metadata: GceMetadata = field(default_factory=GceMetadata)
    metadata_fetch_timeout: str = ""
    metadata_fetch_interval: str = ""
    panic_on_metadata_fetch_failure: bool = False
    custom_metric_prefix: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StackdriverExporterConfig":
        metadata = data.get("gceMetadata") or {}
        return cls(
            export_period=data.get("exportPeriod", ""),
            api_endpoint=data.get("apiEndpoint", ""),
            gce_metadata=GceMetadata(
                project_id=metadata.get("projectID", ""),
                zone=metadata.get("zone", ""),
                instance_id=metadata.get("instanceID", ""),
                instance_name=metadata.get("instanceName", ""),
            ),
            metadata_fetch_timeout=data.get("metadataFetchTimeout", ""),
            metadata_fetch_interval=data.get("metadataFetchInterval", ""),
            panic_on_metadata_fetch_failure=bool(data.get("panicOnMetadataFetchFailure", False)),
            custom_metric_prefix=data.get("customMetricPrefix", ""),
        )

    def apply_configuration(self) -> None:
        """Fill empty settings with their defaults."""
        if not self.export_period:
            self.export_period = DEFAULT_EXPORT_PERIOD
        if not self.metadata_fetch_timeout:
            self.metadata_fetch_timeout = DEFAULT_METADATA_FETCH_TIMEOUT
        if not self.metadata_fetch_interval:
            self.metadata_fetch_interval = DEFAULT_METADATA_FETCH_INTERVAL
        if not self.api_endpoint:
            self.api_endpoint = DEFAULT_ENDPOINT