import pytest

from nodeproblem.stackdriver_config import (
    DEFAULT_ENDPOINT,
    GceMetadata,
    StackdriverExporterConfig,
)


def _metadata():
    return GceMetadata(
        project_id="some-gcp-project",
        zone="us-central1-a",
        instance_id="56781234",
        instance_name="some-gce-instance",
    )


@pytest.mark.parametrize(
    "original, wanted",
    [
        (
            StackdriverExporterConfig(
                export_period="60s",
                metadata_fetch_timeout="600s",
                metadata_fetch_interval="10s",
                api_endpoint="monitoring.googleapis.com:443",
                gce_metadata=_metadata(),
            ),
            StackdriverExporterConfig(
                export_period="60s",
                metadata_fetch_timeout="600s",
                metadata_fetch_interval="10s",
                api_endpoint=DEFAULT_ENDPOINT,
                gce_metadata=_metadata(),
            ),
        ),
        (
            StackdriverExporterConfig(
                export_period="60s",
                metadata_fetch_timeout="600s",
                metadata_fetch_interval="10s",
                api_endpoint="staging-monitoring.sandbox.googleapis.com:443",
                gce_metadata=_metadata(),
            ),
            StackdriverExporterConfig(
                export_period="60s",
                metadata_fetch_timeout="600s",
                metadata_fetch_interval="10s",
                api_endpoint="staging-monitoring.sandbox.googleapis.com:443",
                gce_metadata=_metadata(),
            ),
        ),
        (
            StackdriverExporterConfig(),
            StackdriverExporterConfig(
                export_period="1m0s",
                metadata_fetch_timeout="10m0s",
                metadata_fetch_interval="10s",
                api_endpoint="monitoring.googleapis.com:443",
                gce_metadata=GceMetadata(),
            ),
        ),
    ],
    ids=["normal", "staging API endpoint", "empty"],
)
def test_apply_configuration(original, wanted):
    original.apply_configuration()
    assert original == wanted


def test_has_missing_field():
    assert _metadata().has_missing_field() is False
    partial = _metadata()
    partial.zone = ""
    assert partial.has_missing_field() is True
    assert GceMetadata().has_missing_field() is True


def test_populate_from_gce_fills_only_missing():
    meta = GceMetadata(project_id="some-gcp-project")
    asked = []

    def fetch(name):
        asked.append(name)
        return f"fetched-{name}"

    meta.populate_from_gce(fetch)
    assert asked == ["zone", "instance_id", "instance_name"]
    assert meta.project_id == "some-gcp-project"
    assert meta.zone == "fetched-zone"
    assert meta.has_missing_field() is False


def test_populate_from_gce_stops_on_error():
    meta = GceMetadata()

    def fetch(name):
        if name == "zone":
            raise RuntimeError("metadata server unreachable")
        return "value"

    with pytest.raises(RuntimeError):
        meta.populate_from_gce(fetch)
    assert meta.project_id == "value"
    assert meta.instance_id == ""


def test_from_dict():
    conf = StackdriverExporterConfig.from_dict(
        {
            "exportPeriod": "60s",
            "apiEndpoint": "monitoring.googleapis.com:443",
            "gceMetadata": {
                "projectID": "some-gcp-project",
                "zone": "us-central1-a",
                "instanceID": "56781234",
                "instanceName": "some-gce-instance",
            },
            "panicOnMetadataFetchFailure": True,
            "customMetricPrefix": "custom.googleapis.com/npd",
        }
    )
    assert conf.gce_metadata == _metadata()
    assert conf.export_period == "60s"
    assert conf.panic_on_metadata_fetch_failure is True
    assert conf.custom_metric_prefix == "custom.googleapis.com/npd"
    assert conf.metadata_fetch_timeout == ""