import pytest

from nodeproblem import exporters
from nodeproblem.exporters import ExporterHandler, ExporterNotFoundError


@pytest.fixture(autouse=True)
def empty_registry():
    exporters.clear()
    yield
    exporters.clear()


def _none_factory(options):
    return None


class _RecordingExporter:
    def __init__(self, options):
        self.options = options
        self.seen = []

    def export_problems(self, status):
        self.seen.append(status)


def test_registration():
    exporters.register("foo", ExporterHandler(create_exporter=_none_factory))
    exporters.register("bar", ExporterHandler(create_exporter=_none_factory))
    assert sorted(exporters.get_exporter_names()) == sorted(["foo", "bar"])


def test_get_exporter_handler():
    handler = ExporterHandler(create_exporter=_none_factory)
    exporters.register("foo", handler)
    assert exporters.get_exporter_handler("foo") is handler
    with pytest.raises(ExporterNotFoundError, match="bar"):
        exporters.get_exporter_handler("bar")


def test_new_exporters_skips_none_and_passes_options():
    exporters.register("foo", ExporterHandler(create_exporter=_none_factory))
    exporters.register(
        "rec", ExporterHandler(create_exporter=_RecordingExporter, options={"path": "p"})
    )
    created = exporters.new_exporters()
    assert len(created) == 1
    assert created[0].options == {"path": "p"}


def test_clear_empties_registry():
    exporters.register("foo", ExporterHandler(create_exporter=_none_factory))
    exporters.clear()
    assert exporters.get_exporter_names() == []