import pytest

from app.temporal.core.activity_registry import ActivityRegistry
from app.temporal.core.discovery import discover_all
from app.temporal.core.workflow_registry import WorkflowRegistry, WorkflowType


@pytest.fixture(scope="module", autouse=True)
def discovered():
    discover_all()


def test_parsing_activities_are_registered():
    names = {fn.__name__ for fn in ActivityRegistry.get_group("parsing")}

    assert names == {
        "render_document",
        "classify_pages",
        "extract_pages",
        "reconcile_and_finalize",
        "mark_parse_failed",
        "cleanup_parse",
        "notify_parse_finished",
    }


def test_maintenance_group():
    assert [fn.__name__ for fn in ActivityRegistry.get_group("maintenance")] == ["purge_expired_artifacts"]


def test_workflows_by_category():
    parsing = [w.name for w in WorkflowRegistry.get_by_category(WorkflowType.PARSING)]
    maintenance = [w.name for w in WorkflowRegistry.get_by_category(WorkflowType.MAINTENANCE)]

    assert parsing == ["ParseContractWorkflow"]
    assert maintenance == ["ArtifactPurgeWorkflow"]


def test_duplicate_activity_name_is_rejected():
    with pytest.raises(ValueError):
        ActivityRegistry.register("parsing", "render_document")(lambda: None)
