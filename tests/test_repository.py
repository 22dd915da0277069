import json
from datetime import timedelta

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from typeflow.database import init_db
from typeflow.packages.manager import PackageManager
from typeflow.workflows.engine import WorkflowEngine
from typeflow.workflows.engine.runtime.modules import ModuleResolver
from typeflow.workflows.logger import WorkflowExecutorLogger
from typeflow.workflows.models import CustomNodeType, Workflow, WorkflowEdge, WorkflowNode
from typeflow.workflows.repository import SQLModelWorkflowRepository

from .conftest import ORG_ID, edge, make_workflow, node, silent_events


@pytest.fixture
def db_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(engine)
    return engine


@pytest.fixture
def stored_workflow(db_engine):
    workflow = Workflow(
        id="wf-db",
        organization_id=ORG_ID,
        name="Stored",
        meta={"typeDefinitions": "RATE = 2\n"},
        nodes=[
            WorkflowNode(id="start", node_type="trigger", label="Start", execution_order=0),
            WorkflowNode(
                id="calc",
                node_type="code",
                label="Calc",
                config={"code": "return {'total': _json['n'] * RATE}"},
                execution_order=1,
            ),
        ],
        edges=[WorkflowEdge(id="e1", source_node_id="start", target_node_id="calc")],
    )
    with Session(db_engine) as session:
        session.add(workflow)
        session.add(
            CustomNodeType(
                organization_id=ORG_ID,
                name="greet",
                description={"properties": [{"name": "greeting", "default": "Hi"}]},
                execute_code="return {'msg': get_node_parameter('greeting')}",
            )
        )
        session.commit()
    return workflow


@pytest.mark.asyncio
async def test_loads_workflow_definition(db_engine, stored_workflow):
    repository = SQLModelWorkflowRepository(engine=db_engine)

    definition = await repository.get_workflow("wf-db", ORG_ID)

    assert [n.id for n in definition.nodes] == ["start", "calc"]
    assert definition.connections[0].source_node_id == "start"
    assert definition.type_definitions == "RATE = 2\n"
    assert await repository.get_workflow("wf-db", "other-org") is None


@pytest.mark.asyncio
async def test_loads_custom_node(db_engine, stored_workflow):
    repository = SQLModelWorkflowRepository(engine=db_engine)

    definition = await repository.get_custom_node(ORG_ID, "greet")

    assert definition.properties == [{"name": "greeting", "default": "Hi"}]
    assert await repository.get_custom_node(ORG_ID, "missing") is None


@pytest.mark.asyncio
async def test_engine_runs_stored_workflow(db_engine, stored_workflow):
    engine = WorkflowEngine(SQLModelWorkflowRepository(engine=db_engine), event_logger_factory=silent_events)

    result = await engine.execute_workflow("wf-db", ORG_ID, {"n": 21})

    assert result.success, result.error
    assert [item.json_data for item in result.final_output] == [{"total": 42}]


def test_package_paths_are_per_organization(tmp_path):
    manager = PackageManager(root=tmp_path)

    path = manager.ensure_packages_dir("acme")
    (path / "tinyhelper-1.2.0.dist-info").mkdir()

    assert path == tmp_path / "acme" / "site-packages"
    assert manager.list_installed("acme") == ["tinyhelper"]
    assert manager.list_installed("nobody") == []
    with pytest.raises(ValueError):
        manager.get_packages_path("../etc")


def test_require_prefers_organization_packages(tmp_path):
    packages = tmp_path / "site-packages"
    packages.mkdir()
    (packages / "typeflow_test_orgpkg.py").write_text("def shout(s):\n    return s.upper()\n")
    resolver = ModuleResolver(packages)

    module = resolver("typeflow_test_orgpkg")

    assert module.shout("hi") == "HI"
    assert resolver.attribute("typeflow_test_orgpkg", "shout") is module.shout
    with pytest.raises(ImportError):
        resolver.attribute("typeflow_test_orgpkg", "whisper")


@pytest.mark.asyncio
async def test_code_node_imports_organization_package(make_engine, repository, tmp_path):
    manager = PackageManager(root=tmp_path)
    site = manager.ensure_packages_dir(ORG_ID)
    (site / "typeflow_test_pricing.py").write_text("def with_tax(x):\n    return round(x * 1.13, 2)\n")
    repository.add_workflow(
        make_workflow(
            [
                node("trigger", "trigger"),
                node("code", "code", code="from typeflow_test_pricing import with_tax\nreturn {'price': with_tax(100)}"),
            ],
            [edge("trigger", "code")],
        )
    )
    engine = make_engine(package_manager=manager)

    result = await engine.execute_workflow("wf-1", ORG_ID)

    assert result.success, result.error
    assert result.final_output[0].json_data == {"price": 113.0}


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.messages = []

    def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("redis down")
        self.messages.append((channel, json.loads(message)))


@pytest.mark.asyncio
async def test_execution_events_are_published(make_engine, repository):
    redis = FakeRedis()
    loggers = []

    def factory(workflow_id, execution_id):
        events = WorkflowExecutorLogger(workflow_id, execution_id, redis_client=redis, enabled=True)
        loggers.append(events)
        return events

    conditions = [{"field": "ok", "operator": "isTrue"}]
    repository.add_workflow(
        make_workflow(
            [node("trigger", "trigger"), node("check", "if", conditions=conditions), node("t"), node("f")],
            [edge("trigger", "check"), edge("check", "t", "true"), edge("check", "f", "false")],
        )
    )
    engine = make_engine(event_logger_factory=factory)

    await engine.execute_workflow("wf-1", ORG_ID, {"ok": True})

    channel = f"workflow:execution:{loggers[0].execution_id}"
    assert {c for c, _ in redis.messages} == {channel}
    assert [m["type"] for _, m in redis.messages] == [
        "workflow_started",
        "node_started",
        "node_completed",
        "node_started",
        "node_completed",
        "node_started",
        "node_completed",
        "node_skipped",
        "workflow_completed",
    ]
    assert redis.messages[-2][1]["data"] == {"node_id": "f"}


@pytest.mark.asyncio
async def test_publish_failures_do_not_fail_the_run(make_engine, repository):
    redis = FakeRedis(fail=True)
    repository.add_workflow(make_workflow([node("trigger", "trigger")], []))
    engine = make_engine(
        event_logger_factory=lambda w, e: WorkflowExecutorLogger(w, e, redis_client=redis, enabled=True)
    )

    result = await engine.execute_workflow("wf-1", ORG_ID)

    assert result.success


def test_new_workflows_get_utc_timestamps(db_engine):
    workflow = Workflow(organization_id=ORG_ID, name="Stamped")
    assert workflow.created_at.utcoffset() == timedelta(0)
    assert workflow.updated_at.utcoffset() == timedelta(0)

    with Session(db_engine) as session:
        session.add(workflow)
        session.commit()
        session.refresh(workflow)
        assert workflow.created_at is not None
