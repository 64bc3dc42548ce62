"""Test workflow definitions and storage."""

import pytest

from typeflow.executor.errors import WorkflowValidationError
from typeflow.nodes.base import NodeKind
from typeflow.workflows.models import WorkflowDefinition
from typeflow.workflows.store import InMemoryWorkflowStore, RedisWorkflowStore


@pytest.fixture
def definition_data():
    return {
        "id": "wf-1",
        "organizationId": "org-1",
        "name": "Orders",
        "isActive": False,
        "nodes": [
            {"id": "t", "type": "webhook", "label": "Hook", "config": {"path": "orders"}},
            {"id": "f", "type": "filter", "label": "Big", "executionOrder": 2,
             "position": {"x": 10, "y": 20}},
        ],
        "connections": [
            {"id": "c1", "sourceNodeId": "t", "targetNodeId": "f",
             "dataMapping": {"amount": "body.amount"}},
        ],
        "metadata": {"breakpoints": ["f"]},
    }


@pytest.mark.unit
class TestWorkflowDefinition:
    """Test definition parsing."""

    def test_parse_camel_case(self, definition_data):
        workflow = WorkflowDefinition.parse(definition_data)

        assert workflow.organization_id == "org-1"
        assert workflow.is_active is False
        assert workflow.nodes[0].type == NodeKind.WEBHOOK
        assert workflow.nodes[1].execution_order == 2
        assert workflow.nodes[1].position.y == 20
        assert workflow.connections[0].data_mapping == {"amount": "body.amount"}
        assert workflow.connections[0].source_handle is None
        assert workflow.breakpoints == ["f"]
        assert workflow.get_node("f").label == "Big"
        assert workflow.get_node("zzz") is None

    def test_unknown_node_type(self, definition_data):
        definition_data["nodes"][1]["type"] = "teleport"

        with pytest.raises(WorkflowValidationError, match="malformed") as exc_info:
            WorkflowDefinition.parse(definition_data)
        assert exc_info.value.validation_errors[0].startswith("nodes.1.type")

    def test_duplicate_labels_are_case_insensitive(self, definition_data):
        definition_data["nodes"][1]["label"] = "hook"

        with pytest.raises(WorkflowValidationError, match="Duplicate node label"):
            WorkflowDefinition.parse(definition_data)

    def test_dangling_connection(self, definition_data):
        definition_data["connections"].append({"sourceNodeId": "f", "targetNodeId": "ghost"})

        with pytest.raises(WorkflowValidationError) as exc_info:
            WorkflowDefinition.parse(definition_data)
        assert "references unknown node 'ghost'" in exc_info.value.validation_errors[0]


@pytest.mark.unit
class TestWorkflowStores:
    """Test the store adapters."""

    @pytest.mark.asyncio
    async def test_in_memory_store(self, definition_data):
        workflow = WorkflowDefinition.parse(definition_data)
        store = InMemoryWorkflowStore([workflow])

        assert await store.get_workflow("wf-1", "org-1") is workflow
        assert await store.get_workflow("wf-1") is workflow
        assert await store.get_workflow("wf-1", "org-2") is None

        with pytest.raises(ValueError):
            store.add(WorkflowDefinition())

    @pytest.mark.asyncio
    async def test_redis_store_round_trip(self, fake_redis, definition_data):
        store = RedisWorkflowStore(fake_redis, completed_ttl=100, failed_ttl=500)
        workflow = WorkflowDefinition.parse(definition_data)

        await store.put_workflow(workflow)
        loaded = await store.get_workflow("wf-1", "org-1")

        assert loaded == workflow
        assert await store.get_workflow("wf-1", "org-2") is None

    @pytest.mark.asyncio
    async def test_redis_execution_ttls(self, fake_redis):
        store = RedisWorkflowStore(fake_redis, completed_ttl=100, failed_ttl=500)

        await store.save_execution({"executionId": "e1", "success": True})
        await store.save_execution({"executionId": "e2", "success": False})

        assert fake_redis.expirations["typeflow:execution:e1"] == 100
        assert fake_redis.expirations["typeflow:execution:e2"] == 500
        assert (await store.get_execution("e1"))["success"] is True

        with pytest.raises(ValueError):
            await store.save_execution({"success": True})
