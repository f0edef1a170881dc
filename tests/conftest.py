"""
Pytest configuration and shared fixtures for chatflow tests.
"""
import pytest
from typing import Dict, Any

from chatflow.core.config import Settings
from chatflow.flow.executor import ExecutionEngine
from chatflow.models import ChannelConfig, FlowGraph
from chatflow.services.memory_store import (
    InMemoryChannelRepository,
    InMemoryGraphRepository,
    InMemoryExecutionStateRepository,
    InMemoryProcessedMessageRepository,
    InMemoryResumeScheduler,
)

from tests.helpers import CHANNEL_ID, FakeGateway, build_flow


@pytest.fixture
def channel() -> ChannelConfig:
    """Active test channel"""
    return ChannelConfig(
        id=CHANNEL_ID,
        name="Test channel",
        phone_number_id="1098765",
        access_token="test-token",
        verify_token="verify-me"
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(STORAGE_BACKEND="memory", ENGINE_MAX_STEPS=100, RESUME_WORKER_ENABLED=False)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def graphs() -> InMemoryGraphRepository:
    return InMemoryGraphRepository()


@pytest.fixture
def states() -> InMemoryExecutionStateRepository:
    return InMemoryExecutionStateRepository()


@pytest.fixture
def processed() -> InMemoryProcessedMessageRepository:
    return InMemoryProcessedMessageRepository()


@pytest.fixture
def scheduler() -> InMemoryResumeScheduler:
    return InMemoryResumeScheduler()


@pytest.fixture
def engine(channel, settings, gateway, graphs, states, processed, scheduler) -> ExecutionEngine:
    """Engine over in-memory repositories and the gateway spy"""
    return ExecutionEngine(
        channels=InMemoryChannelRepository([channel]),
        graphs=graphs,
        states=states,
        processed=processed,
        scheduler=scheduler,
        gateway_factory=lambda _channel: gateway,
        settings=settings
    )


@pytest.fixture
def greeting_flow_dict() -> Dict[str, Any]:
    """Keyword flow: greet, ask a name, answer with it"""
    return {
        "nodes": [
            {"id": "trigger", "type": "trigger", "config": {"keywords": ["oi", "hello"]}},
            {"id": "greet", "type": "sendText", "config": {"message": "Hi {{customer_name}}! What's your name?"}},
            {"id": "ask", "type": "waitForReply", "config": {"variableName": "name", "expectedType": "text"}},
            {"id": "reply", "type": "sendText", "config": {"message": "Nice to meet you, {{name}}"}},
            {"id": "end", "type": "end", "config": {"endType": "complete"}},
        ],
        "edges": [
            {"id": "e1", "source": "trigger", "target": "greet"},
            {"id": "e2", "source": "greet", "target": "ask"},
            {"id": "e3", "source": "ask", "target": "reply"},
            {"id": "e4", "source": "reply", "target": "end"},
        ]
    }


@pytest.fixture
def greeting_flow(greeting_flow_dict) -> FlowGraph:
    return build_flow(
        "greeting",
        greeting_flow_dict["nodes"],
        greeting_flow_dict["edges"],
        trigger_type="keyword",
        trigger_value="start"
    )


@pytest.fixture
def condition_flow_dict() -> Dict[str, Any]:
    """Condition node with two rules and a default branch"""
    return {
        "nodes": [
            {"id": "trigger", "type": "trigger", "config": {}},
            {
                "id": "check",
                "type": "condition",
                "config": {
                    "conditions": [
                        {"variable": "x", "operator": "equals", "value": "a", "outputHandle": "A"},
                        {"variable": "x", "operator": "equals", "value": "b", "outputHandle": "B"},
                    ],
                    "defaultHandle": "C"
                }
            },
            {"id": "say_a", "type": "sendText", "config": {"message": "A"}},
            {"id": "say_b", "type": "sendText", "config": {"message": "B"}},
            {"id": "say_c", "type": "sendText", "config": {"message": "C"}},
        ],
        "edges": [
            {"id": "e1", "source": "trigger", "target": "check"},
            {"id": "e2", "source": "check", "target": "say_a", "sourceHandle": "A"},
            {"id": "e3", "source": "check", "target": "say_b", "sourceHandle": "B"},
            {"id": "e4", "source": "check", "target": "say_c", "sourceHandle": "C"},
        ]
    }
