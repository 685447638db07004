import json
import pathlib
import sys
from dataclasses import dataclass, field
from typing import Any

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from agentdesk.agents.service import AgentService, InMemoryAgentRepository
from agentdesk.app_logging import init_logging
from agentdesk.config_store import InMemoryConfigStore
from agentdesk.conversations import InMemoryConversationStore
from agentdesk.metrics import InMemoryMetricsStore
from agentdesk.providers.credentials import CredentialResolver
from agentdesk.providers.gateway import ProviderGateway
from agentdesk.routing.assignments import AssignmentManager, InMemoryAssignmentRepository
from agentdesk.routing.service import RoutingService

ACCOUNT_ID = 1


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, lines: list | None = None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self._lines = lines or []
        self.text = json.dumps(self._payload)
        self.closed = False

    def json(self) -> Any:
        return self._payload

    def iter_lines(self, decode_unicode: bool = False):
        for line in self._lines:
            if isinstance(line, Exception):
                raise line
            yield line

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class FakeSession:
    """Records every POST and answers from a queue of canned responses."""

    def __init__(self, *responses: FakeResponse):
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    def post(self, url, **kwargs):
        self.requests.append({"url": url, **kwargs})
        if isinstance(self.responses[0], Exception):
            raise self.responses.pop(0)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def openai_reply(content: str = "Happy to help!", total_tokens: int = 42) -> FakeResponse:
    return FakeResponse(
        payload={
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "usage": {"prompt_tokens": 30, "completion_tokens": 12, "total_tokens": total_tokens},
        }
    )


@dataclass
class Stack:
    conversations: InMemoryConversationStore
    metrics: InMemoryMetricsStore
    config: InMemoryConfigStore
    session: FakeSession
    gateway: ProviderGateway
    agents: AgentService
    assignments: AssignmentManager
    routing: RoutingService
    installed: dict[str, Any] = field(default_factory=dict)

    def install(self, *template_ids: str):
        for template_id in template_ids:
            self.installed[template_id] = self.agents.install(template_id)
        return [self.installed[t] for t in template_ids]


@pytest.fixture
def fake_session():
    return FakeSession(openai_reply())


@pytest.fixture
def stack(fake_session) -> Stack:
    conversations = InMemoryConversationStore()
    metrics = InMemoryMetricsStore()
    config = InMemoryConfigStore()
    gateway = ProviderGateway(
        config,
        credentials=CredentialResolver(
            config, overrides={"openai": {"api_key": "sk-test"}, "claude": {"api_key": "sk-ant-test"}}
        ),
        session=fake_session,
    )
    repository = InMemoryAssignmentRepository()
    agent_repository = InMemoryAgentRepository()
    agents = AgentService(
        ACCOUNT_ID,
        agent_repository,
        gateway,
        conversations=conversations,
        metrics=metrics,
        assignments=repository,
    )
    manager = AssignmentManager(repository, conversations, metrics, agents=agent_repository)
    routing = RoutingService(
        ACCOUNT_ID, conversations, agents, manager, metrics, auto_routing_enabled=True
    )
    return Stack(conversations, metrics, config, fake_session, gateway, agents, manager, routing)


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app
