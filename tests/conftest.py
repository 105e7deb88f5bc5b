import pytest
from fastapi.testclient import TestClient

from transcript_bridge.config import Settings
from transcript_bridge.main import Services, create_app
from transcript_bridge.orchestrator import EnrichmentOrchestrator
from transcript_bridge.pipeline import NotificationPipeline
from transcript_bridge.rate_limit import SlidingWindowLimiter
from transcript_bridge.store import SummaryStore

from factories import CONTAINER_PASSWORD, FakeGraph, FakeIssueTracker, write_container


@pytest.fixture
def container(tmp_path):
    return write_container(str(tmp_path / "webhook.pfx"))


@pytest.fixture
def settings(container):
    return Settings(
        cert_container_path=container,
        cert_password=None,
        cert_password_fallbacks=("wrong-one", CONTAINER_PASSWORD),
        tenant_id="tenant-0001",
        client_id="client-0001",
        client_secret="not-a-real-secret",
        default_user_object_id="user-0001",
        github_token="ghp_test",
        github_repo="acme/meetings",
        summary_history_size=5,
        enrichment_workers=2,
        manual_actions_rpm=3,
        transcript_max_chars=2000,
    )


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def issues():
    return FakeIssueTracker()


@pytest.fixture
def services(settings, graph, issues):
    store = SummaryStore(settings.summary_history_size)
    orchestrator = EnrichmentOrchestrator(
        store=store,
        graph=graph,
        issues=issues,
        transcript_max_chars=settings.transcript_max_chars,
        workers=settings.enrichment_workers,
    )
    svc = Services(
        settings=settings,
        store=store,
        orchestrator=orchestrator,
        pipeline=NotificationPipeline.from_settings(settings, orchestrator),
        limiter=SlidingWindowLimiter(settings.manual_actions_rpm),
    )
    yield svc
    orchestrator.shutdown()


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as c:
        yield c
