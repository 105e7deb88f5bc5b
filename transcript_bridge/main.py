"""
HTTP interface for transcript_bridge.

The webhook acknowledges every notification with 202 once the interim
summary is published; enrichment continues in the background. The query
endpoints expose flags and summaries, never secret material.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from .config import Settings, is_debug, validate_config
from .errors import EnrichmentFailed, IssueAlreadyFiled, IssueFilingFailed, KeyUnavailable
from .graph_client import GraphClient
from .issue_tracker import IssueTracker
from .logging_config import configure_logging
from .models import FetchInsightsRequest, IssueResponse
from .orchestrator import EnrichmentOrchestrator
from .pipeline import NotificationPipeline
from .rate_limit import SlidingWindowLimiter
from .store import SummaryStore
from .summaries import Summary
from .util import utc_iso

logger = logging.getLogger(__name__)

TRANSCRIPT_PREVIEW_CHARS = 500
DEFAULT_HISTORY_LIMIT = 10


@dataclass
class Services:
    """Everything the routes need, built once per application."""
    settings: Settings
    store: SummaryStore
    orchestrator: EnrichmentOrchestrator
    pipeline: NotificationPipeline
    limiter: SlidingWindowLimiter


def build_services(settings: Settings) -> Services:
    store = SummaryStore(settings.summary_history_size)
    orchestrator = EnrichmentOrchestrator(
        store=store,
        graph=GraphClient(settings),
        issues=IssueTracker(settings),
        transcript_max_chars=settings.transcript_max_chars,
        workers=settings.enrichment_workers,
    )
    return Services(
        settings=settings,
        store=store,
        orchestrator=orchestrator,
        pipeline=NotificationPipeline.from_settings(settings, orchestrator),
        limiter=SlidingWindowLimiter(settings.manual_actions_rpm),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _limit_manual(services: Services) -> None:
    result = services.limiter.hit("manual")
    if not result.allowed:
        raise HTTPException(
            429,
            "RATE_LIMIT",
            headers={"Retry-After": str(int(result.retry_after or 0) + 1)},
        )


def _key_available(services: Services) -> bool:
    try:
        services.pipeline.resolver.resolve()
    except KeyUnavailable:
        return False
    return True


def _no_summary() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "No summary available yet"})


def display_projection(summary: Summary) -> dict:
    display = {
        "title": summary.title,
        "flags": summary.flags(),
        "githubIssue": summary.external_issue_ref.to_dict() if summary.external_issue_ref else None,
        "meetingDetails": dict(summary.details),
        "createdAt": summary.created_at,
        "updatedAt": summary.updated_at,
    }
    if summary.has_insights and summary.insights:
        insights = summary.insights
        display["meetingNotes"] = insights.get("meetingNotes") or []
        display["actionItems"] = insights.get("actionItems") or []
        display["mentions"] = (insights.get("viewpoint") or {}).get("mentionEvents") or []
    else:
        display["body"] = summary.body
        text = summary.transcript_text or ""
        display["transcriptPreview"] = text[:TRANSCRIPT_PREVIEW_CHARS] if text else None
    return display


# ============================================================
# Routes
# ============================================================

router = APIRouter(prefix="/api")


@router.post("/webhook")
async def webhook(
    request: Request,
    validation_token: Optional[str] = Query(default=None, alias="validationToken"),
    services: Services = Depends(get_services),
):
    if validation_token is not None:
        logger.info("Webhook validation handshake")
        return PlainTextResponse(validation_token, status_code=200)

    try:
        body = await request.json()
    except ValueError:
        logger.warning("Webhook body is not JSON; acknowledged and ignored")
        return Response(status_code=202)

    try:
        await run_in_threadpool(services.pipeline.process_notification, body)
    except Exception:
        logger.exception("Notification processing raised")
    return Response(status_code=202)


@router.get("/summary")
def get_summary(services: Services = Depends(get_services)):
    summary = services.store.get_latest()
    if summary is None:
        return _no_summary()
    return summary.to_dict()


@router.get("/summary/display")
def get_summary_display(services: Services = Depends(get_services)):
    summary = services.store.get_latest()
    if summary is None:
        return _no_summary()
    return display_projection(summary)


@router.get("/summaries")
def list_summaries(limit: int = DEFAULT_HISTORY_LIMIT, services: Services = Depends(get_services)):
    limit = min(max(1, limit), services.store.capacity)
    history = services.store.get_history(limit)
    return {"count": len(history), "summaries": [s.to_dict() for s in history]}


@router.delete("/summaries")
def clear_summaries(services: Services = Depends(get_services)):
    services.store.clear()
    return {"success": True, "message": "Summary history cleared"}


@router.get("/status")
def status(services: Services = Depends(get_services)):
    settings = services.settings
    return {
        **services.store.status(),
        **services.orchestrator.stats.snapshot(),
        "key_material_available": _key_available(services),
        "identity_configured": settings.identity_configured,
        "issue_tracker_configured": settings.issue_tracker_configured,
        "environment": validate_config(settings),
        "timestamp": utc_iso(),
    }


@router.post("/create-issue")
def create_issue(services: Services = Depends(get_services)):
    _limit_manual(services)

    summary = services.store.get_latest()
    if summary is None:
        raise HTTPException(400, "No summary available to file")
    if summary.is_final:
        return JSONResponse(
            status_code=409,
            content={"error": "Issue already filed", "githubIssue": summary.external_issue_ref.to_dict()},
        )
    if not services.settings.issue_tracker_configured:
        raise HTTPException(503, "Issue tracker is not configured")

    try:
        ref = services.orchestrator.file_issue()
    except IssueAlreadyFiled as e:
        return JSONResponse(status_code=409, content={"error": e.message})
    except IssueFilingFailed as e:
        raise HTTPException(502, e.message)

    return IssueResponse(issue_url=ref.url, issue_number=ref.number).model_dump(by_alias=True)


@router.post("/fetch-ai-insights")
def fetch_ai_insights(req: FetchInsightsRequest, services: Services = Depends(get_services)):
    _limit_manual(services)

    if not (req.online_meeting_id or req.join_web_url):
        raise HTTPException(400, "onlineMeetingId or joinWebUrl is required")
    if not services.settings.identity_configured:
        raise HTTPException(503, "Identity provider is not configured")

    try:
        summary = services.orchestrator.fetch_insights_summary(
            req.user_id, req.online_meeting_id, req.join_web_url
        )
    except EnrichmentFailed as e:
        raise HTTPException(502, e.message)

    if summary is None:
        return JSONResponse(status_code=404, content={"error": "No insights available for this meeting"})
    return {"success": True, "summary": summary.to_dict()}


@router.post("/fetch-transcript-content")
def fetch_transcript_content(services: Services = Depends(get_services)):
    _limit_manual(services)

    summary = services.store.get_latest()
    if summary is None or not summary.content_reference_url:
        raise HTTPException(400, "Latest summary has no content reference")
    if summary.is_final:
        return JSONResponse(status_code=409, content={"error": "Latest summary already has an issue filed"})
    if not services.settings.identity_configured:
        raise HTTPException(503, "Identity provider is not configured")

    try:
        updated = services.orchestrator.merge_transcript(summary.content_reference_url)
    except EnrichmentFailed as e:
        raise HTTPException(502, e.message)

    if updated is None:
        return JSONResponse(status_code=404, content={"error": "Transcript content not available"})
    return {"success": True, "summary": updated.to_dict()}


# ============================================================
# Application
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    services: Services = app.state.services
    if app.state.configure_logs:
        settings = services.settings
        configure_logging("DEBUG" if is_debug() else settings.log_level, settings.log_json, settings.log_file)
    logger.info("transcript_bridge started", extra={"extra_fields": {"environment": validate_config(services.settings)}})
    yield
    services.orchestrator.shutdown(wait_for_tasks=False)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the application. With neither argument, settings come from the
    environment and logging is configured at startup.
    """
    configure_logs = settings is None and services is None
    if services is None:
        services = build_services(settings or Settings.from_env())

    app = FastAPI(title="Transcript Bridge", lifespan=lifespan)
    app.state.services = services
    app.state.configure_logs = configure_logs
    app.include_router(router)

    @app.get("/health")
    def health():
        return {"status": "ok", "timestamp": utc_iso()}

    @app.get("/")
    def root():
        return {
            "service": "transcript_bridge",
            "endpoints": [route.path for route in app.routes if getattr(route, "path", "").startswith("/api")],
        }

    return app


app = create_app()
