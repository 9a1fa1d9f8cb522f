from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Union

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import config
from .dispatcher import (
    ClipboardGuard,
    LoggingNotifier,
    TelemetrySink,
    VerdictDispatcher,
    WebhookNotifier,
)
from .engine import ClipboardCandidate, default_classifier
from .reporting import (
    Environment,
    attachment_filename,
    build_json_report,
    build_pdf_report,
    build_report,
    report_filename,
)
from .storage import SettingsStore
from .whitelist import WhitelistGuard

logger = logging.getLogger(__name__)

config.configure_logging()

app = FastAPI(title="ClipGuard API", version="0.1")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_guard(store: SettingsStore) -> ClipboardGuard:
    notifiers: List = [LoggingNotifier()]
    if config.ALERT_WEBHOOK_URL:
        notifiers.append(WebhookNotifier(config.ALERT_WEBHOOK_URL, timeout=config.WEBHOOK_TIMEOUT))
    return ClipboardGuard(
        store,
        VerdictDispatcher(store, notifiers),
        whitelist_guard=WhitelistGuard(config.WHITELIST_MATCH),
        telemetry=TelemetrySink(config.TELEMETRY_PATH) if config.RAW_TELEMETRY else None,
    )


store = SettingsStore(config.DB_PATH)
guard = build_guard(store)


@app.exception_handler(sqlite3.Error)
def _store_unavailable(request: Request, exc: sqlite3.Error):
    logger.warning("Store access failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Settings store unavailable"})


def _require_api_key(authorization: Optional[str]):
    if config.API_KEY and (not authorization or authorization.replace("Bearer ", "") != config.API_KEY):
        raise HTTPException(status_code=401, detail="Unauthorized")


class EnvironmentIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    platform: Optional[str] = None
    language: Optional[str] = None


class CandidateEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    origin: Optional[str] = None
    method: str = "unknown"
    text: str = ""
    page_url: Optional[str] = Field(default=None, alias="pageUrl")
    environment: Optional[EnvironmentIn] = None


class SuspiciousClipboardEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payload: str = ""
    origin: Optional[str] = None
    page_url: Optional[str] = Field(default=None, alias="pageUrl")
    environment: Optional[EnvironmentIn] = None


class DownloadReportEvent(BaseModel):
    data: Dict[str, Any]
    filename: Optional[str] = None


class ClassifyRequest(BaseModel):
    text: str
    method: str = "unknown"


class WhitelistRequest(BaseModel):
    host: str


class KeywordsRequest(BaseModel):
    keywords: Optional[List[str]] = None
    text: Optional[str] = None


class TogglesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    on_screen_alerts: Optional[bool] = Field(default=None, alias="onScreenAlerts")
    hardcoded_keywords: Optional[bool] = Field(default=None, alias="hardcodedKeywords")


def _environment(env: Optional[EnvironmentIn], user_agent: Optional[str]) -> Environment:
    env = env or EnvironmentIn()
    return Environment(
        user_agent=env.user_agent or user_agent or "unknown",
        platform=env.platform or "unknown",
        language=env.language,
    )


def _outcome_payload(outcome) -> Dict[str, Any]:
    return {
        "status": outcome.status,
        "host": outcome.host,
        "suspicious": outcome.verdict.suspicious,
        "matchedRule": outcome.verdict.matched_rule,
        "explanation": outcome.verdict.explanation,
        "alert": outcome.alert.model_dump() if outcome.alert else None,
    }


def _json_attachment(record: Dict[str, Any], filename: str) -> Response:
    return Response(
        content=build_json_report(record),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/events/candidate")
def candidate_event(
    req: CandidateEvent,
    background_tasks: BackgroundTasks,
    authorization: Optional[str] = Header(default=None),
    user_agent: Optional[str] = Header(default=None),
):
    _require_api_key(authorization)
    outcome = guard.process_candidate(
        ClipboardCandidate(method=req.method, raw_text=req.text),
        req.origin,
        page_url=req.page_url,
        environment=_environment(req.environment, user_agent),
        submit=background_tasks.add_task,
    )
    return _outcome_payload(outcome)


@app.post("/events/suspicious-clipboard")
def suspicious_clipboard_event(
    req: SuspiciousClipboardEvent,
    background_tasks: BackgroundTasks,
    authorization: Optional[str] = Header(default=None),
    user_agent: Optional[str] = Header(default=None),
):
    _require_api_key(authorization)
    outcome = guard.process_suspicious(
        req.payload,
        req.origin,
        page_url=req.page_url,
        environment=_environment(req.environment, user_agent),
        submit=background_tasks.add_task,
    )
    return _outcome_payload(outcome)


@app.post("/events/download-report")
def download_report_event(req: DownloadReportEvent, authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    report = build_report(req.data)
    return _json_attachment(report, attachment_filename(req.filename, report["timestamp"]))


@app.post("/classify")
def classify(req: ClassifyRequest, authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    cfg = store.load_config()
    candidate = ClipboardCandidate(method=req.method, raw_text=req.text)
    verdict = default_classifier.classify_with(candidate, cfg)
    fired = default_classifier.explain(candidate, cfg.keywords, cfg.hardcoded_keywords)
    return {
        "suspicious": verdict.suspicious,
        "matchedRule": verdict.matched_rule,
        "explanation": verdict.explanation,
        "firedRules": [v.matched_rule for v in fired],
    }


@app.get("/logs")
def logs(authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    return store.list_logs()


@app.delete("/logs")
def clear_logs(authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    store.clear_logs()
    return {"logs": []}


def _log_or_404(index: int) -> Dict[str, Any]:
    entry = store.get_log(index)
    if not entry:
        raise HTTPException(status_code=404, detail="Log entry not found")
    return entry


@app.get("/logs/{index}/report")
def log_report(index: int, authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    report = build_report(_log_or_404(index))
    return _json_attachment(report, report_filename(report["timestamp"]))


@app.get("/logs/{index}/report.pdf")
def log_report_pdf(index: int, authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    report = build_report(_log_or_404(index))
    filename = report_filename(report["timestamp"]).replace(".json", ".pdf")
    return Response(
        content=build_pdf_report(report),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/settings")
def settings(authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    cfg = store.load_config()
    return {
        "whitelist": cfg.whitelist,
        "keywords": cfg.keywords,
        "onScreenAlerts": cfg.on_screen_alerts,
        "hardcodedKeywords": cfg.hardcoded_keywords,
    }


@app.get("/settings/whitelist")
def whitelist(authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    return store.list_whitelist()


@app.post("/settings/whitelist", status_code=201)
def add_whitelist(req: WhitelistRequest, authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    try:
        added = store.add_whitelist(req.host)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not added:
        raise HTTPException(status_code=409, detail=f"{req.host.strip().lower()} is already whitelisted.")
    return store.list_whitelist()


@app.delete("/settings/whitelist/{host}")
def remove_whitelist(host: str, authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    if not store.remove_whitelist(host):
        raise HTTPException(status_code=404, detail="Host not in whitelist")
    return store.list_whitelist()


@app.delete("/settings/whitelist")
def clear_whitelist(authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    store.clear_whitelist()
    return []


@app.get("/settings/keywords")
def keywords(authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    return store.list_keywords()


@app.put("/settings/keywords")
def save_keywords(req: KeywordsRequest, authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    raw: Union[str, List[str], None] = req.keywords if req.keywords is not None else req.text
    return store.save_keywords(raw)


@app.delete("/settings/keywords")
def reset_keywords(authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    store.reset_keywords()
    return []


@app.put("/settings/alerts")
def set_alerts(req: TogglesRequest, authorization: Optional[str] = Header(default=None)):
    _require_api_key(authorization)
    store.set_toggles(on_screen_alerts=req.on_screen_alerts, hardcoded_keywords=req.hardcoded_keywords)
    return settings(authorization)


# Convenience for uvicorn
def get_app():
    return app
