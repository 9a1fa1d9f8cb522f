from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from pydantic import BaseModel

from .engine import Classifier, ClipboardCandidate, DetectionConfig, Verdict, default_classifier
from .reporting import (
    Environment,
    LogEntry,
    build_log_entry,
    build_report,
    report_filename,
    truncate,
)
from .rules import ALERT_TITLE, SAFE_ACTIONS
from .storage import SettingsStore
from .whitelist import WhitelistGuard, resolve_host

logger = logging.getLogger(__name__)

Submit = Callable[..., None]


class Alert(BaseModel):
    title: str = ALERT_TITLE
    host: str
    preview: str
    matched_rule: Optional[str] = None
    explanation: str = ""
    guidance: List[str] = []
    show_modal: bool = True
    report_filename: str
    report: Dict[str, Any]


class DispatchOutcome(BaseModel):
    status: str
    host: str
    verdict: Verdict
    alert: Optional[Alert] = None


def run_now(fn: Callable, *args: Any) -> None:
    """Default submitter: run the task inline, never letting it raise."""
    try:
        fn(*args)
    except Exception:
        logger.warning("Background task %s failed", getattr(fn, "__name__", fn), exc_info=True)


class LoggingNotifier:
    name = "log"

    def notify(self, alert: Alert) -> None:
        logger.warning("%s from %s: %s", alert.title, alert.host, alert.preview)


class WebhookNotifier:
    """POST the alert to an intake endpoint. One attempt, failures are only logged."""

    name = "webhook"

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    def notify(self, alert: Alert) -> None:
        try:
            resp = requests.post(self.url, json=alert.model_dump(), timeout=self.timeout)
            if resp.status_code >= 400:
                logger.warning("Alert webhook returned HTTP %s", resp.status_code)
        except requests.RequestException as exc:
            logger.warning("Alert webhook failed: %s", exc)


class TelemetrySink:
    """Append raw clipboard candidates to a JSONL file for passive diagnostics."""

    def __init__(self, path: str):
        self.path = Path(path)

    def record(self, item: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(item, ensure_ascii=False) + "\n")
        except OSError as exc:
            logger.warning("Could not write raw telemetry: %s", exc)


class VerdictDispatcher:
    """Turns a positive, non-whitelisted verdict into a threat log entry and an alert.

    Each side effect is independent: a failed log write does not stop the alert and a
    failed notifier does not stop the others.
    """

    def __init__(self, store: SettingsStore, notifiers: Sequence = ()):
        self.store = store
        self.notifiers = list(notifiers)

    def _append(self, record: Dict[str, Any]) -> None:
        try:
            self.store.append_log(record)
        except sqlite3.Error as exc:
            logger.warning("Could not append threat log entry: %s", exc)

    @staticmethod
    def _notify(notifier, alert: Alert) -> None:
        try:
            notifier.notify(alert)
        except Exception:
            logger.warning("Notifier %s failed", getattr(notifier, "name", notifier), exc_info=True)

    def dispatch(
        self,
        candidate: ClipboardCandidate,
        host: str,
        verdict: Verdict,
        page_url: Optional[str] = None,
        environment: Optional[Environment] = None,
        show_modal: bool = True,
        submit: Submit = run_now,
    ) -> Alert:
        entry: LogEntry = build_log_entry(
            candidate.raw_text,
            host,
            url=page_url,
            environment=environment,
            matched_rule=verdict.matched_rule,
        )
        record = entry.to_record()
        self._append(record)

        report = build_report(record)
        alert = Alert(
            host=host,
            preview=truncate(candidate.raw_text),
            matched_rule=verdict.matched_rule,
            explanation=verdict.explanation,
            guidance=list(SAFE_ACTIONS),
            show_modal=show_modal,
            report_filename=report_filename(entry.time),
            report=report,
        )
        for notifier in self.notifiers:
            submit(self._notify, notifier, alert)
        return alert


class ClipboardGuard:
    """Candidate in, verdict and (maybe) alert out.

    Configuration is loaded from the store on every event; nothing user-tunable is cached.
    """

    def __init__(
        self,
        store: SettingsStore,
        dispatcher: VerdictDispatcher,
        classifier: Classifier = default_classifier,
        whitelist_guard: Optional[WhitelistGuard] = None,
        telemetry: Optional[TelemetrySink] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.classifier = classifier
        self.whitelist_guard = whitelist_guard or WhitelistGuard()
        self.telemetry = telemetry

    def _load_config(self) -> DetectionConfig:
        try:
            return self.store.load_config()
        except sqlite3.Error as exc:
            logger.warning("Could not load settings, using built-in defaults: %s", exc)
            return DetectionConfig()

    def _record_raw(
        self,
        candidate: ClipboardCandidate,
        origin: Optional[str],
        host: str,
        whitelisted: bool,
        verdict: Verdict,
        submit: Submit,
    ) -> None:
        if self.telemetry is None:
            return
        item = {
            "ts": int(time.time()),
            "origin": origin,
            "host": host,
            "method": candidate.method.value,
            "text": candidate.raw_text,
            "whitelisted": whitelisted,
            "suspicious": verdict.suspicious,
            "matchedRule": verdict.matched_rule,
        }
        submit(self.telemetry.record, item)

    def _guard_and_dispatch(
        self,
        candidate: ClipboardCandidate,
        host: str,
        verdict: Verdict,
        config: DetectionConfig,
        whitelisted: bool,
        page_url: Optional[str],
        environment: Optional[Environment],
        submit: Submit,
    ) -> DispatchOutcome:
        if not verdict.suspicious:
            return DispatchOutcome(status="benign", host=host, verdict=verdict)
        if whitelisted:
            logger.info("Suppressed %s alert for whitelisted host %s", verdict.matched_rule, host)
            return DispatchOutcome(status="whitelisted", host=host, verdict=verdict)
        alert = self.dispatcher.dispatch(
            candidate,
            host,
            verdict,
            page_url=page_url,
            environment=environment,
            show_modal=config.on_screen_alerts,
            submit=submit,
        )
        return DispatchOutcome(status="logged", host=host, verdict=verdict, alert=alert)

    def process_candidate(
        self,
        candidate: ClipboardCandidate,
        origin: Optional[str],
        page_url: Optional[str] = None,
        environment: Optional[Environment] = None,
        submit: Submit = run_now,
    ) -> DispatchOutcome:
        config = self._load_config()
        host = resolve_host(origin, page_url)
        verdict = self.classifier.classify_with(candidate, config)
        whitelisted = self.whitelist_guard.is_whitelisted(host, config.whitelist)
        # Raw telemetry is never gated by the whitelist
        self._record_raw(candidate, origin, host, whitelisted, verdict, submit)
        return self._guard_and_dispatch(
            candidate, host, verdict, config, whitelisted, page_url or origin, environment, submit
        )

    def process_suspicious(
        self,
        payload: str,
        origin: Optional[str],
        page_url: Optional[str] = None,
        environment: Optional[Environment] = None,
        submit: Submit = run_now,
    ) -> DispatchOutcome:
        """Handle a payload the content script already flagged."""
        config = self._load_config()
        candidate = ClipboardCandidate(raw_text=payload)
        host = resolve_host(origin, page_url)
        verdict = self.classifier.classify_with(candidate, config)
        if not verdict.suspicious:
            verdict = Verdict(suspicious=True, explanation="Flagged by the page-side detector")
        whitelisted = self.whitelist_guard.is_whitelisted(host, config.whitelist)
        return self._guard_and_dispatch(
            candidate, host, verdict, config, whitelisted, page_url or origin, environment, submit
        )
