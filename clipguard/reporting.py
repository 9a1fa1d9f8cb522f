from __future__ import annotations

import html
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fpdf import FPDF
from pydantic import BaseModel, ConfigDict, Field

from .config import PREVIEW_CHARS
from .rules import SAFE_ACTIONS

LOG_REPORT_TYPE = "ClickFix Threat Log"
REPORT_TYPE = "ClickFix Threat Report"
ELLIPSIS = "…"


def utc_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def truncate(text: Optional[str], limit: int = PREVIEW_CHARS) -> str:
    """Shorten to at most ``limit`` characters, the last one being an ellipsis."""
    if not text:
        return ""
    text = str(text)
    return text if len(text) <= limit else text[: limit - 1] + ELLIPSIS


class Environment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_agent: str = Field(default="unknown", alias="userAgent")
    platform: str = "unknown"
    language: Optional[str] = None


class LogEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_type: str = Field(default=LOG_REPORT_TYPE, alias="reportType")
    time: str
    url: str
    source_host: str = Field(alias="sourceHost")
    detected_clipboard_payload: str = Field(alias="detectedClipboardPayload")
    matched_rule: Optional[str] = Field(default=None, alias="matchedRule")
    environment: Environment = Environment()

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def build_log_entry(
    payload: str,
    host: str,
    url: Optional[str] = None,
    environment: Optional[Environment] = None,
    matched_rule: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LogEntry:
    return LogEntry(
        time=utc_timestamp(now),
        url=url or host or "unknown",
        source_host=host or "unknown",
        detected_clipboard_payload=payload or "",
        matched_rule=matched_rule,
        environment=environment or Environment(),
    )


def build_report(record: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a stored log record into the report an analyst receives."""
    report = {
        "reportType": REPORT_TYPE,
        "timestamp": record.get("timestamp") or record.get("time") or utc_timestamp(),
        "url": record.get("url") or "unknown",
        "sourceHost": record.get("sourceHost") or record.get("origin") or "unknown",
        "detectedClipboardPayload": record.get("detectedClipboardPayload") or record.get("text") or "",
        "environment": record.get("environment") or Environment().model_dump(by_alias=True, exclude_none=True),
    }
    if record.get("matchedRule"):
        report["matchedRule"] = record["matchedRule"]
    return report


def report_filename(stamp: Optional[str] = None) -> str:
    stamp = stamp or utc_timestamp()
    # colons and slashes are not valid in filenames on every platform
    safe = re.sub(r"[^0-9A-Za-z._-]+", "-", stamp).strip("-") or "report"
    return f"ClickFix-ThreatReport-{safe}.json"


def attachment_filename(name: Optional[str], stamp: Optional[str] = None) -> str:
    """Client-supplied filenames end up in a header; keep them to a safe charset."""
    safe = re.sub(r"[^0-9A-Za-z._-]+", "-", name or "").strip("-.")
    return safe or report_filename(stamp)


def log_card_html(log: Dict[str, Any], preview_chars: int = 300) -> str:
    """Dashboard card for one log entry. Host, rule and payload are attacker-controlled."""
    origin = log.get("sourceHost") or log.get("origin") or "unknown"
    text = log.get("detectedClipboardPayload") or log.get("text") or ""
    rule = log.get("matchedRule")
    meta = html.escape(str(log.get("time", "")))
    if rule:
        meta += " · " + html.escape(str(rule))
    return (
        f"<div class='card'><span class='pill'>{html.escape(str(origin))}</span> "
        f"<small>{meta}</small>"
        f"<div class='payload'>{html.escape(truncate(text, preview_chars))}</div></div>"
    )


def build_json_report(record: Dict[str, Any]) -> str:
    return json.dumps(record, indent=2, ensure_ascii=False)


def _safe_text(text: str) -> str:
    # Core PDF fonts are latin-1 only
    text = (
        text.replace("—", "-")
        .replace("–", "-")
        .replace("‑", "-")
        .replace("“", '"')
        .replace("”", '"')
        .replace("’", "'")
        .replace(ELLIPSIS, "...")
        .replace("\t", " ")
        .replace("\r", " ")
        .replace("\n", " ")
    )
    return text.encode("latin-1", "replace").decode("latin-1")


def _break_long_tokens(text: str, chunk: int = 40) -> str:
    parts = []
    for token in text.split(" "):
        if len(token) <= chunk:
            parts.append(token)
        else:
            # long unbroken payloads (base64, URLs) would overflow the cell
            parts.append(" ".join(token[i : i + chunk] for i in range(0, len(token), chunk)))
    return " ".join(parts)


def _mc(pdf: FPDF, text: str, height: int = 6):
    """Safe multi_cell helper with width and cursor reset."""
    usable_width = pdf.w - pdf.l_margin - pdf.r_margin
    pdf.set_x(pdf.l_margin)
    pdf.multi_cell(usable_width, height, _break_long_tokens(_safe_text(text)))


def build_pdf_report(report: Dict[str, Any]) -> bytes:
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", "B", 16)
    pdf.cell(0, 10, _safe_text(report.get("reportType", REPORT_TYPE)), ln=True)
    pdf.set_font("Helvetica", "", 11)
    _mc(pdf, f"Timestamp: {report.get('timestamp', '')}")
    _mc(pdf, f"Source host: {report.get('sourceHost', 'unknown')}")
    _mc(pdf, f"URL: {report.get('url', 'unknown')}")
    if report.get("matchedRule"):
        _mc(pdf, f"Matched rule: {report['matchedRule']}")
    pdf.ln(4)

    pdf.set_font("Helvetica", "B", 12)
    pdf.cell(0, 8, "Detected clipboard payload", ln=True)
    pdf.set_font("Courier", "", 10)
    _mc(pdf, report.get("detectedClipboardPayload", "") or "(empty)", height=5)
    pdf.ln(4)

    pdf.set_font("Helvetica", "B", 12)
    pdf.cell(0, 8, "Environment", ln=True)
    pdf.set_font("Helvetica", "", 11)
    for key, value in (report.get("environment") or {}).items():
        _mc(pdf, f"{key}: {value}")
    pdf.ln(4)

    pdf.set_font("Helvetica", "B", 12)
    pdf.cell(0, 8, "What to do next", ln=True)
    pdf.set_font("Helvetica", "", 11)
    for action in SAFE_ACTIONS:
        _mc(pdf, f"- {action}")

    output = pdf.output()
    return bytes(output) if not isinstance(output, str) else output.encode("latin-1")
