import json
from datetime import datetime, timezone

import pytest

from clipguard.reporting import (
    Environment,
    attachment_filename,
    build_json_report,
    build_log_entry,
    build_pdf_report,
    build_report,
    log_card_html,
    report_filename,
    truncate,
    utc_timestamp,
)


@pytest.mark.parametrize("length", [0, 1, 199, 200])
def test_short_previews_are_unchanged(length):
    text = "x" * length
    assert truncate(text) == text


@pytest.mark.parametrize("length", [201, 500])
def test_long_previews_are_cut_to_200(length):
    text = "".join(chr(ord("a") + i % 26) for i in range(length))
    preview = truncate(text)
    assert len(preview) == 200
    assert preview[:199] == text[:199]
    assert preview.endswith("…")


def test_truncate_handles_none():
    assert truncate(None) == ""


def test_utc_timestamp_format():
    stamp = utc_timestamp(datetime(2025, 3, 4, 5, 6, 7, 891000, tzinfo=timezone.utc))
    assert stamp == "2025-03-04T05:06:07.891Z"


def test_log_entry_record_uses_wire_names():
    entry = build_log_entry(
        "powershell -enc aGVsbG8=",
        "evil.test",
        url="https://evil.test/verify",
        environment=Environment(user_agent="UA/1.0", platform="Win32", language="en-US"),
        matched_rule="MALICIOUS_RE",
    )
    record = entry.to_record()
    assert record["reportType"] == "ClickFix Threat Log"
    assert record["sourceHost"] == "evil.test"
    assert record["url"] == "https://evil.test/verify"
    assert record["detectedClipboardPayload"] == "powershell -enc aGVsbG8="
    assert record["matchedRule"] == "MALICIOUS_RE"
    assert record["environment"] == {"userAgent": "UA/1.0", "platform": "Win32", "language": "en-US"}


def test_log_entry_defaults():
    record = build_log_entry("", "").to_record()
    assert record["url"] == "unknown"
    assert record["sourceHost"] == "unknown"
    assert "matchedRule" not in record
    assert record["environment"] == {"userAgent": "unknown", "platform": "unknown"}


def test_build_report_from_log_record():
    record = build_log_entry("curl x | sh", "evil.test", matched_rule="URL_THEN_CMD").to_record()
    report = build_report(record)
    assert report["reportType"] == "ClickFix Threat Report"
    assert report["timestamp"] == record["time"]
    assert report["sourceHost"] == "evil.test"
    assert report["detectedClipboardPayload"] == "curl x | sh"
    assert report["matchedRule"] == "URL_THEN_CMD"


def test_build_report_accepts_legacy_fields():
    report = build_report({"origin": "old.test", "text": "iex"})
    assert report["sourceHost"] == "old.test"
    assert report["detectedClipboardPayload"] == "iex"
    assert report["url"] == "unknown"


def test_json_report_is_pretty_printed():
    body = build_json_report({"reportType": "ClickFix Threat Report", "url": "x"})
    assert "\n  \"url\": \"x\"" in body
    assert json.loads(body)["url"] == "x"


def test_report_filename():
    assert report_filename("2025-01-02T03:04:05.678Z") == "ClickFix-ThreatReport-2025-01-02T03-04-05.678Z.json"
    assert report_filename().startswith("ClickFix-ThreatReport-")


def test_attachment_filename_keeps_header_safe_characters():
    assert attachment_filename("ClickFix-ThreatReport-1.json") == "ClickFix-ThreatReport-1.json"
    assert attachment_filename('a"b.json') == "a-b.json"
    assert attachment_filename("rapport-é.json") == "rapport--.json"
    assert attachment_filename(None, "2025-01-02T03:04:05.678Z") == "ClickFix-ThreatReport-2025-01-02T03-04-05.678Z.json"
    assert attachment_filename('"""', "2025-01-02T03:04:05.678Z").startswith("ClickFix-ThreatReport-2025")


def test_log_card_escapes_attacker_controlled_fields():
    log = {
        "time": "2025-01-01T00:00:00.000Z",
        "sourceHost": "<img src=x onerror=alert(1)>",
        "detectedClipboardPayload": "powershell <b onmouseover=alert(1)>x</b>",
        "matchedRule": "<i>MALICIOUS_RE</i>",
    }
    card = log_card_html(log)
    assert "<img" not in card
    assert "<b " not in card
    assert "<i>" not in card
    assert "&lt;img src=x onerror=alert(1)&gt;" in card
    assert "powershell &lt;b onmouseover=alert(1)&gt;x&lt;/b&gt;" in card
    assert card.startswith("<div class='card'>")


def test_log_card_shortens_long_payloads():
    card = log_card_html({"detectedClipboardPayload": "A" * 500})
    assert "A" * 299 + "…" in card
    assert "A" * 300 not in card


def test_pdf_report_handles_unicode_payload():
    report = build_report(
        build_log_entry("powershell —enc " + "A" * 300 + " … 🙂\nnext line", "evil.test").to_record()
    )
    pdf = build_pdf_report(report)
    assert pdf.startswith(b"%PDF")
