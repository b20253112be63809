from app.services.verification import ChannelState


def _start(client, email="a@b.com", mobile="+91 98765 43210"):
    resp = client.post("/otp/sessions", json={"email": email, "mobile_number": mobile})
    assert resp.status_code == 201
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["otp_store"] == "InMemoryOtpStore"


def test_start_and_get_session(client):
    session = _start(client)
    assert session["email_state"] == ChannelState.not_sent.value
    assert session["sms_state"] == "not_sent"
    assert session["mobile_number"] == "919876543210"
    assert session["complete"] is False

    resp = client.get(f"/otp/sessions/{session['session_id']}")
    assert resp.status_code == 200
    assert resp.json() == session


def test_start_session_rejects_short_mobile(client):
    resp = client.post("/otp/sessions", json={"email": "a@b.com", "mobile_number": "12345"})
    assert resp.status_code == 422


def test_unknown_session(client):
    resp = client.get("/otp/sessions/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"] == "session_not_found"


def test_send_and_verify_without_session(client, email_gateway):
    resp = client.post("/otp/send", json={"identifier": "a@b.com", "channel": "email"})
    assert resp.status_code == 200
    assert resp.json()["ok"] is True
    assert resp.json()["expires_in_minutes"] == 10
    assert email_gateway.sent == [("a@b.com", "482913")]

    resp = client.post("/otp/verify", json={"identifier": "a@b.com", "code": "482913", "channel": "email"})
    assert resp.status_code == 200
    assert resp.json()["ok"] is True
    assert resp.json()["session"] is None

    resp = client.post("/otp/verify", json={"identifier": "a@b.com", "code": "482913", "channel": "email"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "no_pending_code"


def test_malformed_code(client):
    resp = client.post("/otp/verify", json={"identifier": "a@b.com", "code": "12a45", "channel": "email"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "malformed_code"


def test_code_mismatch_and_expiry(client, clock):
    client.post("/otp/send", json={"identifier": "a@b.com", "channel": "email"})
    resp = client.post("/otp/verify", json={"identifier": "a@b.com", "code": "000000", "channel": "email"})
    assert resp.json()["detail"]["error"] == "code_mismatch"

    clock.advance(minutes=11)
    resp = client.post("/otp/verify", json={"identifier": "a@b.com", "code": "482913", "channel": "email"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "code_expired"


def test_delivery_error_is_502(client, sms_gateway):
    sms_gateway.succeed = False
    resp = client.post("/otp/send", json={"identifier": "9876543210", "channel": "sms"})
    assert resp.status_code == 502
    assert resp.json()["detail"]["error"] == "delivery_error"


def test_legacy_payloads(client, sms_gateway):
    resp = client.post("/otp/send", json={"mobileNumber": "9876543210", "type": "sms"})
    assert resp.status_code == 200
    assert sms_gateway.sent == [("9876543210", "482913")]

    resp = client.post("/otp/verify", json={"identifier": "9876543210", "otp": "482913", "type": "sms"})
    assert resp.status_code == 200


def test_identifier_must_belong_to_session(client):
    session = _start(client)
    resp = client.post(
        "/otp/send",
        json={"identifier": "other@b.com", "channel": "email", "session_id": session["session_id"]},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "identifier_mismatch"


def test_dual_channel_flow(client):
    session = _start(client)
    sid = session["session_id"]

    client.post("/otp/send", json={"identifier": "A@B.com", "channel": "email", "session_id": sid})
    resp = client.post(
        "/otp/verify",
        json={"identifier": "a@b.com", "code": "482913", "channel": "email", "session_id": sid},
    )
    body = resp.json()
    assert body["completed"] is False
    assert body["next_step"] is None
    assert body["session"]["email_state"] == "verified"
    assert body["session"]["sms_state"] == "not_sent"

    client.post("/otp/send", json={"identifier": "+91 98765 43210", "channel": "sms", "session_id": sid})
    assert client.get(f"/otp/sessions/{sid}").json()["sms_state"] == "sent"
    resp = client.post(
        "/otp/verify",
        json={"identifier": "919876543210", "code": "135790", "channel": "sms", "session_id": sid},
    )
    body = resp.json()
    assert resp.status_code == 200
    assert body["completed"] is True
    assert body["next_step"] == "payment"
    assert body["session"]["complete"] is True

    resp = client.delete(f"/otp/sessions/{sid}")
    assert resp.json() == {"discarded": True}
    assert client.get(f"/otp/sessions/{sid}").status_code == 404


def test_identifier_without_digits_is_rejected(client, sms_gateway):
    resp = client.post("/otp/send", json={"identifier": "abc", "channel": "sms"})
    assert resp.status_code == 422
    assert sms_gateway.sent == []

    resp = client.post("/otp/verify", json={"identifier": "xyz", "code": "482913", "channel": "sms"})
    assert resp.status_code == 422


def test_blank_email_identifier_is_rejected(client):
    resp = client.post("/otp/send", json={"identifier": "   ", "channel": "email"})
    assert resp.status_code == 422


def test_numeric_code_is_checked_like_text(client):
    resp = client.post("/otp/verify", json={"identifier": "a@b.com", "code": 12345, "channel": "email"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "malformed_code"

    client.post("/otp/send", json={"identifier": "a@b.com", "channel": "email"})
    resp = client.post("/otp/verify", json={"identifier": "a@b.com", "code": 482913, "channel": "email"})
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_session_view_reports_pending_codes(client, clock):
    sid = _start(client)["session_id"]
    assert client.get(f"/otp/sessions/{sid}").json()["email_pending"] is False

    client.post("/otp/send", json={"identifier": "a@b.com", "channel": "email", "session_id": sid})
    view = client.get(f"/otp/sessions/{sid}").json()
    assert view["email_pending"] is True
    assert view["sms_pending"] is False

    clock.advance(minutes=11)
    assert client.get(f"/otp/sessions/{sid}").json()["email_pending"] is False
