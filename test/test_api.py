from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from firebase_admin import auth
from starlette.websockets import WebSocketDisconnect

from app import create_app
from app.pedro.identity import Principal, admin_required, get_current_principal, login_required


@pytest.fixture
def app(services, settings):
    app = create_app(services=services, log_to_file=False, settings=settings)
    app.dependency_overrides[login_required] = lambda: "user-1"
    app.dependency_overrides[admin_required] = lambda: "admin-1"
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def _create_voucher(client, clock, **overrides):
    body = {
        "description": "Autumn sale",
        "discountType": "percentage",
        "discountValue": 20,
        "scope": "specific_homestay",
        "applicableHomestayId": "P1",
        "expiryDate": (clock.now + timedelta(days=30)).isoformat(),
        "usageLimit": 10,
        "maxDiscountAmount": 150000,
    }
    body.update(overrides)
    resp = client.post("/cms/voucher", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def test_create_and_redeem_voucher(client, clock):
    voucher = _create_voucher(client, clock)
    assert voucher["redeemedCount"] == 0
    assert voucher["maxDiscountAmount"] == 150000

    resp = client.post("/v1/voucher/redeem", json={"code": voucher["code"], "homestayId": "P1", "subtotal": 1000000})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["discountAmount"] == 150000
    assert data["finalTotal"] == 850000

    usage = client.get(f"/v1/voucher/{voucher['id']}/usage").json()["data"]
    assert usage["usageCount"] == 1
    assert usage["isUsed"] is True


def test_redeem_errors_are_specific(client, clock):
    voucher = _create_voucher(client, clock)

    resp = client.post("/v1/voucher/redeem", json={"code": voucher["code"], "homestayId": "P2", "subtotal": 1000000})
    assert resp.status_code == 400
    assert resp.json()["error_code"] == 4205
    assert resp.json()["msg"] == "This voucher is not applicable to this property"

    resp = client.post("/v1/voucher/redeem", json={"code": "NOPE2222", "homestayId": "P1", "subtotal": 1000000})
    assert resp.status_code == 404
    assert resp.json()["error_code"] == 4201


def test_invalid_definition_and_body(client, clock):
    resp = client.post("/cms/voucher", json={
        "discountType": "percentage",
        "discountValue": 120,
        "expiryDate": (clock.now + timedelta(days=1)).isoformat(),
    })
    assert resp.status_code == 400
    assert resp.json()["error_code"] == 4001

    resp = client.post("/v1/voucher/redeem", json={"code": "AAAA2222", "homestayId": "P1", "subtotal": -5})
    assert resp.status_code == 422
    assert resp.json()["error_code"] == 1005


def test_preview_and_suggestions(client, clock):
    voucher = _create_voucher(client, clock)

    preview = client.post("/v1/voucher/preview", json={"code": voucher["code"], "homestayId": "P1", "subtotal": 500000})
    assert preview.json()["data"]["discountAmount"] == 100000

    resp = client.post("/v1/voucher/suggestions", json={"homestayId": "P1", "roomId": "R1", "currentPrice": 500000})
    suggestions = resp.json()["data"]["suggestedVouchers"]
    assert [s["voucher"]["code"] for s in suggestions] == [voucher["code"]]
    assert suggestions[0]["savings"] == 100000


def test_listing_and_switches(client, clock):
    voucher = _create_voucher(client, clock, hostId="host-1")

    assert [v["id"] for v in client.get("/v1/voucher/available").json()["data"]] == [voucher["id"]]
    assert client.get(f"/v1/voucher/code/{voucher['code'].lower()}").json()["data"]["id"] == voucher["id"]
    assert len(client.get("/cms/voucher").json()["data"]) == 1
    assert len(client.get("/cms/voucher/host/host-1").json()["data"]) == 1

    assert client.post(f"/cms/voucher/{voucher['id']}/deactivate").json()["data"]["isActive"] is False
    assert client.get("/v1/voucher/available").json()["data"] == []
    assert client.post(f"/cms/voucher/{voucher['id']}/activate").json()["data"]["isActive"] is True

    grant = client.post(f"/cms/voucher/{voucher['id']}/grant/user-1").json()["data"]
    assert grant["usageCount"] == 0
    assert [v["id"] for v in client.get("/v1/voucher/mine").json()["data"]] == [voucher["id"]]


def test_flash_promo_flow(client):
    resp = client.post("/cms/promo/launch", json={"discountPercent": 15, "durationMinutes": 60})
    assert resp.status_code == 200
    code = resp.json()["data"]["code"]
    assert code.startswith("FLASH")

    again = client.post("/cms/promo/launch", json={"discountPercent": 15, "durationMinutes": 60})
    assert again.status_code == 409
    assert again.json()["error_code"] == 4101

    live = client.get("/v1/promo/live").json()["data"]
    assert live["promo"]["code"] == code
    assert "serverTime" in live

    claimed = client.post("/v1/promo/claim")
    assert claimed.status_code == 200
    assert claimed.json()["data"]["claimedBy"] == "user-1"

    lost = client.post("/v1/promo/claim")
    assert lost.status_code == 409
    assert lost.json()["msg"] == "This offer was just claimed by someone else"

    assert client.get("/v1/promo/live").json()["data"]["promo"] is None
    assert client.post("/cms/promo/end").json()["data"] == {"ended": False}


def test_live_promo_websocket(client):
    with client.websocket_connect("/v1/promo/live/ws") as ws:
        first = ws.receive_json()
        assert first["event"] == "live_promo"
        assert first["data"] is None

        code = client.post("/cms/promo/launch", json={"discountPercent": 10, "durationMinutes": 5}).json()["data"]["code"]
        pushed = ws.receive_json()
        assert pushed["data"]["code"] == code


def test_admin_routes_require_admin(app, services):
    app.dependency_overrides.pop(admin_required)
    app.dependency_overrides[get_current_principal] = lambda: Principal(uid="user-1", admin=False)
    with TestClient(app) as client:
        resp = client.post("/cms/promo/end")
    assert resp.status_code == 403
    assert resp.json()["error_code"] == 1004


def test_missing_token_is_rejected(services, settings):
    app = create_app(services=services, log_to_file=False, settings=settings)
    with TestClient(app) as client:
        resp = client.get("/v1/voucher/mine")
    assert resp.status_code == 401
    assert resp.json()["error_code"] == 1003


def test_nan_amounts_in_body_are_rejected(client, clock):
    # json.loads 接受 NaN / Infinity 字面量，需由请求体校验拦截
    for literal in ("NaN", "Infinity"):
        body = (
            '{"discountType": "fixed_amount", "discountValue": %s, "expiryDate": "%s"}'
            % (literal, (clock.now + timedelta(days=30)).isoformat())
        )
        resp = client.post("/cms/voucher", content=body, headers={"Content-Type": "application/json"})
        assert resp.status_code == 422
        assert resp.json()["error_code"] == 1005

    body = '{"discountPercent": NaN, "durationMinutes": 5}'
    resp = client.post("/cms/promo/launch", content=body, headers={"Content-Type": "application/json"})
    assert resp.status_code == 422
    assert client.get("/cms/voucher").json()["data"] == []
    assert client.get("/v1/promo/live").json()["data"]["promo"] is None


def test_claim_voucher_route(client, clock, app):
    voucher = _create_voucher(client, clock)

    resp = client.post(f"/v1/voucher/{voucher['id']}/claim")
    assert resp.status_code == 200
    assert resp.json()["data"]["claimedBy"] == "user-1"

    app.dependency_overrides[login_required] = lambda: "user-2"
    lost = client.post(f"/v1/voucher/{voucher['id']}/claim")
    assert lost.status_code == 409
    assert lost.json()["error_code"] == 4103

    assert client.post("/v1/voucher/missing/claim").status_code == 404


def test_issue_vouchers_route(client, clock):
    body = {
        "voucher": {
            "discountType": "fixed_amount",
            "discountValue": 50000,
            "expiryDate": (clock.now + timedelta(days=7)).isoformat(),
        },
        "userIds": ["user-1", "user-2"],
    }
    resp = client.post("/cms/voucher/issue", json=body)
    assert resp.status_code == 200, resp.text
    issued = resp.json()["data"]
    assert sorted(v["claimedBy"] for v in issued) == ["user-1", "user-2"]

    mine = client.get("/v1/voucher/mine").json()["data"]
    assert [v["claimedBy"] for v in mine] == ["user-1"]

    body["userIds"] = []
    assert client.post("/cms/voucher/issue", json=body).status_code == 422


def _fake_verify(claims_by_token):
    def verify_id_token(token, *args, **kwargs):
        if token not in claims_by_token:
            raise auth.InvalidIdTokenError("bad token")
        return claims_by_token[token]
    return verify_id_token


def test_admin_voucher_feed_websocket(client, clock, monkeypatch):
    monkeypatch.setattr(auth, "verify_id_token", _fake_verify({"admin-token": {"uid": "admin-1", "admin": True}}))
    older = _create_voucher(client, clock)

    with client.websocket_connect("/cms/voucher/ws?token=admin-token") as ws:
        first = ws.receive_json()
        assert first["event"] == "vouchers"
        assert [v["id"] for v in first["data"]] == [older["id"]]

        clock.advance(minutes=1)
        newer = _create_voucher(client, clock)
        pushed = ws.receive_json()
        assert [v["id"] for v in pushed["data"]] == [newer["id"], older["id"]]


@pytest.mark.parametrize("query, close_code", [
    ("", 4401),
    ("?token=bogus", 4401),
    ("?token=user-token", 4403),
])
def test_admin_voucher_feed_rejects_non_admins(client, monkeypatch, query, close_code):
    monkeypatch.setattr(auth, "verify_id_token", _fake_verify({"user-token": {"uid": "user-1"}}))
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/cms/voucher/ws{query}"):
            pass
    assert exc.value.code == close_code


def test_auth_backend_failures_are_mapped(services, settings, monkeypatch):
    app = create_app(services=services, log_to_file=False, settings=settings)
    headers = {"Authorization": "Bearer some-token"}

    def cert_fetch_fails(token, *args, **kwargs):
        raise auth.CertificateFetchError("could not fetch certificates", None)

    def sdk_not_initialized(token, *args, **kwargs):
        raise ValueError("The default Firebase app does not exist.")

    with TestClient(app) as client:
        monkeypatch.setattr(auth, "verify_id_token", cert_fetch_fails)
        resp = client.get("/v1/voucher/mine", headers=headers)
        assert resp.status_code == 503
        assert resp.json()["error_code"] == 1006

        monkeypatch.setattr(auth, "verify_id_token", sdk_not_initialized)
        resp = client.get("/v1/voucher/mine", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["error_code"] == 1003

        monkeypatch.setattr(auth, "verify_id_token", _fake_verify({"some-token": {"uid": "user-1"}}))
        assert client.get("/v1/voucher/mine", headers=headers).status_code == 200
