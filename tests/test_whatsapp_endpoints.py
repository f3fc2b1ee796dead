"""HTTP surface: /send, /incoming, /status, /onboard, /onboard/qr."""

import pytest

from app.api.endpoints.whatsapp import fold_form_fields
from app.api.services.message_map_service import MessageMapService
from app.core.config import settings
from app.core.exceptions import ProviderSendFailed


def _onboard(client, sub_account_id="acct1", instance_id="inst1", api_token="tok1"):
    return client.post(
        "/onboard",
        json={"subAccountId": sub_account_id, "instanceId": instance_id, "apiToken": api_token},
    )


def test_health(client):
    for path in ("/", "/health"):
        r = client.get(path)
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "ok"
        assert "/send" in body["endpoints"]


# ---------- /onboard ----------

def test_onboard_stores_credentials(client):
    r = _onboard(client, sub_account_id="  acct1 ")

    assert r.status_code == 200
    assert r.json() == {
        "success": True,
        "message": "Ultramsg credentials stored for sub-account",
        "subAccountId": "acct1",
    }


def test_onboard_missing_fields(client):
    r = client.post("/onboard", json={"subAccountId": "acct1", "instanceId": "inst1"})

    assert r.status_code == 400
    assert r.json()["detail"]["required"] == ["subAccountId", "instanceId", "apiToken"]


def test_onboard_qr_passthrough(client, fake_ultramsg):
    r = client.get("/onboard/qr", params={"instanceId": "inst1", "apiToken": "tok1"})

    assert r.status_code == 200
    assert r.json() == {"success": True, "data": {"qrCode": "data:image/png;base64,AAAA"}}
    assert fake_ultramsg.calls == [("qr", ("inst1", "tok1"), {})]


def test_onboard_qr_missing_params(client):
    assert client.get("/onboard/qr", params={"instanceId": "inst1"}).status_code == 400


def test_onboard_qr_provider_error(client, fake_ultramsg):
    fake_ultramsg.error = ProviderSendFailed("Ultramsg qrCode failed", upstream_status=404, body={"error": "instance not found"})

    r = client.get("/onboard/qr", params={"instanceId": "inst1", "apiToken": "tok1"})

    assert r.status_code == 502
    assert r.json()["detail"]["upstream_status"] == 404


# ---------- /send ----------

def test_send_after_onboard(client, fake_ultramsg):
    _onboard(client)

    r = client.post("/send", json={"phone": "+15551234567", "subAccountId": "acct1", "message": "hi"})

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["subAccountId"] == "acct1"
    assert body["data"]["id"] == 9001

    kind, args, kwargs = fake_ultramsg.calls[0]
    assert kind == "text"
    assert args[:2] == ("inst1", "tok1")
    assert kwargs["reference_id"].startswith("acct1_")


def test_send_falls_back_to_default_credentials(client, fake_ultramsg):
    r = client.post("/send", json={"phone": "+15551234567", "subAccountId": "never-onboarded", "message": "hi"})

    assert r.status_code == 200
    assert fake_ultramsg.calls[0][1][:2] == ("instance149866", "tok-default")


def test_send_accepts_snake_case(client, fake_ultramsg):
    r = client.post(
        "/send",
        json={"phone": "+15551234567", "sub_account_id": "acct1", "media_url": "https://cdn/a.mp4", "media_type": "video"},
    )

    assert r.status_code == 200
    assert fake_ultramsg.calls[0][0] == "video"


@pytest.mark.parametrize(
    "body",
    [
        {"subAccountId": "acct1", "message": "hi"},
        {"phone": "+15551234567", "message": "hi"},
        {"phone": "+15551234567", "subAccountId": "acct1"},
    ],
)
def test_send_missing_fields(client, fake_ultramsg, body):
    r = client.post("/send", json=body)

    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "validation_failed"
    assert fake_ultramsg.calls == []


def test_send_invalid_media_type(client):
    r = client.post(
        "/send",
        json={"phone": "+15551234567", "subAccountId": "acct1", "mediaUrl": "https://cdn/x", "mediaType": "sticker"},
    )

    assert r.status_code == 400
    assert r.json()["detail"]["allowed"] == ["image", "document", "audio", "video"]


def test_send_without_credentials(client, fake_ultramsg, monkeypatch):
    monkeypatch.setattr(settings, "ULTRAMSG_INSTANCE_ID", None)

    r = client.post("/send", json={"phone": "+15551234567", "subAccountId": "acct404", "message": "hi"})

    assert r.status_code == 401
    assert fake_ultramsg.calls == []


def test_send_provider_failure(client, fake_ultramsg):
    fake_ultramsg.error = ProviderSendFailed("Ultramsg send_text failed", upstream_status=401, body={"error": "Wrong token"})

    r = client.post("/send", json={"phone": "+15551234567", "subAccountId": "acct1", "message": "hi"})

    assert r.status_code == 502
    detail = r.json()["detail"]
    assert detail["upstream_status"] == 401
    assert detail["body"] == {"error": "Wrong token"}


def test_send_mirrors_to_crm_when_location_given(client, fake_ghl, db_session):
    r = client.post(
        "/send",
        json={"phone": "+15551234567", "subAccountId": "acct1", "message": "hi", "locationId": "loc-acct1"},
    )

    assert r.status_code == 200
    assert fake_ghl.api_keys == ["ghl-acct1"]
    assert MessageMapService(db_session).get_ghl_message_id("9001") == "ghl-msg-1"


def test_send_sub_account_from_location(client, fake_ultramsg, fake_ghl):
    _onboard(client)

    r = client.post("/send", json={"phone": "+15551234567", "message": "hi", "locationId": "loc-acct1"})

    assert r.status_code == 200
    assert r.json()["subAccountId"] == "acct1"
    assert fake_ultramsg.calls[0][1][:2] == ("inst1", "tok1")
    assert fake_ghl.api_keys == ["ghl-acct1"]


def test_api_key_enforced(client, monkeypatch):
    monkeypatch.setattr(settings, "RELAY_API_KEY", "s3cret")
    body = {"phone": "+15551234567", "subAccountId": "acct1", "message": "hi"}

    assert client.post("/send", json=body).status_code == 401
    assert client.post("/send", json=body, headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.post("/send", json=body, headers={"X-API-Key": "s3cret"}).status_code == 200


# ---------- /incoming ----------

def _incoming(text="hello", **root):
    payload = {
        "event_type": "message_received",
        "instanceId": "instance149866",
        "data": {"id": "wamid-in-1", "from": "15551234567@c.us", "body": text},
    }
    payload.update(root)
    return payload


def test_incoming_forwards_and_records_mapping(client, fake_ghl, db_session):
    r = client.post("/incoming", json=_incoming())

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["subAccountId"] == "default"
    assert body["contactId"] == "contact-1"
    assert body["keyword"] is None

    assert fake_ghl.api_keys == ["ghl-default"]
    assert fake_ghl.contacts == [("+15551234567", "loc-default")]
    assert fake_ghl.messages[0]["text"] == "hello"
    assert fake_ghl.messages[0]["channel_type"] == "WhatsApp"
    assert MessageMapService(db_session).get_ghl_message_id("wamid-in-1") == "ghl-msg-1"


def test_incoming_resolves_by_reference_id(client, fake_ghl):
    r = client.post("/incoming", json=_incoming(referenceId="acct1_1700000000", instanceId="unknown"))

    assert r.json()["subAccountId"] == "acct1"
    assert fake_ghl.contacts == [("+15551234567", "loc-acct1")]


def test_incoming_location_from_payload(client, fake_ghl):
    client.post("/incoming", json=_incoming(locationId="loc-override"))

    assert fake_ghl.contacts == [("+15551234567", "loc-override")]


def test_incoming_bare_instance_id(client):
    r = client.post("/incoming", json=_incoming(instanceId="149866"))

    assert r.status_code == 200
    assert r.json()["subAccountId"] == "default"


def test_incoming_form_encoded(client, fake_ghl):
    r = client.post("/incoming", data={"instanceId": "instance149866", "phone": "5551234567", "text": "form hi"})

    assert r.status_code == 200
    assert fake_ghl.messages[0]["text"] == "form hi"


def test_incoming_form_with_nested_fields(client, fake_ghl, db_session):
    r = client.post(
        "/incoming",
        data={
            "instanceId": "instance149866",
            "data[from]": "15551234567@c.us",
            "data[body]": "hi",
            "data[id]": "wamid-form",
        },
    )

    assert r.status_code == 200
    assert r.json()["success"] is True
    assert fake_ghl.contacts == [("+15551234567", "loc-default")]
    assert fake_ghl.messages[0]["text"] == "hi"
    assert MessageMapService(db_session).get_ghl_message_id("wamid-form") == "ghl-msg-1"


def test_fold_form_fields():
    folded = fold_form_fields(
        [
            ("instanceId", "instance1"),
            ("data[from]", "15551234567@c.us"),
            ("data[media][0][url]", "https://cdn/a.jpg"),
            ("data[media][0][type]", "image"),
            ("data[media][1][url]", "https://cdn/b.pdf"),
            ("tags[]", "a"),
            ("tags[]", "b"),
        ]
    )

    assert folded == {
        "instanceId": "instance1",
        "data": {
            "from": "15551234567@c.us",
            "media": [{"url": "https://cdn/a.jpg", "type": "image"}, {"url": "https://cdn/b.pdf"}],
        },
        "tags": ["a", "b"],
    }


def test_incoming_stop_keyword(client, fake_ghl):
    r = client.post("/incoming", json=_incoming(text=" stop "))

    assert r.json()["keyword"] == "stop"
    assert fake_ghl.added_tags == [("contact-1", ["whatsapp_unsubscribed"])]
    # a mensagem é registrada mesmo assim
    assert len(fake_ghl.messages) == 1


def test_incoming_start_keyword(client, fake_ghl):
    r = client.post("/incoming", json=_incoming(text="START"))

    assert r.json()["keyword"] == "start"
    assert fake_ghl.removed_tags == [("contact-1", ["whatsapp_unsubscribed"], "loc-default")]


def test_incoming_malformed(client, fake_ghl):
    payload = {"instanceId": "instance149866", "data": {"body": "no phone"}}

    r = client.post("/incoming", json=payload)

    assert r.status_code == 400
    assert r.json()["detail"] == {"error": "Invalid Ultramsg webhook payload", "payload": payload}
    assert fake_ghl.api_keys == []


def test_incoming_invalid_json(client):
    r = client.post("/incoming", content=b"{not json", headers={"content-type": "application/json"})

    assert r.status_code == 400


def test_incoming_unresolved_tenant(client, fake_ghl):
    r = client.post("/incoming", json=_incoming(instanceId="instance999"))

    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "tenant_unresolved"
    assert fake_ghl.api_keys == []


def test_incoming_crm_failure_is_acknowledged(client, fake_ghl, db_session):
    fake_ghl.fail_on = {"message"}

    r = client.post("/incoming", json=_incoming())

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "Failed to forward message to GHL"
    assert body["logged"] is True
    assert MessageMapService(db_session).get_ghl_message_id("wamid-in-1") is None


def test_incoming_unexpected_error_is_acknowledged(client, fake_ghl, monkeypatch):
    def explode(phone, location_id):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(fake_ghl, "find_or_create_contact_by_phone", explode)

    r = client.post("/incoming", json=_incoming())

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is False
    assert body["logged"] is True
    assert body["message"] == "unexpected"


def test_webhook_secret_enforced(client, monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_SECRET", "hook")

    assert client.post("/incoming", json=_incoming()).status_code == 401
    assert client.post("/incoming?secret=hook", json=_incoming()).status_code == 200
    assert client.post("/status", json={"data": {"id": "x", "ack": 1}}).status_code == 401


# ---------- /status ----------

def _status(ack="read", **root):
    payload = {"event_type": "message_ack", "instanceId": "instance149866", "data": {"id": "wamid-in-1", "ack": ack}}
    payload.update(root)
    return payload


def test_status_updates_crm_after_incoming(client, fake_ghl):
    client.post("/incoming", json=_incoming())

    r = client.post("/status", json=_status())

    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "Status updated in GHL"}
    assert fake_ghl.status_updates == [("ghl-msg-1", "read")]


def test_status_numeric_ack(client, fake_ghl):
    client.post("/incoming", json=_incoming())

    client.post("/status", json=_status(ack=2))

    assert fake_ghl.status_updates == [("ghl-msg-1", "delivered")]


def test_status_crm_rejects_update(client, fake_ghl):
    client.post("/incoming", json=_incoming())
    fake_ghl.status_result = False

    r = client.post("/status", json=_status())

    assert r.json()["success"] is True
    assert "not supported or failed" in r.json()["message"]


def test_status_without_mapping_is_logged_only(client, fake_ghl):
    r = client.post("/status", json=_status())

    assert r.status_code == 200
    assert r.json()["success"] is True
    assert "not found" in r.json()["message"]
    assert fake_ghl.status_updates == []


def test_status_unresolved_tenant_is_logged_only(client, fake_ghl):
    r = client.post("/status", json=_status(instanceId="instance999"))

    assert r.status_code == 200
    assert "sub-account unknown" in r.json()["message"]
    assert fake_ghl.api_keys == []


def test_status_malformed_is_acknowledged(client):
    r = client.post("/status", json={"data": {"ack": 3}})

    assert r.status_code == 200
    assert r.json() == {"success": False, "error": "Invalid Ultramsg status payload", "logged": True}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"content": b"{not json", "headers": {"content-type": "application/json"}},
        {"json": [{"id": "m1", "ack": 2}]},
        {"json": "read"},
    ],
)
def test_status_unreadable_body_is_acknowledged(client, fake_ghl, kwargs):
    r = client.post("/status", **kwargs)

    assert r.status_code == 200
    assert r.json() == {"success": False, "error": "Invalid Ultramsg status payload", "logged": True}
    assert fake_ghl.api_keys == []


def test_status_unexpected_error_is_acknowledged(client, fake_ghl, monkeypatch):
    client.post("/incoming", json=_incoming())

    def explode(message_id, status):
        raise KeyError("status")

    monkeypatch.setattr(fake_ghl, "update_message_status", explode)

    r = client.post("/status", json=_status())

    assert r.status_code == 200
    assert r.json()["success"] is False
    assert r.json()["logged"] is True


def test_status_without_crm_key(client, monkeypatch):
    monkeypatch.setattr(settings, "GHL_API_KEY", None)

    r = client.post("/status", json=_status())

    assert r.status_code == 401
