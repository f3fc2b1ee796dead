import os

# precisa vir antes de importar app.*: Settings() e o engine são criados no import
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["ULTRAMSG_INSTANCE_ID"] = "instance149866"
os.environ["ULTRAMSG_API_TOKEN"] = "tok-default"
os.environ["INSTANCE_MAPPINGS"] = '{"instance149866": "default"}'
os.environ["GHL_API_KEY"] = "ghl-default"
os.environ["GHL_LOCATION_ID"] = "loc-default"
os.environ["GHL_SUB_ACCOUNTS"] = '{"acct1": {"api_key": "ghl-acct1", "location_id": "loc-acct1"}}'
os.environ["LOCATION_MAPPINGS"] = '{"loc-acct1": "acct1"}'
os.environ.pop("RELAY_API_KEY", None)
os.environ.pop("WEBHOOK_SECRET", None)

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_ghl_factory, get_ultramsg
from app.core.exceptions import CrmCallFailed
from app.create_table import create_all
from app.db.base_class import Base
from app.db.session import SessionLocal, engine
from app.main import app


class FakeUltramsg:
    def __init__(self, response=None, error=None):
        self.calls = []
        self.response = response if response is not None else {"sent": "true", "message": "ok", "id": 9001}
        self.error = error

    def _record(self, kind, *args, **kwargs):
        self.calls.append((kind, args, kwargs))
        if self.error:
            raise self.error
        return self.response

    def send_text(self, *args, **kwargs):
        return self._record("text", *args, **kwargs)

    def send_image(self, *args, **kwargs):
        return self._record("image", *args, **kwargs)

    def send_document(self, *args, **kwargs):
        return self._record("document", *args, **kwargs)

    def send_audio(self, *args, **kwargs):
        return self._record("audio", *args, **kwargs)

    def send_video(self, *args, **kwargs):
        return self._record("video", *args, **kwargs)

    def get_qr_code(self, instance_id, api_token):
        self.calls.append(("qr", (instance_id, api_token), {}))
        if self.error:
            raise self.error
        return {"qrCode": "data:image/png;base64,AAAA"}


class FakeGHL:
    def __init__(self, contact_id="contact-1", message_id="ghl-msg-1", fail_on=None):
        self.api_keys = []
        self.contact_id = contact_id
        self.message_id = message_id
        self.fail_on = fail_on or set()
        self.contacts = []
        self.messages = []
        self.added_tags = []
        self.removed_tags = []
        self.status_updates = []
        self.status_result = True

    def __call__(self, api_key):
        self.api_keys.append(api_key)
        return self

    def _maybe_fail(self, op):
        if op in self.fail_on:
            raise CrmCallFailed(f"GHL {op} failed", upstream_status=500, body={"message": "boom"})

    def find_or_create_contact_by_phone(self, phone, location_id):
        self._maybe_fail("contact")
        self.contacts.append((phone, location_id))
        return self.contact_id

    def create_conversation_message(self, contact_id, text=None, media=None, channel_type="whatsapp", location_id=None):
        self._maybe_fail("message")
        self.messages.append(
            {"contact_id": contact_id, "text": text, "media": media, "channel_type": channel_type, "location_id": location_id}
        )
        return {"conversationId": "conv-1", "messageId": self.message_id}

    def update_message_status(self, message_id, status):
        self.status_updates.append((message_id, status))
        return self.status_result

    def add_tags(self, contact_id, tags):
        self.added_tags.append((contact_id, list(tags)))

    def remove_tags(self, contact_id, tags, location_id=None):
        self.removed_tags.append((contact_id, list(tags), location_id))


@pytest.fixture(autouse=True)
def _schema():
    create_all()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_ultramsg():
    return FakeUltramsg()


@pytest.fixture
def fake_ghl():
    return FakeGHL()


@pytest.fixture
def client(fake_ultramsg, fake_ghl):
    app.dependency_overrides[get_ultramsg] = lambda: fake_ultramsg
    app.dependency_overrides[get_ghl_factory] = lambda: fake_ghl
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
