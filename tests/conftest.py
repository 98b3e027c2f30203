import json
import os
import sys
from datetime import timedelta
from types import SimpleNamespace

# Ensure project root is in sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import httpx
import pytest

from rsvp import phone as phones
from rsvp.config import local_today, settings
from rsvp.engine import build_engine, reset_engine, set_engine
from rsvp.transport import RecordingTransport

TENANT_ID = "cust_1"
SHEET_URL = "https://sheets.test/cust_1"
SECRET = "s3cret"

LEGACY_ACTIONS = {
    "get_guests": "getGuests",
    "get_event_details": "getEventDetails",
    "update_status": "updateGuestStatus",
    "mark_contacted": "markGuestContacted",
    "get_rsvp_stats": "getRsvpStats",
}


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    for key in [
        "TENANTS_FILE",
        "CREDENTIALS_FILE",
        "GUEST_MAP_FILE",
        "FOLLOWUPS_FILE",
        "BOT_PHONE",
        "TRANSPORT_URL",
        "TRANSPORT_TOKEN",
        "CRON_TOKEN",
        "WEBHOOK_TOKEN",
        "MESSAGE_BATCH_SIZE",
        "MAX_PARTY_SIZE",
        "FOLLOWUP_HOUR",
    ]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("RSVP_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("EVENT_TZ", "Asia/Jerusalem")
    monkeypatch.setenv("COUNTRY_CODE", "972")
    monkeypatch.setenv("DEFAULT_LANGUAGE", "he")
    monkeypatch.setenv("TRANSPORT_DRY_RUN", "1")
    monkeypatch.setenv("MESSAGE_DELAY_SEC", "0")
    monkeypatch.setenv("SHEETS_RETRY_DELAY_SEC", "0")
    settings.cache_clear()
    reset_engine()
    yield
    settings.cache_clear()
    reset_engine()


# ---------------------------------------------------------------------------
# Fake remote guest sheet
# ---------------------------------------------------------------------------
class FakeSheet:
    """In-memory guest sheet speaking every request format the gateway knows."""

    def __init__(self, guests=None, details=None, formats=("action",), secret=SECRET):
        self.rows = [dict(g) for g in (guests or [])]
        self.details = details if details is not None else {
            "Name": "Dana & Yoni Wedding",
            "Date": "2030-06-01",
            "Time": "19:30",
            "Location": "Tel Aviv",
            "Description": "",
        }
        self.formats = set(formats)
        self.secret = secret
        self.calls = []
        self.updates = []
        self.contacted = []
        self.fail_updates = 0
        self.stats = None

    @staticmethod
    def detect(body):
        if "action" in body:
            return "action"
        if "operation" in body and "secretKey" in body:
            return "operation"
        if "operation" in body and "key" in body:
            return "legacy"
        return "unknown"

    def actions(self):
        return [LEGACY_ACTIONS.get(b.get("action") or b.get("operation"), b.get("action") or b.get("operation"))
                for _, b in self.calls]

    def _row(self, phone):
        wanted = phones.normalize(phone)
        return next((r for r in self.rows if phones.normalize(r.get("Phone") or r.get("phone")) == wanted), None)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        fmt = self.detect(body)
        self.calls.append((fmt, body))
        action = body.get("action") or body.get("operation")
        action = LEGACY_ACTIONS.get(action, action)

        if action == "updateGuestStatus" and self.fail_updates:
            self.fail_updates -= 1
            return httpx.Response(503, json={"error": "busy"})
        if fmt not in self.formats:
            return httpx.Response(200, json={"success": False, "error": "Unknown request format"})
        if (body.get("secretKey") or body.get("key")) != self.secret:
            return httpx.Response(200, json={"success": False, "error": "Invalid key"})

        if action == "getGuests":
            return httpx.Response(200, json={"success": True, "guests": self.rows})
        if action == "getEventDetails":
            return httpx.Response(200, json={"success": True, "details": self.details})
        if action == "updateGuestStatus":
            row = self._row(body["phone"])
            if row is None:
                return httpx.Response(200, json={"success": False, "error": "Guest not found"})
            count = body["guestCount"] if "guestCount" in body else body.get("count")
            row["Status"] = body["status"]
            row["GuestCount"] = count
            self.updates.append((body["phone"], body["status"], count))
            return httpx.Response(200, json={"success": True})
        if action == "markGuestContacted":
            self.contacted.append(body["phone"])
            return httpx.Response(200, json={"success": True})
        if action == "getRsvpStats" and self.stats is not None:
            return httpx.Response(200, json={"success": True, "stats": self.stats})
        return httpx.Response(200, json={"success": False, "error": f"Unsupported action {action}"})


class SheetServer:
    """Routes MockTransport requests to one FakeSheet per endpoint path."""

    def __init__(self):
        self.sheets = {}

    def add(self, path, sheet):
        self.sheets[path] = sheet
        return sheet

    def handle(self, request: httpx.Request) -> httpx.Response:
        sheet = self.sheets.get(request.url.path)
        if sheet is None:
            return httpx.Response(404, text="not found")
        return sheet(request)

    @property
    def transport(self):
        return httpx.MockTransport(self.handle)


def write_tenants(tenants, credentials):
    s = settings()
    with open(s.TENANTS_FILE, "w", encoding="utf-8") as f:
        json.dump(tenants, f)
    with open(s.CREDENTIALS_FILE, "w", encoding="utf-8") as f:
        json.dump(credentials, f)


def tenant_record(tenant_id=TENANT_ID, days_out=29, contact="+972520000001", **extra):
    rec = {
        "id": tenant_id,
        "name": "Dana Levi",
        "contactPhone": contact,
        "eventName": "Dana & Yoni Wedding",
        "eventDate": (local_today() + timedelta(days=days_out)).isoformat(),
        "active": True,
    }
    rec.update(extra)
    return rec


@pytest.fixture
def fake_sheet():
    return FakeSheet(guests=[{"Name": "Noa", "Phone": "0501234567", "Status": "Pending", "GuestCount": ""}])


@pytest.fixture
def world(fake_sheet):
    """One tenant 29 days out, its sheet, and a wired engine with a recording transport."""
    write_tenants(
        [tenant_record()],
        {TENANT_ID: {"appScriptUrl": SHEET_URL, "secretKey": SECRET}},
    )
    server = SheetServer()
    server.add("/cust_1", fake_sheet)
    transport = RecordingTransport()
    engine = build_engine(transport=transport, sheets_transport=server.transport, retry_delay=0, message_delay=0)
    set_engine(engine)
    return SimpleNamespace(engine=engine, sheet=fake_sheet, server=server, transport=transport)
