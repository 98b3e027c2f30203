import asyncio

import httpx
import pytest

import rsvp.sheets as sheets
from rsvp.sheets import (
    REQUEST_FORMATS,
    GuestStatus,
    SheetGateway,
    SheetRequestError,
    to_canonical_guest,
    to_event_details,
)

from conftest import FakeSheet, SECRET, SHEET_URL

GUESTS = [
    {"Name": "Noa", "Phone": "0501234567", "Status": "Pending", "GuestCount": ""},
    {"name": "Avi", "phone": "972527654321", "status": "confirmed", "count": "3"},
]


def _gateway(sheet, **kw):
    return SheetGateway("cust_1", SHEET_URL, SECRET, retry_delay=0, transport=httpx.MockTransport(sheet), **kw)


def test_format_order_is_fixed():
    assert [f.name for f in REQUEST_FORMATS] == ["action", "operation", "legacy"]


# ---------------------------------------------------------------------------
# One fixture per wire format
# ---------------------------------------------------------------------------
def test_action_format_answers_first_try():
    sheet = FakeSheet(guests=GUESTS, formats=("action",))
    ok = asyncio.run(_gateway(sheet).update_guest_status("+972501234567", GuestStatus.CONFIRMED, 2))

    assert ok is True
    assert len(sheet.calls) == 1
    fmt, body = sheet.calls[0]
    assert fmt == "action"
    assert body == {
        "action": "updateGuestStatus",
        "secretKey": SECRET,
        "phone": "972501234567",
        "status": "Confirmed",
        "guestCount": 2,
        "notes": "",
        "lastContacted": body["lastContacted"],
    }


def test_operation_format_is_second():
    sheet = FakeSheet(guests=GUESTS, formats=("operation",))
    guests = asyncio.run(_gateway(sheet).get_guests())

    assert [fmt for fmt, _ in sheet.calls] == ["action", "operation"]
    assert sheet.calls[1][1] == {"operation": "getGuests", "secretKey": SECRET}
    assert len(guests) == 2


def test_legacy_format_is_last_with_snake_case_names():
    sheet = FakeSheet(guests=GUESTS, formats=("legacy",))
    ok = asyncio.run(_gateway(sheet).update_guest_status("0501234567", GuestStatus.DECLINED, 0))

    assert ok is True
    assert [fmt for fmt, _ in sheet.calls] == ["action", "operation", "legacy"]
    legacy = sheet.calls[2][1]
    assert legacy["operation"] == "update_status"
    assert legacy["key"] == SECRET
    assert legacy["count"] == 0
    assert "guestCount" not in legacy
    assert sheet.updates == [("972501234567", "Declined", 0)]


def test_all_formats_failing_raises_from_dispatch():
    sheet = FakeSheet(guests=GUESTS, formats=())

    with pytest.raises(SheetRequestError) as exc:
        asyncio.run(_gateway(sheet).request("getGuests"))

    assert [name for name, _ in exc.value.failures] == ["action", "operation", "legacy"]
    assert exc.value.action == "getGuests"


def test_http_errors_fall_through_to_next_format():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={"success": True, "guests": GUESTS})

    gateway = SheetGateway("cust_1", SHEET_URL, SECRET, transport=httpx.MockTransport(handler))
    assert len(asyncio.run(gateway.get_guests())) == 2
    assert len(calls) == 2


# ---------------------------------------------------------------------------
# Writes: retry + idempotence
# ---------------------------------------------------------------------------
def test_retry_after_transient_failure_sets_count_once():
    sheet = FakeSheet(guests=GUESTS, formats=("action",))
    sheet.fail_updates = 1

    ok = asyncio.run(_gateway(sheet).update_guest_status("0501234567", GuestStatus.CONFIRMED, 2))

    assert ok is True
    assert sheet.updates == [("972501234567", "Confirmed", 2)]
    assert sheet.rows[0]["GuestCount"] == 2
    assert sheet.rows[0]["Status"] == "Confirmed"


def test_repeated_write_is_a_set_not_an_increment():
    sheet = FakeSheet(guests=GUESTS, formats=("action",))
    gateway = _gateway(sheet)

    async def twice():
        await gateway.update_guest_status("0501234567", GuestStatus.CONFIRMED, 2)
        await gateway.update_guest_status("0501234567", GuestStatus.CONFIRMED, 2)

    asyncio.run(twice())
    assert sheet.rows[0]["GuestCount"] == 2


def test_write_returns_false_after_retries():
    sheet = FakeSheet(guests=GUESTS, formats=())

    ok = asyncio.run(_gateway(sheet).update_guest_status("0501234567", GuestStatus.DECLINED, 0))

    assert ok is False
    assert len(sheet.calls) == 3 * len(REQUEST_FORMATS)


def test_mark_contacted_is_best_effort():
    sheet = FakeSheet(guests=GUESTS, formats=("action",))
    assert asyncio.run(_gateway(sheet).mark_guest_contacted("0501234567")) is True
    assert sheet.contacted == ["972501234567"]

    broken = FakeSheet(guests=GUESTS, formats=())
    assert asyncio.run(_gateway(broken).mark_guest_contacted("0501234567")) is False
    assert len(broken.calls) == len(REQUEST_FORMATS)


# ---------------------------------------------------------------------------
# Reads: caching + fallbacks
# ---------------------------------------------------------------------------
def test_guest_list_is_cached_and_invalidated_by_update():
    sheet = FakeSheet(guests=GUESTS, formats=("action",))
    gateway = _gateway(sheet)

    async def scenario():
        await gateway.get_guests()
        await gateway.get_guests()
        assert sheet.actions() == ["getGuests"]
        await gateway.update_guest_status("0501234567", GuestStatus.CONFIRMED, 1)
        return await gateway.get_guests()

    guests = asyncio.run(scenario())
    assert sheet.actions() == ["getGuests", "updateGuestStatus", "getGuests"]
    assert guests[0].status is GuestStatus.CONFIRMED
    assert guests[0].party_count == 1


def test_reads_fall_back_to_empty_defaults():
    sheet = FakeSheet(guests=GUESTS, formats=())
    gateway = _gateway(sheet)

    assert asyncio.run(gateway.get_guests()) == []
    details = asyncio.run(gateway.get_event_details())
    assert details.name == ""
    # failures are not cached
    sheet.formats = {"action"}
    assert len(asyncio.run(gateway.get_guests())) == 2


def test_event_details_canonical_and_cached():
    sheet = FakeSheet(details={"eventName": "Bar Mitzvah", "Date": "2030-01-01", "venue": "Haifa"})
    gateway = _gateway(sheet)

    details = asyncio.run(gateway.get_event_details())
    asyncio.run(gateway.get_event_details())

    assert details.name == "Bar Mitzvah"
    assert details.location == "Haifa"
    assert details.to_dict()["Location"] == "Haifa"
    assert sheet.actions() == ["getEventDetails"]


def test_stats_computed_locally_when_remote_lacks_them():
    sheet = FakeSheet(guests=GUESTS)
    stats = asyncio.run(_gateway(sheet).get_rsvp_stats())

    assert stats["pending"] == 1
    assert stats["confirmed"] == 1
    assert stats["total"] == 2
    assert stats["attending"] == 3


def test_stats_from_remote():
    sheet = FakeSheet(guests=GUESTS)
    sheet.stats = {"confirmed": "5", "declined": 1}

    assert asyncio.run(_gateway(sheet).get_rsvp_stats()) == {"confirmed": 5, "declined": 1}


# ---------------------------------------------------------------------------
# Field casing
# ---------------------------------------------------------------------------
def test_pascal_and_camel_case_rows_become_one_shape():
    pascal = to_canonical_guest({"Name": "Noa", "Phone": "0501234567", "Status": "Maybe", "GuestCount": "2"})
    camel = to_canonical_guest({"name": "Noa", "phone": "0501234567", "status": "maybe", "guestCount": 2})

    assert pascal == camel
    assert pascal.status is GuestStatus.MAYBE
    assert pascal.canonical_phone == "+972501234567"

    out = pascal.to_dict()
    assert out["Name"] == out["name"] == "Noa"
    assert out["GuestCount"] == out["guestCount"] == out["count"] == 2


def test_malformed_rows_default_per_field():
    guest = to_canonical_guest({"Status": "whatever", "GuestCount": "lots"})

    assert guest.status is GuestStatus.PENDING
    assert guest.party_count == 0
    assert guest.name == ""


def test_hebrew_columns_and_statuses_are_mapped():
    guest = to_canonical_guest({"שם מלא": "נועה", "טלפון": "050-1234567", "סטטוס": "מגיע", "כמות": "3", "הערות": "צמחונית"})

    assert guest.name == "נועה"
    assert guest.canonical_phone == "+972501234567"
    assert guest.status is GuestStatus.CONFIRMED
    assert guest.party_count == 3
    assert guest.notes == "צמחונית"

    assert GuestStatus.parse("לא מגיע") is GuestStatus.DECLINED
    assert GuestStatus.parse("אולי") is GuestStatus.MAYBE

    details = to_event_details({"שם האירוע": "החתונה של דנה", "תאריך": "30.05.2030", "מיקום": "חיפה"})
    assert (details.name, details.date, details.location) == ("החתונה של דנה", "30.05.2030", "חיפה")


def test_unknown_status_is_logged(monkeypatch):
    class StubLog:
        def __init__(self):
            self.warnings = []

        def warning(self, msg, *args, **kwargs):
            self.warnings.append(msg)

    stub = StubLog()
    monkeypatch.setattr(sheets, "log", stub)

    assert GuestStatus.parse("Bestätigt") is GuestStatus.PENDING
    assert GuestStatus.parse("") is GuestStatus.PENDING
    assert len(stub.warnings) == 1
    assert "Bestätigt" in stub.warnings[0]
