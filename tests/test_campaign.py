import asyncio
from datetime import date, timedelta

import pytest

from rsvp.campaign import CampaignRunner, CampaignState, days_remaining, select_recipients
from rsvp.guest_directory import GuestDirectory
from rsvp.sheets import EventDetails, Guest, GuestStatus
from rsvp.templates import invitation_message
from rsvp.tenants import Tenant
from rsvp.transport import RecordingTransport

TODAY = date(2030, 5, 1)


def _tenant(days_out):
    return Tenant(
        id="cust_1",
        name="Dana",
        contact_phone="+972520000001",
        event_name="Wedding",
        event_date=(TODAY + timedelta(days=days_out)).isoformat(),
    )


def _guests(n, status=GuestStatus.PENDING, start=1):
    return [Guest(name=f"G{i}", phone=f"05012345{i:02d}", status=status) for i in range(start, start + n)]


def test_days_remaining_uses_calendar_dates():
    assert days_remaining("2030-05-30", TODAY) == 29
    assert days_remaining("30.05.2030", TODAY) == 29
    assert days_remaining("2030-04-30", TODAY) == -1
    assert days_remaining("soon", TODAY) is None


def test_past_event_selects_nobody():
    assert select_recipients(_tenant(-1), _guests(3), set(), today=TODAY) == []


@pytest.mark.parametrize("days_out", [28, 29, 30, 14])
def test_initial_windows_select_uncontacted_pending(days_out):
    guests = _guests(3) + _guests(1, GuestStatus.CONFIRMED, start=50)

    picked = select_recipients(_tenant(days_out), guests, set(), today=TODAY)

    assert [g.name for g in picked] == ["G1", "G2", "G3"]


def test_29_days_then_contacted_selects_none():
    tenant, guests = _tenant(29), _guests(4)
    first = select_recipients(tenant, guests, set(), batch_size=10, today=TODAY)
    assert len(first) == 4

    contacted = {g.canonical_phone.lstrip("+") for g in first}
    assert select_recipients(tenant, guests, contacted, today=TODAY) == []


def test_batch_size_caps_selection():
    assert len(select_recipients(_tenant(29), _guests(15), set(), batch_size=10, today=TODAY)) == 10


def test_seven_days_ignores_prior_contact():
    guests = _guests(2)
    contacted = {"972501234501"}

    picked = select_recipients(_tenant(7), guests, contacted, today=TODAY)

    assert [g.name for g in picked] == ["G1", "G2"]


def test_final_window_includes_confirmed():
    guests = _guests(1) + _guests(1, GuestStatus.CONFIRMED, start=2) + _guests(1, GuestStatus.DECLINED, start=3)

    for days_out in (2, 3):
        picked = select_recipients(_tenant(days_out), guests, {"972501234501"}, today=TODAY)
        assert [g.name for g in picked] == ["G1", "G2"]


@pytest.mark.parametrize("days_out", [0, 1, 5, 20, 31, 60])
def test_outside_windows_selects_nobody(days_out):
    assert select_recipients(_tenant(days_out), _guests(2), set(), today=TODAY) == []


def test_forced_ignores_date_but_not_contacted():
    guests = _guests(3) + _guests(1, GuestStatus.MAYBE, start=9)

    picked = select_recipients(_tenant(-10), guests, {"972501234502"}, forced=True, today=TODAY)

    assert [g.name for g in picked] == ["G1", "G3"]


def test_duplicate_phones_selected_once():
    guests = [Guest(name="A", phone="0501234567"), Guest(name="B", phone="+972501234567"), Guest(name="C", phone="")]

    picked = select_recipients(_tenant(29), guests, set(), today=TODAY)

    assert [g.name for g in picked] == ["A"]


def test_invitation_wording_follows_proximity():
    class Details:
        name, date, time, location, description = "Wedding", "2030-05-30", "19:00", "Haifa", ""

    initial = invitation_message(29, Details, "Noa", "en").text
    week = invitation_message(7, Details, "Noa", "en").text
    final = invitation_message(2, Details, "Noa", "en").text

    assert "cordially invited" in initial
    assert "one week away" in week
    assert "final reminder" in final
    assert "Dear Noa" in initial
    assert "Haifa" in final


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------
class StubGateway:
    tenant_id = "cust_1"

    def __init__(self, guests):
        self.guests = guests
        self.contacted = []

    async def get_guests(self):
        return list(self.guests)

    async def get_event_details(self):
        return EventDetails()

    async def mark_guest_contacted(self, phone):
        self.contacted.append(phone)
        return True


class StubPool:
    def __init__(self, gateway):
        self.gateway = gateway

    def for_tenant(self, tenant_id):
        return self.gateway


class StubRegistry:
    def __init__(self, tenants):
        self.tenants = tenants

    def active(self):
        return [t for t in self.tenants if t.active]


def _runner(guests, tenants=None, transport=None, directory=None):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    gateway = StubGateway(guests)
    runner = CampaignRunner(
        StubRegistry(tenants or [_tenant(29)]),
        StubPool(gateway),
        directory or GuestDirectory(),
        transport or RecordingTransport(),
        CampaignState(),
        delay=8.0,
        batch_size=10,
        sleep=fake_sleep,
    )
    return runner, gateway, sleeps


def test_runner_sends_maps_and_paces():
    runner, gateway, sleeps = _runner(_guests(3))

    summary = asyncio.run(runner.run_for_tenant(_tenant(29), today=TODAY))

    assert summary["sent"] == 3
    assert sleeps == [8.0, 8.0]
    assert runner.directory.resolve("972501234502") == "cust_1"
    assert gateway.contacted == ["0501234501", "0501234502", "0501234503"]
    first = runner.transport.sent[0][1]
    assert "Wedding" in first.text


def test_runner_second_run_same_day_sends_nothing():
    runner, _, _ = _runner(_guests(2))
    asyncio.run(runner.run_for_tenant(_tenant(29), today=TODAY))

    again = asyncio.run(runner.run_for_tenant(_tenant(29), today=TODAY))
    assert again["sent"] == 0


def test_runner_seven_day_reminder_not_repeated_same_day():
    runner, _, _ = _runner(_guests(2))
    asyncio.run(runner.run_for_tenant(_tenant(7), today=TODAY))

    again = asyncio.run(runner.run_for_tenant(_tenant(7), today=TODAY))
    assert again["sent"] == 0
    assert again["selected"] == 0


def test_runner_seven_day_reminder_reaches_guests_past_the_batch_cap():
    runner, _, _ = _runner(_guests(3))
    runner.batch_size = 2

    first = asyncio.run(runner.run_for_tenant(_tenant(7), today=TODAY))
    second = asyncio.run(runner.run_for_tenant(_tenant(7), today=TODAY))
    third = asyncio.run(runner.run_for_tenant(_tenant(7), today=TODAY))

    assert (first["sent"], second["sent"], third["sent"]) == (2, 1, 0)
    assert sorted(p for p, _ in runner.transport.sent) == ["+972501234501", "+972501234502", "+972501234503"]


def test_exclude_is_applied_before_the_cap():
    picked = select_recipients(_tenant(2), _guests(4), set(), batch_size=2, today=TODAY, exclude={"972501234501"})

    assert [g.name for g in picked] == ["G2", "G3"]


def test_runner_forced_run_bypasses_windows():
    runner, _, _ = _runner(_guests(2))

    summary = asyncio.run(runner.run_for_tenant(_tenant(45), force=True, today=TODAY))

    assert summary["sent"] == 2


def test_transport_failure_is_counted_and_loop_continues():
    transport = RecordingTransport(fail_for=["+972501234501"])
    runner, gateway, _ = _runner(_guests(2), transport=transport)

    summary = asyncio.run(runner.run_for_tenant(_tenant(29), today=TODAY))

    assert summary["failed"] == 1
    assert summary["sent"] == 1
    assert gateway.contacted == ["0501234502"]
    # the failed guest stays eligible
    assert "972501234501" not in runner.state.contacted_for("cust_1")


def test_run_all_isolates_tenant_crash(monkeypatch):
    runner, _, _ = _runner(_guests(1))

    async def boom(*_a, **_k):
        raise RuntimeError("sheet exploded")

    monkeypatch.setattr(runner, "run_for_tenant", boom)
    result = asyncio.run(runner.run_all())

    assert result["ok"] is True
    assert result["tenants"] == [{"tenant": "cust_1", "error": "sheet exploded"}]


def test_run_all_unknown_tenant():
    runner, _, _ = _runner(_guests(1))

    result = asyncio.run(runner.run_all(tenant_id="cust_404"))

    assert result["ok"] is False
