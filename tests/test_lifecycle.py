"""
test_lifecycle.py — Alert lifecycle orchestration end to end on the
in-memory store and directory.

Covers:
    • create_alert: validation, snapshot fields, broadcast ledger
    • notify_contacts: ownership, empty contact list, ledger overwrite
    • update_status: resolved / false_alarm stamping, terminal states
    • record_contact_response: update in place vs append
    • Queries: active, per-user, nearby
    • Diagnostics reports

Run with:
    pytest tests/test_lifecycle.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from backend.app.core.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NoContactsError,
    NotFoundError,
    ValidationError,
)
from backend.app.sos.fanout import NOT_CONFIGURED_MESSAGE, FanOutEngine
from backend.app.sos.lifecycle import AlertLifecycleManager
from backend.app.sos.models import (
    AlertPriority,
    AlertStatus,
    ContactResponse,
    EmergencyType,
    Identity,
    NotificationStatus,
)

from conftest import ALICE, BHAVNA, BLR_LAT, BLR_LON, BrokenDirectory, FakeNotifier, seed_users


def run(coro):
    return asyncio.run(coro)


def _create(manager, identity=None, lat=BLR_LAT, lon=BLR_LON, **kwargs):
    return run(manager.create_alert(identity or ALICE.to_identity(), lat, lon, **kwargs))


def _add_contacts(directory, user_id, contacts):
    async def _add():
        for name, phone, rel in contacts:
            await directory.add_emergency_contact(user_id, name, phone, rel)
    run(_add())


# ═══════════════════════════════════════════════════════════════════════════
# Creation
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateAlert:

    def test_end_to_end_all_sent(self, manager, store):
        alert, results = _create(manager, emergency_type="assault")

        assert len(results) == 3
        assert all(r.status == NotificationStatus.SENT for r in results)
        assert alert.status == AlertStatus.ACTIVE
        assert alert.priority == AlertPriority.HIGH
        assert alert.emergency_type == EmergencyType.ASSAULT

        stored = run(store.get(alert.id))
        assert len(stored.notified_contacts) == 3
        assert all(c.status == NotificationStatus.SENT for c in stored.notified_contacts)
        assert all(c.response == ContactResponse.PENDING for c in stored.notified_contacts)

    def test_end_to_end_unconfigured(self, unconfigured_manager, store):
        alert, results = _create(unconfigured_manager, emergency_type="assault")

        assert len(results) == 3
        assert all(r.status == NotificationStatus.LOGGED for r in results)
        assert all(r.error == NOT_CONFIGURED_MESSAGE for r in results)
        assert alert.status == AlertStatus.ACTIVE
        stored = run(store.get(alert.id))
        assert [c.status for c in stored.notified_contacts] == [NotificationStatus.LOGGED] * 3

    def test_broadcast_excludes_creator_and_inactive_users(self, manager, notifier):
        _, results = _create(manager)
        phones = {r.phone for r in results}
        assert "+919876543210" not in phones      # Alice, the creator
        assert "+917000000001" not in phones      # Ella, inactive
        assert phones == {"+919123456780", "+918123456789", "+14155550100"}
        assert all(r.relationship == "System User" for r in results)

    def test_ledger_length_equals_other_active_users(self, manager):
        _, results = _create(manager, identity=BHAVNA.to_identity())
        assert len(results) == 3

    def test_snapshot_fields_copied_from_identity(self, manager):
        alert, _ = _create(manager, address="MG Road", description="  followed  ")
        assert alert.user_id == "u-alice"
        assert alert.user_name == "Alice"
        assert alert.user_phone == "9876543210"
        assert alert.user_aadhar == "123412341234"
        assert alert.location.address == "MG Road"
        assert alert.description == "followed"

    def test_nameless_creator_snapshotted_as_anonymous(self, manager):
        alert, _ = _create(manager, identity=Identity(user_id="u-nameless", phone="9000000000"))
        assert alert.user_name == "Anonymous"

    def test_defaults_to_other(self, manager):
        alert, _ = _create(manager)
        assert alert.emergency_type == EmergencyType.OTHER

    def test_partial_failures_reported(self, store, directory):
        notifier = FakeNotifier(fail_for={"+918123456789"})
        manager = AlertLifecycleManager(store, directory, FanOutEngine(notifier))
        alert, results = _create(manager)
        statuses = sorted(r.status.value for r in results)
        assert statuses == ["failed", "sent", "sent"]
        assert alert.status == AlertStatus.ACTIVE

    def test_no_other_users_gives_empty_ledger(self, store, notifier):
        from backend.app.sos.directory import InMemoryUserDirectory
        lonely = InMemoryUserDirectory()
        seed_users(lonely, [ALICE])
        manager = AlertLifecycleManager(store, lonely, FanOutEngine(notifier))
        alert, results = _create(manager)
        assert results == []
        assert run(store.get(alert.id)).notified_contacts == []

    def test_broadcast_fault_is_absorbed(self, store, notifier):
        broken = BrokenDirectory()
        seed_users(broken, [ALICE])
        manager = AlertLifecycleManager(store, broken, FanOutEngine(notifier))
        alert, results = _create(manager)
        assert results == []
        assert run(store.get(alert.id)) is not None
        assert notifier.calls == []

    @pytest.mark.parametrize("lat,lon,field", [
        (91, 77.6, "latitude"),
        (-90.01, 77.6, "latitude"),
        (12.9, 180.5, "longitude"),
        (12.9, -181, "longitude"),
        ("north", 77.6, "latitude"),
        (12.9, None, "longitude"),
    ])
    def test_invalid_coordinates(self, manager, store, notifier, lat, lon, field):
        with pytest.raises(ValidationError) as exc_info:
            _create(manager, lat=lat, lon=lon)
        assert exc_info.value.field == field
        assert run(store.list_active()) == []
        assert notifier.calls == []

    def test_boundary_coordinates_accepted(self, manager):
        alert, _ = _create(manager, lat=-90, lon=180)
        assert alert.location.latitude == -90.0
        assert alert.location.longitude == 180.0

    def test_description_too_long(self, manager, store):
        with pytest.raises(ValidationError) as exc_info:
            _create(manager, description="x" * 501)
        assert exc_info.value.field == "description"
        assert run(store.list_active()) == []

    def test_padded_description_over_limit_rejected(self, manager, store):
        with pytest.raises(ValidationError) as exc_info:
            _create(manager, description=" " + "x" * 500)
        assert exc_info.value.field == "description"
        assert run(store.list_active()) == []

    def test_description_at_limit(self, manager):
        alert, _ = _create(manager, description="x" * 500)
        assert len(alert.description) == 500

    def test_unknown_emergency_type(self, manager, store):
        with pytest.raises(ValidationError) as exc_info:
            _create(manager, emergency_type="kidnapping")
        assert exc_info.value.field == "emergency_type"
        assert "assault" in exc_info.value.details["allowed"]
        assert run(store.list_active()) == []


# ═══════════════════════════════════════════════════════════════════════════
# Targeted notification
# ═══════════════════════════════════════════════════════════════════════════

class TestNotifyContacts:

    def test_creator_notifies_contacts(self, manager, directory, store):
        alert, _ = _create(manager)
        _add_contacts(directory, ALICE.id, [
            ("Mom", "9811111111", "Mother"),
            ("Ravi", "9822222222", "Brother"),
        ])

        results = run(manager.notify_contacts(alert.id, ALICE.to_identity()))

        assert [r.name for r in results] == ["Mom", "Ravi"]
        assert [r.relationship for r in results] == ["Mother", "Brother"]
        assert [r.phone for r in results] == ["+919811111111", "+919822222222"]
        stored = run(store.get(alert.id))
        # Broadcast ledger replaced wholesale
        assert [c.phone for c in stored.notified_contacts] == ["+919811111111", "+919822222222"]

    def test_overwrite_discards_recorded_responses(self, manager, directory, store):
        alert, _ = _create(manager)
        run(manager.record_contact_response(alert.id, "+919123456780", "responding"))
        _add_contacts(directory, ALICE.id, [("Mom", "9811111111", "Mother")])

        run(manager.notify_contacts(alert.id, ALICE.to_identity()))

        stored = run(store.get(alert.id))
        assert len(stored.notified_contacts) == 1
        assert stored.notified_contacts[0].response == ContactResponse.PENDING

    def test_non_creator_forbidden_without_mutation(self, manager, directory, store, notifier):
        alert, _ = _create(manager)
        _add_contacts(directory, BHAVNA.id, [("Friend", "9833333333", "")])
        before = run(store.get(alert.id))
        calls_before = len(notifier.calls)

        with pytest.raises(ForbiddenError):
            run(manager.notify_contacts(alert.id, BHAVNA.to_identity()))

        after = run(store.get(alert.id))
        assert after.notified_contacts == before.notified_contacts
        assert after.updated_at == before.updated_at
        assert len(notifier.calls) == calls_before

    def test_no_contacts(self, manager):
        alert, _ = _create(manager)
        with pytest.raises(NoContactsError) as exc_info:
            run(manager.notify_contacts(alert.id, ALICE.to_identity()))
        assert "add emergency contacts" in exc_info.value.message

    def test_unknown_alert(self, manager):
        with pytest.raises(NotFoundError):
            run(manager.notify_contacts("missing", ALICE.to_identity()))

    def test_numeric_user_id_matches_string(self, store, directory, notifier):
        from backend.app.sos.models import UserRef
        seed_users(directory, [UserRef(id="42", name="Numeric", phone="9844444444")])
        manager = AlertLifecycleManager(store, directory, FanOutEngine(notifier))
        alert, _ = run(manager.create_alert(Identity(user_id=42, name="Numeric"), 12.9, 77.6))
        _add_contacts(directory, "42", [("Mom", "9811111111", "Mother")])
        results = run(manager.notify_contacts(alert.id, Identity(user_id="42")))
        assert len(results) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Status transitions
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdateStatus:

    def test_resolve_stamps_resolver(self, manager):
        alert, _ = _create(manager)
        updated = run(manager.update_status(alert.id, "resolved", BHAVNA.to_identity(), "safe now"))
        assert updated.status == AlertStatus.RESOLVED
        assert updated.resolved_by == BHAVNA.id
        assert updated.resolved_at is not None
        assert updated.resolution_notes == "safe now"

    def test_false_alarm_stamps_nothing(self, manager):
        alert, _ = _create(manager)
        updated = run(manager.update_status(alert.id, "false_alarm", ALICE.to_identity()))
        assert updated.status == AlertStatus.FALSE_ALARM
        assert updated.resolved_at is None
        assert updated.resolved_by is None

    def test_second_transition_rejected(self, manager):
        alert, _ = _create(manager)
        run(manager.update_status(alert.id, "resolved", ALICE.to_identity()))
        with pytest.raises(InvalidTransitionError):
            run(manager.update_status(alert.id, "false_alarm", ALICE.to_identity()))

    def test_active_to_active_allowed(self, manager):
        alert, _ = _create(manager)
        updated = run(manager.update_status(alert.id, "active", ALICE.to_identity()))
        assert updated.status == AlertStatus.ACTIVE

    def test_unknown_status(self, manager):
        alert, _ = _create(manager)
        with pytest.raises(ValidationError) as exc_info:
            run(manager.update_status(alert.id, "closed", ALICE.to_identity()))
        assert exc_info.value.field == "status"

    def test_unknown_alert(self, manager):
        with pytest.raises(NotFoundError):
            run(manager.update_status("missing", "resolved", ALICE.to_identity()))

    def test_resolved_alert_leaves_active_list(self, manager):
        alert, _ = _create(manager)
        run(manager.update_status(alert.id, "resolved", ALICE.to_identity()))
        assert run(manager.get_active_alerts()) == []


# ═══════════════════════════════════════════════════════════════════════════
# Contact responses
# ═══════════════════════════════════════════════════════════════════════════

class TestRecordContactResponse:

    def test_existing_entry_updated_in_place(self, manager):
        alert, _ = _create(manager)
        before = alert.notified_contacts[0]
        updated = run(manager.record_contact_response(alert.id, before.phone, "acknowledged"))

        assert len(updated.notified_contacts) == 3
        entry = updated.notified_contacts[0]
        assert entry.phone == before.phone
        assert entry.response == ContactResponse.ACKNOWLEDGED
        assert entry.status == NotificationStatus.SENT
        assert entry.notified_at >= before.notified_at

    def test_unknown_phone_appended(self, manager):
        alert, _ = _create(manager)
        updated = run(manager.record_contact_response(alert.id, "+919899999999", "responding"))
        assert len(updated.notified_contacts) == 4
        entry = updated.notified_contacts[-1]
        assert entry.phone == "+919899999999"
        assert entry.response == ContactResponse.RESPONDING
        assert entry.status is None
        assert entry.error == ""

    def test_phone_match_is_exact(self, manager):
        alert, _ = _create(manager)
        # Ledger holds +919123456780; the bare form is a different entry
        updated = run(manager.record_contact_response(alert.id, "9123456780", "unreachable"))
        assert len(updated.notified_contacts) == 4

    def test_persisted(self, manager, store):
        alert, _ = _create(manager)
        run(manager.record_contact_response(alert.id, "+919123456780", "responding"))
        stored = run(store.get(alert.id))
        match = [c for c in stored.notified_contacts if c.phone == "+919123456780"]
        assert match[0].response == ContactResponse.RESPONDING

    @pytest.mark.parametrize("response", ["pending", "maybe", ""])
    def test_invalid_response(self, manager, response):
        alert, _ = _create(manager)
        with pytest.raises(ValidationError):
            run(manager.record_contact_response(alert.id, "+919123456780", response))

    def test_phone_required(self, manager):
        alert, _ = _create(manager)
        with pytest.raises(ValidationError) as exc_info:
            run(manager.record_contact_response(alert.id, "  ", "responding"))
        assert exc_info.value.field == "contact_phone"

    def test_unknown_alert(self, manager):
        with pytest.raises(NotFoundError):
            run(manager.record_contact_response("missing", "+919123456780", "responding"))


# ═══════════════════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════════════════

class TestQueries:

    def test_get_alert_missing(self, manager):
        with pytest.raises(NotFoundError):
            run(manager.get_alert("missing"))

    def test_active_newest_first(self, manager):
        first, _ = _create(manager)
        second, _ = _create(manager, identity=BHAVNA.to_identity())
        active = run(manager.get_active_alerts())
        assert [a.id for a in active] == [second.id, first.id]

    def test_user_alerts_include_closed(self, manager):
        first, _ = _create(manager)
        _create(manager, identity=BHAVNA.to_identity())
        run(manager.update_status(first.id, "false_alarm", ALICE.to_identity()))
        mine = run(manager.get_user_alerts(ALICE.id))
        assert [a.id for a in mine] == [first.id]
        assert mine[0].status == AlertStatus.FALSE_ALARM

    def test_nearby_filters_by_radius_and_status(self, manager):
        near, _ = _create(manager, lat=12.91, lon=77.6)          # ~1.1 km
        _create(manager, lat=13.0827, lon=80.2707)               # Chennai
        closed, _ = _create(manager, lat=12.9, lon=77.6)
        run(manager.update_status(closed.id, "resolved", ALICE.to_identity()))

        nearby = run(manager.get_nearby_alerts(12.9, 77.6, 5))
        assert [a.id for a in nearby] == [near.id]

    def test_nearby_nearest_first(self, manager):
        far, _ = _create(manager, lat=12.93, lon=77.6)
        close, _ = _create(manager, lat=12.905, lon=77.6)
        nearby = run(manager.get_nearby_alerts(12.9, 77.6, 10))
        assert [a.id for a in nearby] == [close.id, far.id]

    def test_nearby_across_antimeridian(self, manager):
        across, _ = _create(manager, lat=0, lon=-179.95)
        nearby = run(manager.get_nearby_alerts(0, 179.95, 50))
        assert [a.id for a in nearby] == [across.id]

    @pytest.mark.parametrize("radius", [0, -1, "wide"])
    def test_nearby_invalid_radius(self, manager, radius):
        with pytest.raises(ValidationError) as exc_info:
            run(manager.get_nearby_alerts(12.9, 77.6, radius))
        assert exc_info.value.field == "radius"


# ═══════════════════════════════════════════════════════════════════════════
# Diagnostics
# ═══════════════════════════════════════════════════════════════════════════

class TestDiagnostics:

    def test_contact_readiness(self, manager, directory):
        _add_contacts(directory, ALICE.id, [("Mom", "9811111111", "Mother")])
        report = run(manager.contact_readiness(ALICE.to_identity()))
        assert report["emergency_contacts_count"] == 1
        assert report["emergency_contacts"][0]["name"] == "Mom"
        assert report["sms_configured"] is True

    def test_broadcast_readiness(self, unconfigured_manager):
        report = run(unconfigured_manager.broadcast_readiness(ALICE.to_identity()))
        assert report["total_users"] == 4
        assert report["other_users"] == 3
        assert ALICE.id not in {u["id"] for u in report["users"]}
        assert report["sms_configured"] is False
