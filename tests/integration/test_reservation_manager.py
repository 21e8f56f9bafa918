# tests/integration/test_reservation_manager.py

from reservation_engine.domain.exceptions import ConcurrencyConflictError, ErrorKind
from reservation_engine.domain.state_machine import HoldStatus
from reservation_engine.infrastructure.repositories.catalog_repository import CatalogRepository
from reservation_engine.infrastructure.repositories.hold_repository import HoldRepository


# ---------------------
# REQUEST HOLD
# ---------------------

def test_release_frees_capacity_for_next_buyer(manager, unit):
    seat_block = unit(total_quantity=2)

    hold_a = manager.request_hold(seat_block.id, "A", 2)
    assert hold_a.ok
    assert hold_a.hold.status == HoldStatus.ACTIVE
    assert manager.get_unit_availability(seat_block.id).available_quantity == 0

    denied = manager.request_hold(seat_block.id, "B", 1)
    assert denied.error == ErrorKind.INSUFFICIENT_AVAILABILITY
    assert denied.unit_id == seat_block.id

    assert manager.release_hold(hold_a.hold.id, "A").ok
    assert manager.get_unit_availability(seat_block.id).available_quantity == 2

    assert manager.request_hold(seat_block.id, "B", 1).ok


def test_hold_expiry_is_set_from_clock(manager, unit, clock, settings):
    seat = unit()
    result = manager.request_hold(seat.id, "A", 1)

    assert result.hold.created_at == clock.now
    assert result.hold.expires_at == clock.now + settings.hold_duration


def test_non_positive_quantity_is_invalid(manager, unit):
    seat = unit()
    for quantity in (0, -1):
        result = manager.request_hold(seat.id, "A", quantity)
        assert result.error == ErrorKind.INVALID_INPUT

    assert manager.list_owner_holds("A") == []


def test_unknown_unit_is_not_found(manager):
    result = manager.request_hold("missing", "A", 1)
    assert result.error == ErrorKind.NOT_FOUND


def test_quantity_above_total_is_rejected(manager, unit):
    block = unit(total_quantity=3)
    result = manager.request_hold(block.id, "A", 4)

    assert result.error == ErrorKind.INSUFFICIENT_AVAILABILITY
    assert manager.list_owner_holds("A") == []


# ---------------------
# EXPIRY
# ---------------------

def test_expired_hold_frees_capacity_without_reaper(manager, unit, clock, settings):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold

    clock.advance(settings.hold_duration_seconds + 1)

    assert manager.get_unit_availability(seat.id).available_quantity == 1
    confirm = manager.confirm_hold(hold.id, "A")
    assert confirm.error == ErrorKind.EXPIRED
    assert confirm.hold.status == HoldStatus.EXPIRED


def test_hold_expires_exactly_at_expires_at(manager, unit, clock, settings):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold

    clock.advance(settings.hold_duration_seconds)

    assert manager.get_unit_availability(seat.id).available_quantity == 1
    assert manager.confirm_hold(hold.id, "A").error == ErrorKind.EXPIRED


def test_expired_capacity_can_be_claimed_before_reaping(manager, unit, clock, settings):
    seat = unit()
    manager.request_hold(seat.id, "A", 1)
    clock.advance(settings.hold_duration_seconds + 1)

    result = manager.request_hold(seat.id, "B", 1)
    assert result.ok


# ---------------------
# CONFIRM
# ---------------------

def test_confirmed_hold_keeps_capacity_after_ttl(manager, unit, clock, settings):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold

    confirmed = manager.confirm_hold(hold.id, "A")
    assert confirmed.ok
    assert confirmed.hold.status == HoldStatus.CONFIRMED

    clock.advance(settings.hold_duration_seconds * 3)
    assert manager.get_unit_availability(seat.id).available_quantity == 0
    assert manager.reap_expired() == 0


def test_confirm_checks_owner_and_state(manager, unit):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold

    assert manager.confirm_hold("missing", "A").error == ErrorKind.NOT_FOUND
    assert manager.confirm_hold(hold.id, "B").error == ErrorKind.FORBIDDEN
    assert manager.confirm_hold(hold.id, "A").ok
    assert manager.confirm_hold(hold.id, "A").error == ErrorKind.ALREADY_FINALIZED


def test_released_hold_cannot_be_confirmed(manager, unit):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold
    manager.release_hold(hold.id, "A")

    result = manager.confirm_hold(hold.id, "A")
    assert result.error == ErrorKind.ALREADY_FINALIZED


# ---------------------
# RELEASE
# ---------------------

def test_release_is_idempotent(manager, unit):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold

    first = manager.release_hold(hold.id, "A")
    second = manager.release_hold(hold.id, "A")

    assert first.ok and second.ok
    assert second.hold.status == HoldStatus.RELEASED


def test_release_after_reaper_keeps_expired_state(manager, unit, clock, settings):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold
    clock.advance(settings.hold_duration_seconds + 1)
    assert manager.reap_expired() == 1

    result = manager.release_hold(hold.id, "A")

    assert result.ok
    assert result.hold.status == HoldStatus.EXPIRED


def test_confirm_after_reaper_reports_expiry(manager, unit, clock, settings):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold
    clock.advance(settings.hold_duration_seconds + 1)
    assert manager.reap_expired() == 1

    result = manager.confirm_hold(hold.id, "A")

    assert result.error == ErrorKind.EXPIRED
    assert manager.list_owner_holds("A")[0].status == HoldStatus.EXPIRED


def test_repeated_confirm_of_expired_hold_reports_expiry(manager, unit, clock, settings):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold
    clock.advance(settings.hold_duration_seconds + 1)

    first = manager.confirm_hold(hold.id, "A")
    second = manager.confirm_hold(hold.id, "A")

    assert first.error == ErrorKind.EXPIRED
    assert second.error == ErrorKind.EXPIRED


def test_confirm_losing_race_to_reaper_reports_expiry(manager, unit, clock, settings, monkeypatch):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold
    original = HoldRepository.update_state

    def reaped_first(self, target, new_status, now):
        # The sweep finalizes the hold between the confirm's read and its write.
        monkeypatch.setattr(HoldRepository, "update_state", original)
        clock.advance(settings.hold_duration_seconds + 1)
        assert manager.reap_expired() == 1
        return original(self, target, new_status, now)

    monkeypatch.setattr(HoldRepository, "update_state", reaped_first)

    result = manager.confirm_hold(hold.id, "A")

    assert result.error == ErrorKind.EXPIRED
    assert manager.list_owner_holds("A")[0].status == HoldStatus.EXPIRED


def test_release_of_logically_expired_hold_records_expiry(manager, unit, clock, settings):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold
    clock.advance(settings.hold_duration_seconds + 1)

    result = manager.release_hold(hold.id, "A")

    assert result.ok
    assert result.hold.status == HoldStatus.EXPIRED
    assert manager.release_hold(hold.id, "A").hold.status == HoldStatus.EXPIRED


def test_release_checks_owner_and_confirmed_state(manager, unit):
    seat = unit()
    hold = manager.request_hold(seat.id, "A", 1).hold

    assert manager.release_hold("missing", "A").error == ErrorKind.NOT_FOUND
    assert manager.release_hold(hold.id, "B").error == ErrorKind.FORBIDDEN

    manager.confirm_hold(hold.id, "A")
    result = manager.release_hold(hold.id, "A")
    assert result.error == ErrorKind.ALREADY_FINALIZED


def test_release_owner_holds(manager, unit):
    first, second, third = unit(), unit(), unit()
    keep = manager.request_hold(first.id, "A", 1).hold
    drop = manager.request_hold(second.id, "A", 1).hold
    other = manager.request_hold(third.id, "B", 1).hold

    partial = manager.release_owner_holds("A", [drop.id, other.id, "missing"])
    assert partial.ok
    assert [hold.id for hold in partial.holds] == [drop.id]

    everything = manager.release_owner_holds("A")
    assert [hold.id for hold in everything.holds] == [keep.id]

    remaining = manager.list_owner_holds("B", active_only=True)
    assert [hold.id for hold in remaining] == [other.id]


# ---------------------
# BATCH
# ---------------------

def test_batch_hold_is_all_or_nothing(manager, unit):
    roomy, tight = unit(total_quantity=5), unit(total_quantity=1)

    denied = manager.request_holds("A", [(roomy.id, 2), (tight.id, 2)])
    assert denied.error == ErrorKind.INSUFFICIENT_AVAILABILITY
    assert denied.unit_id == tight.id
    assert manager.get_unit_availability(roomy.id).available_quantity == 5

    granted = manager.request_holds("A", [(tight.id, 1), (roomy.id, 2)])
    assert granted.ok
    assert [hold.unit_id for hold in granted.holds] == [tight.id, roomy.id]
    assert len({hold.batch_id for hold in granted.holds}) == 1
    assert len({hold.expires_at for hold in granted.holds}) == 1


def test_batch_hold_validates_selections(manager, unit, settings):
    seat = unit()

    assert manager.request_holds("A", []).error == ErrorKind.INVALID_INPUT
    assert manager.request_holds("A", [(seat.id, 1), (seat.id, 1)]).error == ErrorKind.INVALID_INPUT
    assert manager.request_holds("A", [(seat.id, 0)]).error == ErrorKind.INVALID_INPUT

    too_many = [(f"unit-{i}", 1) for i in range(settings.max_selections + 1)]
    assert manager.request_holds("A", too_many).error == ErrorKind.INVALID_INPUT


# ---------------------
# REAPER / AVAILABILITY / CONFLICTS
# ---------------------

def test_reap_expired_only_touches_dead_active_holds(manager, unit, clock, settings):
    seats = [unit() for _ in range(3)]
    stale = manager.request_hold(seats[0].id, "A", 1).hold
    confirmed = manager.request_hold(seats[1].id, "A", 1).hold
    manager.confirm_hold(confirmed.id, "A")

    clock.advance(settings.hold_duration_seconds + 1)
    fresh = manager.request_hold(seats[2].id, "A", 1).hold

    assert manager.reap_expired() == 1
    statuses = {hold.id: hold.status for hold in manager.list_owner_holds("A")}
    assert statuses == {
        stale.id: HoldStatus.EXPIRED,
        confirmed.id: HoldStatus.CONFIRMED,
        fresh.id: HoldStatus.ACTIVE,
    }
    assert manager.reap_expired() == 0


def test_tier_availability(manager, list_event):
    floor_a, floor_b, balcony = list_event(
        {"tier_name": "VIP", "section": "Floor", "row": "A", "seat_label": "1",
         "total_quantity": 1, "unit_price": 45000},
        {"tier_name": "VIP", "section": "Floor", "row": "A", "seat_label": "2",
         "total_quantity": 1, "unit_price": 40000},
        {"tier_name": "VIP", "section": "Balcony", "total_quantity": 10, "unit_price": 30000},
    )
    manager.request_hold(floor_a.id, "A", 1)
    manager.request_hold(balcony.id, "B", 4)

    tier = manager.get_tier_availability(floor_a.event_id, "vip")

    assert tier.available_quantity == 7
    assert (tier.min_price, tier.max_price) == (30000, 40000)


def test_version_conflict_is_retried(manager, unit, monkeypatch):
    seat = unit()
    original = CatalogRepository.claim_version
    calls = {"count": 0}

    def flaky_claim(self, locked_unit):
        calls["count"] += 1
        if calls["count"] == 1:
            raise ConcurrencyConflictError("lost race")
        return original(self, locked_unit)

    monkeypatch.setattr(CatalogRepository, "claim_version", flaky_claim)

    result = manager.request_hold(seat.id, "A", 1)

    assert result.ok
    assert calls["count"] == 2
    assert len(manager.list_owner_holds("A")) == 1


def test_persistent_conflicts_surface_storage_unavailable(manager, unit, monkeypatch, settings):
    seat = unit()

    def always_conflict(self, locked_unit):
        raise ConcurrencyConflictError("lost race")

    monkeypatch.setattr(CatalogRepository, "claim_version", always_conflict)

    result = manager.request_hold(seat.id, "A", 1)

    assert result.error == ErrorKind.STORAGE_UNAVAILABLE
    assert manager.list_owner_holds("A") == []
