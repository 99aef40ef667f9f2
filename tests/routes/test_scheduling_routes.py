from datetime import date, time

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError

from matchbook.auth import jwt_handler
from matchbook.auth.dependencies import get_current_user
from matchbook.models.booking import BookingStatus
from matchbook.models.invite import InviteStatus
from matchbook.routes import availability_routes, booking_routes, invite_routes
from matchbook.routes.availability_routes import CreateWindowRequest, UpdateWindowRequest
from matchbook.routes.booking_routes import (
    CreateBatchRequest,
    CreateBookingRequest,
    ProposeTimeRequest,
    SlotSelection,
)
from matchbook.routes.invite_routes import CancelInviteRequest, RescheduleRequest, RespondRequest, SendInviteRequest

DAY = date(2024, 3, 10)


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    for module in ('availability_routes', 'booking_routes', 'invite_routes'):
        monkeypatch.setattr(f'matchbook.routes.{module}.ensure_database_ready', lambda: None)


@pytest.fixture
def alice_morning(db, alice):
    return availability_routes.create_window(
        CreateWindowRequest(
            date=DAY,
            start_time=time(9),
            end_time=time(11),
            visibility=' Public ',
        ),
        current_user=alice,
        db=db,
    )


def test_create_window_request_rejects_unknown_visibility() -> None:
    with pytest.raises(ValidationError):
        CreateWindowRequest(date=DAY, start_time=time(9), end_time=time(10), visibility='friends')


def test_create_window_uses_the_owner_timezone(alice_morning, alice) -> None:
    assert len(alice_morning) == 1
    assert alice_morning[0].owner_id == alice.id
    assert alice_morning[0].timezone == 'America/New_York'
    assert alice_morning[0].visibility == 'public'


def test_update_window_applies_only_sent_fields(db, alice, alice_morning) -> None:
    updated = availability_routes.update_window(
        alice_morning[0].id,
        UpdateWindowRequest(end_time=time(12)),
        current_user=alice,
        db=db,
    )

    assert (updated.start_time, updated.end_time) == (time(9), time(12))
    assert updated.timezone == 'America/New_York'


def test_off_grid_window_is_a_bad_request(db, alice) -> None:
    with pytest.raises(HTTPException) as exception_info:
        availability_routes.create_window(
            CreateWindowRequest(date=DAY, start_time=time(9, 5), end_time=time(10)),
            current_user=alice,
            db=db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'validation_error'


def test_units_are_shown_in_the_viewer_zone(db, alice, bob, alice_morning) -> None:
    units = availability_routes.list_bookable_units(
        alice.id,
        start_date=DAY,
        end_date=DAY,
        viewer_timezone=None,
        current_user=bob,
        db=db,
    )

    assert [(unit.start_time, unit.end_time) for unit in units] == [(time(6), time(7)), (time(7), time(8))]
    assert units[0].source_start_time == time(9)
    assert units[0].timezone == 'America/Los_Angeles'


def test_booking_routes_map_errors_to_status_codes(db, alice, bob, carol, alice_morning) -> None:
    booking = booking_routes.create_booking(
        CreateBookingRequest(opponent_id=alice.id, date=DAY, start_time=time(9), end_time=time(10)),
        current_user=bob,
        db=db,
    )
    assert booking.status == BookingStatus.PENDING

    with pytest.raises(HTTPException) as taken:
        booking_routes.create_booking(
            CreateBookingRequest(opponent_id=alice.id, date=DAY, start_time=time(9), end_time=time(10)),
            current_user=carol,
            db=db,
        )
    with pytest.raises(HTTPException) as wrong_actor:
        booking_routes.accept_booking(booking.id, current_user=bob, db=db)
    with pytest.raises(HTTPException) as missing:
        booking_routes.accept_booking(9999, current_user=alice, db=db)

    assert taken.value.status_code == 409
    assert taken.value.detail['reason'] == 'slot_taken'
    assert wrong_actor.value.status_code == 409
    assert wrong_actor.value.detail['current'] == 'pending'
    assert missing.value.status_code == 404


def test_booking_negotiation_through_routes(db, alice, bob, alice_morning) -> None:
    booking = booking_routes.create_booking(
        CreateBookingRequest(opponent_id=alice.id, date=DAY, start_time=time(9), end_time=time(10)),
        current_user=bob,
        db=db,
    )

    booking_routes.propose_new_time(
        booking.id,
        ProposeTimeRequest(date=DAY, start_time=time(10), end_time=time(11)),
        current_user=alice,
        db=db,
    )
    confirmed = booking_routes.accept_proposed_time(booking.id, current_user=bob, db=db)
    assert confirmed.status == BookingStatus.CONFIRMED

    listed = booking_routes.list_my_bookings(booking_status=[BookingStatus.CONFIRMED], current_user=alice, db=db)
    assert [item.id for item in listed] == [booking.id]

    cancelled = booking_routes.cancel_booking(booking.id, current_user=alice, db=db)
    assert cancelled.status == BookingStatus.CANCELLED


def test_batch_route_reports_per_slot_outcomes(db, alice, bob, alice_morning) -> None:
    outcomes = booking_routes.create_booking_batch(
        CreateBatchRequest(
            opponent_id=alice.id,
            slots=[
                SlotSelection(date=DAY, start_time=time(9), end_time=time(10)),
                SlotSelection(date=DAY, start_time=time(13), end_time=time(14)),
            ],
        ),
        current_user=bob,
        db=db,
    )

    assert outcomes[0].booking is not None
    assert outcomes[0].error is None
    assert outcomes[1].booking is None
    assert outcomes[1].error['reason'] == 'outside_availability'


def test_batch_request_requires_slots() -> None:
    with pytest.raises(ValidationError):
        CreateBatchRequest(opponent_id=1, slots=[])


def test_respond_request_normalizes_response() -> None:
    assert RespondRequest(response=' DECLINED ').response == 'declined'

    with pytest.raises(ValidationError):
        RespondRequest(response='maybe')


def test_invite_routes_enforce_reschedule_cap(db, alice, bob) -> None:
    invite = invite_routes.send_invite(
        SendInviteRequest(receiver_id=bob.id, date=DAY, start_time=time(15), end_time=time(16)),
        current_user=alice,
        db=db,
    )
    assert invite.timezone == 'America/New_York'

    for hour, actor in ((16, bob), (17, alice), (18, bob)):
        invite_routes.propose_reschedule(
            invite.id,
            RescheduleRequest(date=DAY, start_time=time(hour), end_time=time(hour + 1)),
            current_user=actor,
            db=db,
        )

    with pytest.raises(HTTPException) as exception_info:
        invite_routes.propose_reschedule(
            invite.id,
            RescheduleRequest(date=DAY, start_time=time(19), end_time=time(20)),
            current_user=alice,
            db=db,
        )
    assert exception_info.value.status_code == 429
    assert exception_info.value.detail['limit'] == 3

    actions = invite_routes.list_invite_actions(invite.id, current_user=alice, db=db)
    assert actions.actions == ['accept', 'decline', 'cancel']
    assert actions.reschedules_remaining == 0

    accepted = invite_routes.respond_to_invite(
        invite.id, RespondRequest(response='accepted'), current_user=alice, db=db
    )
    assert accepted.status == InviteStatus.ACCEPTED
    assert (accepted.start_time, accepted.end_time) == (time(18), time(19))


def test_invite_lists_and_cancel(db, alice, bob, carol) -> None:
    invite = invite_routes.send_invite(
        SendInviteRequest(receiver_id=bob.id, date=DAY, start_time=time(15), end_time=time(16)),
        current_user=alice,
        db=db,
    )

    assert [item.id for item in invite_routes.list_pending_invites(current_user=bob, db=db)] == [invite.id]
    assert [item.id for item in invite_routes.list_sent_invites(current_user=alice, db=db)] == [invite.id]

    with pytest.raises(HTTPException) as outsider:
        invite_routes.list_invite_actions(invite.id, current_user=carol, db=db)
    assert outsider.value.status_code == 404

    cancelled = invite_routes.cancel_invite(
        invite.id, CancelInviteRequest(reason='Court closed'), current_user=alice, db=db
    )
    assert cancelled.status == InviteStatus.CANCELLED
    assert cancelled.cancellation_reason == 'Court closed'


def test_current_user_resolves_from_bearer_token(db, alice) -> None:
    token = jwt_handler.create_access_token(' Alice@Example.com ')

    user = get_current_user(HTTPAuthorizationCredentials(scheme='Bearer', credentials=token), db=db)

    assert user.id == alice.id
    assert jwt_handler.decode_access_token(token)['sub'] == 'alice@example.com'


def test_current_user_rejects_bad_or_unknown_tokens(db, alice) -> None:
    with pytest.raises(HTTPException) as garbage:
        get_current_user(HTTPAuthorizationCredentials(scheme='Bearer', credentials='not-a-token'), db=db)
    with pytest.raises(HTTPException) as unknown:
        get_current_user(
            HTTPAuthorizationCredentials(
                scheme='Bearer',
                credentials=jwt_handler.create_access_token('nobody@example.com'),
            ),
            db=db,
        )

    assert garbage.value.status_code == 401
    assert unknown.value.detail == 'User not found'


def test_health_check() -> None:
    from matchbook.main import root

    assert root() == {'status': 'Matchbook Scheduling API Running'}


def test_logging_format_names_the_logger_before_the_level() -> None:
    from matchbook.core import config

    assert config.LOG_FORMAT == '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
