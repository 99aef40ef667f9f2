from datetime import date, datetime, time, timedelta

import pytest

from matchbook.errors import ConflictError, ConflictReason, InvalidStateTransition, RescheduleLimitExceeded, ValidationError
from matchbook.models.invite import Invite, InviteStatus
from matchbook.models.slot_claim import SlotClaim
from matchbook.services import booking_service, availability_service, conflict_detector, invite_service
from matchbook.services.notifications import EventKind

DAY = date(2024, 3, 10)
NOW = datetime(2024, 3, 1, 12, 0)


def _send(db, sender, receiver, start='15:00', end='16:00', **kwargs) -> Invite:
    return invite_service.send_invite(db, sender.id, receiver.id, DAY, start, end, now=NOW, **kwargs)


def test_send_invite_starts_pending_with_expiry(db, alice, bob, notifier) -> None:
    invite = _send(db, alice, bob, message='  Best of three?  ', notifier=notifier)

    assert invite.status == InviteStatus.PENDING
    assert invite.reschedule_count == 0
    assert invite.message == 'Best of three?'
    assert invite.expires_at == NOW + timedelta(hours=72)
    assert notifier.kinds() == [EventKind.INVITE_SENT]
    assert db.query(SlotClaim).count() == 0


def test_send_invite_rejects_busy_players(db, alice, bob, carol) -> None:
    availability_service.create_window(db, bob.id, DAY, '15:00', '16:00')
    booking_service.create_booking(db, carol.id, bob.id, DAY, '15:00', '16:00')

    with pytest.raises(ConflictError) as exception_info:
        _send(db, alice, bob, start='15:30', end='16:30')

    assert exception_info.value.reason == ConflictReason.SLOT_TAKEN


def test_receiver_accepts_and_claims_the_time(db, alice, bob, notifier) -> None:
    invite = _send(db, alice, bob)

    with pytest.raises(InvalidStateTransition):
        invite_service.respond_to_invite(db, invite.id, alice.id, 'accepted', now=NOW)

    accepted = invite_service.respond_to_invite(db, invite.id, bob.id, ' Accepted ', now=NOW, notifier=notifier)

    assert accepted.status == InviteStatus.ACCEPTED
    assert conflict_detector.is_booked(db, alice.id, DAY, time(15), time(16))
    assert db.query(SlotClaim).filter(SlotClaim.invite_id == invite.id).count() == 8
    assert notifier.events[-1].kind == EventKind.INVITE_ACCEPTED
    assert notifier.events[-1].recipient_id == alice.id


def test_response_must_be_accept_or_decline(db, alice, bob) -> None:
    invite = _send(db, alice, bob)

    with pytest.raises(ValidationError):
        invite_service.respond_to_invite(db, invite.id, bob.id, 'maybe', now=NOW)


def test_reschedule_round_trip(db, alice, bob) -> None:
    invite = _send(db, alice, bob)

    invite_service.propose_reschedule(db, invite.id, bob.id, DAY, '17:00', '18:00', now=NOW)
    assert invite.status == InviteStatus.RESCHEDULED
    assert invite.reschedule_count == 1
    assert invite.proposed_by_id == bob.id

    # The proposer waits for the other player.
    with pytest.raises(InvalidStateTransition):
        invite_service.respond_to_invite(db, invite.id, bob.id, 'accepted', now=NOW)

    accepted = invite_service.respond_to_invite(db, invite.id, alice.id, 'accepted', now=NOW)

    assert accepted.status == InviteStatus.ACCEPTED
    assert (accepted.start_time, accepted.end_time) == (time(17), time(18))
    assert not accepted.has_proposal


def test_fourth_reschedule_hits_the_cap(db, alice, bob) -> None:
    invite = _send(db, alice, bob)
    proposals = [(bob, '16:00', '17:00'), (alice, '17:00', '18:00'), (bob, '18:00', '19:00')]
    for actor, start, end in proposals:
        invite_service.propose_reschedule(db, invite.id, actor.id, DAY, start, end, now=NOW)

    with pytest.raises(RescheduleLimitExceeded) as exception_info:
        invite_service.propose_reschedule(db, invite.id, alice.id, DAY, '19:00', '20:00', now=NOW)

    assert exception_info.value.limit == 3
    assert invite.reschedule_count == 3
    assert invite_service.available_actions(invite, alice.id, now=NOW) == ['accept', 'decline', 'cancel']
    assert invite_service.available_actions(invite, bob.id, now=NOW) == []

    declined = invite_service.respond_to_invite(db, invite.id, alice.id, 'declined', now=NOW)
    assert declined.status == InviteStatus.DECLINED


def test_available_actions_follow_the_turn(db, alice, bob, carol) -> None:
    invite = _send(db, alice, bob)

    assert invite_service.available_actions(invite, bob.id, now=NOW) == ['accept', 'decline', 'reschedule']
    assert invite_service.available_actions(invite, alice.id, now=NOW) == ['reschedule', 'cancel']
    assert invite_service.available_actions(invite, carol.id, now=NOW) == []


def test_reschedule_must_be_free_for_both_players(db, alice, bob, carol) -> None:
    invite = _send(db, alice, bob)
    availability_service.create_window(db, alice.id, DAY, '17:00', '18:00')
    booking_service.create_booking(db, carol.id, alice.id, DAY, '17:00', '18:00')

    with pytest.raises(ConflictError):
        invite_service.propose_reschedule(db, invite.id, bob.id, DAY, '17:00', '18:00', now=NOW)

    assert invite.reschedule_count == 0


def test_only_sender_cancels_and_reason_is_recorded(db, alice, bob, notifier) -> None:
    invite = _send(db, alice, bob)

    with pytest.raises(InvalidStateTransition):
        invite_service.cancel_invite(db, invite.id, bob.id, now=NOW)

    cancelled = invite_service.cancel_invite(db, invite.id, alice.id, '  Rain forecast ', now=NOW, notifier=notifier)

    assert cancelled.status == InviteStatus.CANCELLED
    assert cancelled.cancellation_reason == 'Rain forecast'
    assert cancelled.cancelled_by_id == alice.id
    assert cancelled.cancelled_at == NOW
    assert notifier.events[-1].payload['reason'] == 'Rain forecast'


@pytest.mark.parametrize('finish', ['accepted', 'declined', 'cancelled'])
def test_closed_invites_reject_every_operation(db, alice, bob, finish) -> None:
    invite = _send(db, alice, bob)
    if finish == 'cancelled':
        invite_service.cancel_invite(db, invite.id, alice.id, now=NOW)
    else:
        invite_service.respond_to_invite(db, invite.id, bob.id, finish, now=NOW)

    attempts = [
        lambda: invite_service.respond_to_invite(db, invite.id, bob.id, 'accepted', now=NOW),
        lambda: invite_service.respond_to_invite(db, invite.id, bob.id, 'declined', now=NOW),
        lambda: invite_service.propose_reschedule(db, invite.id, bob.id, DAY, '17:00', '18:00', now=NOW),
        lambda: invite_service.cancel_invite(db, invite.id, alice.id, now=NOW),
    ]
    for attempt in attempts:
        with pytest.raises(InvalidStateTransition) as exception_info:
            attempt()
        assert exception_info.value.current == finish


def test_cancelling_an_accepted_invite_is_not_allowed(db, alice, bob) -> None:
    invite = _send(db, alice, bob)
    invite_service.respond_to_invite(db, invite.id, bob.id, 'accepted', now=NOW)

    with pytest.raises(InvalidStateTransition):
        invite_service.cancel_invite(db, invite.id, alice.id, now=NOW)

    assert conflict_detector.is_booked(db, bob.id, DAY, time(15), time(16))


def test_accepting_after_expiry_marks_invite_expired(db, alice, bob, notifier) -> None:
    invite = _send(db, alice, bob)

    with pytest.raises(InvalidStateTransition) as exception_info:
        invite_service.respond_to_invite(
            db, invite.id, bob.id, 'accepted', now=NOW + timedelta(hours=73), notifier=notifier
        )

    assert exception_info.value.current == 'expired'
    assert db.get(Invite, invite.id).status == InviteStatus.EXPIRED
    assert notifier.kinds() == [EventKind.INVITE_EXPIRED]


def test_expire_pending_invites_sweeps_only_overdue(db, alice, bob, carol) -> None:
    overdue = _send(db, alice, bob)
    fresh = invite_service.send_invite(db, alice.id, carol.id, DAY, '09:00', '10:00', now=NOW + timedelta(hours=48))

    expired = invite_service.expire_pending_invites(db, now=NOW + timedelta(hours=80))

    assert expired == 1
    assert overdue.status == InviteStatus.EXPIRED
    assert fresh.status == InviteStatus.PENDING
    assert invite_service.expire_pending_invites(db, now=NOW + timedelta(hours=80)) == 0


def test_invite_queries(db, alice, bob, carol) -> None:
    to_bob = _send(db, alice, bob)
    to_carol = invite_service.send_invite(db, alice.id, carol.id, DAY, '09:00', '10:00', now=NOW)
    from_carol = invite_service.send_invite(db, carol.id, alice.id, DAY, '11:00', '12:00', now=NOW)
    invite_service.respond_to_invite(db, to_carol.id, carol.id, 'accepted', now=NOW)

    assert invite_service.pending_invites_for_user(db, bob.id) == [to_bob]
    assert invite_service.pending_invites_for_user(db, alice.id) == [from_carol]
    assert {invite.id for invite in invite_service.sent_invites_for_user(db, alice.id)} == {to_bob.id, to_carol.id}
    assert invite_service.accepted_invites_for_user(db, alice.id) == [to_carol]
    assert invite_service.get_invite(db, 999) is None


def test_overdue_invite_at_the_cap_expires_instead_of_hitting_the_limit(db, alice, bob) -> None:
    invite = _send(db, alice, bob)
    proposals = [(bob, '16:00', '17:00'), (alice, '17:00', '18:00'), (bob, '18:00', '19:00')]
    for actor, start, end in proposals:
        invite_service.propose_reschedule(db, invite.id, actor.id, DAY, start, end, now=NOW)

    with pytest.raises(InvalidStateTransition) as exception_info:
        invite_service.propose_reschedule(
            db, invite.id, alice.id, DAY, '19:00', '20:00', now=NOW + timedelta(hours=73)
        )

    assert exception_info.value.current == 'expired'
    assert db.get(Invite, invite.id).status == InviteStatus.EXPIRED


def test_invite_times_are_read_in_the_invite_zone(db, alice, bob, carol) -> None:
    availability_service.create_window(db, bob.id, DAY, '09:00', '10:00', timezone='America/Los_Angeles')
    booking_service.create_booking(db, carol.id, bob.id, DAY, '09:00', '10:00')

    with pytest.raises(ConflictError):
        _send(db, alice, bob, start='12:00', end='13:00', timezone='America/New_York')

    invite = _send(db, alice, bob, start='09:00', end='10:00', timezone='America/New_York')
    assert invite.timezone == 'America/New_York'
