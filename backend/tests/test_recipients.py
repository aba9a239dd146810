from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from community_messaging.core.errors import NotARecipient, NotFound, PermissionDenied, ValidationError
from community_messaging.crud import recipients as ledger
from community_messaging.crud.messages import create_message, send_message
from community_messaging.crud.recipients import (
    BroadcastTarget,
    RoleTarget,
    SegmentTarget,
    UserTarget,
)
from community_messaging.db.session import SessionLocal
from community_messaging.models.message import MessageType
from community_messaging.models.message_recipient import MessageRecipient, RecipientStatus
from community_messaging.models.user import UserRole


def _row_count(db, message_id):
    return db.scalar(
        select(func.count()).select_from(MessageRecipient).where(MessageRecipient.message_id == message_id)
    )


@pytest.mark.parametrize("raw,expected", [
    ("7", UserTarget(7)),
    (7, UserTarget(7)),
    ("all", BroadcastTarget()),
    ("admin", RoleTarget("admin")),
    ("registered", RoleTarget("registered")),
    ("badge_holders", RoleTarget("badge_holders")),
    ("template:new_paid_users", SegmentTarget("new_paid_users")),
])
def test_parse_target(raw, expected):
    assert ledger.parse_target(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "everyone", "template:vip", "-3", "0", "²", "٣", "9" * 25])
def test_parse_target_rejects_unknown(raw):
    with pytest.raises(ValidationError):
        ledger.parse_target(raw)


def test_non_admin_may_only_target_admins(alice):
    ledger.authorize_target(alice, RoleTarget("admin"))
    for target in (UserTarget(1), BroadcastTarget(), RoleTarget("registered"), SegmentTarget("badge_holders")):
        with pytest.raises(PermissionDenied):
            ledger.authorize_target(alice, target)


def test_registered_broadcast_reaches_paid_members_only(db, admin, make_user):
    paid_a = make_user(role=UserRole.PAID)
    paid_b = make_user(role=UserRole.PAID)
    make_user(role=UserRole.REGISTERED)
    make_user(role=UserRole.GUEST)

    resolved = ledger.resolve_recipients(db, RoleTarget("registered"), admin.id)

    assert resolved.message_type == MessageType.REGISTERED
    assert resolved.target_role == "registered"
    assert resolved.user_ids == (paid_a.id, paid_b.id)


def test_badge_holder_broadcast_uses_badge_flag(db, admin, make_user):
    holder = make_user(role=UserRole.REGISTERED, badge=True)
    make_user(role=UserRole.PAID)

    resolved = ledger.resolve_recipients(db, RoleTarget("badge_holders"), admin.id)
    assert resolved.user_ids == (holder.id,)


def test_broadcast_excludes_sender(db, admin, alice, bob):
    resolved = ledger.resolve_recipients(db, BroadcastTarget(), admin.id)

    assert resolved.message_type == MessageType.ALL
    assert admin.id not in resolved.user_ids
    assert set(resolved.user_ids) == {alice.id, bob.id}


def test_admin_role_excludes_sending_admin(db, make_user):
    first = make_user("root1", role=UserRole.ADMIN)
    second = make_user("root2", role=UserRole.ADMIN)

    resolved = ledger.resolve_recipients(db, RoleTarget("admin"), first.id)
    assert resolved.user_ids == (second.id,)


def test_new_paid_users_segment_skips_old_accounts(db, admin, make_user):
    fresh = make_user(role=UserRole.PAID)
    veteran = make_user(role=UserRole.PAID)
    veteran.created_at = datetime.utcnow() - timedelta(days=90)
    db.commit()

    resolved = ledger.resolve_recipients(db, SegmentTarget("new_paid_users"), admin.id)

    assert resolved.message_type == "template_new_paid_users"
    assert resolved.user_ids == (fresh.id,)


def test_direct_target_validation(db, alice):
    with pytest.raises(ValidationError, match="yourself"):
        ledger.resolve_recipients(db, UserTarget(alice.id), alice.id)
    with pytest.raises(ValidationError, match="Invalid recipient"):
        ledger.resolve_recipients(db, UserTarget(9999), alice.id)


def test_fan_out_is_idempotent(db, admin, alice, bob):
    msg = create_message(db, admin.id, "Hello", "Body")

    first = ledger.fan_out(db, msg.id, [alice.id, bob.id, alice.id])
    second = ledger.fan_out(db, msg.id, [alice.id, bob.id])
    db.commit()

    assert [r.recipient_id for r in first] == [alice.id, bob.id]
    assert second == []
    assert _row_count(db, msg.id) == 2
    assert all(r.status == RecipientStatus.DELIVERED for r in ledger.recipients_of(db, msg.id))


def test_group_membership_is_snapshotted_at_send(db, admin, alice, make_user):
    result = send_message(db, admin, RoleTarget("registered"), "News", "Hello paid members")
    assert [r.recipient_id for r in result.recipients] == [alice.id]

    late = make_user(role=UserRole.PAID)

    assert not ledger.is_recipient(db, result.message.id, late.id)
    assert [r.recipient_id for r in ledger.recipients_of(db, result.message.id)] == [alice.id]


def test_mark_read_sets_read_at_once(db, admin, alice):
    result = send_message(db, admin, UserTarget(alice.id), "Hi", "There")
    message_id = result.message.id

    entry = ledger.mark_read(db, message_id, alice.id)
    assert entry.status == RecipientStatus.READ
    first_read_at = entry.read_at
    assert first_read_at is not None

    again = ledger.mark_read(db, message_id, alice.id)
    assert again.read_at == first_read_at


def test_mark_read_from_two_sessions_keeps_first_read_at(db, admin, alice, monkeypatch):
    message_id = send_message(db, admin, UserTarget(alice.id), "Hi", "There").message.id
    clock = [datetime(2026, 3, 1, 9, 0)]

    class FrozenDatetime(datetime):
        @classmethod
        def utcnow(cls):
            return clock[0]

    monkeypatch.setattr(ledger, "datetime", FrozenDatetime)

    other = SessionLocal()
    try:
        # both sessions saw the delivery unread before either marked it
        assert ledger.get_entry(db, message_id, alice.id).read_at is None
        assert ledger.get_entry(other, message_id, alice.id).read_at is None

        first = ledger.mark_read(db, message_id, alice.id).read_at
        clock[0] += timedelta(minutes=5)
        second = ledger.mark_read(other, message_id, alice.id).read_at
    finally:
        other.close()

    assert first == second == datetime(2026, 3, 1, 9, 0)
    db.expire_all()
    rows = ledger.recipients_of(db, message_id)
    assert [(r.recipient_id, r.read_at, r.status) for r in rows] == [
        (alice.id, datetime(2026, 3, 1, 9, 0), RecipientStatus.READ),
    ]


def test_status_expression_filters_in_sql(db, admin, alice, bob):
    result = send_message(db, admin, BroadcastTarget(), "Hi", "All")
    ledger.mark_read(db, result.message.id, alice.id)

    read_ids = db.scalars(
        select(MessageRecipient.recipient_id).where(MessageRecipient.status == RecipientStatus.READ)
    ).all()
    assert read_ids == [alice.id]


def test_mark_read_errors(db, admin, alice, bob):
    result = send_message(db, admin, UserTarget(alice.id), "Hi", "There")

    with pytest.raises(NotARecipient):
        ledger.mark_read(db, result.message.id, bob.id)
    # the sender holds no ledger row either
    with pytest.raises(NotARecipient):
        ledger.mark_read(db, result.message.id, admin.id)
    with pytest.raises(NotFound):
        ledger.mark_read(db, 424242, alice.id)


def test_mark_all_read(db, admin, alice, bob):
    send_message(db, admin, UserTarget(alice.id), "One", "1")
    send_message(db, admin, UserTarget(alice.id), "Two", "2")
    send_message(db, admin, UserTarget(bob.id), "Three", "3")

    assert ledger.mark_all_read(db, alice.id) == 2
    assert ledger.mark_all_read(db, alice.id) == 0
    assert ledger.mark_all_read(db, bob.id) == 1
