import pytest

from community_messaging.core.errors import NotFound
from community_messaging.crud.messages import reply_to_message, send_message
from community_messaging.crud.recipients import BroadcastTarget, RoleTarget, UserTarget, mark_read
from community_messaging.crud.threads import build_inbox, build_thread, can_view


def test_reply_to_reply_points_at_root(db, admin, alice):
    root = send_message(db, admin, UserTarget(alice.id), "Topic", "Start").message
    first = reply_to_message(db, alice, root.id, "First answer").message
    second = reply_to_message(db, admin, first.id, "Answer to the answer").message

    assert first.in_reply_to == root.id
    assert second.in_reply_to == root.id


def test_build_thread_from_root_or_reply(db, admin, alice):
    root = send_message(db, admin, UserTarget(alice.id), "Topic", "Start").message
    r1 = reply_to_message(db, alice, root.id, "one").message
    r2 = reply_to_message(db, admin, root.id, "two").message

    thread = build_thread(db, root.id)
    assert thread.root.id == root.id
    assert [r.id for r in thread.replies] == [r2.id, r1.id]

    via_reply = build_thread(db, r1.id)
    assert via_reply.root.id == root.id
    assert [r.id for r in via_reply.replies] == [r2.id, r1.id]


def test_build_thread_missing(db):
    with pytest.raises(NotFound):
        build_thread(db, 999)


def test_inbox_orders_by_root_not_latest_reply(db, admin, alice):
    first = send_message(db, admin, UserTarget(alice.id), "First", "a").message
    second = send_message(db, admin, UserTarget(alice.id), "Second", "b").message
    reply_to_message(db, alice, first.id, "late reply")

    inbox = build_inbox(db, alice.id)

    assert [t.message.id for t in inbox] == [second.id, first.id]
    assert len(inbox[1].replies) == 1
    assert inbox[0].replies == []


def test_inbox_includes_sent_threads_and_unread_flag(db, admin, alice, bob):
    to_admin = send_message(db, alice, RoleTarget("admin"), "Question", "Help?").message
    from_admin = send_message(db, admin, UserTarget(alice.id), "Notice", "FYI").message
    send_message(db, admin, UserTarget(bob.id), "Private", "Not for alice")

    inbox = {t.message.id: t for t in build_inbox(db, alice.id)}
    assert set(inbox) == {to_admin.id, from_admin.id}
    assert inbox[from_admin.id].unread is True
    assert inbox[to_admin.id].unread is False

    mark_read(db, from_admin.id, alice.id)
    inbox = {t.message.id: t for t in build_inbox(db, alice.id)}
    assert inbox[from_admin.id].unread is False

    # an unread reply makes the whole thread unread
    reply_to_message(db, admin, to_admin.id, "Answer")
    inbox = {t.message.id: t for t in build_inbox(db, alice.id)}
    assert inbox[to_admin.id].unread is True


def test_inbox_empty_for_new_user(db, make_user):
    assert build_inbox(db, make_user().id) == []


def test_can_view(db, admin, alice, bob, make_user):
    outsider = make_user()
    root = send_message(db, admin, UserTarget(alice.id), "Topic", "Start").message
    reply = reply_to_message(db, alice, root.id, "Reply").message

    assert can_view(db, root, admin)
    assert can_view(db, root, alice)
    assert can_view(db, reply, alice)
    assert not can_view(db, root, bob)
    assert not can_view(db, reply, outsider)


def test_can_view_thread_participant_via_reply(db, admin, alice, make_user):
    root = send_message(db, admin, RoleTarget("registered"), "Poll", "Vote").message

    # joined after the root went out, so only the reply reaches them
    late = make_user(role="paid")
    reply = reply_to_message(db, admin, root.id, "Reminder").message

    assert {r.recipient_id for r in reply.recipients} == {alice.id, late.id}
    assert can_view(db, root, late)
    assert can_view(db, reply, late)
    assert [t.message.id for t in build_inbox(db, late.id)] == [root.id]


def test_broadcast_reply_from_recipient_goes_to_sender_only(db, admin, alice, bob):
    root = send_message(db, admin, BroadcastTarget(), "Poll", "Vote").message
    reply = reply_to_message(db, alice, root.id, "Yes").message

    assert [r.recipient_id for r in reply.recipients] == [admin.id]
    # bob still sees the thread through the root
    assert can_view(db, reply, bob)
