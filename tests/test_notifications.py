from booklend.domain import NotificationType
from booklend.notifications import NotificationDispatcher
from booklend.sessions import SessionRegistry


def test_notify_persists_and_pushes_to_live_sessions(dispatcher, users, registry, emitter, gateway) -> None:
    registry.connect(users.bob.id, 'bob-1')
    registry.connect(users.bob.id, 'bob-2')

    note = dispatcher.notify(users.bob.id, NotificationType.REQUEST_APPROVED, 'Approved!', {'book_id': 1})

    assert note.id is not None
    assert not note.is_read
    assert [n.id for n in gateway.list_notifications(users.bob.id)] == [note.id]
    assert [p['id'] for p in emitter.events('notification', to='bob-1')] == [note.id]
    assert [p['id'] for p in emitter.events('notification', to='bob-2')] == [note.id]


def test_offline_recipient_keeps_unread_notification(dispatcher, users, emitter) -> None:
    note = dispatcher.notify(users.bob.id, 'request_denied', 'Denied.')

    assert emitter.sent == []
    [stored] = dispatcher.list_notifications(users.bob.id)
    assert stored.id == note.id
    assert not stored.is_read


def test_notification_is_stored_before_it_is_pushed(gateway, users, clock) -> None:
    seen_at_push = []

    def emit(event, payload, to=None):
        seen_at_push.append([n.id for n in gateway.list_notifications(users.bob.id)])

    registry = SessionRegistry(emit=emit)
    registry.connect(users.bob.id, 'bob-1')
    note = NotificationDispatcher(gateway, registry, clock=clock).notify(users.bob.id, 'overdue', 'Late')

    assert seen_at_push == [[note.id]]


def test_delivery_failure_is_not_an_error(gateway, users, clock) -> None:
    def emit(event, payload, to=None):
        raise ConnectionError('socket closed')

    registry = SessionRegistry(emit=emit)
    registry.connect(users.bob.id, 'bob-1')
    dispatcher = NotificationDispatcher(gateway, registry, clock=clock)

    note = dispatcher.notify(users.bob.id, 'book_returned', 'Returned')
    dispatcher.broadcast('book_updated', {'id': 1})

    assert [n.id for n in gateway.list_notifications(users.bob.id)] == [note.id]


def test_mark_read_is_idempotent(dispatcher, users, gateway) -> None:
    note = dispatcher.notify(users.bob.id, 'due_soon', 'Due soon')

    dispatcher.mark_read(users.bob.id, note.id)
    dispatcher.mark_read(users.bob.id, note.id)

    [stored] = gateway.list_notifications(users.bob.id)
    assert stored.is_read


def test_mark_read_ignores_other_users_and_unknown_ids(dispatcher, users, gateway) -> None:
    note = dispatcher.notify(users.bob.id, 'due_soon', 'Due soon')

    dispatcher.mark_read(users.carol.id, note.id)
    dispatcher.mark_read(users.bob.id, 12345)

    [stored] = gateway.list_notifications(users.bob.id)
    assert not stored.is_read


def test_list_is_newest_first_and_limited(gateway, registry, users, clock) -> None:
    dispatcher = NotificationDispatcher(gateway, registry, clock=clock, limit=3)
    for i in range(5):
        dispatcher.notify(users.alice.id, 'borrow_request', f'request {i}')
        clock.advance(minutes=1)

    messages = [n.message for n in dispatcher.list_notifications(users.alice.id)]

    assert messages == ['request 4', 'request 3', 'request 2']
