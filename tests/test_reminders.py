from datetime import timedelta

import pytest

from booklend.reminders import JOB_ID


@pytest.fixture
def loan(service, users):
    def start(days):
        book = service.list_book(users.alice.id, 'Clean Code', 'Robert Martin')
        request = service.request_borrow(users.bob.id, book.id, days)
        service.respond_to_request(users.alice.id, request.id, 'approved')
        return book
    return start


def test_due_in_three_days_sends_one_reminder(loan, reminders, users, notes) -> None:
    book = loan(3)

    sent = reminders.scan()

    assert [n.type.value for n in sent] == ['due_soon']
    [note] = notes(users.bob, 'due_soon')
    assert note.related_data['book_id'] == book.id
    assert note.related_data['days_left'] == 3
    assert 'due in 3 days' in note.message


def test_rescanning_same_day_does_not_duplicate(loan, reminders, clock, users, notes) -> None:
    loan(1)

    reminders.scan()
    clock.advance(minutes=30)
    again = reminders.scan()
    clock.advance(hours=8)
    reminders.scan()

    assert again == []
    assert len(notes(users.bob, 'due_soon')) == 1


def test_next_day_gets_its_own_reminder(loan, reminders, clock, users, notes) -> None:
    loan(3)

    reminders.scan()
    clock.advance(days=1)
    assert reminders.scan() == []  # two days left
    clock.advance(days=1)
    reminders.scan()
    clock.advance(days=1)
    reminders.scan()

    assert sorted(n.related_data['days_left'] for n in notes(users.bob, 'due_soon')) == [0, 1, 3]


def test_no_reminder_outside_the_window(loan, reminders, users, notes) -> None:
    loan(10)

    assert reminders.scan() == []
    assert notes(users.bob, 'due_soon') == []


def test_overdue_notifies_borrower_and_owner_once_per_day(loan, reminders, clock, users, notes) -> None:
    loan(2)
    clock.advance(days=3)

    sent = reminders.scan()
    reminders.scan(clock() + timedelta(hours=1))

    assert sorted(n.type.value for n in sent) == ['borrower_overdue', 'overdue']
    [overdue] = notes(users.bob, 'overdue')
    [owner_note] = notes(users.alice, 'borrower_overdue')
    assert overdue.related_data['days_overdue'] == 1
    assert 'overdue with Bob' in owner_note.message

    clock.advance(days=1)
    reminders.scan()
    assert len(notes(users.bob, 'overdue')) == 2
    assert len(notes(users.alice, 'borrower_overdue')) == 2


def test_returned_books_get_no_reminders(loan, service, reminders, users) -> None:
    book = loan(1)
    service.return_book(users.bob.id, book.id)

    assert reminders.scan() == []


def test_run_scans_without_app(loan, reminders) -> None:
    loan(1)

    assert [n.type.value for n in reminders.run()] == ['due_soon']


def test_scheduler_registers_interval_job(reminders) -> None:
    scheduler = reminders.start()
    try:
        job = scheduler.get_job(JOB_ID)
        assert job is not None
        assert job.trigger.interval == timedelta(minutes=30)
        assert reminders.start() is scheduler
    finally:
        reminders.shutdown()
    assert reminders.scheduler is None


def test_explicit_scan_time_dedups_within_its_own_day(loan, reminders, clock, users, notes) -> None:
    loan(4)
    tomorrow = clock() + timedelta(days=1)

    first = reminders.scan(tomorrow)
    second = reminders.scan(tomorrow + timedelta(hours=2))

    assert [n.related_data['days_left'] for n in first] == [3]
    assert second == []
    [note] = notes(users.bob, 'due_soon')
    assert note.created_at == tomorrow
