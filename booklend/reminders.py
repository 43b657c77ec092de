"""Due-date reminders for books on loan.

A scan looks at every loan and sends at most one notification per book,
kind and calendar day:

* ``due_soon`` to the borrower when the due date is 3, 1 or 0 days away;
* ``overdue`` to the borrower and ``borrower_overdue`` to the owner every day
  once the due date has passed.

Scans run on an APScheduler interval job but can be called directly with an
explicit ``now``.
"""

import logging
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler

from .domain import NotificationType, reminder_key

logger = logging.getLogger(__name__)

DUE_SOON_DAYS = (3, 1, 0)
JOB_ID = 'loan_reminders'


def _due_soon_message(title, days_left):
    if days_left == 0:
        return f'"{title}" is due today. Please return it on time.'
    if days_left == 1:
        return f'"{title}" is due tomorrow. Please return it on time.'
    return f'"{title}" is due in {days_left} days. Please return it on time.'


class ReminderScheduler:
    def __init__(self, gateway, dispatcher, clock=datetime.now, interval_minutes=30, app=None):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.clock = clock
        self.interval_minutes = interval_minutes
        self.app = app
        self.scheduler = None

    def _send_once(self, recipient_id, kind, book, message, now, extra=None):
        key = reminder_key(book.id, kind, now.date())
        midnight = datetime.combine(now.date(), datetime.min.time())
        if self.gateway.has_notification(key, since=midnight):
            return None
        related = {'book_id': book.id, 'book_title': book.title, 'due_date': book.due_date.isoformat()}
        related.update(extra or {})
        return self.dispatcher.notify(recipient_id, kind, message, related, dedup_key=key, created_at=now)

    def scan(self, now=None):
        now = now or self.clock()
        today = now.date()
        sent = []
        for book in self.gateway.list_books_on_loan():
            if book.due_date is None:
                continue
            if now > book.due_date:
                days_overdue = max((today - book.due_date.date()).days, 1)
                borrower_name = self._name(book.borrower_id)
                sent.append(self._send_once(
                    book.borrower_id, NotificationType.OVERDUE, book,
                    f'"{book.title}" is {days_overdue} day(s) overdue! Please return it immediately.',
                    now, {'days_overdue': days_overdue},
                ))
                sent.append(self._send_once(
                    book.owner_id, NotificationType.BORROWER_OVERDUE, book,
                    f'Your book "{book.title}" is {days_overdue} day(s) overdue with {borrower_name}.',
                    now, {'days_overdue': days_overdue, 'borrower_id': book.borrower_id},
                ))
                continue
            days_left = (book.due_date.date() - today).days
            if days_left in DUE_SOON_DAYS:
                sent.append(self._send_once(
                    book.borrower_id, NotificationType.DUE_SOON, book,
                    _due_soon_message(book.title, days_left),
                    now, {'days_left': days_left},
                ))
        sent = [n for n in sent if n is not None]
        logger.debug(f"Reminder scan completed: {len(sent)} notifications sent")
        return sent

    def _name(self, user_id):
        user = self.gateway.get_user(user_id)
        return user.display_name if user else 'the borrower'

    def run(self):
        if self.app is None:
            return self.scan()
        with self.app.app_context():
            return self.scan()

    def start(self):
        if self.scheduler is not None:
            return self.scheduler
        self.scheduler = BackgroundScheduler()
        self.scheduler.add_job(self.run, 'interval', minutes=self.interval_minutes, id=JOB_ID)
        self.scheduler.start()
        logger.debug(f"Reminder scheduler started: every {self.interval_minutes} minutes")
        return self.scheduler

    def shutdown(self):
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
