"""Persistence gateway for users, books, borrow requests and notifications.

Every method returns detached record copies. The guarded transitions
(create_request, approve_request, deny_request, end_loan, delete_book) are
atomic and return None or False when their precondition no longer holds.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import timedelta

from .domain import RequestStatus


class Gateway(ABC):
    # users
    @abstractmethod
    def add_user(self, user): ...

    @abstractmethod
    def get_user(self, user_id): ...

    @abstractmethod
    def find_user_by_email(self, email): ...

    @abstractmethod
    def update_user(self, user_id, display_name=None, last_login=None): ...

    # books
    @abstractmethod
    def add_book(self, book): ...

    @abstractmethod
    def get_book(self, book_id): ...

    @abstractmethod
    def list_books(self): ...

    @abstractmethod
    def list_books_by_owner(self, owner_id): ...

    @abstractmethod
    def list_books_by_borrower(self, borrower_id): ...

    @abstractmethod
    def list_books_on_loan(self): ...

    @abstractmethod
    def delete_book(self, book_id):
        """Delete a book that is not on loan, along with its borrow requests."""

    @abstractmethod
    def end_loan(self, book_id, borrower_id, returned_at): ...

    # borrow requests
    @abstractmethod
    def create_request(self, request): ...

    @abstractmethod
    def get_request(self, request_id): ...

    @abstractmethod
    def list_pending_requests_for_owner(self, owner_id): ...

    @abstractmethod
    def list_requests_by_requester(self, requester_id): ...

    @abstractmethod
    def approve_request(self, request_id, responded_at, owner_response=None):
        """Approve a pending request and start the loan; returns (request, book) or None."""

    @abstractmethod
    def deny_request(self, request_id, responded_at, owner_response=None): ...

    # notifications
    @abstractmethod
    def add_notification(self, notification): ...

    @abstractmethod
    def list_notifications(self, recipient_id, limit=None): ...

    @abstractmethod
    def mark_notification_read(self, recipient_id, notification_id): ...

    @abstractmethod
    def has_notification(self, dedup_key, since): ...


def _newest_first(notifications):
    return sorted(notifications, key=lambda n: (n.created_at, n.id), reverse=True)


class MemoryGateway(Gateway):
    """Dict-backed gateway; one re-entrant lock serializes every write."""

    def __init__(self):
        self._lock = threading.RLock()
        self._users = {}
        self._books = {}
        self._requests = {}
        self._notifications = {}
        self._ids = {
            'users': itertools.count(1),
            'books': itertools.count(1),
            'requests': itertools.count(1),
            'notifications': itertools.count(1),
        }

    def _next_id(self, kind):
        return next(self._ids[kind])

    def _changed(self):
        """Hook called after every committed write."""

    # users
    def add_user(self, user):
        with self._lock:
            if self._find_user_by_email(user.email):
                raise ValueError(f'Email already registered: {user.email}')
            stored = replace(user, id=self._next_id('users'))
            self._users[stored.id] = stored
            self._changed()
            return replace(stored)

    def get_user(self, user_id):
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user else None

    def _find_user_by_email(self, email):
        wanted = email.lower()
        return next((u for u in self._users.values() if u.email.lower() == wanted), None)

    def find_user_by_email(self, email):
        with self._lock:
            user = self._find_user_by_email(email)
            return replace(user) if user else None

    def update_user(self, user_id, display_name=None, last_login=None):
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            if display_name:
                user.display_name = display_name
            if last_login:
                user.last_login = last_login
            self._changed()
            return replace(user)

    # books
    def add_book(self, book):
        with self._lock:
            stored = replace(book, id=self._next_id('books'))
            self._books[stored.id] = stored
            self._changed()
            return replace(stored)

    def get_book(self, book_id):
        with self._lock:
            book = self._books.get(book_id)
            return replace(book) if book else None

    def _select_books(self, predicate):
        with self._lock:
            books = [replace(b) for b in self._books.values() if predicate(b)]
        return sorted(books, key=lambda b: b.id, reverse=True)

    def list_books(self):
        return self._select_books(lambda b: True)

    def list_books_by_owner(self, owner_id):
        return self._select_books(lambda b: b.owner_id == owner_id)

    def list_books_by_borrower(self, borrower_id):
        return self._select_books(lambda b: b.borrower_id == borrower_id)

    def list_books_on_loan(self):
        return self._select_books(lambda b: b.borrower_id is not None)

    def delete_book(self, book_id):
        with self._lock:
            book = self._books.get(book_id)
            if book is None or book.borrower_id is not None:
                return False
            del self._books[book_id]
            for request_id in [r.id for r in self._requests.values() if r.book_id == book_id]:
                del self._requests[request_id]
            self._changed()
            return True

    def end_loan(self, book_id, borrower_id, returned_at):
        with self._lock:
            book = self._books.get(book_id)
            if book is None or book.borrower_id is None or book.borrower_id != borrower_id:
                return None
            book.borrower_id = None
            book.borrowed_date = None
            book.due_date = None
            book.return_date = returned_at
            self._changed()
            return replace(book)

    # borrow requests
    def create_request(self, request):
        with self._lock:
            duplicate = any(
                r.book_id == request.book_id
                and r.requester_id == request.requester_id
                and r.is_pending
                for r in self._requests.values()
            )
            if duplicate:
                return None
            stored = replace(request, id=self._next_id('requests'), status=RequestStatus.PENDING)
            self._requests[stored.id] = stored
            self._changed()
            return replace(stored)

    def get_request(self, request_id):
        with self._lock:
            request = self._requests.get(request_id)
            return replace(request) if request else None

    def list_pending_requests_for_owner(self, owner_id):
        with self._lock:
            requests = [replace(r) for r in self._requests.values() if r.owner_id == owner_id and r.is_pending]
        return sorted(requests, key=lambda r: r.id, reverse=True)

    def list_requests_by_requester(self, requester_id):
        with self._lock:
            requests = [replace(r) for r in self._requests.values() if r.requester_id == requester_id]
        return sorted(requests, key=lambda r: r.id, reverse=True)

    def approve_request(self, request_id, responded_at, owner_response=None):
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or not request.is_pending:
                return None
            book = self._books.get(request.book_id)
            if book is None or book.borrower_id is not None:
                return None
            request.status = RequestStatus.APPROVED
            request.responded_at = responded_at
            request.owner_response = owner_response
            book.borrower_id = request.requester_id
            book.borrowed_date = responded_at
            book.due_date = responded_at + timedelta(days=request.borrow_period_days)
            book.borrow_period_days = request.borrow_period_days
            book.return_date = None
            self._changed()
            return replace(request), replace(book)

    def deny_request(self, request_id, responded_at, owner_response=None):
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or not request.is_pending:
                return None
            request.status = RequestStatus.DENIED
            request.responded_at = responded_at
            request.owner_response = owner_response
            self._changed()
            return replace(request)

    # notifications
    def add_notification(self, notification):
        with self._lock:
            stored = replace(notification, id=self._next_id('notifications'),
                             related_data=dict(notification.related_data))
            self._notifications[stored.id] = stored
            self._changed()
            return replace(stored, related_data=dict(stored.related_data))

    def list_notifications(self, recipient_id, limit=None):
        with self._lock:
            mine = [replace(n, related_data=dict(n.related_data))
                    for n in self._notifications.values() if n.recipient_id == recipient_id]
        mine = _newest_first(mine)
        return mine[:limit] if limit else mine

    def mark_notification_read(self, recipient_id, notification_id):
        with self._lock:
            notification = self._notifications.get(notification_id)
            if notification is None or notification.recipient_id != recipient_id or notification.is_read:
                return False
            notification.is_read = True
            self._changed()
            return True

    def has_notification(self, dedup_key, since):
        with self._lock:
            return any(
                n.dedup_key == dedup_key and n.created_at >= since
                for n in self._notifications.values()
            )
