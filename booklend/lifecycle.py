"""Borrow lifecycle: listing, requesting, approving, returning and deleting books.

A book is ``Available`` while it has no borrower, may collect any number of
pending requests, goes ``OnLoan`` when its owner approves one of them and
returns to ``Available`` when the borrower hands it back.  Only an available
book can be deleted.  Every transition reads and writes through the gateway;
the guarded writes themselves are atomic there.
"""

import logging
from datetime import datetime

from .domain import MAX_BORROW_DAYS, MIN_BORROW_DAYS, Book, BorrowRequest, NotificationType, RequestStatus
from .errors import Conflict, Forbidden, NotFound, ValidationError

logger = logging.getLogger(__name__)

DECISIONS = {
    'approve': RequestStatus.APPROVED,
    'approved': RequestStatus.APPROVED,
    'deny': RequestStatus.DENIED,
    'denied': RequestStatus.DENIED,
}


def clamp_period(value):
    """Coerce a borrow period to whole days within the allowed range."""
    if isinstance(value, bool) or value is None:
        raise ValidationError('Borrow period must be a whole number of days')
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError('Borrow period must be a whole number of days')
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Borrow period must be a whole number of days')
    return max(MIN_BORROW_DAYS, min(MAX_BORROW_DAYS, days))


def _clean(value):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError('Text fields must be strings')
    return value.strip() or None


class LendingService:
    def __init__(self, gateway, dispatcher, clock=datetime.now):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.clock = clock

    def _name(self, user_id):
        user = self.gateway.get_user(user_id)
        return user.display_name if user else 'Someone'

    def _book(self, book_id):
        book = self.gateway.get_book(book_id)
        if book is None:
            logger.debug(f"Book not found: book_id={book_id}")
            raise NotFound('Book not found')
        return book

    def _book_payload(self, book):
        data = book.to_dict()
        data['owner_name'] = self._name(book.owner_id)
        return data

    # Queries
    def list_available_books(self, viewer_id=None, search='', include_unavailable=False):
        needle = (search or '').strip().lower()
        books = []
        for book in self.gateway.list_books():
            if viewer_id is not None and book.owner_id == viewer_id:
                continue
            if not include_unavailable and not book.is_available:
                continue
            if needle and needle not in book.title.lower() and needle not in book.author.lower():
                continue
            books.append(book)
        return books

    def list_owned_books(self, owner_id):
        return self.gateway.list_books_by_owner(owner_id)

    def list_borrowed_books(self, borrower_id):
        return self.gateway.list_books_by_borrower(borrower_id)

    def list_pending_requests(self, owner_id):
        return self.gateway.list_pending_requests_for_owner(owner_id)

    def list_my_requests(self, requester_id):
        return self.gateway.list_requests_by_requester(requester_id)

    # Transitions
    def list_book(self, owner_id, title, author, genre=None, description=None, condition=None):
        title = _clean(title)
        author = _clean(author)
        if not title or not author:
            raise ValidationError('Title and author are required')
        book = self.gateway.add_book(Book(
            title=title,
            author=author,
            owner_id=owner_id,
            genre=_clean(genre),
            description=_clean(description),
            condition=_clean(condition) or 'Good',
            created_at=self.clock(),
        ))
        logger.debug(f"Book listed: {book.title} (book_id={book.id}) by user_id={owner_id}")
        self.dispatcher.broadcast('new_book', self._book_payload(book), exclude_user=owner_id)
        return book

    def request_borrow(self, requester_id, book_id, period_days, message=None):
        days = clamp_period(period_days)
        book = self._book(book_id)
        if book.owner_id == requester_id:
            raise Conflict('You cannot borrow your own book')
        if not book.is_available:
            raise Conflict('Book is not available')
        request = self.gateway.create_request(BorrowRequest(
            book_id=book.id,
            requester_id=requester_id,
            owner_id=book.owner_id,
            borrow_period_days=days,
            message=_clean(message),
            requested_at=self.clock(),
        ))
        if request is None:
            raise Conflict('You already have a pending request for this book')
        logger.debug(f"Borrow request {request.id}: book_id={book.id} by user_id={requester_id} for {days} days")

        requester_name = self._name(requester_id)
        self.dispatcher.notify(
            book.owner_id,
            NotificationType.BORROW_REQUEST,
            f'{requester_name} wants to borrow "{book.title}" for {days} days',
            {
                'request_id': request.id,
                'book_id': book.id,
                'book_title': book.title,
                'requester_id': requester_id,
                'requester_name': requester_name,
                'borrow_period_days': days,
                'message': request.message,
                'actions': ['approve', 'deny'],
            },
        )
        return request

    def respond_to_request(self, responder_id, request_id, decision, response_text=None):
        status = DECISIONS.get(str(decision).strip().lower()) if decision is not None else None
        if status is None:
            raise ValidationError("Decision must be 'approved' or 'denied'")
        request = self.gateway.get_request(request_id)
        if request is None:
            raise NotFound('Borrow request not found')
        if request.owner_id != responder_id:
            raise Forbidden('Only the book owner can respond to this request')
        if not request.is_pending:
            raise Conflict('Borrow request is no longer pending')
        response_text = _clean(response_text)
        now = self.clock()

        if status == RequestStatus.APPROVED:
            result = self.gateway.approve_request(request_id, now, response_text)
            if result is None:
                logger.debug(f"Approval of request {request_id} lost: book_id={request.book_id} not available")
                raise Conflict('Book is no longer available')
            request, book = result
            logger.debug(f"Request {request_id} approved; book_id={book.id} due {book.due_date}")
            self.dispatcher.notify(
                request.requester_id,
                NotificationType.REQUEST_APPROVED,
                f'Your request to borrow "{book.title}" has been approved! '
                f'Please return it by {book.due_date:%Y-%m-%d}.',
                {
                    'request_id': request.id,
                    'book_id': book.id,
                    'book_title': book.title,
                    'due_date': book.due_date.isoformat(),
                    'owner_response': response_text,
                },
            )
            self.dispatcher.broadcast('book_updated', self._book_payload(book))
            return request

        request = self.gateway.deny_request(request_id, now, response_text)
        if request is None:
            raise Conflict('Borrow request is no longer pending')
        book = self.gateway.get_book(request.book_id)
        title = book.title if book else 'the book'
        logger.debug(f"Request {request_id} denied")
        self.dispatcher.notify(
            request.requester_id,
            NotificationType.REQUEST_DENIED,
            f'Your request to borrow "{title}" has been denied.',
            {
                'request_id': request.id,
                'book_id': request.book_id,
                'book_title': title,
                'owner_response': response_text,
            },
        )
        return request

    def return_book(self, returner_id, book_id):
        book = self._book(book_id)
        if book.borrower_id != returner_id:
            raise Forbidden('Book is not borrowed by you')
        returned = self.gateway.end_loan(book_id, returner_id, self.clock())
        if returned is None:
            raise Forbidden('Book is not borrowed by you')
        logger.debug(f"Book returned: book_id={book_id} by user_id={returner_id}")

        borrower_name = self._name(returner_id)
        related = {'book_id': book_id, 'book_title': returned.title, 'borrower_id': returner_id}
        self.dispatcher.notify(
            returned.owner_id,
            NotificationType.BOOK_RETURNED,
            f'{borrower_name} has returned "{returned.title}"',
            dict(related, borrower_name=borrower_name),
        )
        self.dispatcher.notify(
            returner_id,
            NotificationType.RETURN_CONFIRM,
            f'You have returned "{returned.title}". Thank you!',
            related,
        )
        self.dispatcher.broadcast('book_updated', self._book_payload(returned))
        return returned

    def delete_book(self, owner_id, book_id):
        book = self._book(book_id)
        if book.owner_id != owner_id:
            raise Forbidden('Only the owner can delete this book')
        if not book.is_available:
            raise Conflict('Book is on loan and must be returned before it can be deleted')
        if not self.gateway.delete_book(book_id):
            raise Conflict('Book is on loan and must be returned before it can be deleted')
        logger.debug(f"Book deleted: book_id={book_id}")
        self.dispatcher.broadcast('book_deleted', {'id': book_id})
