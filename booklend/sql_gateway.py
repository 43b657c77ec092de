"""Relational gateway on Flask-SQLAlchemy.

Methods must run inside an application context.  Guarded transitions are
single transactions built from conditional UPDATE/DELETE statements, so the
database serializes competing writers on the same row.
"""

import functools
import logging
import time
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError

from .domain import RequestStatus
from .errors import Unavailable
from .gateway import Gateway
from .models import BookModel, BorrowRequestModel, NotificationModel, UserModel, db

logger = logging.getLogger(__name__)


# Retry decorator
def retry_db_operation(max_attempts=None, delay=None):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempts_allowed = max_attempts or current_app.config.get('DB_RETRY_ATTEMPTS', 3)
            base_delay = delay if delay is not None else current_app.config.get('DB_RETRY_DELAY', 1)
            attempts = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except OperationalError as e:
                    db.session.rollback()
                    attempts += 1
                    logger.error(f"Database operation {func.__name__} failed: {str(e)}")
                    if attempts >= attempts_allowed:
                        raise Unavailable('Storage is temporarily unavailable') from e
                    time.sleep(base_delay * attempts)
                    logger.debug(f"Retrying database operation ({attempts}/{attempts_allowed})")
        return wrapper
    return decorator


def _commit():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


class SqlGateway(Gateway):
    # users
    @retry_db_operation()
    def add_user(self, user):
        model = UserModel(
            email=user.email,
            display_name=user.display_name,
            password_hash=user.password_hash,
            registration_number=user.registration_number,
            department=user.department,
            created_at=user.created_at,
            last_login=user.last_login,
        )
        db.session.add(model)
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise ValueError(f'Email already registered: {user.email}') from e
        return model.to_record()

    @retry_db_operation()
    def get_user(self, user_id):
        model = db.session.get(UserModel, user_id)
        return model.to_record() if model else None

    @retry_db_operation()
    def find_user_by_email(self, email):
        model = UserModel.query.filter(db.func.lower(UserModel.email) == email.lower()).first()
        return model.to_record() if model else None

    @retry_db_operation()
    def update_user(self, user_id, display_name=None, last_login=None):
        model = db.session.get(UserModel, user_id)
        if model is None:
            return None
        if display_name:
            model.display_name = display_name
        if last_login:
            model.last_login = last_login
        _commit()
        return model.to_record()

    # books
    @retry_db_operation()
    def add_book(self, book):
        model = BookModel(
            title=book.title,
            author=book.author,
            genre=book.genre,
            description=book.description,
            condition=book.condition,
            owner_id=book.owner_id,
            created_at=book.created_at,
        )
        db.session.add(model)
        _commit()
        return model.to_record()

    @retry_db_operation()
    def get_book(self, book_id):
        model = db.session.get(BookModel, book_id)
        return model.to_record() if model else None

    def _books(self, *criteria):
        return [m.to_record() for m in BookModel.query.filter(*criteria).order_by(BookModel.id.desc()).all()]

    @retry_db_operation()
    def list_books(self):
        return self._books()

    @retry_db_operation()
    def list_books_by_owner(self, owner_id):
        return self._books(BookModel.owner_id == owner_id)

    @retry_db_operation()
    def list_books_by_borrower(self, borrower_id):
        return self._books(BookModel.borrower_id == borrower_id)

    @retry_db_operation()
    def list_books_on_loan(self):
        return self._books(BookModel.borrower_id.isnot(None))

    @retry_db_operation()
    def delete_book(self, book_id):
        try:
            db.session.execute(db.delete(BorrowRequestModel).where(BorrowRequestModel.book_id == book_id))
            deleted = db.session.execute(
                db.delete(BookModel).where(BookModel.id == book_id, BookModel.borrower_id.is_(None))
            ).rowcount
            if deleted != 1:
                db.session.rollback()
                return False
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return True

    @retry_db_operation()
    def end_loan(self, book_id, borrower_id, returned_at):
        try:
            updated = db.session.execute(
                db.update(BookModel)
                .where(BookModel.id == book_id, BookModel.borrower_id == borrower_id)
                .values(borrower_id=None, borrowed_date=None, due_date=None, return_date=returned_at)
            ).rowcount
            if updated != 1:
                db.session.rollback()
                return None
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return self.get_book(book_id)

    # borrow requests
    @retry_db_operation()
    def create_request(self, request):
        existing = BorrowRequestModel.query.filter_by(
            book_id=request.book_id,
            requester_id=request.requester_id,
            status=RequestStatus.PENDING.value,
        ).first()
        if existing:
            return None
        model = BorrowRequestModel(
            book_id=request.book_id,
            requester_id=request.requester_id,
            owner_id=request.owner_id,
            borrow_period_days=request.borrow_period_days,
            message=request.message,
            status=RequestStatus.PENDING.value,
            requested_at=request.requested_at,
        )
        db.session.add(model)
        try:
            db.session.commit()
        except IntegrityError:
            # lost the race against a concurrent request from the same user
            db.session.rollback()
            return None
        return model.to_record()

    @retry_db_operation()
    def get_request(self, request_id):
        model = db.session.get(BorrowRequestModel, request_id)
        return model.to_record() if model else None

    @retry_db_operation()
    def list_pending_requests_for_owner(self, owner_id):
        models = BorrowRequestModel.query.filter_by(
            owner_id=owner_id, status=RequestStatus.PENDING.value
        ).order_by(BorrowRequestModel.id.desc()).all()
        return [m.to_record() for m in models]

    @retry_db_operation()
    def list_requests_by_requester(self, requester_id):
        models = BorrowRequestModel.query.filter_by(
            requester_id=requester_id
        ).order_by(BorrowRequestModel.id.desc()).all()
        return [m.to_record() for m in models]

    def _answer(self, request_id, status, responded_at, owner_response):
        return db.session.execute(
            db.update(BorrowRequestModel)
            .where(BorrowRequestModel.id == request_id,
                   BorrowRequestModel.status == RequestStatus.PENDING.value)
            .values(status=status.value, responded_at=responded_at, owner_response=owner_response)
        ).rowcount

    @retry_db_operation()
    def approve_request(self, request_id, responded_at, owner_response=None):
        request = db.session.get(BorrowRequestModel, request_id)
        if request is None or request.status != RequestStatus.PENDING.value:
            return None
        book_id = request.book_id
        requester_id = request.requester_id
        period = request.borrow_period_days
        try:
            loaned = db.session.execute(
                db.update(BookModel)
                .where(BookModel.id == book_id, BookModel.borrower_id.is_(None))
                .values(
                    borrower_id=requester_id,
                    borrowed_date=responded_at,
                    due_date=responded_at + timedelta(days=period),
                    borrow_period_days=period,
                    return_date=None,
                )
            ).rowcount
            if loaned != 1 or self._answer(request_id, RequestStatus.APPROVED, responded_at, owner_response) != 1:
                db.session.rollback()
                return None
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return self.get_request(request_id), self.get_book(book_id)

    @retry_db_operation()
    def deny_request(self, request_id, responded_at, owner_response=None):
        try:
            if self._answer(request_id, RequestStatus.DENIED, responded_at, owner_response) != 1:
                db.session.rollback()
                return None
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return self.get_request(request_id)

    # notifications
    @retry_db_operation()
    def add_notification(self, notification):
        model = NotificationModel(
            recipient_id=notification.recipient_id,
            type=notification.type.value,
            message=notification.message,
            related_data=dict(notification.related_data),
            created_at=notification.created_at,
            is_read=notification.is_read,
            dedup_key=notification.dedup_key,
        )
        db.session.add(model)
        _commit()
        return model.to_record()

    @retry_db_operation()
    def list_notifications(self, recipient_id, limit=None):
        query = NotificationModel.query.filter_by(recipient_id=recipient_id).order_by(
            NotificationModel.created_at.desc(), NotificationModel.id.desc()
        )
        if limit:
            query = query.limit(limit)
        return [m.to_record() for m in query.all()]

    @retry_db_operation()
    def mark_notification_read(self, recipient_id, notification_id):
        updated = db.session.execute(
            db.update(NotificationModel)
            .where(NotificationModel.id == notification_id,
                   NotificationModel.recipient_id == recipient_id,
                   NotificationModel.is_read.is_(False))
            .values(is_read=True)
        ).rowcount
        _commit()
        return updated == 1

    @retry_db_operation()
    def has_notification(self, dedup_key, since):
        return db.session.query(
            NotificationModel.query.filter(
                NotificationModel.dedup_key == dedup_key,
                NotificationModel.created_at >= since,
            ).exists()
        ).scalar()
