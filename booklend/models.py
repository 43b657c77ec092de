from flask_sqlalchemy import SQLAlchemy

from .domain import Book, BorrowRequest, Notification, NotificationType, RequestStatus, User

db = SQLAlchemy()


class UserModel(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    display_name = db.Column(db.String(255), nullable=False)
    password_hash = db.Column(db.String(255))
    registration_number = db.Column(db.String(50))
    department = db.Column(db.String(100))
    created_at = db.Column(db.DateTime)
    last_login = db.Column(db.DateTime)

    def to_record(self):
        return User(
            id=self.id,
            email=self.email,
            display_name=self.display_name,
            password_hash=self.password_hash,
            registration_number=self.registration_number,
            department=self.department,
            created_at=self.created_at,
            last_login=self.last_login,
        )


class BookModel(db.Model):
    __tablename__ = 'books'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(500), nullable=False)
    author = db.Column(db.String(255), nullable=False)
    genre = db.Column(db.String(100))
    description = db.Column(db.Text)
    condition = db.Column(db.String(50), default='Good')
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    borrower_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True)
    borrowed_date = db.Column(db.DateTime)
    due_date = db.Column(db.DateTime)
    return_date = db.Column(db.DateTime)
    borrow_period_days = db.Column(db.Integer)
    created_at = db.Column(db.DateTime)
    requests = db.relationship('BorrowRequestModel', backref='book', cascade='all, delete-orphan')

    def to_record(self):
        return Book(
            id=self.id,
            title=self.title,
            author=self.author,
            genre=self.genre,
            description=self.description,
            condition=self.condition,
            owner_id=self.owner_id,
            borrower_id=self.borrower_id,
            borrowed_date=self.borrowed_date,
            due_date=self.due_date,
            return_date=self.return_date,
            borrow_period_days=self.borrow_period_days,
            created_at=self.created_at,
        )


class BorrowRequestModel(db.Model):
    __tablename__ = 'borrow_requests'
    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey('books.id', ondelete='CASCADE'), nullable=False)
    requester_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    borrow_period_days = db.Column(db.Integer, nullable=False)
    message = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default=RequestStatus.PENDING.value, index=True)
    owner_response = db.Column(db.Text)
    requested_at = db.Column(db.DateTime)
    responded_at = db.Column(db.DateTime)

    # One pending request per (book, requester); answered requests may repeat.
    __table_args__ = (
        db.Index(
            'uq_pending_borrow_request', 'book_id', 'requester_id',
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
    )

    def to_record(self):
        return BorrowRequest(
            id=self.id,
            book_id=self.book_id,
            requester_id=self.requester_id,
            owner_id=self.owner_id,
            borrow_period_days=self.borrow_period_days,
            message=self.message,
            status=RequestStatus(self.status),
            owner_response=self.owner_response,
            requested_at=self.requested_at,
            responded_at=self.responded_at,
        )


class NotificationModel(db.Model):
    __tablename__ = 'notifications'
    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    type = db.Column(db.String(50), nullable=False)
    message = db.Column(db.Text, nullable=False)
    related_data = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    dedup_key = db.Column(db.String(120), index=True)

    __table_args__ = (
        db.Index('ix_notifications_recipient_read', 'recipient_id', 'is_read'),
    )

    def to_record(self):
        return Notification(
            id=self.id,
            recipient_id=self.recipient_id,
            type=NotificationType(self.type),
            message=self.message,
            related_data=dict(self.related_data or {}),
            created_at=self.created_at,
            is_read=self.is_read,
            dedup_key=self.dedup_key,
        )
