from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Optional

MIN_BORROW_DAYS = 1
MAX_BORROW_DAYS = 30


class RequestStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    DENIED = 'denied'


class NotificationType(str, Enum):
    BORROW_REQUEST = 'borrow_request'
    REQUEST_APPROVED = 'request_approved'
    REQUEST_DENIED = 'request_denied'
    BOOK_RETURNED = 'book_returned'
    RETURN_CONFIRM = 'return_confirm'
    DUE_SOON = 'due_soon'
    OVERDUE = 'overdue'
    BORROWER_OVERDUE = 'borrower_overdue'


def _encode(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class Record:
    _datetime_fields = ()
    _enum_fields = {}

    def to_dict(self):
        return {key: _encode(value) for key, value in asdict(self).items()}

    @classmethod
    def from_dict(cls, raw):
        known = {f.name for f in fields(cls)}
        data = {key: value for key, value in raw.items() if key in known}
        for name in cls._datetime_fields:
            if data.get(name):
                data[name] = datetime.fromisoformat(data[name])
        for name, enum_cls in cls._enum_fields.items():
            if data.get(name) is not None:
                data[name] = enum_cls(data[name])
        return cls(**data)


@dataclass
class User(Record):
    email: str
    display_name: str
    password_hash: Optional[str] = None
    registration_number: Optional[str] = None
    department: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    id: Optional[int] = None

    _datetime_fields = ('created_at', 'last_login')

    def public_dict(self):
        data = self.to_dict()
        data.pop('password_hash', None)
        return data


@dataclass
class Book(Record):
    title: str
    author: str
    owner_id: int
    genre: Optional[str] = None
    description: Optional[str] = None
    condition: str = 'Good'
    borrower_id: Optional[int] = None
    borrowed_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    return_date: Optional[datetime] = None
    borrow_period_days: Optional[int] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    _datetime_fields = ('borrowed_date', 'due_date', 'return_date', 'created_at')

    @property
    def is_available(self):
        return self.borrower_id is None

    def to_dict(self):
        data = super().to_dict()
        data['is_available'] = self.is_available
        return data


@dataclass
class BorrowRequest(Record):
    book_id: int
    requester_id: int
    owner_id: int
    borrow_period_days: int
    message: Optional[str] = None
    status: RequestStatus = RequestStatus.PENDING
    owner_response: Optional[str] = None
    requested_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    id: Optional[int] = None

    _datetime_fields = ('requested_at', 'responded_at')
    _enum_fields = {'status': RequestStatus}

    @property
    def is_pending(self):
        return self.status == RequestStatus.PENDING


@dataclass
class Notification(Record):
    recipient_id: int
    type: NotificationType
    message: str
    related_data: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    is_read: bool = False
    dedup_key: Optional[str] = None
    id: Optional[int] = None

    _datetime_fields = ('created_at',)
    _enum_fields = {'type': NotificationType}


def reminder_key(book_id, kind, day):
    return f'{book_id}:{NotificationType(kind).value}:{day.isoformat()}'
