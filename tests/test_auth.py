from datetime import datetime

import pytest

from booklend.auth import (
    authenticate,
    check_password,
    extract_department,
    extract_registration_number,
    hash_password,
    is_allowed_email,
    register_user,
)
from booklend.errors import Conflict, Forbidden, Unauthenticated, ValidationError

DOMAINS = ['giki.edu.pk', 'student.giki.edu.pk']
NOW = datetime(2025, 3, 10, 9, 0)


def test_registration_details_come_from_email() -> None:
    assert extract_registration_number('2020-CS-001@student.giki.edu.pk') == '2020-CS-001'
    assert extract_department('2020-cs-001@student.giki.edu.pk') == 'Computer Science'
    assert extract_department('2019-XYZ-7@student.giki.edu.pk') == 'Unknown'
    assert extract_registration_number('demo@giki.edu.pk') is None
    assert extract_department('demo@giki.edu.pk') == 'Unknown'


def test_allowed_email_domains() -> None:
    assert is_allowed_email('demo@giki.edu.pk', DOMAINS)
    assert is_allowed_email('2020-CS-001@Student.GIKI.edu.pk', DOMAINS)
    assert not is_allowed_email('someone@gmail.com', DOMAINS)
    assert not is_allowed_email('giki.edu.pk', DOMAINS)
    assert not is_allowed_email('evil@notgiki.edu.pk', DOMAINS)


def test_password_hashing() -> None:
    hashed = hash_password('s3cret')

    assert hashed != 's3cret'
    assert check_password('s3cret', hashed)
    assert not check_password('wrong', hashed)
    assert not check_password('s3cret', None)


def test_register_and_authenticate(gateway) -> None:
    user = register_user(gateway, 'Bob', '2020-CS-001@student.giki.edu.pk', 'pw', DOMAINS, NOW)

    assert user.registration_number == '2020-CS-001'
    assert user.department == 'Computer Science'
    assert authenticate(gateway, '2020-cs-001@student.giki.edu.pk', 'pw', NOW).id == user.id

    with pytest.raises(Unauthenticated):
        authenticate(gateway, user.email, 'nope', NOW)
    with pytest.raises(Unauthenticated):
        authenticate(gateway, 'ghost@giki.edu.pk', 'pw', NOW)
    with pytest.raises(ValidationError):
        authenticate(gateway, user.email, '', NOW)


def test_register_rejections(gateway) -> None:
    register_user(gateway, 'Alice', 'alice@giki.edu.pk', 'pw', DOMAINS, NOW)

    with pytest.raises(Conflict):
        register_user(gateway, 'Alice Again', 'ALICE@giki.edu.pk', 'pw', DOMAINS, NOW)
    with pytest.raises(Forbidden):
        register_user(gateway, 'Mallory', 'mallory@gmail.com', 'pw', DOMAINS, NOW)
    with pytest.raises(ValidationError):
        register_user(gateway, '', 'x@giki.edu.pk', 'pw', DOMAINS, NOW)
