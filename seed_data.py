from datetime import datetime, timedelta

from booklend.app import create_app
from booklend.auth import extract_department, extract_registration_number, hash_password
from booklend.domain import Book, BorrowRequest, User
from booklend.models import db

app = create_app()
lending = app.extensions['booklend']

with app.app_context():
    # Reset the database
    if app.config['STORAGE_BACKEND'] == 'sql':
        db.drop_all()
        db.create_all()
        print("🔄 Database reset")

    gateway = lending.gateway
    now = datetime.now()

    # Insert Users
    users = [
        {"name": "Demo User", "email": "demo@giki.edu.pk", "password": "demo123"},
        {"name": "Student One", "email": "2020-CS-001@student.giki.edu.pk", "password": "student123"},
        {"name": "Student Two", "email": "2021-EE-042@student.giki.edu.pk", "password": "student123"},
    ]

    created = {}
    for u in users:
        existing = gateway.find_user_by_email(u["email"])
        if existing:
            created[u["email"]] = existing
            continue
        created[u["email"]] = gateway.add_user(User(
            email=u["email"],
            display_name=u["name"],
            password_hash=hash_password(u["password"]),
            registration_number=extract_registration_number(u["email"]),
            department=extract_department(u["email"]),
            created_at=now,
        ))
    print("✅ Users inserted")

    # Insert Books
    owner = created["demo@giki.edu.pk"]
    books = [
        {"title": "Introduction to Computer Science", "author": "John Doe", "genre": "Computer Science", "condition": "Good"},
        {"title": "Clean Code", "author": "Robert C. Martin", "genre": "Software", "condition": "Excellent"},
        {"title": "Signals and Systems", "author": "Alan V. Oppenheim", "genre": "Electrical Engineering", "condition": "Fair"},
    ]
    listed = [
        gateway.add_book(Book(owner_id=owner.id, created_at=now, **b))
        for b in books
    ]
    print("✅ Books inserted")

    # Insert a sample loan
    borrower = created["2020-CS-001@student.giki.edu.pk"]
    book = listed[0]
    request = gateway.create_request(BorrowRequest(
        book_id=book.id,
        requester_id=borrower.id,
        owner_id=owner.id,
        borrow_period_days=14,
        message="Need it for the midterm",
        requested_at=now - timedelta(days=12),
    ))
    if request and gateway.approve_request(request.id, now - timedelta(days=12), "Enjoy!"):
        print(f"✅ Loan inserted: {borrower.display_name} borrowed '{book.title}'")
    else:
        print("⚠️ Could not insert loan (book already on loan or request pending)")

    lending.reminders.shutdown()
