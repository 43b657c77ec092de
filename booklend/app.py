import logging
from datetime import datetime

from flask import Blueprint, Flask, current_app, jsonify, request, session
from flask_cors import CORS
from flask_session import Session
from werkzeug.exceptions import HTTPException

from .auth import authenticate, current_principal, login_required, register_user
from .config import Config
from .errors import LendingError
from .file_gateway import FileGateway
from .gateway import MemoryGateway
from .lifecycle import LendingService
from .models import db
from .notifications import NotificationDispatcher
from .realtime import create_socketio
from .reminders import ReminderScheduler
from .sessions import SessionRegistry
from .sql_gateway import SqlGateway

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)


class Lending:
    """Everything one app instance owns: storage, sessions, engine, scheduler."""

    def __init__(self, gateway, registry, dispatcher, service, reminders, clock):
        self.gateway = gateway
        self.registry = registry
        self.dispatcher = dispatcher
        self.service = service
        self.reminders = reminders
        self.clock = clock


def build_gateway(app):
    backend = app.config['STORAGE_BACKEND']
    if backend == 'sql':
        return SqlGateway()
    if backend == 'memory':
        return MemoryGateway()
    if backend == 'file':
        return FileGateway(app.config['DATA_DIR'])
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


def create_app(config=None, gateway=None, clock=None):
    app = Flask(__name__)
    app.config.from_object(config or Config)

    # Configure logging
    logging.basicConfig(level=app.config['LOG_LEVEL'], format='%(asctime)s - %(levelname)s - %(message)s')

    CORS(app, supports_credentials=True, origins=app.config['CORS_ORIGINS'])

    uses_sql = app.config['STORAGE_BACKEND'] == 'sql' or app.config['SESSION_TYPE'] == 'sqlalchemy'
    if uses_sql:
        if not app.config.get('SQLALCHEMY_DATABASE_URI'):
            raise ValueError("DATABASE_URL is not set in .env file")
        try:
            db.init_app(app)
        except Exception as e:
            logger.error(f"Failed to initialize database: {str(e)}")
            raise
        with app.app_context():
            db.create_all()
        logger.debug(f"Database connected: {app.config['SQLALCHEMY_DATABASE_URI']}")
    if app.config['SESSION_TYPE'] == 'sqlalchemy':
        app.config['SESSION_SQLALCHEMY'] = db
    Session(app)

    clock = clock or datetime.now
    gateway = gateway or build_gateway(app)
    registry = SessionRegistry()
    dispatcher = NotificationDispatcher(gateway, registry, clock=clock, limit=app.config['NOTIFICATION_LIMIT'])
    service = LendingService(gateway, dispatcher, clock=clock)
    reminders = ReminderScheduler(
        gateway, dispatcher, clock=clock,
        interval_minutes=app.config['REMINDER_INTERVAL_MINUTES'],
        app=app,
    )
    app.extensions['booklend'] = Lending(gateway, registry, dispatcher, service, reminders, clock)
    create_socketio(app, registry)

    app.register_blueprint(api)
    register_error_handlers(app)

    @app.before_request
    def log_request():
        logger.debug(f"Incoming request: {request.method} {request.path} {request.get_json(silent=True)}")

    if app.config['SCHEDULER_ENABLED']:
        reminders.start()
    return app


def register_error_handlers(app):
    @app.errorhandler(LendingError)
    def handle_lending_error(error):
        logger.debug(f"{error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'error': error.description, 'code': error.name.lower().replace(' ', '_')}), error.code

    @app.errorhandler(Exception)
    def handle_error(error):
        logger.error(f"Unhandled error: {str(error)}")
        return jsonify({'error': 'An unexpected error occurred', 'code': 'internal_error'}), 500


def _lending():
    return current_app.extensions['booklend']


def _json():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _flag(value):
    return str(value or '').lower() in ('1', 'true', 'yes', 'on')


def _user_name(user_id):
    if user_id is None:
        return None
    user = _lending().gateway.get_user(user_id)
    return user.display_name if user else 'Unknown'


def _book_dict(book):
    data = book.to_dict()
    data['owner_name'] = _user_name(book.owner_id)
    data['borrower_name'] = _user_name(book.borrower_id)
    return data


def _request_dict(borrow_request):
    data = borrow_request.to_dict()
    book = _lending().gateway.get_book(borrow_request.book_id)
    data['book_title'] = book.title if book else None
    data['book_author'] = book.author if book else None
    data['requester_name'] = _user_name(borrow_request.requester_id)
    return data


# Routes
@api.route('/')
def home():
    return jsonify({"message": "Campus Book Lending Backend"})


@api.route('/api/register', methods=['POST'])
def register():
    data = _json()
    lending = _lending()
    user = register_user(
        lending.gateway,
        data.get('name'),
        data.get('email'),
        data.get('password'),
        current_app.config['ALLOWED_EMAIL_DOMAINS'],
        lending.clock(),
    )
    return jsonify({'message': 'User registered successfully', 'user': user.public_dict()}), 201


@api.route('/api/login', methods=['POST'])
def login():
    data = _json()
    lending = _lending()
    user = authenticate(lending.gateway, data.get('email'), data.get('password'), lending.clock())
    session['user_id'] = user.id
    logger.debug(f"Session created for user: {user.email}, session['user_id']={session['user_id']}")
    return jsonify({'message': 'Login successful', 'user': user.public_dict()}), 200


@api.route('/api/logout', methods=['POST'])
def logout():
    session.pop('user_id', None)
    logger.debug("User logged out")
    return jsonify({'message': 'Logout successful'}), 200


@api.route('/api/user', methods=['GET'])
@login_required
def get_current_user():
    return jsonify(current_principal().public_dict()), 200


@api.route('/api/books', methods=['GET'])
@login_required
def get_books():
    books = _lending().service.list_available_books(
        viewer_id=current_principal().id,
        search=request.args.get('search', ''),
        include_unavailable=_flag(request.args.get('include_unavailable')),
    )
    logger.debug(f"Fetched {len(books)} books")
    return jsonify([_book_dict(b) for b in books]), 200


@api.route('/api/books', methods=['POST'])
@login_required
def add_book():
    data = _json()
    book = _lending().service.list_book(
        current_principal().id,
        data.get('title'),
        data.get('author'),
        genre=data.get('genre', data.get('category')),
        description=data.get('description'),
        condition=data.get('condition'),
    )
    return jsonify(_book_dict(book)), 201


@api.route('/api/my-books', methods=['GET'])
@login_required
def get_my_books():
    books = _lending().service.list_owned_books(current_principal().id)
    return jsonify([_book_dict(b) for b in books]), 200


@api.route('/api/borrowed-books', methods=['GET'])
@login_required
def get_borrowed_books():
    books = _lending().service.list_borrowed_books(current_principal().id)
    return jsonify([_book_dict(b) for b in books]), 200


@api.route('/api/books/<int:book_id>', methods=['DELETE'])
@login_required
def delete_book(book_id):
    _lending().service.delete_book(current_principal().id, book_id)
    return jsonify({'success': True, 'message': 'Book deleted successfully'}), 200


@api.route('/api/books/<int:book_id>/request-borrow', methods=['POST'])
@login_required
def request_borrow(book_id):
    data = _json()
    borrow_request = _lending().service.request_borrow(
        current_principal().id,
        book_id,
        data.get('borrow_period_days', data.get('borrowPeriodDays')),
        data.get('message'),
    )
    return jsonify({
        'message': 'Borrow request sent successfully',
        'request_id': borrow_request.id,
        'request': borrow_request.to_dict(),
    }), 201


@api.route('/api/books/<int:book_id>/return', methods=['POST'])
@login_required
def return_book(book_id):
    book = _lending().service.return_book(current_principal().id, book_id)
    return jsonify({'success': True, 'message': 'Book returned successfully', 'book': _book_dict(book)}), 200


@api.route('/api/borrow-requests', methods=['GET'])
@login_required
def get_borrow_requests():
    requests = _lending().service.list_pending_requests(current_principal().id)
    return jsonify([_request_dict(r) for r in requests]), 200


@api.route('/api/my-requests', methods=['GET'])
@login_required
def get_my_requests():
    requests = _lending().service.list_my_requests(current_principal().id)
    return jsonify([_request_dict(r) for r in requests]), 200


@api.route('/api/borrow-requests/<int:request_id>/respond', methods=['POST'])
@login_required
def respond_to_request(request_id):
    data = _json()
    borrow_request = _lending().service.respond_to_request(
        current_principal().id,
        request_id,
        data.get('decision', data.get('action')),
        data.get('response_text', data.get('response')),
    )
    return jsonify({
        'success': True,
        'message': f'Request {borrow_request.status.value} successfully',
        'request': borrow_request.to_dict(),
    }), 200


@api.route('/api/notifications', methods=['GET'])
@login_required
def get_notifications():
    notifications = _lending().dispatcher.list_notifications(current_principal().id)
    return jsonify([n.to_dict() for n in notifications]), 200


@api.route('/api/notifications/<int:notification_id>/read', methods=['PUT'])
@login_required
def mark_notification_read(notification_id):
    _lending().dispatcher.mark_read(current_principal().id, notification_id)
    return jsonify({'success': True, 'message': 'Notification marked as read'}), 200


if __name__ == '__main__':
    app = create_app()
    app.extensions['socketio'].run(app, allow_unsafe_werkzeug=True)
