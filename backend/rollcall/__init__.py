"""Rollcall attendance engine - Application Factory."""
import logging
import os
from datetime import date, time

from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
limiter = Limiter(key_func=get_remote_address)


def create_app(config_name: str = None) -> Flask:
    """Application factory pattern."""
    app = Flask(__name__)

    # Load configuration
    from config import get_config
    config_class = get_config(config_name)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # Configure CORS
    CORS(app, origins=app.config.get('CORS_ORIGINS', ["*"]))

    # Setup logging
    setup_logging(app)

    # Setup database
    setup_database(app)

    # Attendance engine (timers, token codec, event fan-out)
    from rollcall.engine import AttendanceEngine, get_engine
    AttendanceEngine(app)

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Add CLI commands
    register_commands(app)

    # Add health check
    @app.route('/health')
    def health_check():
        return jsonify({
            'status': 'healthy',
            'service': 'Rollcall Attendance Engine',
            'version': '1.0.0',
            'rotating_sessions': len(get_engine().rotation.active_sessions())
        })

    return app


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""
    from rollcall.api.auth import auth_bp
    from rollcall.api.sessions import sessions_bp, classes_bp
    from rollcall.api.attendance import attendance_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(sessions_bp, url_prefix='/api/sessions')
    app.register_blueprint(classes_bp, url_prefix='/api/classes')
    app.register_blueprint(attendance_bp, url_prefix='/api/attendance')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from werkzeug.exceptions import HTTPException

    from rollcall.exceptions import AttendanceError
    from rollcall.utils.helpers import handle_error

    @app.errorhandler(AttendanceError)
    def attendance_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.exception('Unhandled error: %s', error)
        return handle_error('Internal server error', 500)

    @app.errorhandler(HTTPException)
    def handle_exception(e):
        return handle_error(e, e.code)

    # JWT error handlers
    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return jsonify({
            'error': True,
            'message': 'Token has expired',
            'status_code': 401
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Invalid token',
            'status_code': 401
        }), 401

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Authorization token required',
            'status_code': 401
        }), 401


def setup_logging(app: Flask) -> None:
    """Setup application logging."""
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)
    package_logger = logging.getLogger('rollcall')
    package_logger.setLevel(level)

    # Scheduler chatter on every rotation tick
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    if not app.debug and not app.testing:
        log_file = app.config.get('LOG_FILE', 'logs/app.log')
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        package_logger.addHandler(file_handler)

        app.logger.setLevel(logging.INFO)
        app.logger.info('Rollcall attendance engine startup')


def setup_database(app: Flask) -> None:
    """Setup database connections."""
    with app.app_context():
        # Import all models
        from rollcall.models import (
            User, UserRole,
            ClassSession, SessionStatus,
            AttendanceRecord, AttendanceStatus,
            Enrollment, EnrollmentStatus
        )


def register_commands(app: Flask) -> None:
    """Register CLI commands."""
    import click

    from rollcall.models import ClassSession, Enrollment, User, UserRole

    @app.cli.command('init-db')
    @click.option('--drop', is_flag=True, help='Drop existing tables')
    def init_db(drop):
        """Initialize the database."""
        if drop:
            db.drop_all()
            click.echo('Dropped all tables.')

        db.create_all()
        click.echo('Created all tables.')

        admin = User.query.filter_by(email='admin@university.edu').first()
        if not admin:
            admin = User(
                email='admin@university.edu',
                name='System Administrator',
                role=UserRole.ADMIN
            )
            admin.set_password('admin123456')
            db.session.add(admin)
            db.session.commit()
            click.echo('Created admin user: admin@university.edu / admin123456')

    @app.cli.command('seed-demo')
    @click.option('--class-id', default=1, show_default=True, help='Class to seed')
    @click.option('--students', default=10, show_default=True, help='Number of enrolled students')
    def seed_demo(class_id, students):
        """Seed a teacher, enrolled students and today's session."""
        teacher = User.query.filter_by(email='teacher@university.edu').first()
        if not teacher:
            teacher = User(email='teacher@university.edu', name='Demo Teacher', role=UserRole.TEACHER)
            teacher.set_password('teacher123')
            db.session.add(teacher)
            db.session.flush()

        for index in range(1, students + 1):
            email = f'student{index}@university.edu'
            student = User.query.filter_by(email=email).first()
            if not student:
                student = User(email=email, name=f'Student {index}', role=UserRole.STUDENT)
                student.set_password('student123')
                db.session.add(student)
                db.session.flush()
            if not Enrollment.query.filter_by(student_id=student.id, class_id=class_id).first():
                db.session.add(Enrollment(student_id=student.id, class_id=class_id))

        number = (db.session.query(db.func.max(ClassSession.session_number))
                  .filter_by(class_id=class_id).scalar() or 0) + 1
        db.session.add(ClassSession(
            class_id=class_id,
            instructor_id=teacher.id,
            session_number=number,
            date=date.today(),
            start_time=time(10, 0),
            end_time=time(11, 0),
            room_location='Room 101'
        ))
        db.session.commit()

        click.echo(f'Seeded class {class_id}: {students} students, session #{number}')
        click.echo('Teacher: teacher@university.edu / teacher123')
        click.echo('Students: student<N>@university.edu / student123')

    @app.cli.command('generate-sessions')
    @click.argument('class_id', type=int)
    @click.option('--from', 'first_date', required=True, help='First date (YYYY-MM-DD)')
    @click.option('--to', 'last_date', required=True, help='Last date (YYYY-MM-DD)')
    @click.option('--days', required=True, help='Comma separated weekdays, e.g. monday,wednesday')
    @click.option('--start', 'start_time', required=True, help='Start time (HH:MM)')
    @click.option('--end', 'end_time', required=True, help='End time (HH:MM)')
    @click.option('--instructor-id', type=int, default=None)
    @click.option('--room', default=None)
    def generate_sessions(class_id, first_date, last_date, days, start_time, end_time, instructor_id, room):
        """Create scheduled sessions for a class from a weekly template."""
        from rollcall.engine import get_engine
        from rollcall.exceptions import AttendanceError
        from rollcall.utils.validators import Validator

        try:
            request = Validator.generate_sessions_request(class_id, {
                'first_date': first_date,
                'last_date': last_date,
                'days_of_week': days,
                'start_time': start_time,
                'end_time': end_time,
                'instructor_id': instructor_id,
                'room_location': room
            })
            sessions = get_engine().planner.generate(request)
        except AttendanceError as e:
            raise click.ClickException(e.message)

        click.echo(f'Generated {len(sessions)} sessions for class {class_id}')
