import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify

from reviewhub.database.database import db
from reviewhub.extensions import limiter, login_manager, mail
from reviewhub.models.auth import User
from reviewhub.models.business import BusinessAccount
from reviewhub.models.reviews import Review
from reviewhub.models.finance import WebhookEvent
from reviewhub.routes.admin import admin_bp
from reviewhub.routes.auth import auth_bp
from reviewhub.routes.dashboard import dash_bp
from reviewhub.routes.reviews import public_bp, reviews_bp
from reviewhub.routes.settings import settings_bp
from reviewhub.utils.billing import billing_bp
from reviewhub.utils.errors import ReviewHubError
from reviewhub.utils.logging_setup import configure_logging
from reviewhub.utils.scheduler import start_scheduler

logger = logging.getLogger(__name__)


def _env(name, default=None):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().strip('"').strip("'")


def _env_flag(name, default):
    return (_env(name, default) or '').lower() in ['true', 'on', '1']


def create_app(test_config=None):
    # Load environment variables
    load_dotenv()

    app = Flask(__name__)
    app.url_map.strict_slashes = False

    # Configuration
    app.config['SECRET_KEY'] = _env('SECRET_KEY', 'dev-secret-key-change-in-production')
    app.config['SQLALCHEMY_DATABASE_URI'] = _env('DATABASE_URL', 'sqlite:///reviewhub.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # Stripe
    app.config['STRIPE_SECRET_KEY'] = _env('STRIPE_SECRET_KEY')
    app.config['STRIPE_WEBHOOK_SECRET'] = _env('STRIPE_WEBHOOK_SECRET')
    app.config['STRIPE_PRICE_ID'] = _env('STRIPE_PRICE_ID')
    app.config['STRIPE_CURRENCY'] = _env('STRIPE_CURRENCY', 'usd')

    # Access and limits
    app.config['SUPER_ADMIN_EMAILS'] = _env('SUPER_ADMIN_EMAILS', '')
    app.config['REVIEW_RATE_LIMIT'] = _env('REVIEW_RATE_LIMIT', '10 per minute')
    app.config['SCHEDULER_ENABLED'] = _env_flag('SCHEDULER_ENABLED', 'true')
    app.config['LOG_LEVEL'] = _env('LOG_LEVEL', 'INFO')
    app.config['LOG_DIR'] = _env('LOG_DIR')

    # Email configuration
    app.config['MAIL_SERVER'] = _env('MAIL_SERVER', 'smtp.gmail.com')
    app.config['MAIL_PORT'] = int(_env('MAIL_PORT', '587'))
    app.config['MAIL_USE_TLS'] = _env_flag('MAIL_USE_TLS', 'true')
    app.config['MAIL_USERNAME'] = _env('MAIL_USERNAME')
    app.config['MAIL_PASSWORD'] = _env('MAIL_PASSWORD')
    app.config['MAIL_DEFAULT_SENDER'] = _env('MAIL_DEFAULT_SENDER', 'noreply@reviewhub.app')
    app.config['NOTIFICATION_TIMEOUT'] = float(_env('NOTIFICATION_TIMEOUT', '10'))

    if test_config:
        app.config.update(test_config)

    if not app.testing:
        configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    mail.init_app(app)
    limiter.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    # Register blueprints
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(dash_bp, url_prefix='/dashboard')
    app.register_blueprint(settings_bp, url_prefix='/settings')
    app.register_blueprint(reviews_bp, url_prefix='/reviews')
    app.register_blueprint(public_bp, url_prefix='/r')
    app.register_blueprint(billing_bp, url_prefix='/billing')
    app.register_blueprint(admin_bp, url_prefix='/super-admin')

    @app.errorhandler(ReviewHubError)
    def handle_review_hub_error(error):
        if error.status_code >= 500:
            logger.error('%s: %s', type(error).__name__, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(429)
    def handle_rate_limit(error):
        return jsonify({'error': 'Rate limit exceeded'}), 429

    @app.route('/')
    def index():
        return jsonify({'service': 'reviewhub', 'status': 'ok'})

    # Create tables and start scheduler
    with app.app_context():
        db.create_all()

    if app.config['SCHEDULER_ENABLED'] and not app.testing:
        start_scheduler(app)

    return app


if __name__ == '__main__':
    create_app().run(debug=True)
