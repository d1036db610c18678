from flask import Flask
import logging
import os
from dotenv import load_dotenv
from datetime import timedelta

# 1. IMPORT EXTENSIONS (From extensions.py)
from extensions import db, migrate, jwt, mail, socketio, scheduler, cors

load_dotenv()


def _database_url():
    # Heroku/Render still hand out postgres:// URLs, SQLAlchemy wants postgresql://
    database_url = os.getenv('DATABASE_URL', 'sqlite:///food_rescue.db')
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def create_app(test_config=None):
    """
    The Application Factory.
    Creates and configures the app, but does not run it.
    ``test_config`` overrides are applied before any extension is bound.
    """
    app = Flask(__name__)

    # --- CONFIGURATION ---
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'default_secret_key')
    app.config['SQLALCHEMY_DATABASE_URI'] = _database_url()
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'fallback-secret-key')
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(minutes=int(os.getenv('JWT_ACCESS_TOKEN_MINUTES', '60')))
    app.config['FRONTEND_URL'] = os.getenv('FRONTEND_URL', 'http://localhost:3000')
    app.config['CORS_ORIGINS'] = [
        origin.strip() for origin in os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',') if origin.strip()
    ]
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    # --- EMAIL CONFIGURATION ---
    app.config['MAIL_SERVER'] = os.getenv('MAIL_SERVER', 'smtp.gmail.com')
    app.config['MAIL_PORT'] = int(os.getenv('MAIL_PORT', '587'))
    app.config['MAIL_USE_TLS'] = os.getenv('MAIL_USE_TLS', 'true').lower() == 'true'
    app.config['MAIL_USERNAME'] = os.getenv('MAIL_USERNAME')
    app.config['MAIL_PASSWORD'] = os.getenv('MAIL_PASSWORD')
    app.config['MAIL_DEFAULT_SENDER'] = os.getenv('MAIL_DEFAULT_SENDER', os.getenv('MAIL_USERNAME') or 'noreply@campus-food-rescue.local')

    # --- SCHEDULER ---
    app.config['SCHEDULER_API_ENABLED'] = False
    # Started by the factory so WSGI workers run it too; scripts and tests keep it off
    app.config['SCHEDULER_ENABLED'] = os.getenv('SCHEDULER_ENABLED', 'true').lower() == 'true'

    if test_config:
        app.config.update(test_config)

    # --- LOGGING ---
    logging.basicConfig(format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    logging.getLogger().setLevel(app.config['LOG_LEVEL'])
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # --- INITIALIZE EXTENSIONS ---
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    mail.init_app(app)
    socketio.init_app(app)
    scheduler.init_app(app)

    # --- CORS CONFIGURATION ---
    cors.init_app(app, resources={
        r"/api/*": {
            "origins": app.config['CORS_ORIGINS'],
            "methods": ["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-Requested-With"],
            "supports_credentials": True
        }
    })

    # --- REGISTER BLUEPRINTS ---
    # Import inside the function to avoid circular imports
    from routes.auth import auth_bp
    from routes.organization import organization_bp
    from routes.student import student_bp
    from routes.admin import admin_bp
    from routes.rankings import rankings_bp
    from routes.stats import stats_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(organization_bp)
    app.register_blueprint(student_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(rankings_bp)
    app.register_blueprint(stats_bp)

    # --- START THE SCHEDULER (not during tests) ---
    if app.config['SCHEDULER_ENABLED'] and not app.config.get('TESTING'):
        from scheduler import init_scheduler
        init_scheduler(app)

    return app


# --- ENTRY POINT ---
# This only runs if you type 'python app.py'
if __name__ == "__main__":
    app = create_app()
    # The reloader would fork a second process with its own scheduler
    socketio.run(app, debug=os.getenv('FLASK_DEBUG', '0') == '1', use_reloader=False)
