"""
Shared Flask extension instances.

They are created unbound here and attached to the app inside create_app(),
so blueprints, jobs and the core modules can import them without a circular
import on app.py.
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_mail import Mail
from flask_socketio import SocketIO
from flask_apscheduler import APScheduler
from flask_cors import CORS

db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
mail = Mail()
cors = CORS()

# Dashboards listen for claim / listing events on this socket
socketio = SocketIO(cors_allowed_origins="*")

# Ranking refresh + nightly score jobs (see scheduler.py)
scheduler = APScheduler()
