import sys
import os
import pytest
from datetime import timedelta

# 1. Add the parent directory to Python's path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# 2. NOW import from app
from app import create_app
from extensions import db
from models import (User, Role, Organization, OrganizationStatus, FoodListing, ListingStatus,
                    FoodItem, ItemStatus)
from utils import utcnow


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough",
        "MAIL_SUPPRESS_SEND": True,
        "LOG_LEVEL": "WARNING",
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


# ==========================================
#  FACTORIES
# ==========================================

@pytest.fixture
def user_factory(app):
    def _create(email, role=Role.STUDENT, name=None, password="password", **kwargs):
        user = User(name=name or email.split('@')[0], email=email, role=role, **kwargs)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _create


@pytest.fixture
def organization_factory(user_factory):
    counter = {'n': 0}

    def _create(user=None, status=OrganizationStatus.APPROVED, **kwargs):
        counter['n'] += 1
        n = counter['n']
        if user is None:
            user = user_factory(f"org{n}@test.com", role=Role.ORGANIZATION)
        defaults = {
            "name": f"Org {n}",
            "slug": f"org-{n}",
            "type": "CANTEEN",
            "address": f"Block {n}, Campus",
            "email": user.email,
            "status": status,
            "created_at": utcnow() - timedelta(days=200),
        }
        if status == OrganizationStatus.APPROVED:
            defaults["verified_at"] = utcnow() - timedelta(days=180)
        defaults.update(kwargs)
        org = Organization(user_id=user.id, **defaults)
        db.session.add(org)
        db.session.commit()
        return org
    return _create


@pytest.fixture
def listing_factory(app):
    def _create(organization, quantity=3, category="Meals", unit="portions", **kwargs):
        now = utcnow()
        defaults = {
            "title": "Nasi Lemak",
            "description": "Leftover from the lunch buffet",
            "category": category,
            "unit": unit,
            "quantity": quantity,
            "available_from": now - timedelta(hours=1),
            "available_until": now + timedelta(hours=6),
            "pickup_location": "Main Cafeteria",
            "status": ListingStatus.AVAILABLE,
        }
        defaults.update(kwargs)
        listing = FoodListing(organization_id=organization.id, **defaults)
        db.session.add(listing)
        db.session.flush()
        for number in range(1, quantity + 1):
            db.session.add(FoodItem(food_listing_id=listing.id, item_number=number,
                                    status=ItemStatus.AVAILABLE))
        db.session.commit()
        return listing
    return _create


# ==========================================
#  COMMON ACTORS
# ==========================================

@pytest.fixture
def student(user_factory):
    return user_factory("student@test.com", role=Role.STUDENT, name="Aisha")


@pytest.fixture
def other_student(user_factory):
    return user_factory("student2@test.com", role=Role.STUDENT, name="Ben")


@pytest.fixture
def admin_user(user_factory):
    return user_factory("admin@test.com", role=Role.ADMIN, name="Admin")


@pytest.fixture
def org_user(user_factory):
    return user_factory("kitchen@test.com", role=Role.ORGANIZATION, name="Kitchen Manager")


@pytest.fixture
def organization(organization_factory, org_user):
    return organization_factory(user=org_user, name="Campus Kitchen", slug="campus-kitchen")


@pytest.fixture
def listing(listing_factory, organization):
    return listing_factory(organization, quantity=3)


@pytest.fixture
def login(client):
    def _login(user, password="password"):
        resp = client.post('/api/login', json={"email": user.email, "password": password})
        return {'Authorization': f'Bearer {resp.get_json()["access_token"]}'}
    return _login
