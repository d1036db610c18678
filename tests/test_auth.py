import pytest
from flask_jwt_extended import decode_token
from models import User, Role
from extensions import db

# ==========================================
#  1. REGISTRATION TESTS
# ==========================================

def test_register_student_success(client):
    """Happy Path: Standard student registration."""
    payload = {
        "name": "Aisha",
        "email": "Aisha@Campus.edu",
        "password": "password",
    }
    response = client.post('/api/register', json=payload)

    assert response.status_code == 201
    assert "successful" in response.get_json()['message']

    # DB Check
    user = User.query.filter_by(email="aisha@campus.edu").first()
    assert user is not None
    assert user.role == Role.STUDENT
    assert user.check_password("password")


def test_register_organization_account(client):
    payload = {"name": "Kitchen", "email": "kitchen@campus.edu", "password": "pw", "role": "organization"}
    response = client.post('/api/register', json=payload)

    assert response.status_code == 201
    assert response.get_json()['user']['role'] == Role.ORGANIZATION


def test_register_admin_is_refused(client):
    """Edge Case: Admins are seeded, never self-registered."""
    payload = {"name": "Mallory", "email": "mallory@campus.edu", "password": "pw", "role": "ADMIN"}
    response = client.post('/api/register', json=payload)

    assert response.status_code == 400
    assert User.query.count() == 0


def test_register_duplicate_email(client, student):
    payload = {"name": "Copy", "email": student.email, "password": "pw"}
    response = client.post('/api/register', json=payload)

    assert response.status_code == 400
    assert "already exists" in response.get_json()['error']


def test_register_missing_field(client):
    response = client.post('/api/register', json={"email": "x@campus.edu", "password": "pw"})
    assert response.status_code == 400
    assert "name" in response.get_json()['error']


# ==========================================
#  2. LOGIN TESTS
# ==========================================

def test_login_returns_token_with_role(app, client, org_user):
    response = client.post('/api/login', json={"email": org_user.email, "password": "password"})

    assert response.status_code == 200
    data = response.get_json()
    claims = decode_token(data['access_token'])
    assert claims['sub'] == str(org_user.id)
    assert claims['role'] == Role.ORGANIZATION


def test_login_wrong_password(client, student):
    response = client.post('/api/login', json={"email": student.email, "password": "nope"})
    assert response.status_code == 401


def test_login_missing_fields(client):
    response = client.post('/api/login', json={"email": "a@b.c"})
    assert response.status_code == 400


# ==========================================
#  3. PROFILE
# ==========================================

def test_profile_includes_organization(client, login, org_user, organization):
    response = client.get('/api/profile', headers=login(org_user))

    assert response.status_code == 200
    assert response.get_json()['organization']['name'] == "Campus Kitchen"


def test_profile_update(client, login, student):
    response = client.patch('/api/profile', json={"name": "Aisha B", "phone": "0123"}, headers=login(student))

    assert response.status_code == 200
    db.session.expire_all()
    assert db.session.get(User, student.id).name == "Aisha B"


def test_profile_requires_token(client):
    response = client.get('/api/profile')
    assert response.status_code == 401
