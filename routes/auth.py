from flask import Blueprint, request, jsonify
from flask_jwt_extended import create_access_token, jwt_required
from models import db, User, Role
from utils import get_current_user, log_activity

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/api/register', methods=['POST'])
def register():
    """
    Creates a STUDENT or ORGANIZATION account.
    Organizations still have to apply (and be approved) before listing food.
    """
    data = request.get_json() or {}

    required_fields = ['name', 'email', 'password']
    for field in required_fields:
        if not data.get(field):
            return jsonify({'error': f'Missing required field: {field}'}), 400

    role = str(data.get('role', Role.STUDENT)).upper()
    if role not in (Role.STUDENT, Role.ORGANIZATION):
        return jsonify({'error': 'Role must be STUDENT or ORGANIZATION'}), 400

    email = data['email'].strip().lower()
    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already exists'}), 400

    new_user = User(
        name=data['name'],
        email=email,
        phone=data.get('phone'),
        role=role,
    )
    new_user.set_password(data['password'])

    try:
        db.session.add(new_user)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    log_activity(new_user.id, "REGISTER", f"Registered as {role}")
    return jsonify({'message': 'Registration successful!', 'user': new_user.to_dict()}), 201


@auth_bp.route('/api/login', methods=['POST'])
def login():
    data = request.get_json()

    # 1. Validate Input
    if not data or not data.get('email') or not data.get('password'):
        return jsonify({'error': 'Missing email or password'}), 400

    user = User.query.filter_by(email=data['email'].strip().lower()).first()

    # 2. Check Password
    if not user or not user.check_password(data['password']):
        return jsonify({'error': 'Invalid email or password'}), 401

    # Role travels in the token; handlers still reload the user to check bans
    additional_claims = {"role": user.role}
    access_token = create_access_token(identity=str(user.id), additional_claims=additional_claims)

    return jsonify({
        'message': 'Login successful!',
        'access_token': access_token,
        'user': user.to_dict()
    }), 200


@auth_bp.route('/api/profile', methods=['GET'])
@jwt_required()
def get_profile():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404

    profile = user.to_dict()
    if user.organization:
        profile['organization'] = {
            'id': user.organization.id,
            'name': user.organization.name,
            'type': user.organization.type,
            'status': user.organization.status,
            'logo': user.organization.logo,
        }
    return jsonify(profile), 200


@auth_bp.route('/api/profile', methods=['PATCH'])
@jwt_required()
def update_profile():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'User not found'}), 404

    data = request.get_json() or {}
    if 'name' in data and data['name']:
        user.name = data['name']
    if 'phone' in data:
        user.phone = data['phone']

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    return jsonify({'message': 'Profile updated', 'user': user.to_dict()}), 200
