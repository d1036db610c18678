import logging
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import func, desc
from models import (db, User, Role, Organization, OrganizationStatus, FoodListing, ListingStatus,
                    Claim)
from errors import FoodRescueError
from rankings import calculate_organization_rankings
from sdg_calculator import recalculate_all_sdg_scores
from scheduler import dispatch_ranking_refresh
from utils import get_current_user, log_activity, send_notification, utcnow

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__)


def _admin_user():
    user = get_current_user()
    if not user or user.role != Role.ADMIN:
        return None, (jsonify({'error': 'Admins only'}), 403)
    return user, None


# ==========================================
#  1. DASHBOARD
# ==========================================
@admin_bp.route('/api/admin/stats', methods=['GET'])
@jwt_required()
def get_admin_stats():
    """ Returns system-wide live metrics. """
    admin, error = _admin_user()
    if error:
        return error

    users_by_role = dict(db.session.query(User.role, func.count(User.id)).group_by(User.role).all())
    orgs_by_status = dict(
        db.session.query(Organization.status, func.count(Organization.id)).group_by(Organization.status).all()
    )
    claims_by_status = dict(db.session.query(Claim.status, func.count(Claim.id)).group_by(Claim.status).all())

    now = utcnow()
    active_listings = FoodListing.query.filter(
        FoodListing.status == ListingStatus.AVAILABLE,
        FoodListing.available_until >= now
    ).count()

    total_impact = db.session.query(func.sum(Organization.total_impact_points)).scalar() or 0

    return jsonify({
        'total_users': User.query.count(),
        'users_by_role': {role: users_by_role.get(role, 0) for role in Role.ALL},
        'banned_users': User.query.filter_by(is_banned=True).count(),
        'total_organizations': Organization.query.count(),
        'organizations_by_status': {
            status: orgs_by_status.get(status, 0)
            for status in (OrganizationStatus.PENDING, OrganizationStatus.APPROVED,
                           OrganizationStatus.REJECTED, OrganizationStatus.BANNED)
        },
        'total_listings': FoodListing.query.count(),
        'active_listings': active_listings,
        'total_claims': Claim.query.count(),
        'claims_by_status': claims_by_status,
        'total_impact_points': round(total_impact, 2),
    }), 200


# ==========================================
#  2. ORGANIZATION MODERATION
# ==========================================
@admin_bp.route('/api/admin/organizations', methods=['GET'])
@jwt_required()
def get_all_organizations():
    admin, error = _admin_user()
    if error:
        return error

    query = Organization.query
    status = request.args.get('status')
    if status:
        query = query.filter(Organization.status == status.upper())

    results = []
    for org in query.order_by(desc(Organization.created_at)).all():
        entry = org.to_dict()
        entry['owner_name'] = org.owner.name
        entry['owner_email'] = org.owner.email
        results.append(entry)

    return jsonify(results), 200


@admin_bp.route('/api/admin/organizations/pending', methods=['GET'])
@jwt_required()
def get_pending_organizations():
    """ Called when Admin clicks the 'Pending' card. Oldest application first. """
    admin, error = _admin_user()
    if error:
        return error

    pending = Organization.query.filter_by(status=OrganizationStatus.PENDING)\
        .order_by(Organization.created_at.asc()).all()

    results = []
    for org in pending:
        entry = org.to_dict()
        entry['owner_name'] = org.owner.name
        entry['owner_email'] = org.owner.email
        results.append(entry)

    return jsonify(results), 200


@admin_bp.route('/api/admin/organizations/<int:org_id>/approve', methods=['POST'])
@jwt_required()
def approve_organization(org_id):
    admin, error = _admin_user()
    if error:
        return error

    org = db.session.get(Organization, org_id)
    if not org:
        return jsonify({'error': 'Organization not found'}), 404
    if org.status != OrganizationStatus.PENDING:
        return jsonify({'error': f'Organization is already {org.status.lower()}'}), 400

    try:
        org.status = OrganizationStatus.APPROVED
        org.rejection_reason = None
        org.verified_by = admin.id
        org.verified_at = utcnow()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    log_activity(admin.id, "APPROVE_ORG", f"Approved organization {org.name}")
    send_notification(
        "Your organization has been approved",
        [org.email or org.owner.email],
        f"Hello {org.name},\n\nYour organization is now approved. You can start listing surplus food."
    )
    return jsonify({'message': f'{org.name} approved', 'organization': org.to_dict()}), 200


@admin_bp.route('/api/admin/organizations/<int:org_id>/reject', methods=['POST'])
@jwt_required()
def reject_organization(org_id):
    admin, error = _admin_user()
    if error:
        return error

    org = db.session.get(Organization, org_id)
    if not org:
        return jsonify({'error': 'Organization not found'}), 404
    if org.status != OrganizationStatus.PENDING:
        return jsonify({'error': f'Organization is already {org.status.lower()}'}), 400

    data = request.get_json(silent=True) or {}
    reason = data.get('reason')
    if not reason:
        return jsonify({'error': 'A rejection reason is required'}), 400

    try:
        org.status = OrganizationStatus.REJECTED
        org.rejection_reason = reason
        org.verified_by = admin.id
        org.verified_at = utcnow()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    log_activity(admin.id, "REJECT_ORG", f"Rejected organization {org.name}: {reason}")
    send_notification(
        "Your organization application was not approved",
        [org.email or org.owner.email],
        f"Hello {org.name},\n\nYour application was rejected.\n\nReason: {reason}"
    )
    return jsonify({'message': f'{org.name} rejected', 'organization': org.to_dict()}), 200


@admin_bp.route('/api/admin/organizations/<int:org_id>/ban', methods=['POST'])
@jwt_required()
def ban_organization(org_id):
    """ Banned organizations lose their rank; a ranking refresh is dispatched right away. """
    admin, error = _admin_user()
    if error:
        return error

    org = db.session.get(Organization, org_id)
    if not org:
        return jsonify({'error': 'Organization not found'}), 404
    if org.status == OrganizationStatus.BANNED:
        return jsonify({'error': 'Organization is already banned'}), 400
    if org.status != OrganizationStatus.APPROVED:
        return jsonify({'error': 'Only approved organizations can be banned'}), 400

    data = request.get_json(silent=True) or {}
    reason = data.get('reason')
    if not reason:
        return jsonify({'error': 'A ban reason is required'}), 400

    try:
        org.status = OrganizationStatus.BANNED
        org.banned_reason = reason
        org.banned_by = admin.id
        org.banned_at = utcnow()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    log_activity(admin.id, "BAN_ORG", f"Banned organization {org.name}: {reason}")
    dispatch_ranking_refresh()
    return jsonify({'message': f'{org.name} banned', 'organization': org.to_dict()}), 200


@admin_bp.route('/api/admin/organizations/<int:org_id>/unban', methods=['POST'])
@jwt_required()
def unban_organization(org_id):
    admin, error = _admin_user()
    if error:
        return error

    org = db.session.get(Organization, org_id)
    if not org:
        return jsonify({'error': 'Organization not found'}), 404
    if org.status != OrganizationStatus.BANNED:
        return jsonify({'error': 'Organization is not banned'}), 400

    try:
        # Back to APPROVED: only approved organizations can ever be banned
        org.status = OrganizationStatus.APPROVED
        org.banned_reason = None
        org.banned_by = None
        org.banned_at = None
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    log_activity(admin.id, "UNBAN_ORG", f"Unbanned organization {org.name}")
    dispatch_ranking_refresh()
    return jsonify({'message': f'{org.name} unbanned', 'organization': org.to_dict()}), 200


# ==========================================
#  3. USER MODERATION
# ==========================================
@admin_bp.route('/api/admin/users', methods=['GET'])
@jwt_required()
def get_all_users():
    admin, error = _admin_user()
    if error:
        return error

    query = User.query
    role = request.args.get('role')
    if role:
        query = query.filter(User.role == role.upper())

    return jsonify([u.to_dict() for u in query.order_by(User.id).all()]), 200


@admin_bp.route('/api/admin/users/<int:user_id>/ban', methods=['POST'])
@jwt_required()
def ban_user(user_id):
    admin, error = _admin_user()
    if error:
        return error

    if user_id == admin.id:
        return jsonify({'error': 'You cannot ban yourself'}), 400

    target = db.session.get(User, user_id)
    if not target:
        return jsonify({'error': 'User not found'}), 404
    if target.is_banned:
        return jsonify({'error': 'User is already banned'}), 400

    data = request.get_json(silent=True) or {}
    reason = data.get('reason')
    if not reason:
        return jsonify({'error': 'A ban reason is required'}), 400

    try:
        target.is_banned = True
        target.banned_reason = reason
        target.banned_by = admin.id
        target.banned_at = utcnow()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    log_activity(admin.id, "BAN_USER", f"Banned user {target.email}: {reason}")
    return jsonify({'message': f'{target.name} banned', 'user': target.to_dict()}), 200


@admin_bp.route('/api/admin/users/<int:user_id>/unban', methods=['POST'])
@jwt_required()
def unban_user(user_id):
    admin, error = _admin_user()
    if error:
        return error

    target = db.session.get(User, user_id)
    if not target:
        return jsonify({'error': 'User not found'}), 404
    if not target.is_banned:
        return jsonify({'error': 'User is not banned'}), 400

    try:
        target.is_banned = False
        target.banned_reason = None
        target.banned_by = None
        target.banned_at = None
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    log_activity(admin.id, "UNBAN_USER", f"Unbanned user {target.email}")
    return jsonify({'message': f'{target.name} unbanned', 'user': target.to_dict()}), 200


# ==========================================
#  4. SCORING
# ==========================================
@admin_bp.route('/api/admin/rankings/recalculate', methods=['POST'])
@jwt_required()
def recalculate_rankings():
    user = get_current_user()
    try:
        result = calculate_organization_rankings(caller=user)
    except FoodRescueError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        return jsonify({'error': f'Failed to calculate rankings: {e}'}), 500

    log_activity(user.id, "RECALCULATE_RANKINGS", result['message'])
    return jsonify(result), 200


@admin_bp.route('/api/admin/sdg/recalculate', methods=['POST'])
@jwt_required()
def recalculate_sdg():
    admin, error = _admin_user()
    if error:
        return error

    try:
        updated = recalculate_all_sdg_scores()
    except Exception as e:
        db.session.rollback()
        logger.exception("SDG recalculation failed")
        return jsonify({'error': str(e)}), 500

    log_activity(admin.id, "RECALCULATE_SDG", f"Recalculated SDG scores for {updated} organizations")
    return jsonify({'message': f'Recalculated SDG scores for {updated} organizations', 'updated': updated}), 200
