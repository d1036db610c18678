from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import or_, desc
from models import (db, Role, Organization, OrganizationStatus, FoodListing, ListingStatus,
                    FoodItem, ItemStatus, Claim)
from errors import FoodRescueError
from impact_calculator import calculate_food_impact_points
from claim_lifecycle import claim_food, mark_claim_as_collected, cancel_order
from utils import get_current_user, utcnow

student_bp = Blueprint('student', __name__)


def _student_user():
    """ Returns (user, error_response). Banned students are turned away. """
    user = get_current_user()
    if not user or user.role != Role.STUDENT:
        return None, (jsonify({'error': 'Students only'}), 403)
    if user.is_banned:
        return None, (jsonify({'error': f"Your account has been banned. Reason: {user.banned_reason or 'No reason provided'}"}), 403)
    return user, None


def _listing_card(listing, now):
    entry = listing.to_dict(now)
    entry['organization'] = {
        'id': listing.organization.id,
        'name': listing.organization.name,
        'slug': listing.organization.slug,
        'logo': listing.organization.logo,
    }
    entry['estimated_impact_per_unit'] = calculate_food_impact_points(listing.category, listing.unit, 1)
    return entry


# ==========================================
#  1. BROWSE
# ==========================================
@student_bp.route('/api/listings', methods=['GET'])
@jwt_required()
def browse_listings():
    """
    Open listings (AVAILABLE, not expired, at least one item left) from
    APPROVED organizations.

    Query params: search, category, vegetarian, vegan, halal.
    """
    user, error = _student_user()
    if error:
        return error

    now = utcnow()
    has_available_items = db.session.query(FoodItem.id).filter(
        FoodItem.food_listing_id == FoodListing.id,
        FoodItem.status == ItemStatus.AVAILABLE
    ).exists()

    query = FoodListing.query.join(Organization, FoodListing.organization_id == Organization.id).filter(
        FoodListing.status == ListingStatus.AVAILABLE,
        FoodListing.available_until >= now,
        Organization.status == OrganizationStatus.APPROVED,
        has_available_items
    )

    search = request.args.get('search', '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(FoodListing.title.ilike(pattern), FoodListing.description.ilike(pattern)))

    category = request.args.get('category')
    if category and category.upper() != 'ALL':
        query = query.filter(FoodListing.category == category)

    if request.args.get('vegetarian') == 'true':
        query = query.filter(FoodListing.is_vegetarian.is_(True))
    if request.args.get('vegan') == 'true':
        query = query.filter(FoodListing.is_vegan.is_(True))
    if request.args.get('halal') == 'true':
        query = query.filter(FoodListing.is_halal.is_(True))

    listings = query.order_by(FoodListing.available_until.asc()).all()
    return jsonify([_listing_card(listing, now) for listing in listings]), 200


@student_bp.route('/api/listings/<int:listing_id>', methods=['GET'])
@jwt_required()
def get_listing_detail(listing_id):
    user, error = _student_user()
    if error:
        return error

    listing = db.session.get(FoodListing, listing_id)
    if not listing or listing.organization.status != OrganizationStatus.APPROVED:
        return jsonify({'error': 'Listing not found'}), 404

    result = _listing_card(listing, utcnow())
    result['my_claims'] = [c.to_dict() for c in listing.claims if c.user_id == user.id]
    return jsonify(result), 200


# ==========================================
#  2. CLAIMS
# ==========================================
@student_bp.route('/api/claims', methods=['POST'])
@jwt_required()
def create_claim():
    user = get_current_user()
    data = request.get_json() or {}

    if not data.get('listing_id'):
        return jsonify({'error': 'Missing required field: listing_id'}), 400

    try:
        claims = claim_food(user, data['listing_id'], data.get('quantity', 1))
    except FoodRescueError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({
        'message': f'Successfully claimed {len(claims)} item(s)',
        'claims': [c.to_dict() for c in claims]
    }), 201


@student_bp.route('/api/claims', methods=['GET'])
@jwt_required()
def get_my_claims():
    user, error = _student_user()
    if error:
        return error

    query = Claim.query.filter_by(user_id=user.id)
    status = request.args.get('status')
    if status:
        query = query.filter(Claim.status == status.upper())

    results = []
    for claim in query.order_by(desc(Claim.claimed_at)).all():
        entry = claim.to_dict()
        entry['organization_name'] = claim.listing.organization.name
        entry['pickup_location'] = claim.listing.pickup_location
        entry['unit'] = claim.listing.unit
        results.append(entry)

    return jsonify(results), 200


@student_bp.route('/api/claims/<int:claim_id>/collect', methods=['POST'])
@jwt_required()
def collect_claim(claim_id):
    user = get_current_user()
    try:
        result = mark_claim_as_collected(user, claim_id)
    except FoodRescueError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify(result), 200


@student_bp.route('/api/claims/<int:claim_id>/cancel', methods=['POST'])
@jwt_required()
def cancel_claim(claim_id):
    user = get_current_user()
    data = request.get_json(silent=True) or {}
    try:
        claim = cancel_order(user, claim_id, reason=data.get('reason'))
    except FoodRescueError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({'message': 'Order cancelled', 'claim': claim.to_dict()}), 200
