import logging
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import func, desc
from models import (db, Role, Organization, OrganizationStatus, FoodListing, ListingStatus,
                    FoodItem, ItemStatus, Claim, ClaimStatus)
from errors import FoodRescueError, ValidationError
from impact_calculator import UNITS, get_available_categories, calculate_food_impact_points
from claim_lifecycle import confirm_order, mark_order_ready, mark_no_show, cancel_order, mark_claim_as_collected
from utils import get_current_user, log_activity, emit_event, slugify, parse_datetime, utcnow

logger = logging.getLogger(__name__)

organization_bp = Blueprint('organization', __name__)

ORGANIZATION_TYPES = ('RESTAURANT', 'CAFE', 'CANTEEN', 'BAKERY', 'STUDENT_CLUB', 'OTHER')
LISTING_EDITABLE_FIELDS = ('title', 'description', 'pickup_location', 'is_vegetarian', 'is_vegan', 'is_halal')


def _organization_user():
    """ Returns (user, error_response). Only ORGANIZATION accounts get through. """
    user = get_current_user()
    if not user or user.role != Role.ORGANIZATION:
        return None, (jsonify({'error': 'Organizations only'}), 403)
    if user.is_banned:
        return None, (jsonify({'error': 'Your account has been banned'}), 403)
    return user, None


def _own_organization(user):
    return Organization.query.filter_by(user_id=user.id).first()


def _unique_slug(name):
    base = slugify(name) or 'organization'
    slug = base
    suffix = 2
    while Organization.query.filter_by(slug=slug).first():
        slug = f"{base}-{suffix}"
        suffix += 1
    return slug


def _join_csv(values):
    if isinstance(values, str):
        values = values.split(',')
    return ','.join(v.strip() for v in (values or []) if v and v.strip())


# ==========================================
#  1. ORGANIZATION PROFILE
# ==========================================
@organization_bp.route('/api/organization/apply', methods=['POST'])
@jwt_required()
def apply_for_organization():
    """ One organization per account; starts out PENDING until an admin approves it. """
    user, error = _organization_user()
    if error:
        return error

    if _own_organization(user):
        return jsonify({'error': 'You have already applied for an organization'}), 400

    data = request.get_json() or {}
    for field in ('name', 'address'):
        if not data.get(field):
            return jsonify({'error': f'Missing required field: {field}'}), 400

    org_type = str(data.get('type', 'OTHER')).upper()
    if org_type not in ORGANIZATION_TYPES:
        return jsonify({'error': f'Invalid organization type: {org_type}'}), 400

    organization = Organization(
        user_id=user.id,
        name=data['name'],
        slug=_unique_slug(data['name']),
        type=org_type,
        description=data.get('description'),
        address=data['address'],
        phone=data.get('phone'),
        email=data.get('email') or user.email,
        logo=data.get('logo'),
        latitude=data.get('latitude'),
        longitude=data.get('longitude'),
        status=OrganizationStatus.PENDING,
    )

    try:
        db.session.add(organization)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    log_activity(user.id, "ORG_APPLY", f"Applied as {organization.name}")
    return jsonify({'message': 'Application submitted. An admin will review it shortly.',
                    'organization': organization.to_dict()}), 201


@organization_bp.route('/api/organization/status', methods=['GET'])
@jwt_required()
def get_organization_status():
    user, error = _organization_user()
    if error:
        return error

    organization = _own_organization(user)
    if not organization:
        return jsonify({'has_organization': False}), 200

    return jsonify({'has_organization': True, 'organization': organization.to_dict()}), 200


@organization_bp.route('/api/organization', methods=['PATCH'])
@jwt_required()
def update_organization():
    user, error = _organization_user()
    if error:
        return error

    organization = _own_organization(user)
    if not organization:
        return jsonify({'error': 'Organization not found'}), 404

    data = request.get_json() or {}
    for field in ('name', 'description', 'address', 'phone', 'email', 'logo', 'latitude', 'longitude'):
        if field in data:
            setattr(organization, field, data[field])

    if 'type' in data:
        org_type = str(data['type']).upper()
        if org_type not in ORGANIZATION_TYPES:
            return jsonify({'error': f'Invalid organization type: {org_type}'}), 400
        organization.type = org_type

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    return jsonify({'message': 'Organization updated', 'organization': organization.to_dict()}), 200


# ==========================================
#  2. LISTINGS
# ==========================================
@organization_bp.route('/api/organization/listings', methods=['POST'])
@jwt_required()
def create_listing():
    """
    Publishes a listing and its numbered FoodItems (1..quantity) in one
    transaction. Only APPROVED organizations may list food.
    """
    user, error = _organization_user()
    if error:
        return error

    organization = _own_organization(user)
    if not organization:
        return jsonify({'error': 'Organization not found'}), 404
    if organization.status != OrganizationStatus.APPROVED:
        return jsonify({'error': 'Your organization must be approved before listing food'}), 403

    data = request.get_json() or {}
    required_fields = ['title', 'category', 'unit', 'quantity', 'available_from', 'available_until',
                       'pickup_location']
    for field in required_fields:
        if data.get(field) in (None, ''):
            return jsonify({'error': f'Missing required field: {field}'}), 400

    category = str(data['category'])
    unit = str(data['unit']).lower()
    if category not in get_available_categories():
        return jsonify({'error': f'Invalid category: {category}'}), 400
    if unit not in UNITS:
        return jsonify({'error': f'Invalid unit: {unit}'}), 400

    try:
        quantity = int(data['quantity'])
        available_from = parse_datetime(data['available_from'], 'available_from')
        available_until = parse_datetime(data['available_until'], 'available_until')
    except ValidationError as e:
        return jsonify(e.to_dict()), e.status_code
    except (TypeError, ValueError):
        return jsonify({'error': 'Quantity must be a whole number'}), 400

    if quantity < 1:
        return jsonify({'error': 'Quantity must be at least 1'}), 400
    if available_until <= available_from:
        return jsonify({'error': 'available_until must be after available_from'}), 400

    listing = FoodListing(
        organization_id=organization.id,
        title=data['title'],
        description=data.get('description', ''),
        category=category,
        unit=unit,
        quantity=quantity,
        available_from=available_from,
        available_until=available_until,
        pickup_location=data['pickup_location'],
        status=ListingStatus.AVAILABLE,
        is_vegetarian=bool(data.get('is_vegetarian', False)),
        is_vegan=bool(data.get('is_vegan', False)),
        is_halal=bool(data.get('is_halal', False)),
        allergens=_join_csv(data.get('allergens')),
        tags=_join_csv(data.get('tags')),
    )

    try:
        db.session.add(listing)
        db.session.flush()
        for number in range(1, quantity + 1):
            db.session.add(FoodItem(food_listing_id=listing.id, item_number=number,
                                    status=ItemStatus.AVAILABLE))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("Listing creation failed")
        return jsonify({'error': str(e)}), 500

    logger.info("Organization %s listed %d %s of %s", organization.id, quantity, unit, listing.title)
    log_activity(user.id, "CREATE_LISTING", f"Listed {quantity} {unit} of {listing.title}")
    emit_event('new_listing', {
        'listing_id': listing.id,
        'organization_id': organization.id,
        'title': listing.title,
        'category': listing.category,
    })

    return jsonify({'message': 'Listing created', 'listing': listing.to_dict()}), 201


@organization_bp.route('/api/organization/listings', methods=['GET'])
@jwt_required()
def get_my_listings():
    user, error = _organization_user()
    if error:
        return error

    organization = _own_organization(user)
    if not organization:
        return jsonify({'error': 'Organization not found'}), 404

    listings = FoodListing.query.filter_by(organization_id=organization.id)\
        .order_by(desc(FoodListing.created_at)).all()
    now = utcnow()

    results = []
    for listing in listings:
        entry = listing.to_dict(now)
        entry['claim_count'] = len(listing.claims)
        results.append(entry)

    return jsonify(results), 200


@organization_bp.route('/api/organization/listings/<int:listing_id>', methods=['GET'])
@jwt_required()
def get_listing(listing_id):
    user, error = _organization_user()
    if error:
        return error

    organization = _own_organization(user)
    listing = db.session.get(FoodListing, listing_id)
    if not organization or not listing or listing.organization_id != organization.id:
        return jsonify({'error': 'Listing not found'}), 404

    result = listing.to_dict()
    result['claims'] = []
    for claim in listing.claims:
        entry = claim.to_dict()
        entry['student_name'] = claim.student.name
        result['claims'].append(entry)

    return jsonify(result), 200


@organization_bp.route('/api/organization/listings/<int:listing_id>', methods=['PATCH'])
@jwt_required()
def update_listing(listing_id):
    """ Quantity, category and unit are fixed once items exist. """
    user, error = _organization_user()
    if error:
        return error

    organization = _own_organization(user)
    listing = db.session.get(FoodListing, listing_id)
    if not organization or not listing or listing.organization_id != organization.id:
        return jsonify({'error': 'Listing not found'}), 404

    data = request.get_json() or {}
    for field in LISTING_EDITABLE_FIELDS:
        if field in data:
            setattr(listing, field, data[field])
    if 'allergens' in data:
        listing.allergens = _join_csv(data['allergens'])
    if 'tags' in data:
        listing.tags = _join_csv(data['tags'])

    try:
        if 'available_from' in data:
            listing.available_from = parse_datetime(data['available_from'], 'available_from')
        if 'available_until' in data:
            listing.available_until = parse_datetime(data['available_until'], 'available_until')
    except ValidationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    if listing.available_until <= listing.available_from:
        db.session.rollback()
        return jsonify({'error': 'available_until must be after available_from'}), 400

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    return jsonify({'message': 'Listing updated', 'listing': listing.to_dict()}), 200


@organization_bp.route('/api/organization/listings/<int:listing_id>', methods=['DELETE'])
@jwt_required()
def delete_listing(listing_id):
    user, error = _organization_user()
    if error:
        return error

    organization = _own_organization(user)
    listing = db.session.get(FoodListing, listing_id)
    if not organization or not listing or listing.organization_id != organization.id:
        return jsonify({'error': 'Listing not found'}), 404

    # Claims keep the impact history; a claimed listing can never go away
    if Claim.query.filter_by(food_listing_id=listing.id).count() > 0:
        return jsonify({'error': 'Cannot delete a listing that has claims'}), 400

    title = listing.title
    try:
        db.session.delete(listing)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 500

    log_activity(user.id, "DELETE_LISTING", f"Deleted listing {title}")
    return jsonify({'message': 'Listing deleted'}), 200


# ==========================================
#  3. DASHBOARD
# ==========================================
@organization_bp.route('/api/organization/dashboard', methods=['GET'])
@jwt_required()
def get_dashboard_stats():
    user, error = _organization_user()
    if error:
        return error

    organization = _own_organization(user)
    if not organization:
        return jsonify({'error': 'Organization not found'}), 404

    now = utcnow()
    listings = FoodListing.query.filter_by(organization_id=organization.id).all()
    active = [l for l in listings if l.status == ListingStatus.AVAILABLE and not l.is_expired(now)]
    expired = [l for l in listings if l.display_status(now) == ListingStatus.EXPIRED]

    claim_query = Claim.query.join(FoodListing, Claim.food_listing_id == FoodListing.id)\
        .filter(FoodListing.organization_id == organization.id)
    total_claims = claim_query.count()
    items_collected = claim_query.filter(Claim.status == ClaimStatus.PICKED_UP).count()

    # Impact per category from collected claims
    category_rows = db.session.query(FoodListing.category, func.sum(Claim.actual_impact_points))\
        .join(Claim, Claim.food_listing_id == FoodListing.id)\
        .filter(FoodListing.organization_id == organization.id, Claim.status == ClaimStatus.PICKED_UP)\
        .group_by(FoodListing.category).all()

    recent_listings = sorted(listings, key=lambda l: l.created_at, reverse=True)[:5]
    recent_claims = claim_query.order_by(desc(Claim.claimed_at)).limit(5).all()

    return jsonify({
        'active_listings': len(active),
        'expired_listings': len(expired),
        'total_listings': len(listings),
        'total_claims': total_claims,
        'items_collected': items_collected,
        'sdg_score': organization.sdg_score,
        'ranking': organization.ranking,
        'total_impact_points': organization.total_impact_points,
        'total_donations': organization.total_donations,
        'impact_by_category': {category: round(points or 0, 2) for category, points in category_rows},
        'recent_listings': [l.to_dict(now) for l in recent_listings],
        'recent_claims': [c.to_dict() for c in recent_claims],
    }), 200


# ==========================================
#  4. CLAIMS INBOX + LIFECYCLE
# ==========================================
@organization_bp.route('/api/organization/claims', methods=['GET'])
@jwt_required()
def get_incoming_claims():
    """ Claims on this organization's listings, newest first. Optional ?status= filter. """
    user, error = _organization_user()
    if error:
        return error

    organization = _own_organization(user)
    if not organization:
        return jsonify({'error': 'Organization not found'}), 404

    query = Claim.query.join(FoodListing, Claim.food_listing_id == FoodListing.id)\
        .filter(FoodListing.organization_id == organization.id)

    status = request.args.get('status')
    if status:
        query = query.filter(Claim.status == status.upper())

    results = []
    for claim in query.order_by(desc(Claim.claimed_at)).all():
        entry = claim.to_dict()
        entry['student_name'] = claim.student.name
        entry['student_email'] = claim.student.email
        entry['unit'] = claim.listing.unit
        entry['estimated_impact'] = calculate_food_impact_points(claim.listing.category, claim.listing.unit, 1)
        results.append(entry)

    return jsonify(results), 200


@organization_bp.route('/api/organization/claims/<int:claim_id>/confirm', methods=['POST'])
@jwt_required()
def confirm_claim(claim_id):
    user = get_current_user()
    try:
        claim = confirm_order(user, claim_id)
    except FoodRescueError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({'message': 'Order confirmed', 'claim': claim.to_dict()}), 200


@organization_bp.route('/api/organization/claims/<int:claim_id>/ready', methods=['POST'])
@jwt_required()
def ready_claim(claim_id):
    user = get_current_user()
    try:
        claim = mark_order_ready(user, claim_id)
    except FoodRescueError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({'message': 'Order marked as ready', 'claim': claim.to_dict()}), 200


@organization_bp.route('/api/organization/claims/<int:claim_id>/collect', methods=['POST'])
@jwt_required()
def collect_claim(claim_id):
    user = get_current_user()
    try:
        result = mark_claim_as_collected(user, claim_id)
    except FoodRescueError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify(result), 200


@organization_bp.route('/api/organization/claims/<int:claim_id>/no-show', methods=['POST'])
@jwt_required()
def no_show_claim(claim_id):
    user = get_current_user()
    try:
        claim = mark_no_show(user, claim_id)
    except FoodRescueError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({'message': 'Order marked as no-show', 'claim': claim.to_dict()}), 200


@organization_bp.route('/api/organization/claims/<int:claim_id>/cancel', methods=['POST'])
@jwt_required()
def cancel_claim(claim_id):
    user = get_current_user()
    data = request.get_json(silent=True) or {}
    try:
        claim = cancel_order(user, claim_id, reason=data.get('reason'))
    except FoodRescueError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({'message': 'Order cancelled', 'claim': claim.to_dict()}), 200
