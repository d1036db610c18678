from datetime import timedelta
from flask import Blueprint, jsonify
from sqlalchemy import func, desc
from models import db, Organization, OrganizationStatus, FoodListing, ListingStatus, Claim, ClaimStatus
from impact_calculator import estimate_carbon_footprint
from utils import utcnow

stats_bp = Blueprint('stats', __name__)

RECENT_ACTIVITY_LIMIT = 5


@stats_bp.route('/api/stats', methods=['GET'])
def get_platform_stats():
    """ Landing-page counters. Public. """
    now = utcnow()

    totals = db.session.query(
        func.sum(Organization.total_impact_points),
        func.sum(Organization.total_donations),
        func.count(Organization.id)
    ).filter(Organization.status == OrganizationStatus.APPROVED).one()

    total_impact = totals[0] or 0
    students_helped = db.session.query(func.count(func.distinct(Claim.user_id))).scalar() or 0

    active_listings = FoodListing.query.filter(
        FoodListing.status == ListingStatus.AVAILABLE,
        FoodListing.available_until >= now
    ).count()

    return jsonify({
        'total_impact_points': round(total_impact, 2),
        'total_donations': totals[1] or 0,
        'partner_organizations': totals[2] or 0,
        'students_helped': students_helped,
        'total_claims': Claim.query.count(),
        'claims_last_30_days': Claim.query.filter(Claim.claimed_at >= now - timedelta(days=30)).count(),
        'active_listings': active_listings,
        'co2_saved_kg': estimate_carbon_footprint(total_impact),
    }), 200


@stats_bp.route('/api/stats/recent-activity', methods=['GET'])
def get_recent_activity():
    """ The last few collections, newest first. """
    rows = db.session.query(Claim, FoodListing, Organization)\
        .join(FoodListing, Claim.food_listing_id == FoodListing.id)\
        .join(Organization, FoodListing.organization_id == Organization.id)\
        .filter(Claim.status == ClaimStatus.PICKED_UP)\
        .order_by(desc(Claim.collected_at))\
        .limit(RECENT_ACTIVITY_LIMIT).all()

    results = []
    for claim, listing, org in rows:
        results.append({
            'claim_id': claim.id,
            'listing_title': listing.title,
            'category': listing.category,
            'organization_name': org.name,
            'organization_slug': org.slug,
            'impact_points': claim.actual_impact_points,
            'collected_at': claim.collected_at.strftime('%Y-%m-%d %H:%M:%S') if claim.collected_at else None,
        })

    return jsonify(results), 200
