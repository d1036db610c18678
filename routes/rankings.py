from flask import Blueprint, request, jsonify
from sqlalchemy import func
from models import db, Organization, OrganizationStatus, FoodListing, ListingStatus, Claim, ClaimStatus
from rankings import get_top_organizations, get_all_ranked_organizations
from utils import utcnow

rankings_bp = Blueprint('rankings', __name__)

DEFAULT_TOP_LIMIT = 3


def _ranking_entry(org):
    return {
        'id': org.id,
        'name': org.name,
        'slug': org.slug,
        'type': org.type,
        'logo': org.logo,
        'ranking': org.ranking,
        'sdg_score': org.sdg_score,
        'total_impact_points': round(org.total_impact_points, 2),
        'total_donations': org.total_donations,
    }


# ==========================================
#  PUBLIC LEADERBOARD (no login)
# ==========================================
@rankings_bp.route('/api/rankings/top', methods=['GET'])
def get_top_ranked():
    limit = request.args.get('limit', DEFAULT_TOP_LIMIT, type=int)
    if limit < 1:
        limit = DEFAULT_TOP_LIMIT
    return jsonify([_ranking_entry(org) for org in get_top_organizations(limit)]), 200


@rankings_bp.route('/api/rankings', methods=['GET'])
def get_all_ranked():
    return jsonify([_ranking_entry(org) for org in get_all_ranked_organizations()]), 200


@rankings_bp.route('/api/organizations/<slug>', methods=['GET'])
def get_public_profile(slug):
    """ Public page of an APPROVED organization. """
    org = Organization.query.filter_by(slug=slug, status=OrganizationStatus.APPROVED).first()
    if not org:
        return jsonify({'error': 'Organization not found'}), 404

    collected = db.session.query(func.count(Claim.id), func.sum(Claim.actual_impact_points))\
        .join(FoodListing, Claim.food_listing_id == FoodListing.id)\
        .filter(FoodListing.organization_id == org.id, Claim.status == ClaimStatus.PICKED_UP)\
        .one()

    active_listings = FoodListing.query.filter(
        FoodListing.organization_id == org.id,
        FoodListing.status == ListingStatus.AVAILABLE,
        FoodListing.available_until >= utcnow()
    ).count()

    profile = _ranking_entry(org)
    profile.update({
        'description': org.description,
        'address': org.address,
        'collected_claims': collected[0] or 0,
        'impact_from_claims': round(collected[1] or 0, 2),
        'active_listings': active_listings,
    })
    return jsonify(profile), 200
