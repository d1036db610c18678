"""
Organization ranking engine.

Ranks every APPROVED organization with at least one collected donation using
an 8-factor weighted score (0-100) that is normalised against the best
eligible organization. Scores and dense ranks are written back to
Organization.sdg_score / Organization.ranking; every other organization is
reset to ranking=None, sdg_score=0.

Each run recomputes everything from current database state, so overlapping
runs converge and a second run with no data changes is a no-op.
"""
import logging
from collections import defaultdict
from datetime import timedelta
from sqlalchemy import func
from extensions import db
from models import Organization, OrganizationStatus, FoodListing, ListingStatus, Claim, ClaimStatus, Role
from errors import Unauthorized
from utils import utcnow

logger = logging.getLogger(__name__)

# Factor weights (sum = 100)
IMPACT_WEIGHT = 25
DONATION_WEIGHT = 20
SUCCESS_RATE_WEIGHT = 15
ACTIVE_LISTINGS_WEIGHT = 10
RESPONSE_TIME_WEIGHT = 10
VARIETY_WEIGHT = 10
RECENT_ACTIVITY_WEIGHT = 5
ACCOUNT_AGE_WEIGHT = 5

MAX_RESPONSE_HOURS = 48
# Response-time score when no listing of the organization was ever claimed
DEFAULT_RESPONSE_SCORE = 5
TOTAL_CATEGORIES = 6
RECENT_WINDOW_DAYS = 30
DAYS_PER_MONTH = 30
ACCOUNT_AGE_CAP_MONTHS = 6


# ==========================================
#  FACTOR SCORES
# ==========================================
def response_time_score(avg_response_hours):
    if avg_response_hours is None or avg_response_hours <= 0:
        return DEFAULT_RESPONSE_SCORE
    return max(0, (1 - min(avg_response_hours / MAX_RESPONSE_HOURS, 1)) * RESPONSE_TIME_WEIGHT)


def recent_activity_score(recent_donations, total_donations, months_active):
    avg_monthly = total_donations / months_active
    if avg_monthly > 0:
        ratio = min(recent_donations / avg_monthly, 1)
    else:
        ratio = 1 if recent_donations > 0 else 0
    return ratio * RECENT_ACTIVITY_WEIGHT


def account_age_score(months_active):
    return (min(months_active, ACCOUNT_AGE_CAP_MONTHS) / ACCOUNT_AGE_CAP_MONTHS) * ACCOUNT_AGE_WEIGHT


def months_since(start, now):
    """ Whole-or-fractional 30-day months since ``start``, never below 1. """
    if start is None:
        return 1
    return max((now - start).total_seconds() / (DAYS_PER_MONTH * 24 * 3600), 1)


def score_organization(org, stats, max_impact, max_donations, max_active_listings, now):
    """
    Returns the 8-factor breakdown for one eligible organization.

    ``stats`` holds the per-organization aggregates gathered by
    _gather_ranking_stats().
    """
    impact = (org.total_impact_points / max_impact) * IMPACT_WEIGHT if max_impact > 0 else 0
    donations = (org.total_donations / max_donations) * DONATION_WEIGHT if max_donations > 0 else 0

    total_claims = stats['total_claims']
    success_rate = stats['collected_claims'] / total_claims if total_claims > 0 else 0
    success = success_rate * SUCCESS_RATE_WEIGHT

    active = (stats['active_listings'] / max_active_listings) * ACTIVE_LISTINGS_WEIGHT \
        if max_active_listings > 0 else 0

    response = response_time_score(stats['avg_response_hours'])
    variety = min(stats['categories'] / TOTAL_CATEGORIES, 1) * VARIETY_WEIGHT

    # Tenure counts from approval, falling back to creation time
    months_active = months_since(org.verified_at or org.created_at, now)
    recent = recent_activity_score(stats['recent_donations'], org.total_donations, months_active)
    age = account_age_score(months_active)

    return {
        'impact_points_score': round(impact, 2),
        'donation_score': round(donations, 2),
        'success_rate_score': round(success, 2),
        'active_listings_score': round(active, 2),
        'response_time_score': round(response, 2),
        'variety_score': round(variety, 2),
        'recent_activity_score': round(recent, 2),
        'account_age_score': round(age, 2),
        'total': round(impact + donations + success + active + response + variety + recent + age, 2),
    }


# ==========================================
#  DATA GATHERING
# ==========================================
def _gather_ranking_stats(org_ids, now):
    """ One pass of grouped queries for all eligible organizations. """
    stats = {
        org_id: {
            'total_claims': 0,
            'collected_claims': 0,
            'recent_donations': 0,
            'active_listings': 0,
            'categories': 0,
            'avg_response_hours': None,
        }
        for org_id in org_ids
    }
    if not org_ids:
        return stats

    # Claim counts per organization
    claim_rows = db.session.query(FoodListing.organization_id, Claim.status, func.count(Claim.id))\
        .join(Claim, Claim.food_listing_id == FoodListing.id)\
        .filter(FoodListing.organization_id.in_(org_ids))\
        .group_by(FoodListing.organization_id, Claim.status).all()
    for org_id, status, count in claim_rows:
        stats[org_id]['total_claims'] += count
        if status == ClaimStatus.PICKED_UP:
            stats[org_id]['collected_claims'] += count

    recent_rows = db.session.query(FoodListing.organization_id, func.count(Claim.id))\
        .join(Claim, Claim.food_listing_id == FoodListing.id)\
        .filter(
            FoodListing.organization_id.in_(org_ids),
            Claim.status == ClaimStatus.PICKED_UP,
            Claim.collected_at >= now - timedelta(days=RECENT_WINDOW_DAYS)
        ).group_by(FoodListing.organization_id).all()
    for org_id, count in recent_rows:
        stats[org_id]['recent_donations'] = count

    active_rows = db.session.query(FoodListing.organization_id, func.count(FoodListing.id))\
        .filter(
            FoodListing.organization_id.in_(org_ids),
            FoodListing.status == ListingStatus.AVAILABLE,
            FoodListing.available_until >= now
        ).group_by(FoodListing.organization_id).all()
    for org_id, count in active_rows:
        stats[org_id]['active_listings'] = count

    category_rows = db.session.query(FoodListing.organization_id, func.count(func.distinct(FoodListing.category)))\
        .filter(FoodListing.organization_id.in_(org_ids))\
        .group_by(FoodListing.organization_id).all()
    for org_id, count in category_rows:
        stats[org_id]['categories'] = count

    # Response time: listing creation -> its first claim
    first_claims = db.session.query(
        FoodListing.organization_id,
        FoodListing.created_at,
        func.min(Claim.claimed_at)
    ).join(Claim, Claim.food_listing_id == FoodListing.id)\
        .filter(FoodListing.organization_id.in_(org_ids))\
        .group_by(FoodListing.id, FoodListing.organization_id, FoodListing.created_at).all()

    response_hours = defaultdict(list)
    for org_id, created_at, first_claimed_at in first_claims:
        if created_at and first_claimed_at:
            response_hours[org_id].append((first_claimed_at - created_at).total_seconds() / 3600)
    for org_id, hours in response_hours.items():
        stats[org_id]['avg_response_hours'] = sum(hours) / len(hours)

    return stats


# ==========================================
#  ENGINE
# ==========================================
def calculate_organization_rankings(caller=None, skip_auth=False, now=None):
    """
    Recomputes scores and ranks for all organizations.

    Only ADMIN callers may trigger it unless ``skip_auth`` is set (internal
    refresh after a collection, scheduled jobs). Errors are logged, the
    session is rolled back and the error propagates.
    """
    if not skip_auth and (caller is None or caller.role != Role.ADMIN):
        raise Unauthorized('Unauthorized')

    now = now or utcnow()

    try:
        organizations = Organization.query.filter_by(status=OrganizationStatus.APPROVED).all()
        eligible = [org for org in organizations if org.total_donations > 0]
        eligible_ids = [org.id for org in eligible]

        # Everyone else loses their rank (ineligible or no longer APPROVED)
        reset_query = Organization.query
        if eligible_ids:
            reset_query = reset_query.filter(Organization.id.notin_(eligible_ids))
        reset_query.update(
            {Organization.ranking: None, Organization.sdg_score: 0},
            synchronize_session=False
        )

        if not eligible:
            db.session.commit()
            logger.info("No eligible organizations to rank")
            return {'success': True, 'message': 'No eligible organizations to rank', 'rankings': []}

        stats = _gather_ranking_stats(eligible_ids, now)
        max_impact = max(org.total_impact_points for org in eligible)
        max_donations = max(org.total_donations for org in eligible)
        max_active_listings = max(stats[org_id]['active_listings'] for org_id in eligible_ids)

        scored = []
        for org in eligible:
            breakdown = score_organization(org, stats[org.id], max_impact, max_donations,
                                           max_active_listings, now)
            scored.append((org, breakdown))

        # Highest score first; ties go to the larger impact total, then the older id
        scored.sort(key=lambda pair: (-pair[1]['total'], -pair[0].total_impact_points, pair[0].id))

        rankings = []
        for index, (org, breakdown) in enumerate(scored):
            org.ranking = index + 1
            org.sdg_score = breakdown['total']
            rankings.append({
                'rank': index + 1,
                'id': org.id,
                'name': org.name,
                'score': breakdown['total'],
                'breakdown': breakdown,
            })

        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Error calculating rankings")
        raise

    logger.info("Rankings updated for %d organizations", len(rankings))
    return {
        'success': True,
        'message': f'Successfully updated rankings for {len(rankings)} organizations',
        'rankings': rankings,
    }


def get_top_organizations(limit=3):
    return Organization.query.filter(
        Organization.status == OrganizationStatus.APPROVED,
        Organization.ranking.isnot(None)
    ).order_by(Organization.ranking.asc()).limit(limit).all()


def get_all_ranked_organizations():
    return Organization.query.filter(
        Organization.status == OrganizationStatus.APPROVED,
        Organization.ranking.isnot(None)
    ).order_by(Organization.ranking.asc()).all()
