"""
SDG Score (0-100) from seven organization metrics.

Each metric is normalised to [0, 1] against a fixed cap and the results are
combined with fixed weights. ``calculate_sdg_score`` is pure; the other
functions gather the raw metrics from the database and persist the result.

This is a different formula from the ranking engine in rankings.py, which
normalises against the best eligible organization instead of fixed caps.
Both write Organization.sdg_score.
"""
import logging
import math
from datetime import timedelta
from sqlalchemy import func
from extensions import db
from models import Organization, OrganizationStatus, FoodListing, ListingStatus, Claim, ClaimStatus
from errors import NotFound
from utils import utcnow

logger = logging.getLogger(__name__)

SDG_WEIGHTS = {
    'impact': 0.25,
    'donation_frequency': 0.20,
    'success_rate': 0.15,
    'active_listings': 0.10,
    'variety': 0.10,
    'recent_activity': 0.10,
    'account_age': 0.10,
}

MAX_CATEGORIES = 6
RECENT_WINDOW_DAYS = 30


# ==========================================
#  NORMALISED SUB-SCORES (0..1)
# ==========================================
def impact_score(total_impact_points):
    """ Log scale; ~10 FIP reaches 1.0. """
    if total_impact_points <= 0:
        return 0.0
    return min(math.log10(total_impact_points + 1) / math.log10(11), 1.0)


def donation_frequency_score(total_donations):
    if total_donations <= 0:
        return 0.0
    return min(total_donations / 50, 1.0)


def success_rate_score(collected_claims, total_claims):
    if total_claims <= 0:
        return 0.0
    return collected_claims / total_claims


def active_listings_score(active_listings):
    if active_listings <= 0:
        return 0.0
    return min(active_listings / 10, 1.0)


def variety_score(categories_used):
    if categories_used <= 0:
        return 0.0
    return min(categories_used / MAX_CATEGORIES, 1.0)


def recent_activity_score(recent_donations):
    if recent_donations <= 0:
        return 0.0
    return min(recent_donations / 10, 1.0)


def account_age_score(account_age_days):
    if account_age_days <= 0:
        return 0.0
    return min(account_age_days / 180, 1.0)


def calculate_sdg_score(metrics):
    """
    Combines the seven sub-scores into a 0-100 integer score.

    ``metrics`` keys: total_impact_points, total_donations, total_claims,
    collected_claims, active_listings, categories_used, recent_donations,
    account_age (days).
    """
    weighted = (
        impact_score(metrics['total_impact_points']) * SDG_WEIGHTS['impact']
        + donation_frequency_score(metrics['total_donations']) * SDG_WEIGHTS['donation_frequency']
        + success_rate_score(metrics['collected_claims'], metrics['total_claims']) * SDG_WEIGHTS['success_rate']
        + active_listings_score(metrics['active_listings']) * SDG_WEIGHTS['active_listings']
        + variety_score(metrics['categories_used']) * SDG_WEIGHTS['variety']
        + recent_activity_score(metrics['recent_donations']) * SDG_WEIGHTS['recent_activity']
        + account_age_score(metrics['account_age']) * SDG_WEIGHTS['account_age']
    )
    # Half-up rounding
    return int(math.floor(weighted * 100 + 0.5))


# ==========================================
#  METRIC GATHERING
# ==========================================
def gather_organization_metrics(organization_id, now=None):
    """ Reads the seven raw SDG inputs for one organization at time ``now``. """
    now = now or utcnow()

    organization = db.session.get(Organization, organization_id)
    if not organization:
        raise NotFound('Organization not found')

    org_claims = Claim.query.join(FoodListing, Claim.food_listing_id == FoodListing.id)\
        .filter(FoodListing.organization_id == organization_id)

    total_claims = org_claims.count()
    collected_claims = org_claims.filter(Claim.status == ClaimStatus.PICKED_UP).count()

    recent_donations = org_claims.filter(
        Claim.status == ClaimStatus.PICKED_UP,
        Claim.collected_at >= now - timedelta(days=RECENT_WINDOW_DAYS)
    ).count()

    active_listings = FoodListing.query.filter(
        FoodListing.organization_id == organization_id,
        FoodListing.status == ListingStatus.AVAILABLE,
        FoodListing.available_until >= now
    ).count()

    categories_used = db.session.query(func.count(func.distinct(FoodListing.category)))\
        .filter(FoodListing.organization_id == organization_id)\
        .scalar() or 0

    account_age_days = (now - organization.created_at).days if organization.created_at else 0

    return {
        'organization_id': organization_id,
        'total_impact_points': organization.total_impact_points or 0.0,
        'total_donations': organization.total_donations or 0,
        'total_claims': total_claims,
        'collected_claims': collected_claims,
        'active_listings': active_listings,
        'categories_used': categories_used,
        'recent_donations': recent_donations,
        'account_age': max(account_age_days, 0),
    }


def calculate_organization_sdg_score(organization_id, now=None):
    return calculate_sdg_score(gather_organization_metrics(organization_id, now))


def update_organization_sdg_score(organization_id, now=None):
    """ Recomputes and stores the SDG score of one organization. """
    sdg_score = calculate_organization_sdg_score(organization_id, now)

    Organization.query.filter_by(id=organization_id).update(
        {Organization.sdg_score: sdg_score}, synchronize_session=False
    )
    db.session.commit()
    return sdg_score


def recalculate_all_sdg_scores(now=None, report=None):
    """
    Recomputes the SDG score of every APPROVED organization.
    A failure on one organization is logged and skipped.
    Returns the number of organizations updated.

    ``report(organization_id, score, error)`` is called after each
    organization, with ``score=None`` when it failed.
    """
    organization_ids = [
        org_id for (org_id,) in db.session.query(Organization.id)
        .filter(Organization.status == OrganizationStatus.APPROVED)
        .order_by(Organization.id).all()
    ]

    updated = 0
    for organization_id in organization_ids:
        try:
            score = update_organization_sdg_score(organization_id, now)
            updated += 1
        except Exception as e:
            db.session.rollback()
            logger.exception("Failed to update SDG score for organization %s", organization_id)
            score, error = None, e
        else:
            error = None

        if report:
            report(organization_id, score, error)

    logger.info("SDG scores recalculated for %d/%d organizations", updated, len(organization_ids))
    return updated
