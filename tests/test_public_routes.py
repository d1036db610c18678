import pytest
from claim_lifecycle import claim_food, confirm_order, mark_order_ready, mark_claim_as_collected
from models import OrganizationStatus
from rankings import calculate_organization_rankings


def _collect_one(student, org_user, listing):
    claim = claim_food(student, listing.id, 1)[0]
    confirm_order(org_user, claim.id)
    mark_order_ready(org_user, claim.id)
    mark_claim_as_collected(student, claim.id)
    return claim


# ==========================================
#  1. RANKINGS
# ==========================================

def test_top_and_all_rankings(client, organization_factory):
    for donations in (4, 1, 3, 2):
        organization_factory(total_donations=donations, total_impact_points=donations * 0.35)
    calculate_organization_rankings(skip_auth=True)

    top = client.get('/api/rankings/top').get_json()
    assert [o['ranking'] for o in top] == [1, 2, 3]
    assert top[0]['total_donations'] == 4

    top_two = client.get('/api/rankings/top?limit=2').get_json()
    assert len(top_two) == 2

    everyone = client.get('/api/rankings').get_json()
    assert [o['ranking'] for o in everyone] == [1, 2, 3, 4]


def test_unranked_organizations_are_not_listed(client, organization_factory):
    organization_factory(total_donations=0)
    calculate_organization_rankings(skip_auth=True)

    assert client.get('/api/rankings').get_json() == []


def test_public_profile(client, organization, org_user, listing, student):
    _collect_one(student, org_user, listing)

    data = client.get('/api/organizations/campus-kitchen').get_json()

    assert data['name'] == "Campus Kitchen"
    assert data['collected_claims'] == 1
    assert data['impact_from_claims'] == 0.35
    assert data['active_listings'] == 1
    assert data['ranking'] == 1


def test_public_profile_hides_unapproved(client, organization_factory):
    organization_factory(status=OrganizationStatus.PENDING, slug="secret-kitchen")
    assert client.get('/api/organizations/secret-kitchen').status_code == 404


# ==========================================
#  2. PLATFORM STATS
# ==========================================

def test_platform_stats(client, organization, org_user, listing, student, other_student):
    _collect_one(student, org_user, listing)
    claim_food(other_student, listing.id, 1)

    data = client.get('/api/stats').get_json()

    assert data['total_impact_points'] == 0.35
    assert data['total_donations'] == 1
    assert data['partner_organizations'] == 1
    assert data['students_helped'] == 2
    assert data['total_claims'] == 2
    assert data['claims_last_30_days'] == 2
    assert data['active_listings'] == 1
    assert data['co2_saved_kg'] == pytest.approx(0.52, abs=0.01)


def test_recent_activity(client, organization, org_user, listing_factory, student):
    listing = listing_factory(organization, quantity=6)
    for _ in range(6):
        _collect_one(student, org_user, listing)

    activity = client.get('/api/stats/recent-activity').get_json()

    assert len(activity) == 5
    assert activity[0]['organization_name'] == "Campus Kitchen"
    assert activity[0]['impact_points'] == 0.35
