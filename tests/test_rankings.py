import pytest
from datetime import timedelta
from extensions import db
from models import Organization, OrganizationStatus, Claim, ClaimStatus
from rankings import (calculate_organization_rankings, response_time_score, recent_activity_score,
                      account_age_score, months_since, get_top_organizations, get_all_ranked_organizations)
from errors import Unauthorized
from utils import utcnow

# ==========================================
#  1. FACTOR HELPERS
# ==========================================

@pytest.mark.parametrize("hours, expected", [
    (None, 5),
    (0, 5),
    (24, 5.0),
    (12, 7.5),
    (48, 0),
    (100, 0),
])
def test_response_time_score(hours, expected):
    assert response_time_score(hours) == expected


@pytest.mark.parametrize("recent, total, months, expected", [
    (0, 0, 1, 0),
    (1, 0, 1, 5),
    (2, 6, 6, 5),
    (1, 12, 6, 2.5),
    (0, 12, 6, 0),
])
def test_recent_activity_score(recent, total, months, expected):
    assert recent_activity_score(recent, total, months) == expected


def test_account_age_caps_at_six_months():
    assert account_age_score(3) == 2.5
    assert account_age_score(6) == 5
    assert account_age_score(24) == 5


def test_months_since_never_below_one():
    now = utcnow()
    assert months_since(now - timedelta(days=3), now) == 1
    assert months_since(now - timedelta(days=90), now) == 3
    assert months_since(None, now) == 1


# ==========================================
#  2. ENGINE
# ==========================================

def test_only_callers_with_admin_role_may_trigger(student, admin_user):
    with pytest.raises(Unauthorized):
        calculate_organization_rankings(caller=student)
    with pytest.raises(Unauthorized):
        calculate_organization_rankings()

    result = calculate_organization_rankings(caller=admin_user)
    assert result['success'] is True


def test_ineligible_organizations_are_reset(organization_factory):
    active = organization_factory(total_donations=3, total_impact_points=1.05)
    idle = organization_factory(total_donations=0, ranking=2, sdg_score=40)
    banned = organization_factory(status=OrganizationStatus.BANNED, total_donations=9,
                                  total_impact_points=3.15, ranking=1, sdg_score=90)

    result = calculate_organization_rankings(skip_auth=True)

    assert [r['id'] for r in result['rankings']] == [active.id]
    db.session.expire_all()
    assert db.session.get(Organization, active.id).ranking == 1
    for org_id in (idle.id, banned.id):
        org = db.session.get(Organization, org_id)
        assert org.ranking is None
        assert org.sdg_score == 0


def test_no_eligible_organizations_still_resets(organization_factory):
    stale = organization_factory(total_donations=0, ranking=1, sdg_score=77)

    result = calculate_organization_rankings(skip_auth=True)

    assert result['rankings'] == []
    db.session.expire_all()
    org = db.session.get(Organization, stale.id)
    assert org.ranking is None
    assert org.sdg_score == 0


def test_ranks_are_dense_and_follow_score(organization_factory):
    small = organization_factory(total_donations=1, total_impact_points=0.35)
    big = organization_factory(total_donations=10, total_impact_points=3.5)
    medium = organization_factory(total_donations=5, total_impact_points=1.75)

    result = calculate_organization_rankings(skip_auth=True)

    assert [r['rank'] for r in result['rankings']] == [1, 2, 3]
    assert [r['id'] for r in result['rankings']] == [big.id, medium.id, small.id]
    scores = [r['score'] for r in result['rankings']]
    assert scores == sorted(scores, reverse=True)
    assert all(0 <= s <= 100 for s in scores)

    db.session.expire_all()
    assert db.session.get(Organization, big.id).sdg_score == scores[0]


def test_equal_scores_prefer_higher_impact(organization_factory):
    # 8/10*25 + 20/20*20 == 10/10*25 + 15/20*20 == 40 (plus identical tenure/response scores)
    donations_heavy = organization_factory(total_donations=20, total_impact_points=8)
    impact_heavy = organization_factory(total_donations=15, total_impact_points=10)

    result = calculate_organization_rankings(skip_auth=True)

    first, second = result['rankings']
    assert first['score'] == second['score']
    assert first['id'] == impact_heavy.id
    assert second['id'] == donations_heavy.id


def test_breakdown_factors_sum_to_total(organization_factory, listing_factory, student):
    org = organization_factory(total_donations=2, total_impact_points=0.7)
    listing = listing_factory(org, quantity=2)
    claimed_at = listing.created_at + timedelta(hours=12)
    db.session.add(Claim(food_listing_id=listing.id, user_id=student.id, status=ClaimStatus.PICKED_UP,
                         claimed_at=claimed_at, collected_at=claimed_at))
    db.session.add(Claim(food_listing_id=listing.id, user_id=student.id, status=ClaimStatus.CANCELLED,
                         claimed_at=claimed_at))
    db.session.commit()

    breakdown = calculate_organization_rankings(skip_auth=True)['rankings'][0]['breakdown']

    assert breakdown['impact_points_score'] == 25
    assert breakdown['donation_score'] == 20
    assert breakdown['success_rate_score'] == 7.5
    assert breakdown['active_listings_score'] == 10
    assert breakdown['response_time_score'] == 7.5
    assert breakdown['variety_score'] == round(10 / 6, 2)
    assert breakdown['account_age_score'] == 5
    parts = sum(v for k, v in breakdown.items() if k != 'total')
    assert breakdown['total'] == pytest.approx(parts, abs=0.05)


def test_running_twice_gives_identical_rankings(organization_factory):
    organization_factory(total_donations=4, total_impact_points=1.4)
    organization_factory(total_donations=2, total_impact_points=2.1)
    now = utcnow()

    first = calculate_organization_rankings(skip_auth=True, now=now)
    second = calculate_organization_rankings(skip_auth=True, now=now)

    assert first['rankings'] == second['rankings']


def test_public_queries_order_by_rank(organization_factory):
    for donations in (1, 3, 2, 5):
        organization_factory(total_donations=donations, total_impact_points=donations * 0.35)
    organization_factory(total_donations=0)
    calculate_organization_rankings(skip_auth=True)

    top = get_top_organizations(3)
    assert [o.ranking for o in top] == [1, 2, 3]
    assert len(get_all_ranked_organizations()) == 4
