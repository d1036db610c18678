import pytest
from datetime import timedelta
from extensions import db
from models import Claim, ClaimStatus, OrganizationStatus, Organization
from claim_lifecycle import claim_food, confirm_order, mark_order_ready
from utils import utcnow

# ==========================================
#  FIXTURES
# ==========================================

@pytest.fixture
def student_headers(login, student):
    return login(student)


@pytest.fixture
def menu(organization, listing_factory):
    """Three open listings and one that no longer shows up."""
    return {
        'curry': listing_factory(organization, title="Veg Curry", category="Meals", is_vegetarian=True,
                                 is_halal=True),
        'croissant': listing_factory(organization, title="Croissants", category="Bakery", unit="pieces",
                                     description="Butter croissants", is_vegetarian=True),
        'juice': listing_factory(organization, title="Orange Juice", category="Beverages", is_vegan=True),
        'stale': listing_factory(organization, title="Old Sandwiches",
                                 available_until=utcnow() - timedelta(hours=2)),
    }


# ==========================================
#  1. BROWSE
# ==========================================

def test_browse_hides_expired_listings(client, menu, student_headers):
    data = client.get('/api/listings', headers=student_headers).get_json()

    titles = {l['title'] for l in data}
    assert titles == {"Veg Curry", "Croissants", "Orange Juice"}
    assert all(l['remaining_quantity'] == 3 for l in data)


def test_browse_hides_sold_out_and_unapproved(client, menu, organization, student, student_headers,
                                              organization_factory, listing_factory):
    claim_food(student, menu['juice'].id, 3)
    pending = organization_factory(status=OrganizationStatus.PENDING)
    listing_factory(pending, title="Pending Pies")

    titles = {l['title'] for l in client.get('/api/listings', headers=student_headers).get_json()}
    assert titles == {"Veg Curry", "Croissants"}


@pytest.mark.parametrize("query, expected", [
    ("?search=croiss", {"Croissants"}),
    ("?search=BUTTER", {"Croissants"}),
    ("?category=Meals", {"Veg Curry"}),
    ("?category=ALL", {"Veg Curry", "Croissants", "Orange Juice"}),
    ("?vegetarian=true", {"Veg Curry", "Croissants"}),
    ("?vegan=true", {"Orange Juice"}),
    ("?halal=true&vegetarian=true", {"Veg Curry"}),
])
def test_browse_filters(client, menu, student_headers, query, expected):
    data = client.get(f'/api/listings{query}', headers=student_headers).get_json()
    assert {l['title'] for l in data} == expected


def test_browse_is_for_students_only(client, menu, login, org_user):
    response = client.get('/api/listings', headers=login(org_user))
    assert response.status_code == 403


def test_banned_student_is_turned_away(client, menu, student, student_headers):
    student.is_banned = True
    student.banned_reason = "Abuse"
    db.session.commit()

    response = client.get('/api/listings', headers=student_headers)
    assert response.status_code == 403
    assert "Abuse" in response.get_json()['error']


def test_listing_detail(client, listing, student_headers):
    data = client.get(f'/api/listings/{listing.id}', headers=student_headers).get_json()

    assert data['organization']['name'] == "Campus Kitchen"
    assert data['estimated_impact_per_unit'] == 0.35
    assert data['my_claims'] == []


# ==========================================
#  2. CLAIMS
# ==========================================

def test_claim_endpoint(client, listing, student_headers):
    response = client.post('/api/claims', json={"listing_id": listing.id, "quantity": 2},
                           headers=student_headers)

    assert response.status_code == 201
    claims = response.get_json()['claims']
    assert len(claims) == 2
    assert [c['item_number'] for c in claims] == [1, 2]
    assert Claim.query.count() == 2


def test_claim_endpoint_reports_capacity(client, listing, student_headers):
    response = client.post('/api/claims', json={"listing_id": listing.id, "quantity": 5},
                           headers=student_headers)

    assert response.status_code == 400
    assert response.get_json() == {"error": "Only 3 portions available", "available": 3}
    assert Claim.query.count() == 0


def test_claim_endpoint_errors(client, listing, student_headers, login, org_user):
    assert client.post('/api/claims', json={}, headers=student_headers).status_code == 400
    assert client.post('/api/claims', json={"listing_id": 999}, headers=student_headers).status_code == 404
    assert client.post('/api/claims', json={"listing_id": listing.id, "quantity": 0},
                       headers=student_headers).status_code == 400
    assert client.post('/api/claims', json={"listing_id": listing.id},
                       headers=login(org_user)).status_code == 403


def test_collect_and_list_own_claims(client, listing, student, org_user, organization, student_headers):
    claim_id = client.post('/api/claims', json={"listing_id": listing.id}, headers=student_headers)\
        .get_json()['claims'][0]['id']

    response = client.post(f'/api/claims/{claim_id}/collect', headers=student_headers)
    assert response.status_code == 400

    confirm_order(org_user, claim_id)
    mark_order_ready(org_user, claim_id)

    response = client.post(f'/api/claims/{claim_id}/collect', headers=student_headers)
    assert response.status_code == 200
    assert response.get_json()['impact_points'] == 0.35

    mine = client.get('/api/claims', headers=student_headers).get_json()
    assert mine[0]['status'] == ClaimStatus.PICKED_UP
    assert mine[0]['organization_name'] == "Campus Kitchen"

    db.session.expire_all()
    assert db.session.get(Organization, organization.id).total_donations == 1


def test_cancel_own_claim(client, listing, student_headers, other_student, login):
    claim_id = client.post('/api/claims', json={"listing_id": listing.id}, headers=student_headers)\
        .get_json()['claims'][0]['id']

    response = client.post(f'/api/claims/{claim_id}/cancel', headers=login(other_student))
    assert response.status_code == 403

    response = client.post(f'/api/claims/{claim_id}/cancel', json={"reason": "Changed plans"},
                           headers=student_headers)
    assert response.status_code == 200
    assert response.get_json()['claim']['status'] == ClaimStatus.CANCELLED

    response = client.post(f'/api/claims/{claim_id}/cancel', headers=student_headers)
    assert response.status_code == 400


def test_banned_organization_listing_cannot_be_claimed(client, organization, listing, student_headers):
    organization.status = OrganizationStatus.BANNED
    db.session.commit()

    response = client.post('/api/claims', json={"listing_id": listing.id}, headers=student_headers)

    assert response.status_code == 404
    assert Claim.query.count() == 0
    assert client.get(f'/api/listings/{listing.id}', headers=student_headers).status_code == 404
