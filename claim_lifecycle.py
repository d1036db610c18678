"""
Claim lifecycle controller.

    PENDING --confirm--> CONFIRMED --ready--> READY --collect--> PICKED_UP
    PENDING / CONFIRMED / READY --cancel--> CANCELLED
    READY --no-show--> NO_SHOW

Every transition validates the caller and the current status, then applies
all of its record changes in one transaction. Status changes are
conditional UPDATEs keyed on the expected prior status, so two concurrent
requests cannot both move the same claim; the loser gets InvalidState and
its transaction is rolled back. Transitions that may flip the listing
status first lock the listing row.
"""
import logging
from extensions import db
from models import (Claim, ClaimStatus, FoodItem, ItemStatus, FoodListing, ListingStatus,
                    Organization, OrganizationStatus, Role)
from errors import NotFound, Unauthorized, InvalidState, CapacityError, ValidationError
from impact_calculator import calculate_food_impact_points
from scheduler import dispatch_ranking_refresh
from utils import utcnow, log_activity, emit_event, send_notification

logger = logging.getLogger(__name__)

NO_SHOW_REASON = 'Student did not show up for collection'
DEFAULT_CANCEL_REASON = 'No reason provided'


# ==========================================
#  HELPERS
# ==========================================
def _get_claim(claim_id):
    claim = db.session.get(Claim, claim_id)
    if not claim:
        raise NotFound('Claim not found')
    return claim


def _ensure_not_banned(user):
    if user.is_banned:
        raise Unauthorized(f"Your account has been banned. Reason: {user.banned_reason or 'No reason provided'}")


def _owns_listing(user, listing):
    organization = Organization.query.filter_by(user_id=user.id).first()
    return organization is not None and listing.organization_id == organization.id


def _require_listing_owner(user, claim, message):
    if user is None or user.role != Role.ORGANIZATION or not _owns_listing(user, claim.listing):
        raise Unauthorized(message)


def _parse_quantity(quantity):
    """ Whole numbers only: booleans and fractions are rejected, not truncated. """
    if isinstance(quantity, bool):
        raise ValidationError('Invalid quantity')
    try:
        whole = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError('Invalid quantity')
    if not isinstance(quantity, str) and whole != quantity:
        raise ValidationError('Invalid quantity')
    if whole < 1:
        raise ValidationError('Invalid quantity')
    return whole


def _lock_listing(listing_id):
    """
    Row-locks the parent listing for the rest of the transaction.
    Transitions that decide the listing status from its items' statuses
    are serialised per listing this way.
    """
    return FoodListing.query.filter_by(id=listing_id)\
        .populate_existing().with_for_update().one_or_none()


def _move_claim(claim, expected_status, values):
    """ Conditional status change; zero rows means someone got there first. """
    updated = Claim.query.filter(
        Claim.id == claim.id,
        Claim.status == expected_status
    ).update(values, synchronize_session=False)

    if updated != 1:
        raise InvalidState('Claim was modified by another request. Please refresh and try again.')


def _set_item_status(food_item_id, status):
    if food_item_id:
        FoodItem.query.filter_by(id=food_item_id).update(
            {FoodItem.status: status}, synchronize_session=False
        )


def _release_item(claim):
    """ Puts the claimed unit back on the shelf and reopens a sold-out listing. """
    _lock_listing(claim.food_listing_id)
    _set_item_status(claim.food_item_id, ItemStatus.AVAILABLE)
    FoodListing.query.filter(
        FoodListing.id == claim.food_listing_id,
        FoodListing.status == ListingStatus.CLAIMED
    ).update({FoodListing.status: ListingStatus.AVAILABLE}, synchronize_session=False)


def _publish(claim, action, user_id):
    """ Post-commit side effects: audit trail + realtime event. """
    db.session.refresh(claim)
    log_activity(user_id, action, f"Claim {claim.id} on listing {claim.food_listing_id} -> {claim.status}")
    emit_event('claim_updated', {
        'claim_id': claim.id,
        'listing_id': claim.food_listing_id,
        'organization_id': claim.listing.organization_id,
        'user_id': claim.user_id,
        'status': claim.status,
    })


# ==========================================
#  1. CLAIM CREATION
# ==========================================
def claim_food(user, listing_id, quantity, now=None):
    """
    Reserves ``quantity`` AVAILABLE items of a listing for a student.

    All-or-nothing: either one PENDING claim per item is created, or nothing
    changes. Returns the list of new Claim rows.
    """
    now = now or utcnow()

    if user is None or user.role != Role.STUDENT:
        raise Unauthorized('Unauthorized')
    _ensure_not_banned(user)

    quantity = _parse_quantity(quantity)

    try:
        listing = _lock_listing(listing_id)
        if not listing:
            raise NotFound('Listing not found')

        # Listings of pending, rejected or banned organizations are hidden from students
        if listing.organization.status != OrganizationStatus.APPROVED:
            raise NotFound('Listing not found')

        if listing.status != ListingStatus.AVAILABLE:
            raise InvalidState('Listing is not available')

        if listing.is_expired(now):
            raise InvalidState('Listing has expired')

        # Lock the candidate rows; concurrent claimers skip past them
        item_ids = [item_id for (item_id,) in db.session.query(FoodItem.id).filter(
            FoodItem.food_listing_id == listing.id,
            FoodItem.status == ItemStatus.AVAILABLE
        ).order_by(FoodItem.item_number).limit(quantity).with_for_update(skip_locked=True).all()]

        if len(item_ids) < quantity:
            raise CapacityError(f'Only {len(item_ids)} {listing.unit} available', available=len(item_ids))

        claimed = FoodItem.query.filter(
            FoodItem.id.in_(item_ids),
            FoodItem.status == ItemStatus.AVAILABLE
        ).update({FoodItem.status: ItemStatus.CLAIMED}, synchronize_session=False)

        if claimed != quantity:
            raise CapacityError(f'Only {claimed} {listing.unit} available', available=claimed)

        estimated_impact = calculate_food_impact_points(listing.category, listing.unit, 1)

        claims = []
        for item_id in item_ids:
            claim = Claim(
                food_item_id=item_id,
                food_listing_id=listing.id,
                user_id=user.id,
                status=ClaimStatus.PENDING,
                item_status=ItemStatus.CLAIMED,
                claimed_at=now,
                estimated_impact_points=estimated_impact,
            )
            db.session.add(claim)
            claims.append(claim)

        remaining = FoodItem.query.filter_by(food_listing_id=listing.id, status=ItemStatus.AVAILABLE).count()
        if remaining == 0:
            listing.status = ListingStatus.CLAIMED

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Student %s claimed %d item(s) of listing %s", user.id, quantity, listing.id)
    log_activity(user.id, "CLAIM_FOOD", f"Claimed {quantity} {listing.unit} of {listing.title}")
    emit_event('claim_created', {
        'listing_id': listing.id,
        'organization_id': listing.organization_id,
        'claim_ids': [c.id for c in claims],
    })

    organization = listing.organization
    send_notification(
        f"New order: {listing.title}",
        [organization.email or organization.owner.email],
        f"Hello {organization.name},\n\n{user.name} just claimed {quantity} {listing.unit} of "
        f"{listing.title}.\n\nPlease confirm the order from your dashboard."
    )
    return claims


# ==========================================
#  2. CONFIRM (PENDING -> CONFIRMED)
# ==========================================
def confirm_order(user, claim_id, now=None):
    now = now or utcnow()
    claim = _get_claim(claim_id)

    _require_listing_owner(user, claim, 'You can only confirm orders for your own listings')

    if claim.status != ClaimStatus.PENDING:
        raise InvalidState('Can only confirm pending orders')

    try:
        _move_claim(claim, ClaimStatus.PENDING, {
            Claim.status: ClaimStatus.CONFIRMED,
            Claim.item_status: ItemStatus.CONFIRMED,
            Claim.confirmed_at: now,
        })
        _set_item_status(claim.food_item_id, ItemStatus.CONFIRMED)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _publish(claim, "CONFIRM_ORDER", user.id)
    return claim


# ==========================================
#  3. READY (CONFIRMED -> READY)
# ==========================================
def mark_order_ready(user, claim_id, now=None):
    now = now or utcnow()
    claim = _get_claim(claim_id)

    _require_listing_owner(user, claim, 'You can only mark ready orders for your own listings')

    if claim.status != ClaimStatus.CONFIRMED:
        raise InvalidState('Can only mark confirmed orders as ready')

    try:
        _move_claim(claim, ClaimStatus.CONFIRMED, {
            Claim.status: ClaimStatus.READY,
            Claim.item_status: ItemStatus.READY,
            Claim.ready_at: now,
        })
        _set_item_status(claim.food_item_id, ItemStatus.READY)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _publish(claim, "ORDER_READY", user.id)
    send_notification(
        f"Ready for pickup: {claim.listing.title}",
        [claim.student.email],
        f"Hello {claim.student.name},\n\nYour order of {claim.listing.title} is ready.\n\n"
        f"Pickup location: {claim.listing.pickup_location}"
    )
    return claim


# ==========================================
#  4. COLLECT (READY -> PICKED_UP)
# ==========================================
def mark_claim_as_collected(user, claim_id, now=None):
    """
    Completes a claim and credits the organization.

    Claim, item, organization counters and (when this was the last
    uncollected item) the listing change in one transaction. A ranking
    refresh is dispatched afterwards; its failure never reaches the caller.
    """
    now = now or utcnow()

    if user is None or user.role not in (Role.STUDENT, Role.ORGANIZATION):
        raise Unauthorized('Unauthorized')
    if user.role == Role.STUDENT:
        _ensure_not_banned(user)

    claim = _get_claim(claim_id)

    if user.role == Role.STUDENT and claim.user_id != user.id:
        raise Unauthorized('You can only mark your own claims as collected')
    if user.role == Role.ORGANIZATION and not _owns_listing(user, claim.listing):
        raise Unauthorized('You can only mark collections for your own listings')

    if claim.status == ClaimStatus.PICKED_UP:
        raise InvalidState('Claim already marked as collected')

    if claim.status != ClaimStatus.READY:
        raise InvalidState('Order must be marked as ready before collection')

    if not claim.food_item_id:
        raise InvalidState('Invalid claim: no food item linked')

    listing = claim.listing
    actual_impact = calculate_food_impact_points(listing.category, listing.unit, 1)

    try:
        # Held until commit so the "last item" count below sees every other collect
        _lock_listing(listing.id)
        _move_claim(claim, ClaimStatus.READY, {
            Claim.status: ClaimStatus.PICKED_UP,
            Claim.item_status: ItemStatus.COLLECTED,
            Claim.collected_at: now,
            Claim.actual_impact_points: actual_impact,
        })
        _set_item_status(claim.food_item_id, ItemStatus.COLLECTED)

        # In-place increments: concurrent collections never lose an update
        Organization.query.filter_by(id=listing.organization_id).update({
            Organization.total_donations: Organization.total_donations + 1,
            Organization.total_impact_points: Organization.total_impact_points + actual_impact,
        }, synchronize_session=False)

        uncollected = FoodItem.query.filter(
            FoodItem.food_listing_id == listing.id,
            FoodItem.status != ItemStatus.COLLECTED
        ).count()
        if uncollected == 0:
            FoodListing.query.filter_by(id=listing.id).update(
                {FoodListing.status: ListingStatus.COLLECTED}, synchronize_session=False
            )

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _publish(claim, "COLLECT_ORDER", user.id)
    emit_event('claim_collected', {
        'claim_id': claim.id,
        'organization_id': listing.organization_id,
        'impact_points': actual_impact,
    })

    dispatch_ranking_refresh()

    return {
        'success': True,
        'message': 'Claim marked as collected successfully',
        'impact_points': actual_impact,
    }


# ==========================================
#  5. NO-SHOW (READY -> NO_SHOW)
# ==========================================
def mark_no_show(user, claim_id, now=None):
    now = now or utcnow()
    claim = _get_claim(claim_id)

    _require_listing_owner(user, claim, 'You can only mark no-show for your own listings')

    if claim.status != ClaimStatus.READY:
        raise InvalidState('Can only mark ready orders as no-show')

    try:
        _move_claim(claim, ClaimStatus.READY, {
            Claim.status: ClaimStatus.NO_SHOW,
            Claim.item_status: ItemStatus.AVAILABLE,
            Claim.cancelled_at: now,
            Claim.cancelled_by: Role.ORGANIZATION,
            Claim.cancellation_reason: NO_SHOW_REASON,
        })
        _release_item(claim)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _publish(claim, "NO_SHOW", user.id)
    return claim


# ==========================================
#  6. CANCEL (any non-terminal -> CANCELLED)
# ==========================================
def cancel_order(user, claim_id, reason=None, now=None):
    now = now or utcnow()
    claim = _get_claim(claim_id)

    if user is None:
        raise Unauthorized('Unauthorized')

    if user.role == Role.STUDENT:
        if claim.user_id != user.id:
            raise Unauthorized('You can only cancel your own orders')
    elif user.role == Role.ORGANIZATION:
        if not _owns_listing(user, claim.listing):
            raise Unauthorized('You can only cancel orders for your own listings')
    else:
        raise Unauthorized('Only the student or the organization can cancel an order')

    if claim.status == ClaimStatus.PICKED_UP:
        raise InvalidState('Cannot cancel order that has already been picked up')

    if claim.status in (ClaimStatus.CANCELLED, ClaimStatus.NO_SHOW):
        raise InvalidState('Order is already cancelled')

    try:
        _move_claim(claim, claim.status, {
            Claim.status: ClaimStatus.CANCELLED,
            Claim.item_status: ItemStatus.AVAILABLE,
            Claim.cancelled_at: now,
            Claim.cancelled_by: user.role,
            Claim.cancellation_reason: reason or DEFAULT_CANCEL_REASON,
        })
        _release_item(claim)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    _publish(claim, "CANCEL_ORDER", user.id)
    return claim
