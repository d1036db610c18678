from werkzeug.security import generate_password_hash, check_password_hash
from extensions import db
from utils import utcnow


# ==========================================
#  STATUS VOCABULARIES
# ==========================================
class Role:
    ADMIN = 'ADMIN'
    STUDENT = 'STUDENT'
    ORGANIZATION = 'ORGANIZATION'

    ALL = (ADMIN, STUDENT, ORGANIZATION)


class OrganizationStatus:
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    BANNED = 'BANNED'


class ListingStatus:
    AVAILABLE = 'AVAILABLE'
    CLAIMED = 'CLAIMED'
    COLLECTED = 'COLLECTED'
    # Never stored: reported when available_until has passed
    EXPIRED = 'EXPIRED'


class ItemStatus:
    AVAILABLE = 'AVAILABLE'
    CLAIMED = 'CLAIMED'
    CONFIRMED = 'CONFIRMED'
    READY = 'READY'
    COLLECTED = 'COLLECTED'


class ClaimStatus:
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    READY = 'READY'
    PICKED_UP = 'PICKED_UP'
    CANCELLED = 'CANCELLED'
    NO_SHOW = 'NO_SHOW'

    TERMINAL = (PICKED_UP, CANCELLED, NO_SHOW)


# ==========================================
#  1. USER MODEL
# ==========================================
class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    role = db.Column(db.String(20), nullable=False, default=Role.STUDENT)

    # --- MODERATION ---
    is_banned = db.Column(db.Boolean, default=False, nullable=False)
    banned_reason = db.Column(db.String(255), nullable=True)
    banned_at = db.Column(db.DateTime, nullable=True)
    banned_by = db.Column(db.Integer, nullable=True)

    # --- TIMESTAMPS ---
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    claims = db.relationship('Claim', backref='student', lazy=True)
    organization = db.relationship('Organization', backref='owner', uselist=False, lazy=True)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'role': self.role,
            'is_banned': self.is_banned,
            'banned_reason': self.banned_reason,
        }


# ==========================================
#  2. ORGANIZATION MODEL
# ==========================================
class Organization(db.Model):
    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True)

    name = db.Column(db.String(150), nullable=False)
    slug = db.Column(db.String(160), unique=True, nullable=False)
    type = db.Column(db.String(50), nullable=False, default='OTHER')
    description = db.Column(db.Text)
    address = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(20))
    email = db.Column(db.String(120))
    logo = db.Column(db.String(500))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)

    # --- APPROVAL ---
    status = db.Column(db.String(20), nullable=False, default=OrganizationStatus.PENDING, index=True)
    rejection_reason = db.Column(db.String(255))
    verified_by = db.Column(db.Integer, nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)
    banned_reason = db.Column(db.String(255))
    banned_by = db.Column(db.Integer, nullable=True)
    banned_at = db.Column(db.DateTime, nullable=True)

    # --- IMPACT AGGREGATES ---
    # Counters only move through in-place SQL increments on collection
    total_impact_points = db.Column(db.Float, nullable=False, default=0.0)
    total_donations = db.Column(db.Integer, nullable=False, default=0)
    # Overwritten by the ranking engine / SDG scorer
    sdg_score = db.Column(db.Float, nullable=False, default=0.0)
    ranking = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    listings = db.relationship('FoodListing', backref='organization', lazy=True,
                               cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'type': self.type,
            'description': self.description,
            'address': self.address,
            'phone': self.phone,
            'email': self.email,
            'logo': self.logo,
            'status': self.status,
            'rejection_reason': self.rejection_reason,
            'banned_reason': self.banned_reason,
            'total_impact_points': self.total_impact_points,
            'total_donations': self.total_donations,
            'sdg_score': self.sdg_score,
            'ranking': self.ranking,
            'created_at': self.created_at.strftime('%Y-%m-%d %H:%M:%S') if self.created_at else None,
        }


# ==========================================
#  3. FOOD LISTING MODEL
# ==========================================
class FoodListing(db.Model):
    __tablename__ = 'food_listings'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)

    title = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    category = db.Column(db.String(50), nullable=False)
    unit = db.Column(db.String(20), nullable=False)
    # Number of FoodItem rows created with the listing
    quantity = db.Column(db.Integer, nullable=False)

    available_from = db.Column(db.DateTime, nullable=False)
    available_until = db.Column(db.DateTime, nullable=False)
    pickup_location = db.Column(db.String(255), nullable=False, default='')

    status = db.Column(db.String(20), nullable=False, default=ListingStatus.AVAILABLE, index=True)

    # --- DIETARY ---
    is_vegetarian = db.Column(db.Boolean, default=False)
    is_vegan = db.Column(db.Boolean, default=False)
    is_halal = db.Column(db.Boolean, default=False)
    allergens = db.Column(db.String(255), default='')
    tags = db.Column(db.String(255), default='')

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship('FoodItem', backref='listing', lazy=True,
                            order_by='FoodItem.item_number', cascade='all, delete-orphan')
    claims = db.relationship('Claim', backref='listing', lazy=True,
                             order_by='Claim.claimed_at', cascade='all, delete-orphan')

    def is_expired(self, now=None):
        return self.available_until < (now or utcnow())

    def display_status(self, now=None):
        if self.status == ListingStatus.AVAILABLE and self.is_expired(now):
            return ListingStatus.EXPIRED
        return self.status

    def remaining_quantity(self):
        return sum(1 for item in self.items if item.status == ItemStatus.AVAILABLE)

    def to_dict(self, now=None):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'title': self.title,
            'description': self.description,
            'category': self.category,
            'unit': self.unit,
            'quantity': self.quantity,
            'remaining_quantity': self.remaining_quantity(),
            'available_from': self.available_from.strftime('%Y-%m-%d %H:%M:%S'),
            'available_until': self.available_until.strftime('%Y-%m-%d %H:%M:%S'),
            'pickup_location': self.pickup_location,
            'status': self.display_status(now),
            'is_vegetarian': self.is_vegetarian,
            'is_vegan': self.is_vegan,
            'is_halal': self.is_halal,
            'allergens': [a for a in (self.allergens or '').split(',') if a],
            'tags': [t for t in (self.tags or '').split(',') if t],
            'created_at': self.created_at.strftime('%Y-%m-%d %H:%M:%S') if self.created_at else None,
        }


# ==========================================
#  4. FOOD ITEM MODEL
# ==========================================
class FoodItem(db.Model):
    """ One physical unit of a listing, numbered 1..quantity. """
    __tablename__ = 'food_items'

    id = db.Column(db.Integer, primary_key=True)
    food_listing_id = db.Column(db.Integer, db.ForeignKey('food_listings.id'), nullable=False, index=True)
    item_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ItemStatus.AVAILABLE, index=True)

    __table_args__ = (db.UniqueConstraint('food_listing_id', 'item_number', name='_listing_item_uc'),)


# ==========================================
#  5. CLAIM MODEL
# ==========================================
class Claim(db.Model):
    __tablename__ = 'claims'

    id = db.Column(db.Integer, primary_key=True)
    food_item_id = db.Column(db.Integer, db.ForeignKey('food_items.id'), nullable=True)
    food_listing_id = db.Column(db.Integer, db.ForeignKey('food_listings.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default=ClaimStatus.PENDING, index=True)
    # Mirrors FoodItem.status for read convenience
    item_status = db.Column(db.String(20), nullable=False, default=ItemStatus.CLAIMED)

    # --- TIME TRACKING ---
    claimed_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    ready_at = db.Column(db.DateTime, nullable=True)
    collected_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    # --- IMPACT ---
    estimated_impact_points = db.Column(db.Float, nullable=False, default=0.0)
    actual_impact_points = db.Column(db.Float, nullable=True)

    cancelled_by = db.Column(db.String(20), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    food_item = db.relationship('FoodItem', backref='claims', lazy=True)

    def to_dict(self):
        def fmt(value):
            return value.strftime('%Y-%m-%d %H:%M:%S') if value else None

        return {
            'id': self.id,
            'food_item_id': self.food_item_id,
            'item_number': self.food_item.item_number if self.food_item else None,
            'food_listing_id': self.food_listing_id,
            'listing_title': self.listing.title if self.listing else None,
            'user_id': self.user_id,
            'status': self.status,
            'item_status': self.item_status,
            'claimed_at': fmt(self.claimed_at),
            'confirmed_at': fmt(self.confirmed_at),
            'ready_at': fmt(self.ready_at),
            'collected_at': fmt(self.collected_at),
            'cancelled_at': fmt(self.cancelled_at),
            'estimated_impact_points': self.estimated_impact_points,
            'actual_impact_points': self.actual_impact_points,
            'cancelled_by': self.cancelled_by,
            'cancellation_reason': self.cancellation_reason,
        }


# ==========================================
#  6. AUDIT LOG MODEL
# ==========================================
class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    action = db.Column(db.String(50), nullable=False)
    details = db.Column(db.String(255))
    timestamp = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', backref='logs')
