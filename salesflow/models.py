import uuid
from datetime import datetime, timezone

from werkzeug.security import check_password_hash, generate_password_hash

from salesflow import db

PLACEHOLDER_CLIENT_NAME = 'New Client'


def _uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    __tablename__ = 'users'
    id            = db.Column(db.String(36), primary_key=True, default=_uuid)
    email         = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name     = db.Column(db.String(200))
    created_at    = db.Column(db.DateTime(timezone=True), default=utcnow)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)


class Profile(db.Model):
    __tablename__ = 'profiles'
    id         = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id    = db.Column(db.String(36), db.ForeignKey('users.id'), unique=True, nullable=False)
    full_name  = db.Column(db.String(200))
    avatar_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)


class SalesSession(db.Model):
    """One client engagement moving through the six workflow stages."""
    __tablename__ = 'sessions'
    id                 = db.Column(db.String(36), primary_key=True, default=_uuid)
    sales_rep_id       = db.Column(db.String(36), db.ForeignKey('profiles.id'), nullable=False, index=True)
    client_name        = db.Column(db.String(200), nullable=False, default=PLACEHOLDER_CLIENT_NAME)
    client_email       = db.Column(db.String(255))
    client_phone       = db.Column(db.String(50))
    client_address     = db.Column(db.String(500))
    notes              = db.Column(db.Text)
    original_image_url = db.Column(db.String(500))
    final_mockup_url   = db.Column(db.String(500))
    status             = db.Column(db.String(32), nullable=False, default='draft')
    created_at         = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at         = db.Column(db.DateTime(timezone=True), default=utcnow)

    def touch(self):
        self.updated_at = utcnow()

    @property
    def contract_number(self):
        return self.id[:8].upper()

    def to_dict(self):
        return {
            'id'                 : self.id,
            'sales_rep_id'       : self.sales_rep_id,
            'client_name'        : self.client_name,
            'client_email'       : self.client_email,
            'client_phone'       : self.client_phone,
            'client_address'     : self.client_address,
            'notes'              : self.notes,
            'original_image_url' : self.original_image_url,
            'final_mockup_url'   : self.final_mockup_url,
            'status'             : self.status,
            'created_at'         : _iso(self.created_at),
            'updated_at'         : _iso(self.updated_at),
        }


class Mockup(db.Model):
    __tablename__ = 'mockups'
    id          = db.Column(db.String(36), primary_key=True, default=_uuid)
    session_id  = db.Column(db.String(36), db.ForeignKey('sessions.id'), nullable=False, index=True)
    image_url   = db.Column(db.String(500), nullable=False)
    prompt      = db.Column(db.Text)
    ai_provider = db.Column(db.String(50))
    is_final    = db.Column(db.Boolean, nullable=False, default=False)
    created_at  = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id'          : self.id,
            'session_id'  : self.session_id,
            'image_url'   : self.image_url,
            'prompt'      : self.prompt,
            'ai_provider' : self.ai_provider,
            'is_final'    : bool(self.is_final),
            'created_at'  : _iso(self.created_at),
        }


class Estimate(db.Model):
    __tablename__ = 'estimates'
    id               = db.Column(db.String(36), primary_key=True, default=_uuid)
    session_id       = db.Column(db.String(36), db.ForeignKey('sessions.id'), nullable=False, index=True)
    items            = db.Column(db.JSON, nullable=False, default=list)
    discount_percent = db.Column(db.Numeric(5, 2), default=0)
    tax_percent      = db.Column(db.Numeric(5, 2), default=0)
    subtotal         = db.Column(db.Numeric(12, 2))
    discount_amount  = db.Column(db.Numeric(12, 2))
    tax_amount       = db.Column(db.Numeric(12, 2))
    low_estimate     = db.Column(db.Numeric(12, 2))
    high_estimate    = db.Column(db.Numeric(12, 2))
    final_amount     = db.Column(db.Numeric(12, 2))
    contract_pdf_url = db.Column(db.String(500))
    signature_data   = db.Column(db.Text)
    signature_method = db.Column(db.String(20))
    signed_at        = db.Column(db.DateTime(timezone=True))
    created_at       = db.Column(db.DateTime(timezone=True), default=utcnow)

    @property
    def line_items(self):
        from salesflow.estimates.calculator import LineItem
        return [LineItem.from_dict(i) for i in self.items or []]

    def to_dict(self):
        return {
            'id'               : self.id,
            'session_id'       : self.session_id,
            'items'            : self.items or [],
            'discount_percent' : _num(self.discount_percent),
            'tax_percent'      : _num(self.tax_percent),
            'subtotal'         : _num(self.subtotal),
            'discount_amount'  : _num(self.discount_amount),
            'tax_amount'       : _num(self.tax_amount),
            'low_estimate'     : _num(self.low_estimate),
            'high_estimate'    : _num(self.high_estimate),
            'final_amount'     : _num(self.final_amount),
            'contract_pdf_url' : self.contract_pdf_url,
            'signature_method' : self.signature_method,
            'signed_at'        : _iso(self.signed_at),
            'created_at'       : _iso(self.created_at),
        }


class PricingItem(db.Model):
    __tablename__ = 'pricing_items'
    id          = db.Column(db.String(36), primary_key=True, default=_uuid)
    name        = db.Column(db.String(200), nullable=False)
    category    = db.Column(db.String(100), index=True)
    description = db.Column(db.Text)
    low_price   = db.Column(db.Numeric(12, 2))
    high_price  = db.Column(db.Numeric(12, 2))
    unit        = db.Column(db.String(50))
    updated_at  = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id'          : self.id,
            'name'        : self.name,
            'category'    : self.category,
            'description' : self.description,
            'low_price'   : _num(self.low_price) or 0.0,
            'high_price'  : _num(self.high_price) or 0.0,
            'unit'        : self.unit,
        }


def _iso(value):
    return value.isoformat() if value else None


def _num(value):
    return float(value) if value is not None else None
