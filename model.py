from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
import enum

# Initialize SQLAlchemy
db = SQLAlchemy()

# ===== ENUMS =====
class UserRole(enum.Enum):
    ATTENDEE = "ATTENDEE"
    ORGANIZER = "ORGANIZER"
    SCANNER = "SCANNER"
    def __str__(self):
        return self.value


def _iso(value):
    return value.isoformat() if value else None


# ===== CORE MODELS =====
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    external_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False, default="")
    name = db.Column(db.String(255), nullable=False, default="")
    role = db.Column(db.Enum(UserRole), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    # Relationships
    tickets = db.relationship('Ticket', backref='holder', lazy=True)
    events = db.relationship('Event', backref='organizer', lazy=True)
    scans = db.relationship('Scan', backref='scanner', lazy=True)

    def as_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "created_at": _iso(self.created_at)
        }

    @staticmethod
    def validate_role(role):
        if isinstance(role, UserRole):
            return role
        if isinstance(role, str):
            role = role.upper()
        return UserRole(role)


class Event(db.Model):
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    location = db.Column(db.Text, nullable=False)
    date = db.Column(db.DateTime, nullable=False, index=True)
    organizer_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, nullable=True)

    tickets = db.relationship('Ticket', backref='event', lazy=True)

    def __init__(self, title, description, location, date, organizer_id):
        self.title = self.validate_text("title", title)
        self.description = self.validate_text("description", description)
        self.location = self.validate_text("location", location)
        self.date = date
        self.organizer_id = organizer_id
        self.validate_date()

    @staticmethod
    def validate_text(field, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{field} must be a non-empty string.")
        return value.strip()

    def validate_date(self):
        if not isinstance(self.date, datetime):
            raise ValueError("Event date must be a datetime.")
        if self.date.date() < datetime.utcnow().date():
            raise ValueError("Event date cannot be in the past.")

    def as_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "date": _iso(self.date),
            "organizer_id": self.organizer_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at)
        }


class Ticket(db.Model):
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=False, index=True)
    qr_code = db.Column(db.String(255), unique=True, nullable=False)
    checked_in = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    checked_in_at = db.Column(db.DateTime, nullable=True)

    # One ticket per attendee per event
    __table_args__ = (db.UniqueConstraint('user_id', 'event_id', name='uix_ticket_user_event'),)

    def as_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_id": self.event_id,
            "qr_code": self.qr_code,
            "checked_in": self.checked_in,
            "created_at": _iso(self.created_at),
            "checked_in_at": _iso(self.checked_in_at)
        }


class Scan(db.Model):
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey('ticket.id'), nullable=True, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=True)
    qr_code = db.Column(db.String(255), nullable=False)
    valid = db.Column(db.Boolean, nullable=False)
    message = db.Column(db.String(255), nullable=False)
    scanned_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True, index=True)
    scanned_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    event = db.relationship('Event', lazy=True)

    def as_dict(self):
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "event_id": self.event_id,
            "event_title": self.event.title if self.event else None,
            "valid": self.valid,
            "message": self.message,
            "scanned_at": _iso(self.scanned_at)
        }
