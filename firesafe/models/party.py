"""
Parties of an engagement: contractor, clients, their sites (branches) and users.

These tables are plain reference data maintained by CRUD screens outside the
lifecycle core; they exist here so notification recipients can be resolved by
query at send time.

Ownership:
    Contractor ──1:N──▶ Client ──1:N──▶ Branch
    Contractor ──1:N──▶ User (CONTRACTOR / MANAGER / TEAM_MEMBER)
    Client     ──1:N──▶ User (CLIENT)
"""

from datetime import datetime, timezone

from firesafe.models import db


class Contractor(db.Model):
    __tablename__ = "contractors"

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    clients = db.relationship("Client", back_populates="contractor", lazy="dynamic")

    def __repr__(self):
        return f"<Contractor {self.id}: {self.company_name}>"


class Client(db.Model):
    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    contractor_id = db.Column(
        db.Integer, db.ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    company_name = db.Column(db.String(200), nullable=False)
    is_archived = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    contractor = db.relationship("Contractor", back_populates="clients")
    branches = db.relationship("Branch", back_populates="client", lazy="dynamic")

    def __repr__(self):
        return f"<Client {self.id}: {self.company_name}>"


class Branch(db.Model):
    """A physical client site. At most one ACTIVE project per branch."""

    __tablename__ = "branches"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    client = db.relationship("Client", back_populates="branches")

    def to_dict(self):
        return {
            "id": self.id,
            "client_id": self.client_id,
            "name": self.name,
            "address": self.address,
        }

    def __repr__(self):
        return f"<Branch {self.id}: {self.name}>"


class User(db.Model):
    """
    Login identity. Exactly one of contractor_id / client_id is set,
    matching the role (client users belong to a client company, everyone
    else to the contractor).
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(20), nullable=False, comment="CONTRACTOR | CLIENT | MANAGER | TEAM_MEMBER")
    contractor_id = db.Column(
        db.Integer, db.ForeignKey("contractors.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "contractor_id": self.contractor_id,
            "client_id": self.client_id,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} [{self.role}]>"
