# Database models
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class Node(db.Model):
    """One leaf of the hierarchical store, addressed by its full path."""
    __tablename__ = 'Nodes'
    path = db.Column(db.String(512), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Credential(db.Model):
    """Identity record; profile data lives in the store under ``users/<uid>``."""
    __tablename__ = 'Credentials'
    uid = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    phone = db.Column(db.String(32), unique=True, nullable=True)
    display_name = db.Column(db.String(255), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    disabled = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
