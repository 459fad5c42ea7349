"""Region model"""
from roadside import db
from roadside.utils.helpers import normalize_state
from .base import BaseModel


user_regions = db.Table(
    'user_regions',
    db.Column('user_id', db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
    db.Column('region_id', db.String(36), db.ForeignKey('regions.id', ondelete='CASCADE'), primary_key=True),
)


class Region(BaseModel):
    """
    Region model - a named group of states/provinces managed by RMs
    """
    __tablename__ = 'regions'

    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, default='')
    # [{"country": "USA", "state": "TX"}, ...]
    states = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def __repr__(self):
        return f'<Region {self.name}>'

    def covers_state(self, state):
        """Check whether the region lists the given state"""
        target = normalize_state(state)
        if not target:
            return False
        return any(normalize_state(entry.get('state')) == target for entry in (self.states or []))
