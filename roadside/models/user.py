"""User model"""
from roadside import db
from .base import BaseModel
from .region import user_regions

# Primary roles
OWNER = 'OW'
SUB_OWNER = 'sOW'
REGIONAL_MANAGER = 'RM'
SERVICE_PROVIDER = 'SP'
DRIVER = 'driver'
NO_ROLE = 'N/A'

OWNER_ROLES = frozenset([OWNER, SUB_OWNER])
LEADERSHIP_ROLES = frozenset([OWNER, SUB_OWNER, REGIONAL_MANAGER])

# Secondary roles (capabilities)
DRIVER_CAPABILITY = 'driver'
DISPATCHER_CAPABILITY = 'dispatcher'
ANSWERING_SERVICE_CAPABILITY = 'answeringService'
ADMIN_CAPABILITY = 'admin'


def normalize_capabilities(secondary_roles):
    """
    Collapse the stored secondary-roles value into a frozenset

    Older records store a list of role names, newer ones a map of
    role name -> bool. Both shapes end up as the set of enabled roles.
    """
    if not secondary_roles:
        return frozenset()
    if isinstance(secondary_roles, dict):
        return frozenset(role for role, enabled in secondary_roles.items() if enabled)
    if isinstance(secondary_roles, str):
        return frozenset([secondary_roles])
    return frozenset(secondary_roles)


class User(BaseModel):
    """
    User model - owners, regional managers, service providers, dispatchers
    and drivers
    """
    __tablename__ = 'users'

    email = db.Column(db.String(255), unique=True, index=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False, default='')

    primary_role = db.Column(db.String(20), nullable=False, default=NO_ROLE)
    secondary_roles = db.Column(db.JSON, nullable=True)

    vendor_id = db.Column(db.String(100), index=True)
    company_name = db.Column(db.String(255), default='')

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    on_duty = db.Column(db.Boolean, nullable=False, default=False)

    regions = db.relationship('Region', secondary=user_regions, lazy='selectin')

    __table_args__ = (
        db.Index('idx_users_primary_role', 'primary_role', 'is_active'),
    )

    def __repr__(self):
        return f'<User {self.full_name} ({self.primary_role})>'

    @property
    def full_name(self):
        """Get full name"""
        return f'{self.first_name} {self.last_name}'.strip()

    @property
    def capabilities(self):
        """Enabled secondary roles as a frozenset"""
        return normalize_capabilities(self.secondary_roles)

    def has_capability(self, capability):
        return capability in self.capabilities

    def is_service_provider(self):
        """Check if user is in the service-provider tier"""
        return self.primary_role == SERVICE_PROVIDER

    def is_owner(self):
        return self.primary_role in OWNER_ROLES

    def is_leadership(self):
        """Owner, sub-owner or regional manager"""
        return self.primary_role in LEADERSHIP_ROLES

    def is_regional_manager(self):
        return self.primary_role == REGIONAL_MANAGER

    def is_dispatcher(self):
        return self.has_capability(DISPATCHER_CAPABILITY)

    def can_drive(self):
        """Driver capability, either as secondary role or primary role"""
        return self.has_capability(DRIVER_CAPABILITY) or self.primary_role == DRIVER

    def to_dict(self):
        data = super().to_dict()
        data['full_name'] = self.full_name
        data['secondary_roles'] = sorted(self.capabilities)
        data['regions'] = [region.id for region in self.regions]
        return data
