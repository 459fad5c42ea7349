"""
User directory capability.

Engines read role, duty status, vendor identity, regions and capabilities
through this class only; the stored shape of those fields stays behind it.
"""
from roadside import db
from roadside.models import Region, User


class Directory:
    """Read access to users and regions"""

    def get_user(self, user_id):
        if not user_id:
            return None
        return db.session.get(User, user_id)

    def find_users(self, predicate=None, active_only=True):
        """Return users matching ``predicate`` (a callable on User)."""
        query = User.query
        if active_only:
            query = query.filter(User.is_active.is_(True))
        users = query.order_by(User.created_at, User.id).all()
        if predicate is None:
            return users
        return [user for user in users if predicate(user)]

    def active_users(self, roles=None):
        """Active users, optionally restricted to the given primary roles."""
        query = User.query.filter(User.is_active.is_(True))
        if roles is not None:
            query = query.filter(User.primary_role.in_(list(roles)))
        return (
            query
            .order_by(User.created_at, User.id)
            .all()
        )

    def regions_covering(self, state):
        """Active regions whose state list contains ``state``."""
        if not state:
            return []
        regions = Region.query.filter(Region.is_active.is_(True)).order_by(Region.name).all()
        return [region for region in regions if region.covers_state(state)]


class DirectorySnapshot(Directory):
    """
    Directory that remembers user lookups for the length of one operation

    Listing checks visibility job by job; a snapshot answers the repeated
    creator and leadership lookups from memory.
    """

    def __init__(self):
        self._users = {}
        self._active = {}

    def get_user(self, user_id):
        if user_id not in self._users:
            self._users[user_id] = super().get_user(user_id)
        return self._users[user_id]

    def active_users(self, roles=None):
        key = frozenset(roles) if roles is not None else None
        if key not in self._active:
            self._active[key] = super().active_users(roles)
        return self._active[key]


def get_directory(snapshot=False):
    return DirectorySnapshot() if snapshot else Directory()
