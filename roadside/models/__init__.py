"""SQLAlchemy models package"""
from .region import Region, user_regions
from .user import User
from .vehicle import Vehicle
from .job import Job
from .counter import Counter

__all__ = [
    'Region',
    'user_regions',
    'User',
    'Vehicle',
    'Job',
    'Counter',
]
