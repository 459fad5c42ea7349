"""
Vehicle/fleet capability.
"""
import logging

from roadside import db
from roadside.models import Vehicle
from roadside.models.vehicle import ON_DUTY

logger = logging.getLogger(__name__)


class Fleet:
    """Lookup and binding of vehicles to actors"""

    def find_vehicle(self, name_or_id):
        """Find a vehicle by name first, then by id."""
        if not name_or_id:
            return None
        vehicle = Vehicle.query.filter_by(name=name_or_id).first()
        if vehicle is None:
            vehicle = db.session.get(Vehicle, name_or_id)
        return vehicle

    def vehicle_bound_to(self, actor_id):
        return Vehicle.query.filter_by(driver_id=actor_id).first()

    def find_available_vehicle(self, vendor_id):
        """First on-duty, unbound vehicle of the vendor, locked for update."""
        return (
            Vehicle.query
            .filter(
                Vehicle.vendor_id == vendor_id,
                Vehicle.status == ON_DUTY,
                Vehicle.is_available.is_(True),
                Vehicle.driver_id.is_(None),
            )
            .order_by(Vehicle.created_at, Vehicle.id)
            .with_for_update()
            .first()
        )

    def bind_vehicle(self, vehicle, actor):
        logger.info("Binding vehicle %s to %s", vehicle.name, actor.id)
        vehicle.driver_id = actor.id
        vehicle.driver_name = actor.full_name
        vehicle.is_available = False

    def unbind_vehicle(self, vehicle):
        logger.info("Unbinding vehicle %s from %s", vehicle.name, vehicle.driver_id)
        vehicle.driver_id = None
        vehicle.driver_name = None
        vehicle.is_available = True


def get_fleet():
    return Fleet()
