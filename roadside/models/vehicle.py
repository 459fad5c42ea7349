"""Vehicle model"""
from roadside import db
from .base import BaseModel

ON_DUTY = 'On Duty'
OFF_DUTY = 'Off Duty'
MAINTENANCE = 'Maintenance'
OUT_OF_SERVICE = 'Out of Service'

VEHICLE_STATUSES = (ON_DUTY, OFF_DUTY, MAINTENANCE, OUT_OF_SERVICE)


class Vehicle(BaseModel):
    """
    Vehicle model - a truck in a vendor's fleet
    A vehicle is bound to at most one actor at a time.
    """
    __tablename__ = 'vehicles'

    name = db.Column(db.String(100), nullable=False, index=True)
    type = db.Column(db.String(50), nullable=False, default='Other')
    make = db.Column(db.String(100))
    model = db.Column(db.String(100))
    year = db.Column(db.String(10))

    vendor_id = db.Column(db.String(100), nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False, default=OFF_DUTY)

    # Driver binding
    driver_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)
    driver_name = db.Column(db.String(255))
    is_available = db.Column(db.Boolean, nullable=False, default=True)

    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version}

    def __repr__(self):
        return f'<Vehicle {self.name} - {self.status}>'

    @property
    def is_on_duty(self):
        return self.status == ON_DUTY
