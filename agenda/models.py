# agenda/models.py
"""
Imports every ORM module so Base.metadata knows all tables
(create_all in dev, alembic autogenerate).
"""
from agenda.modules.professionals.models import Patient, ProfessionalProfile  # noqa: F401
from agenda.modules.recurrences.models import AppointmentRecurrence  # noqa: F401
from agenda.modules.appointments.models import Appointment, AppointmentToken  # noqa: F401
from agenda.modules.availability.models import AvailabilityException, AvailabilityRule  # noqa: F401
from agenda.modules.log import AuditLog  # noqa: F401

__all__ = [
    "ProfessionalProfile",
    "Patient",
    "AppointmentRecurrence",
    "Appointment",
    "AppointmentToken",
    "AvailabilityRule",
    "AvailabilityException",
    "AuditLog",
]
