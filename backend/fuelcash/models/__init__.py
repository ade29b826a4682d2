from .tenancy import Organization, Station, Nozzle, FuelPrice
from .auth import User
from .readings import Reading
from .settlements import Settlement
from .handovers import CashHandover
from .audit import AuditLog

__all__ = [
    'Organization', 'Station', 'Nozzle', 'FuelPrice',
    'User',
    'Reading',
    'Settlement',
    'CashHandover',
    'AuditLog',
]
