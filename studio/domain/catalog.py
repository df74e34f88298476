"""
Service catalog - the closed set of bookable services and credit scopes.

Personal Training (EP) is the elastic service: several clients share the slot
and its seat cap moves with time-to-slot. Every other service is single-seat.
"""

import enum
import unicodedata
from typing import Optional


class ServiceKey(str, enum.Enum):
    EP = "EP"  # Personal Training
    RA = "RA"  # Active Rehab
    RF = "RF"  # Functional Re-education
    AR = "AR"  # High Performance
    NUT = "NUT"  # Nutrition


class CreditScope(str, enum.Enum):
    """Service scope of a credit lot; ALL lots pay for any service."""

    EP = "EP"
    RA = "RA"
    RF = "RF"
    AR = "AR"
    NUT = "NUT"
    ALL = "ALL"


ELASTIC_SERVICE = ServiceKey.EP

SERVICE_NAMES = {
    ServiceKey.EP: "Personal Training",
    ServiceKey.RA: "Active Rehab",
    ServiceKey.RF: "Functional Re-education",
    ServiceKey.AR: "High Performance",
    ServiceKey.NUT: "Nutrition",
}

# Legacy display names still sent by older clients
_ALIASES = {
    "entrenamiento personal": ServiceKey.EP,
    "personal training": ServiceKey.EP,
    "rehabilitacion activa": ServiceKey.RA,
    "active rehab": ServiceKey.RA,
    "reeducacion funcional": ServiceKey.RF,
    "functional re-education": ServiceKey.RF,
    "alto rendimiento": ServiceKey.AR,
    "high performance": ServiceKey.AR,
    "nutricion": ServiceKey.NUT,
    "nutrition": ServiceKey.NUT,
}


def _strip_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFD", value)
    return "".join(c for c in normalized if unicodedata.category(c) != "Mn")


def parse_service(value) -> Optional[ServiceKey]:
    """Resolve a key ("EP") or a display name ("Entrenamiento Personal"). None if unknown."""
    if isinstance(value, ServiceKey):
        return value
    if value is None:
        return None

    raw = str(value).strip()
    try:
        return ServiceKey(raw.upper())
    except ValueError:
        pass
    return _ALIASES.get(_strip_accents(raw).lower())


def is_elastic(service: ServiceKey) -> bool:
    return service == ELASTIC_SERVICE


def service_name(service: ServiceKey) -> str:
    return SERVICE_NAMES.get(service, service.value)
