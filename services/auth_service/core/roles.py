"""
Closed role set with an explicit privilege hierarchy.
Higher level = more privileges.
"""
from enum import Enum
from typing import Dict, Union


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    CLINICAL_ADMIN = "clinical_admin"
    CONSULTANT = "consultant"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PRESCRIBER = "prescriber"
    HOSPITAL_PHARMACIST = "hospital_pharmacist"
    PHARMACY_SUPPORT_MANAGER = "pharmacy_support_manager"
    PHARMACY_TECHNICIAN = "pharmacy_technician"
    PHARMACY_SUPPORT_WORKER = "pharmacy_support_worker"


ROLE_HIERARCHY: Dict[UserRole, int] = {
    UserRole.SUPER_ADMIN: 100,
    UserRole.CLINICAL_ADMIN: 90,
    UserRole.CONSULTANT: 70,
    UserRole.DOCTOR: 60,
    UserRole.NURSE: 55,
    UserRole.PRESCRIBER: 50,
    UserRole.HOSPITAL_PHARMACIST: 40,
    UserRole.PHARMACY_SUPPORT_MANAGER: 35,
    UserRole.PHARMACY_TECHNICIAN: 30,
    UserRole.PHARMACY_SUPPORT_WORKER: 20,
}

ADMIN_ROLES = frozenset({UserRole.SUPER_ADMIN, UserRole.CLINICAL_ADMIN})

DEFAULT_ROLE = UserRole.PHARMACY_SUPPORT_WORKER


def role_level(role: Union[UserRole, str]) -> int:
    """Privilege level of a role; unknown roles have none."""
    try:
        return ROLE_HIERARCHY[UserRole(role)]
    except ValueError:
        return 0


def outranks(role: Union[UserRole, str], other: Union[UserRole, str]) -> bool:
    return role_level(role) > role_level(other)


def is_admin(role: Union[UserRole, str]) -> bool:
    try:
        return UserRole(role) in ADMIN_ROLES
    except ValueError:
        return False
