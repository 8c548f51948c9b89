"""ORM tables backing the data-access collaborators.

Import everything here so Base.metadata sees every table.
"""

from accesscore.models.audit_log import AuditLog
from accesscore.models.membership import UserOrganization
from accesscore.models.organization import OrganizationRecord
from accesscore.models.role import RoleGrantRecord, RoleRecord

__all__ = [
    "AuditLog",
    "OrganizationRecord",
    "RoleGrantRecord",
    "RoleRecord",
    "UserOrganization",
]
