"""Error taxonomy for the authorization core.

Every error carries an HTTP-ish ``status_code`` and a stable ``error_code`` so
an HTTP layer can map it without inspecting messages.  The core itself never
depends on that mapping.

An ordinary deny is NOT an exception: ``PermissionResolver.check`` returns a
``Decision`` with ``allowed=False``.  Only collaborator failures
(``ResolutionError``) escape ``check``.
"""

from fastapi import status


class AccessCoreException(Exception):
    """Base exception for authorization core errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)


# ── Catalog / grants ───────────────────────────────────────────


class DuplicatePermissionError(AccessCoreException):
    def __init__(self, resource: str, action: str):
        super().__init__(
            message=f"Permission already registered: {resource}.{action}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="DUPLICATE_PERMISSION",
        )


class InvalidGrantError(AccessCoreException):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INVALID_GRANT",
        )


# ── Roles ──────────────────────────────────────────────────────


class InvalidHierarchyError(AccessCoreException):
    """Role inheritance table references an unknown role or contains a cycle."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INVALID_HIERARCHY",
        )


class RoleNotFoundError(AccessCoreException):
    def __init__(self, slug: str):
        super().__init__(
            message=f"Role not found: {slug}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="ROLE_NOT_FOUND",
        )


class DuplicateSlugError(AccessCoreException):
    def __init__(self, slug: str):
        super().__init__(
            message=f"Role with this slug already exists: {slug}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="DUPLICATE_SLUG",
        )


class SystemRoleImmutableError(AccessCoreException):
    def __init__(self, slug: str):
        super().__init__(
            message=f"System role '{slug}' cannot be modified",
            status_code=status.HTTP_409_CONFLICT,
            error_code="SYSTEM_ROLE_IMMUTABLE",
        )


# ── Organization hierarchy ─────────────────────────────────────


class OrganizationNotFoundError(AccessCoreException):
    def __init__(self, organization_id: str):
        self.organization_id = organization_id
        super().__init__(
            message=f"Organization not found: {organization_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="ORGANIZATION_NOT_FOUND",
        )


class InvalidParentError(AccessCoreException):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INVALID_PARENT",
        )


class CycleDetectedError(AccessCoreException):
    def __init__(self, organization_id: str, new_parent_id: str):
        super().__init__(
            message=(
                f"Circular reference detected: {new_parent_id} is "
                f"{organization_id} or one of its descendants"
            ),
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="CYCLE_DETECTED",
        )


class DepthExceededError(AccessCoreException):
    def __init__(self, depth: int, max_depth: int):
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            message=f"Hierarchy depth {depth} exceeds the maximum of {max_depth}",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="DEPTH_EXCEEDED",
        )


class ActiveChildrenError(AccessCoreException):
    def __init__(self, organization_id: str, active_count: int):
        super().__init__(
            message=(
                f"Organization {organization_id} still has {active_count} "
                "active descendant organization(s)"
            ),
            status_code=status.HTTP_409_CONFLICT,
            error_code="ACTIVE_CHILDREN",
        )


# ── Resolution ─────────────────────────────────────────────────


class AmbiguousMembershipError(AccessCoreException):
    """More than one active membership row for the same (user, organization)."""

    def __init__(self, user_id: str, organization_id: str, count: int):
        self.user_id = user_id
        self.organization_id = organization_id
        super().__init__(
            message=(
                f"User {user_id} has {count} active memberships in "
                f"organization {organization_id}"
            ),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="AMBIGUOUS_MEMBERSHIP",
        )


class MembershipNotFoundError(AccessCoreException):
    def __init__(self, user_id: str, organization_id: str):
        super().__init__(
            message=f"User {user_id} is not a member of organization {organization_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="MEMBERSHIP_NOT_FOUND",
        )


class PermissionDeniedError(AccessCoreException):
    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="PERMISSION_DENIED",
        )


class ResolutionError(AccessCoreException):
    """A collaborator (membership store, hierarchy backing store) failed.

    Distinct from a deny: the outcome is undetermined.
    """

    def __init__(self, message: str = "Authorization could not be determined"):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="RESOLUTION_ERROR",
        )
