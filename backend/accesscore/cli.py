"""Management CLI for inspecting the permission model.

Usage:
    python -m accesscore.cli list-permissions      # Catalog, grouped by resource
    python -m accesscore.cli list-roles            # System roles and what they inherit
    python -m accesscore.cli expand-role <slug>    # Effective permissions of a role

Reads only the built-in catalog and system role table; no database needed.
"""

import sys

from accesscore.auth.catalog import default_catalog
from accesscore.auth.roles import SYSTEM_ROLES, RoleRegistry
from accesscore.exceptions import RoleNotFoundError


def _registry() -> RoleRegistry:
    registry = RoleRegistry(default_catalog())
    registry.define_system_roles(SYSTEM_ROLES)
    return registry


def list_permissions():
    catalog = default_catalog()
    for resource in catalog.resources():
        print(resource)
        for p in catalog.by_resource(resource):
            print(f"  {p.key:<40} {p.description}")
    print(f"\n{len(catalog)} permission(s)")


def list_roles():
    registry = _registry()
    for role in registry.system_roles():
        inherits = ", ".join(registry.inherited_roles(role.slug)) or "-"
        print(f"  {role.slug:<12} {role.name:<16} inherits: {inherits}")
    print(f"\n{len(registry.system_roles())} role(s)")


def expand_role(slug: str) -> int:
    registry = _registry()
    try:
        grants = registry.expand_grants(slug)
    except RoleNotFoundError as exc:
        print(exc.message)
        return 1

    catalog = registry.catalog
    keys = [p.key for p in catalog.list() if any(g.matches(p.resource, p.action) for g in grants)]
    for key in keys:
        print(f"  {key}")
    print(f"\n{slug}: {len(keys)} of {len(catalog)} permission(s)")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    cmd = args[0] if args else ""
    if cmd == "list-permissions":
        list_permissions()
    elif cmd == "list-roles":
        list_roles()
    elif cmd == "expand-role" and len(args) == 2:
        return expand_role(args[1])
    else:
        print("Usage: python -m accesscore.cli [list-permissions|list-roles|expand-role <slug>]")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
