"""
Laundry Portal - Permission Matrix

Module x action boolean grants used by the staff and center-admin editors.
An editor can only hand out permissions it holds itself; the backend still
enforces RBAC, this only keeps the editor honest.
"""

from typing import Mapping, Optional

from laundry_portal.errors import FormValidationError


# Actions offered per module
MODULE_ACTIONS: dict[str, tuple[str, ...]] = {
    "orders": ("view", "create", "update", "delete", "assign", "cancel", "refund", "export"),
    "customers": ("view", "create", "update", "delete", "export"),
    "branches": ("view", "create", "update", "delete"),
    "services": ("view", "create", "update", "delete"),
    "financial": ("view", "approve", "refund", "export"),
    "reports": ("view", "export"),
    "users": ("view", "create", "update", "delete", "assignRole"),
    "settings": ("view", "update"),
}

MODULE_LABELS = {
    "orders": "Orders",
    "customers": "Customers",
    "branches": "Branches",
    "services": "Services",
    "financial": "Financial",
    "reports": "Reports",
    "users": "Users",
    "settings": "Settings",
}

SUPERADMIN_ROLE = "superadmin"

Matrix = dict[str, dict[str, bool]]


def empty_matrix() -> Matrix:
    """A matrix with every known cell set to False."""
    return {module: {action: False for action in actions} for module, actions in MODULE_ACTIONS.items()}


def full_matrix() -> Matrix:
    return {module: {action: True for action in actions} for module, actions in MODULE_ACTIONS.items()}


def has_permission(permissions: Optional[Mapping], module: str, action: str, role: Optional[str] = None) -> bool:
    """True if `permissions` grants `module.action` (superadmin holds everything)."""
    if role == SUPERADMIN_ROLE:
        return True
    if not permissions:
        return False
    return (permissions.get(module) or {}).get(action) is True


def has_module_access(permissions: Optional[Mapping], module: str, role: Optional[str] = None) -> bool:
    """True if any action of `module` is granted."""
    if role == SUPERADMIN_ROLE:
        return True
    if not permissions:
        return False
    return any(value is True for value in (permissions.get(module) or {}).values())


def effective_max(max_permissions: Optional[Mapping], role: Optional[str] = None) -> Matrix:
    """The editor's own grants, normalised onto the known matrix."""
    if role == SUPERADMIN_ROLE:
        return full_matrix()
    matrix = empty_matrix()
    for module, actions in MODULE_ACTIONS.items():
        for action in actions:
            matrix[module][action] = has_permission(max_permissions, module, action)
    return matrix


def editable_cells(max_permissions: Optional[Mapping], role: Optional[str] = None) -> Matrix:
    """Which cells the editor may toggle; a cell it does not hold renders disabled."""
    return effective_max(max_permissions, role)


def apply_grants(
    requested: Mapping,
    max_permissions: Optional[Mapping],
    role: Optional[str] = None,
) -> Matrix:
    """
    Clamp a requested matrix to what the editor holds.

    Unknown modules/actions are dropped and any cell the editor does not
    hold is forced to False.
    """
    ceiling = effective_max(max_permissions, role)
    matrix = empty_matrix()
    for module, actions in MODULE_ACTIONS.items():
        for action in actions:
            wanted = (requested.get(module) or {}).get(action) is True
            matrix[module][action] = wanted and ceiling[module][action]
    return matrix


def toggle_cell(
    matrix: Matrix,
    module: str,
    action: str,
    value: bool,
    max_permissions: Optional[Mapping],
    role: Optional[str] = None,
) -> Matrix:
    """Set one cell, ignoring the change if the editor does not hold it."""
    if module not in MODULE_ACTIONS or action not in MODULE_ACTIONS[module]:
        return matrix
    if value and not effective_max(max_permissions, role)[module][action]:
        return matrix
    updated = {m: dict(actions) for m, actions in matrix.items()}
    updated.setdefault(module, {})[action] = bool(value)
    return updated


def count_granted(matrix: Mapping) -> int:
    return sum(1 for actions in matrix.values() for value in actions.values() if value is True)


def parse_matrix_form(form: Mapping) -> Matrix:
    """Read `perm.<module>.<action>` checkbox fields into a matrix."""
    matrix = empty_matrix()
    for key in form.keys():
        if not key.startswith("perm."):
            continue
        parts = key.split(".")
        if len(parts) != 3:
            continue
        _, module, action = parts
        if module in matrix and action in matrix[module]:
            matrix[module][action] = True
    return matrix


def validate_new_staff(
    name: str,
    email: str,
    password: str,
    permissions: Mapping,
    requires_branch: bool = False,
    branch_id: Optional[str] = None,
) -> None:
    """
    Client-side checks before a staff or center-admin creation call.

    Raises:
        FormValidationError: on the first failing check
    """
    if not name.strip() or not email.strip() or not password:
        raise FormValidationError("Please fill in all required fields")
    if count_granted(permissions) == 0:
        raise FormValidationError("Please assign at least one permission", field="permissions")
    if requires_branch and not (branch_id or "").strip():
        raise FormValidationError("Please assign a branch to the center admin", field="branch_id")
