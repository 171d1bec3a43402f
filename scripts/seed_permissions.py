"""
Seed script to populate the default permission catalog and roles.

Run this script after database initialization to create:
- Default permissions (MODULE_ACTION)
- Default permission groups
- Default roles and their role-permission bindings

The script is idempotent: existing permissions, groups and roles are kept,
and role bindings are replaced with the defaults below.

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.exceptions import AlreadyExists, AppError
from app.features.permissions import bindings, catalog, roles
from app.features.permissions.models import Permission, PermissionGroup
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_PERMISSIONS = [
    # User management
    ("USER", "VIEW", "View users"),
    ("USER", "CREATE", "Create new users"),
    ("USER", "UPDATE", "Update user information"),
    ("USER", "DELETE", "Delete users"),
    ("USER", "ASSIGN_ROLES", "Assign roles to users"),
    ("USER", "RESET_PASSWORD", "Reset user passwords"),

    # Role management
    ("ROLE", "VIEW", "View roles"),
    ("ROLE", "CREATE", "Create new roles"),
    ("ROLE", "UPDATE", "Update role information"),
    ("ROLE", "DELETE", "Delete roles"),
    ("ROLE", "ASSIGN_PERMISSIONS", "Assign permissions to roles"),

    # Products
    ("PRODUCT", "VIEW", "View products"),
    ("PRODUCT", "CREATE", "Create new products"),
    ("PRODUCT", "UPDATE", "Update product information"),
    ("PRODUCT", "DELETE", "Delete products"),
    ("PRODUCT", "EXPORT", "Export product data"),
    ("PRODUCT", "IMPORT", "Import product data"),

    # Product categories
    ("PRODUCT_CATEGORY", "VIEW", "View product categories"),
    ("PRODUCT_CATEGORY", "CREATE", "Create product categories"),
    ("PRODUCT_CATEGORY", "UPDATE", "Update product categories"),
    ("PRODUCT_CATEGORY", "DELETE", "Delete product categories"),

    # Samples
    ("SAMPLE", "VIEW", "View samples"),
    ("SAMPLE", "CREATE", "Create new samples"),
    ("SAMPLE", "UPDATE", "Update sample information"),
    ("SAMPLE", "DELETE", "Delete samples"),
    ("SAMPLE", "DISPATCH", "Dispatch samples to customers"),
    ("SAMPLE", "TRACK", "Track sample status"),

    # Customers
    ("CUSTOMER", "VIEW", "View customers"),
    ("CUSTOMER", "CREATE", "Create new customers"),
    ("CUSTOMER", "UPDATE", "Update customer information"),
    ("CUSTOMER", "DELETE", "Delete customers"),
    ("CUSTOMER", "VIEW_ACTIVITY", "View customer activity logs"),

    # Orders
    ("ORDER", "VIEW", "View orders"),
    ("ORDER", "CREATE", "Create new orders"),
    ("ORDER", "UPDATE", "Update order information"),
    ("ORDER", "DELETE", "Delete orders"),
    ("ORDER", "APPROVE", "Approve orders"),
    ("ORDER", "CANCEL", "Cancel orders"),
    ("ORDER", "SHIP", "Ship orders"),

    # Warehouse
    ("WAREHOUSE", "VIEW", "View warehouse data"),
    ("WAREHOUSE", "CREATE", "Create warehouse entries"),
    ("WAREHOUSE", "UPDATE", "Update warehouse data"),
    ("WAREHOUSE", "DELETE", "Delete warehouse entries"),
    ("WAREHOUSE", "TRANSFER", "Transfer inventory"),

    # Finance
    ("FINANCE", "VIEW", "View financial data"),
    ("FINANCE", "CREATE", "Create financial records"),
    ("FINANCE", "UPDATE", "Update financial data"),
    ("FINANCE", "DELETE", "Delete financial records"),
    ("FINANCE", "APPROVE", "Approve financial transactions"),

    # Reports
    ("REPORT", "VIEW", "View reports"),
    ("REPORT", "CREATE", "Create custom reports"),
    ("REPORT", "EXPORT", "Export reports"),

    # System
    ("SYSTEM", "VIEW_LOGS", "View system logs"),
    ("SYSTEM", "MANAGE_SETTINGS", "Manage system settings"),
    ("SYSTEM", "BACKUP", "Perform system backup"),
    ("SYSTEM", "RESTORE", "Restore system from backup"),
]


# (group_name, display_name, module, sort_order)
DEFAULT_PERMISSION_GROUPS = [
    ("USER_MANAGEMENT", "User Management", "USER", 1),
    ("ROLE_MANAGEMENT", "Role & Permission Management", "ROLE", 2),
    ("PRODUCT_MANAGEMENT", "Product Management", "PRODUCT", 3),
    ("CATEGORY_MANAGEMENT", "Category Management", "PRODUCT_CATEGORY", 4),
    ("SAMPLE_MANAGEMENT", "Sample Management", "SAMPLE", 5),
    ("CUSTOMER_MANAGEMENT", "Customer Management", "CUSTOMER", 6),
    ("ORDER_MANAGEMENT", "Order Management", "ORDER", 7),
    ("WAREHOUSE_MANAGEMENT", "Warehouse Management", "WAREHOUSE", 8),
    ("FINANCIAL_MANAGEMENT", "Financial Management", "FINANCE", 9),
    ("REPORTING", "Reports & Analytics", "REPORT", 10),
    ("SYSTEM_ADMINISTRATION", "System Administration", "SYSTEM", 11),
]


DEFAULT_ROLES = {
    "SUPER_ADMIN": {
        "description": "Super administrator with all permissions",
        "permissions": "ALL"  # Special case - gets all permissions
    },
    "ADMIN": {
        "description": "Administrator with all permissions",
        "permissions": "ALL"
    },
    "MANAGER": {
        "description": "Department manager",
        "permissions": [
            "USER_VIEW", "USER_CREATE", "USER_UPDATE", "USER_ASSIGN_ROLES",
            "PRODUCT_VIEW", "PRODUCT_CREATE", "PRODUCT_UPDATE", "PRODUCT_EXPORT",
            "PRODUCT_CATEGORY_VIEW", "PRODUCT_CATEGORY_CREATE", "PRODUCT_CATEGORY_UPDATE",
            "SAMPLE_VIEW", "SAMPLE_CREATE", "SAMPLE_UPDATE", "SAMPLE_DISPATCH", "SAMPLE_TRACK",
            "CUSTOMER_VIEW", "CUSTOMER_CREATE", "CUSTOMER_UPDATE", "CUSTOMER_VIEW_ACTIVITY",
            "ORDER_VIEW", "ORDER_CREATE", "ORDER_UPDATE", "ORDER_APPROVE", "ORDER_CANCEL", "ORDER_SHIP",
            "WAREHOUSE_VIEW", "WAREHOUSE_CREATE", "WAREHOUSE_UPDATE", "WAREHOUSE_TRANSFER",
            "FINANCE_VIEW", "FINANCE_CREATE", "FINANCE_UPDATE",
            "REPORT_VIEW", "REPORT_CREATE", "REPORT_EXPORT",
        ]
    },
    "STAFF": {
        "description": "Operational staff",
        "permissions": [
            "PRODUCT_VIEW",
            "PRODUCT_CATEGORY_VIEW",
            "SAMPLE_VIEW", "SAMPLE_CREATE", "SAMPLE_UPDATE", "SAMPLE_TRACK",
            "CUSTOMER_VIEW", "CUSTOMER_CREATE", "CUSTOMER_UPDATE",
            "ORDER_VIEW", "ORDER_CREATE", "ORDER_UPDATE",
            "WAREHOUSE_VIEW", "WAREHOUSE_CREATE", "WAREHOUSE_UPDATE",
            "REPORT_VIEW",
        ]
    },
}


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Create default permissions.

    Returns:
        Dictionary mapping permission names to Permission objects
    """
    log.info("Creating default permissions...")
    permissions_map = {}

    for module, action, description in DEFAULT_PERMISSIONS:
        try:
            permission = await catalog.create(db, module=module, action=action, description=description)
        except AlreadyExists:
            permission = await catalog.find_by_name(db, f"{module}_{action}")
            log.debug(f"Permission '{permission.name}' already exists, skipping")
        permissions_map[permission.name] = permission

    log.info(f"Seeded {len(permissions_map)} permissions")
    return permissions_map


async def seed_permission_groups(db: AsyncSession) -> list[PermissionGroup]:
    """Create default permission groups."""
    log.info("Creating default permission groups...")
    groups = []

    for group_name, display_name, module, sort_order in DEFAULT_PERMISSION_GROUPS:
        try:
            groups.append(
                await catalog.create_group(
                    db,
                    group_name=group_name,
                    display_name=display_name,
                    module=module,
                    sort_order=sort_order,
                )
            )
        except AlreadyExists:
            log.debug(f"Permission group '{group_name}' already exists, skipping")

    log.info(f"Created {len(groups)} permission groups")
    return groups


async def seed_roles(db: AsyncSession, permissions_map: dict[str, Permission]):
    """
    Create default roles and assign permissions.

    Args:
        db: Database session
        permissions_map: Dictionary of permission name -> Permission object
    """
    log.info("Creating default roles...")
    existing_roles = {role.name: role for role in await roles.list_roles(db)}

    for role_name, role_config in DEFAULT_ROLES.items():
        role = existing_roles.get(role_name)
        if role is None:
            role = await roles.create_role(db, role_name, role_config["description"])

        if role_config["permissions"] == "ALL":
            permission_ids = [perm.id for perm in permissions_map.values()]
        else:
            permission_ids = []
            for perm_name in role_config["permissions"]:
                if perm_name in permissions_map:
                    permission_ids.append(permissions_map[perm_name].id)
                else:
                    log.warning(f"Permission '{perm_name}' not found for role '{role_name}'")

        await bindings.assign(db, role.id, permission_ids, granted_by=None)
        log.info(f"Role '{role_name}' has {len(permission_ids)} permissions")

    log.info("Default roles created successfully")


async def main():
    """Main function to seed permissions, groups and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            permissions_map = await seed_permissions(db)
            await seed_permission_groups(db)
            await seed_roles(db, permissions_map)
        except AppError as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            raise

        log.info("Permission seeding completed successfully!")
        log.info("")
        log.info("Default roles created:")
        for role_name, role_config in DEFAULT_ROLES.items():
            log.info(f"  - {role_name}: {role_config['description']}")


if __name__ == "__main__":
    asyncio.run(main())
