from tessera.seeder.base import BaseSeeder
from tessera.seeder.registry import SeederRegistry

ROLES = [
    ("Super Admin", "super-admin", "Full system access"),
    ("Admin", "admin", "Administrative access"),
    ("Manager", "manager", "Management access"),
    ("User", "user", "Basic user access"),
]

RESOURCE_PERMISSIONS = {
    "users": {
        "view": "View users",
        "create": "Create new users",
        "update": "Update existing users",
        "delete": "Delete users",
        "export": "Export user data",
    },
    "posts": {
        "view": "View posts",
        "create": "Create new posts",
        "update": "Update existing posts",
        "delete": "Delete posts",
        "export": "Export post data",
    },
    "reports": {
        "view": "View reports",
        "create": "Create reports",
        "export": "Export reports",
    },
    "rbac": {
        "manage": "Manage roles, permissions and policies",
    },
}

ROLE_GRANTS = {
    "manager": [
        "users.view",
        "posts.view",
        "posts.create",
        "posts.update",
        "reports.view",
        "reports.export",
    ],
    "user": ["posts.view", "posts.create"],
}


@SeederRegistry.register
class RBACSeeder(BaseSeeder):
    """Seeds the default roles, permissions, ownership policies and field restrictions."""

    priority = 10

    def run(self):
        for name, slug, description in ROLES:
            self.registry.create_role(name, slug, description)
        self.log(f"Ensured {len(ROLES)} roles.")

        all_names = []
        for resource, actions in RESOURCE_PERMISSIONS.items():
            for perm in self.registry.create_resource_permissions(resource, actions):
                all_names.append(perm.name)
        self.log(f"Ensured {len(all_names)} permissions.")

        for slug in ("super-admin", "admin"):
            for name in all_names:
                self.registry.grant_permission_to_role(slug, name)
        for slug, names in ROLE_GRANTS.items():
            for name in names:
                self.registry.grant_permission_to_role(slug, name)

        # Users may update/delete only their own posts.
        for name in ("posts.update", "posts.delete"):
            self.registry.add_ownership_policy(name, "user_id", priority=100)

        self.registry.add_field_restriction("users.view", "password", "hidden")
        self.registry.add_field_restriction("users.view", "email", "masked", "***@***")
        self.registry.add_field_restriction("users.view", "phone", "masked", "***-****")
        self.log("Added ownership policies and field restrictions.")
