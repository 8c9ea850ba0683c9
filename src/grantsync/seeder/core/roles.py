from grantsync.seeder.base import BaseSeeder
from grantsync.seeder.registry import SeederRegistry

DEFAULT_SCOPES = [
    {"name": '{{t("All records")}}', "scope": {}},
    {
        "name": '{{t("Own records")}}',
        "scope": {"createdById": "{{ ctx.state.currentUser.id }}"},
    },
]

DEFAULT_ROLES = [
    {"name": "root", "title": "Root", "hidden": True},
    {"name": "admin", "title": "Admin"},
    {"name": "member", "title": "Member", "default": True},
    {"name": "anonymous", "title": "Anonymous"},
]


@SeederRegistry.register
class DefaultScopesSeeder(BaseSeeder):
    """Row-filter scopes offered when configuring resource actions."""

    priority = 10

    def run(self):
        created = 0
        for data in DEFAULT_SCOPES:
            if self.repository.find_scope(data["name"]) is not None:
                continue
            self.repository.create_scope(data["name"], data["scope"])
            created += 1
        self.log(f"Created {created} scopes.")


@SeederRegistry.register
class DefaultRolesSeeder(BaseSeeder):
    priority = 100

    def run(self):
        created = 0
        for data in DEFAULT_ROLES:
            if self.repository.get_role(data["name"]) is not None:
                continue
            self.repository.create_role(
                data["name"],
                title=data["title"],
                hidden=data.get("hidden", False),
                default=data.get("default", False),
            )
            created += 1
        self.log(f"Created {created} roles.")
