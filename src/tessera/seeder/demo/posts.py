
from tessera.models.post import Post
from tessera.models.user import User
from tessera.seeder.base import BaseSeeder
from tessera.seeder.registry import SeederRegistry

DEMO_USERS = [
    # username, role, team_id, department_id
    ("admin", "admin", None, None),
    ("manager", "manager", 1, 1),
    ("alice", "user", 1, 1),
    ("bob", "user", 2, 1),
    ("carol", "user", None, 2),
]


@SeederRegistry.register
class DemoPostSeeder(BaseSeeder):
    """Seeds demo users across teams/departments and a handful of posts each."""

    priority = 500
    demo = True

    def run(self):
        users = [self._ensure_user(*spec) for spec in DEMO_USERS]
        self.session.flush()

        if self.session.query(Post).count() > 0:
            self.log("Posts already exist. Skipping.")
            return

        posts = []
        for user in users:
            for _ in range(self.fake.random_int(min=2, max=4)):
                posts.append(
                    Post(
                        title=self.fake.sentence(nb_words=6),
                        body=self.fake.paragraph(nb_sentences=3),
                        status=self.fake.random_element(["draft", "published"]),
                        user_id=user.id,
                        team_id=user.team_id,
                        department_id=user.department_id,
                    )
                )
        self.session.add_all(posts)
        self.log(f"Created {len(posts)} posts for {len(users)} users.")

    def _ensure_user(self, username: str, role: str, team_id, department_id) -> User:
        user = self.session.query(User).filter_by(username=username).first()
        if user is None:
            user = User(
                username=username,
                email=self.fake.email(),
                phone=self.fake.phone_number()[:50],
                team_id=team_id,
                department_id=department_id,
                is_active=True,
            )
            self.session.add(user)
            self.session.flush()
            self.log(f"Created user '{username}'.")
        self.registry.assign_role(user, role)
        return user
