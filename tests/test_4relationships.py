"""
Tests relationships, lazy loading and eager loading.
"""
import pytest

from asyncrecord import DatabaseInterface, QueryBuilder, is_loaded
from asyncrecord.exc import NoSuchRelationshipError
from asyncrecord.orm.relationship import BelongsTo, BelongsToMany, HasMany, HasOne, snake_case
from asyncrecord.utils import unique

from blog import Comment, CountingExecutor, Post, Role, User

# mark all test_ functions as coroutines
pytestmark = pytest.mark.asyncio


async def pivot_roles(db, user) -> list:
    keys = await QueryBuilder(db, "role_user").where("user_id", user.id).pluck("role_id")
    return sorted(keys)


async def make_roles(*names):
    return [await Role.create({"name": name}) for name in names]


async def test_snake_case():
    assert snake_case("User") == "user"
    assert snake_case("BlogPost") == "blog_post"


async def test_unique_keys():
    assert unique([3, None, 1, 3, 2, 1, None]) == [3, 1, 2]
    assert unique(iter([])) == []

    keys = unique(key % 50000 for key in range(200000))
    assert keys == list(range(50000))


async def test_default_keys():
    posts = User.get_relationship("posts")
    assert posts.related is Post
    assert posts.foreign_key == "user_id"
    assert posts.local_key == "id"

    user = Post.get_relationship("user")
    assert user.foreign_key == "user_id"
    assert user.local_key == "id"

    roles = User.get_relationship("roles")
    assert roles.pivot_table == "role_user"
    assert roles.foreign_key == "user_id"
    assert roles.related_pivot_key == "role_id"
    assert Role.get_relationship("users").pivot_table == "role_user"


async def test_relationships_on_class():
    assert [r.name for r in User.iter_relationships()] == ["posts", "profile", "roles"]
    assert User.get_relationship("nope") is None
    # accessed on the class, the declaration itself is returned
    assert User.posts is User.get_relationship("posts")


async def test_relation_types(db: DatabaseInterface):
    user = await User.create({"name": "Laura"})
    post = await user.posts.create({"title": "Hello"})

    assert isinstance(user.posts, HasMany)
    assert isinstance(user.profile, HasOne)
    assert isinstance(user.roles, BelongsToMany)
    assert isinstance(post.user, BelongsTo)


async def test_has_many_lazy(db: DatabaseInterface):
    user = await User.create({"name": "Laura"})
    other = await User.create({"name": "Lars"})
    await user.posts.create({"title": "a"})
    await user.posts.create({"title": "b"})
    await other.posts.create({"title": "c"})

    posts = await user.posts
    assert sorted(post.title for post in posts) == ["a", "b"]
    assert all(post.user_id == user.id for post in posts)

    assert await user.posts.count() == 2
    assert await user.posts.where("title", "b").exists()
    assert [p.title for p in await user.posts.order_by("title", "DESC").limit(1).get()] == ["b"]
    assert (await user.posts.order_by("title").first()).title == "a"
    # forwarded builder methods stay chainable
    assert [p.title for p in await user.posts.where_not_in("title", ["a"]).get()] == ["b"]


async def test_or_where_stays_on_parent(db: DatabaseInterface):
    laura = await User.create({"name": "Laura"})
    lars = await User.create({"name": "Lars"})
    await laura.posts.create({"title": "mine"})
    await lars.posts.create({"title": "theirs"})

    sql, params = laura.posts.where("title", "x").or_where("title", "theirs").to_sql()
    assert "WHERE posts.user_id = ? AND (title = ? OR title = ?)" in sql
    assert params[:3] == [laura.id, "x", "theirs"]

    assert await laura.posts.where("title", "x").or_where("title", "theirs").get() == []
    assert await laura.posts.where("title", "x").or_where("title", "theirs").count() == 0
    assert not await laura.posts.where("title", "x").or_where("title", "theirs").exists()

    posts = await laura.posts.where("title", "x").or_where("title", "mine").get()
    assert [post.title for post in posts] == ["mine"]

    owner = await Post.query().where("title", "mine").first()
    assert await owner.user.where("name", "x").or_where("name", "Lars").first() is None


async def test_or_where_in_eager_constraint(db: DatabaseInterface):
    laura = await User.create({"name": "Laura"})
    lars = await User.create({"name": "Lars"})
    nobody = await User.create({"name": "Nobody"})
    await laura.posts.create({"title": "a"})
    await lars.posts.create({"title": "b"})
    await nobody.posts.create({"title": "c"})

    users = await User.query().where_in("id", [laura.id, lars.id]).order_by("id") \
        .with_("posts", lambda q: q.where("title", "a").or_where("title", "c")) \
        .get()

    assert [post.title for post in users[0].posts] == ["a"]
    assert users[1].posts == []

    relation = User.get_relationship("posts").get_instance(None)
    relation.add_eager_constraints([laura, lars])
    relation.where("title", "a").or_where("title", "c")
    # c belongs to a user outside the set
    assert [post.title for post in await relation.fetch()] == ["a"]


async def test_or_where_on_pivot_relation(db: DatabaseInterface):
    laura = await User.create({"name": "Laura"})
    lars = await User.create({"name": "Lars"})
    admin, staff = await make_roles("admin", "staff")
    await laura.roles.attach([admin])
    await lars.roles.attach([staff])

    roles = await laura.roles.where("roles.name", "x").or_where("roles.name", "staff").get()
    assert roles == []


async def test_relation_first_keeps_query(db: DatabaseInterface):
    user = await User.create({"name": "Laura"})
    await user.posts.create({"title": "a"})
    await user.posts.create({"title": "b"})

    relation = user.posts.order_by("title")
    assert (await relation.first()).title == "a"
    assert [post.title for post in await relation.get()] == ["a", "b"]


async def test_has_many_unsaved_parent(db: DatabaseInterface):
    user = User({"name": "Laura"})

    assert await user.posts.get() == []


async def test_has_one_lazy(db: DatabaseInterface):
    user = await User.create({"name": "Laura"})
    assert await user.profile is None

    profile = await user.profile.create({"bio": "hi"})
    assert profile.user_id == user.id
    assert (await user.profile).bio == "hi"


async def test_belongs_to_lazy(db: DatabaseInterface):
    user = await User.create({"name": "Laura"})
    post = await user.posts.create({"title": "Hello"})

    owner = await post.user
    assert owner.id == user.id

    orphan = await Post.create({"title": "Orphan"})
    assert await orphan.user is None


async def test_associate_dissociate(db: DatabaseInterface):
    user = await User.create({"name": "Laura"})
    post = await Post.create({"title": "Hello"})

    relation = post.user
    relation.associate(user)
    assert post.user_id == user.id
    # the owner is cached
    assert post.user is user
    await post.save()
    assert (await Post.find(post.id)).user_id == user.id

    relation.dissociate()
    assert post.user_id is None
    assert post.user is None


async def test_published_draft_scenario(counter: CountingExecutor):
    user = await User.create({"name": "John"})
    await user.posts.create({"title": "Published"})
    await user.posts.create({"title": "Draft"})

    users = await User.query(counter).with_("posts", lambda q: q.where("title", "Published")) \
        .get()

    assert len(users) == 1
    assert len(users[0].posts) == 1
    assert users[0].posts[0].title == "Published"


async def test_eager_has_many_one_query(counter: CountingExecutor):
    users = []
    for name in ("a", "b", "c", "d"):
        users.append(await User.create({"name": name}))

    await users[0].posts.create({"title": "a1"})
    await users[0].posts.create({"title": "a2"})
    await users[2].posts.create({"title": "c1"})

    counter.reset()
    loaded = await User.query(counter).order_by("id").with_("posts").get()

    # one for the users, one for every post
    assert len(counter.queries) == 2
    assert [len(user.posts) for user in loaded] == [2, 0, 1, 0]
    assert all(is_loaded(user, "posts") for user in loaded)
    assert sorted(post.title for post in loaded[0].posts) == ["a1", "a2"]


async def test_eager_has_one_and_belongs_to(counter: CountingExecutor):
    laura = await User.create({"name": "Laura"})
    lars = await User.create({"name": "Lars"})
    await laura.profile.create({"bio": "hi"})
    await laura.posts.create({"title": "a"})
    await Post.create({"title": "orphan"})

    counter.reset()
    users = await User.query(counter).order_by("id").with_("profile").get()
    assert len(counter.queries) == 2
    assert users[0].profile.bio == "hi"
    assert users[1].profile is None
    assert users[1].id == lars.id

    counter.reset()
    posts = await Post.query(counter).order_by("id").with_("user").get()
    assert len(counter.queries) == 2
    assert posts[0].user.name == "Laura"
    assert posts[1].user is None


async def test_eager_without_keys_skips_query(counter: CountingExecutor):
    await Post.create({"title": "orphan"})

    counter.reset()
    posts = await Post.query(counter).with_("user").get()

    assert len(counter.queries) == 1
    assert posts[0].user is None


async def test_eager_nested(counter: CountingExecutor):
    users = [await User.create({"name": name}) for name in ("a", "b", "c")]
    for user in users[:2]:
        for index in range(2):
            post = await user.posts.create({"title": "{}{}".format(user.name, index)})
            await Comment.create({"post_id": post.id, "body": "on {}".format(post.title)})
            await Comment.create({"post_id": post.id, "body": "again {}".format(post.title)})

    counter.reset()
    loaded = await User.query(counter).order_by("id").with_("posts.comments").get()

    # one query per depth
    assert len(counter.queries) == 3
    assert loaded[2].posts == []
    for user in loaded[:2]:
        assert len(user.posts) == 2
        for post in user.posts:
            assert sorted(c.body for c in post.comments) == [
                "again {}".format(post.title), "on {}".format(post.title)
            ]


async def test_eager_nested_with_constraint(counter: CountingExecutor):
    user = await User.create({"name": "a"})
    keep = await user.posts.create({"title": "keep"})
    drop = await user.posts.create({"title": "drop"})
    await Comment.create({"post_id": keep.id, "body": "x"})
    await Comment.create({"post_id": drop.id, "body": "y"})

    counter.reset()
    loaded = await User.query(counter) \
        .with_({"posts": lambda q: q.where("title", "keep")}, "posts.comments") \
        .get()

    assert len(counter.queries) == 3
    assert [post.title for post in loaded[0].posts] == ["keep"]
    assert [c.body for c in loaded[0].posts[0].comments] == ["x"]


async def test_eager_excludes_soft_deleted(db: DatabaseInterface):
    user = await User.create({"name": "a"})
    await user.posts.create({"title": "live"})
    dead = await user.posts.create({"title": "dead"})
    await dead.delete()

    loaded = await User.with_("posts").first()
    assert [post.title for post in loaded.posts] == ["live"]


async def test_eager_unknown_relation(db: DatabaseInterface):
    await User.create({"name": "a"})

    with pytest.raises(NoSuchRelationshipError):
        await User.with_("nope").get()


async def test_load(counter: CountingExecutor):
    user = await User.create({"name": "a"}, bind=counter)
    await user.posts.create({"title": "a1"})

    counter.reset()
    await user.load("posts", "profile")

    assert len(counter.queries) == 2
    assert [post.title for post in user.posts] == ["a1"]
    assert user.profile is None
    assert user.to_dict()["posts"][0]["title"] == "a1"


async def test_refresh_reloads_relations(db: DatabaseInterface):
    user = await User.create({"name": "a"})
    await user.load("posts")
    assert user.posts == []

    await Post.create({"title": "new", "user_id": user.id})
    await user.refresh()
    assert [post.title for post in user.posts] == ["new"]


async def test_attach_detach(db: DatabaseInterface):
    user = await User.create({"name": "a"})
    admin, staff, guest = await make_roles("admin", "staff", "guest")

    await user.roles.attach([admin, staff.id])
    assert await pivot_roles(db, user) == [admin.id, staff.id]

    roles = await user.roles
    assert sorted(role.name for role in roles) == ["admin", "staff"]
    # pivot columns are moved off the attributes
    assert roles[0].pivot["user_id"] == user.id
    assert "pivot_user_id" not in roles[0].to_dict()
    assert roles[0].is_clean()

    assert await user.roles.detach([]) == 0
    await user.roles.detach(admin)
    assert await pivot_roles(db, user) == [staff.id]

    await user.roles.detach()
    assert await pivot_roles(db, user) == []


async def test_sync(db: DatabaseInterface):
    user = await User.create({"name": "a"})
    roles = await make_roles("one", "two", "three")
    one, two, three = [role.id for role in roles]

    await user.roles.attach([one, two])
    await user.roles.sync([two, three])

    assert await pivot_roles(db, user) == [two, three]


async def test_sync_without_detaching(db: DatabaseInterface):
    user = await User.create({"name": "a"})
    one, two = [role.id for role in await make_roles("one", "two")]

    await user.roles.attach([one])
    await user.roles.sync([two], detaching=False)

    assert await pivot_roles(db, user) == [one, two]


async def test_toggle(db: DatabaseInterface):
    user = await User.create({"name": "a"})
    one, two = [role.id for role in await make_roles("one", "two")]

    await user.roles.attach([one])
    result = await user.roles.toggle([one, two])

    assert result == {"attached": [two], "detached": [one]}
    assert await pivot_roles(db, user) == [two]


async def test_pivot_data(db: DatabaseInterface):
    user = await User.create({"name": "a"})
    admin, staff = await make_roles("admin", "staff")

    await user.roles.attach({admin.id: {"granted_by": "root"}, staff.id: None})
    roles = await user.roles.with_pivot("granted_by").order_by("roles.id").get()
    assert [role.pivot["granted_by"] for role in roles] == ["root", None]

    await user.roles.update_existing_pivot(staff, {"granted_by": "laura"})
    roles = await user.roles.with_pivot("granted_by").order_by("roles.id").get()
    assert [role.pivot["granted_by"] for role in roles] == ["root", "laura"]


async def test_belongs_to_many_create(db: DatabaseInterface):
    user = await User.create({"name": "a"})
    role = await user.roles.create({"name": "owner"}, pivot_data={"granted_by": "root"})

    assert role.exists
    assert await pivot_roles(db, user) == [role.id]


async def test_belongs_to_many_eager(counter: CountingExecutor):
    laura = await User.create({"name": "Laura"})
    lars = await User.create({"name": "Lars"})
    nobody = await User.create({"name": "Nobody"})
    admin, staff = await make_roles("admin", "staff")
    await laura.roles.attach([admin, staff])
    await lars.roles.attach([staff])

    counter.reset()
    users = await User.query(counter).order_by("id").with_("roles").get()

    assert len(counter.queries) == 2
    assert sorted(role.name for role in users[0].roles) == ["admin", "staff"]
    assert [role.name for role in users[1].roles] == ["staff"]
    assert users[2].roles == []
    assert users[2].id == nobody.id

    # and the inverse
    counter.reset()
    roles = await Role.query(counter).order_by("id").with_("users").get()
    assert len(counter.queries) == 2
    assert sorted(user.name for user in roles[1].users) == ["Laura", "Lars"]
