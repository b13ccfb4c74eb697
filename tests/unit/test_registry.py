"""Tests for the relationship registry."""

import logging
from types import SimpleNamespace

import pytest
from sqlalchemy import select

import campusdb.relationships.registry as registry_module
from campusdb.core.types import RelationshipKind
from campusdb.relationships import JoinTableSpec, RelationshipRegistry
from campusdb.relationships.definitions import many_to_many, many_to_one, one_to_many, one_to_one


def _register_role_permissions(registry: RelationshipRegistry) -> None:
    registry.register_many_to_many(
        "Role",
        "Permission",
        {"through": "RolePermission", "alias": "permissions"},
        owning_module="rbac",
    )
    registry.register_many_to_many(
        "Permission",
        "Role",
        {"through": "RolePermission", "alias": "roles"},
        owning_module="rbac",
    )


class TestRegistration:
    """Identity-key de-duplication."""

    def test_register_returns_true(self, registry):
        assert registry.register_belongs_to("Department", "School", owning_module="academics")
        assert len(registry) == 1
        assert registry.get("Department", "School", "school").foreign_key == "school_id"

    def test_duplicate_rejected_and_first_owner_kept(self, registry, caplog):
        registry.register_belongs_to("UserRole", "Role", {"alias": "role"}, owning_module="rbac")

        with caplog.at_level(logging.WARNING, logger="campusdb.relationships.registry"):
            accepted = registry.register_belongs_to(
                "UserRole", "Role", {"alias": "role"}, owning_module="users"
            )

        assert accepted is False
        assert len(registry) == 1
        assert registry.get_owner("UserRole", "Role", "role") == "rbac"
        assert "Previously defined by module: rbac" in caplog.text
        assert "now attempted by: users" in caplog.text

    def test_same_pair_with_different_alias_is_distinct(self, registry):
        registry.register_belongs_to("Category", "School")
        registry.register_belongs_to("Category", "School", {"alias": "campus", "foreign_key": "campus_id"})
        assert len(registry) == 2

    def test_get_owner_unknown(self, registry):
        assert registry.get_owner("Role", "Permission", "permissions") is None

    def test_register_all_counts_accepted(self, registry):
        definitions = [
            many_to_one("Department", "School", owning_module="a"),
            many_to_one("Department", "School", owning_module="b"),
            one_to_many("School", "Department", owning_module="a"),
        ]
        assert registry.register_all(definitions) == 2

    def test_reset(self, registry):
        _register_role_permissions(registry)
        registry.reset()
        assert len(registry) == 0
        assert registry.get_all_relationships() == []

    def test_join_tables(self, registry):
        _register_role_permissions(registry)
        registry.register_one_to_many("School", "Department")

        specs = registry.join_tables()

        assert specs == {"RolePermission": JoinTableSpec("RolePermission", "role_id", "permission_id")}
        assert specs["RolePermission"].key_columns == ("role_id", "permission_id")


class TestApplicationOrder:
    """Owning sides are applied before the relationships that depend on them."""

    def test_sorted_by_kind_and_stable(self, registry):
        definitions = [
            many_to_many("Role", "Permission", {"through": "RolePermission"}),
            one_to_many("School", "Department"),
            many_to_one("Department", "School"),
            one_to_one("User", "Profile"),
            many_to_many("Permission", "Role", {"through": "RolePermission"}),
            one_to_many("School", "User"),
            many_to_one("User", "School"),
            one_to_one("School", "Profile"),
        ]
        registry.register_all(definitions)

        ordered = registry.resolve_application_order()

        ranks = [d.kind.rank for d in ordered]
        assert ranks == sorted(ranks)
        for kind in RelationshipKind:
            in_order = [d for d in ordered if d.kind == kind]
            registered = [d for d in definitions if d.kind == kind]
            assert in_order == registered

    def test_order_does_not_change_registrations(self, registry):
        registry.register_many_to_many("Role", "Permission", {"through": "RolePermission"})
        registry.register_belongs_to("Department", "School")
        registry.resolve_application_order()
        assert [d.kind for d in registry.get_all_relationships()] == [
            RelationshipKind.MANY_TO_MANY,
            RelationshipKind.MANY_TO_ONE,
        ]


class TestApplyAll:
    """Applying definitions to mapped classes."""

    def test_many_to_many_both_directions(self, registry, models, sqlite_connection):
        """Role <-> Permission through RolePermission, queried from both sides."""
        _register_role_permissions(registry)

        summary = registry.apply_all()

        assert summary.applied == 2
        assert summary.total == 2
        assert summary.complete
        assert all(d.applied for d in registry.get_all_relationships())

        models.Base.metadata.create_all(sqlite_connection.engine)
        with sqlite_connection.get_session() as session:
            admin = models.Role(name="admin")
            read = models.Permission(name="read")
            write = models.Permission(name="write")
            admin.permissions.extend([read, write])
            session.add(admin)
            session.commit()

            role = session.scalars(select(models.Role).where(models.Role.name == "admin")).one()
            assert sorted(p.name for p in role.permissions) == ["read", "write"]

            permission = session.scalars(
                select(models.Permission).where(models.Permission.name == "read")
            ).one()
            assert [r.name for r in permission.roles] == ["admin"]

    def test_inverse_linked_with_back_populates(self, registry, models):
        _register_role_permissions(registry)
        registry.apply_all()

        permissions = models.Role.__mapper__.get_property("permissions")
        roles = models.Permission.__mapper__.get_property("roles")
        assert permissions.back_populates == "roles"
        assert roles.back_populates == "permissions"

    def test_belongs_to_adds_foreign_key_column(self, registry, models):
        registry.register_belongs_to("Department", "School", {"on_delete": "CASCADE"})
        registry.register_one_to_many("School", "Department")

        summary = registry.apply_all()

        assert summary.complete
        column = models.Department.__table__.c["school_id"]
        assert column.nullable is True
        fk = next(iter(column.foreign_keys))
        assert fk.column is models.School.__table__.c["id"]
        assert fk.ondelete == "CASCADE"
        assert models.School.__mapper__.get_property("departments").back_populates == "school"

    def test_constraints_false_skips_foreign_key(self, registry, models):
        registry.register_belongs_to("Department", "School", {"constraints": False})
        registry.apply_all()
        column = models.Department.__table__.c["school_id"]
        assert not column.foreign_keys

    def test_one_to_one_is_scalar(self, registry, models, sqlite_connection):
        registry.register_one_to_one("User", "Profile")
        registry.apply_all()

        assert "user_id" in models.Profile.__table__.c
        assert models.User.__mapper__.get_property("profile").uselist is False

        models.Base.metadata.create_all(sqlite_connection.engine)
        with sqlite_connection.get_session() as session:
            user = models.User(email="ada@example.edu")
            user.profile = models.Profile(bio="maths")
            session.add(user)
            session.commit()
            loaded = session.scalars(select(models.User)).one()
            assert loaded.profile.bio == "maths"

    def test_partial_failure_is_contained(self, registry, caplog):
        """One broken definition does not stop the others."""
        registry.register_belongs_to("Department", "School")
        registry.register_belongs_to("Department", "Ghost")
        registry.register_belongs_to("User", "School")
        registry.register_one_to_one("User", "Profile")
        registry.register_many_to_many("Role", "Permission", {"through": "RolePermission"})

        with caplog.at_level(logging.INFO, logger="campusdb.relationships.registry"):
            summary = registry.apply_all()

        assert summary.applied == 4
        assert summary.total == 5
        assert len(summary.failures) == 1
        assert summary.failures[0]["context"]["target"] == "Ghost"
        assert registry.get("Department", "Ghost", "ghost").applied is False
        assert registry.get("User", "Profile", "profile").applied is True
        assert "Entity type 'Ghost' is not mapped" in caplog.text
        assert "Applied 4 of 5 relationships" in caplog.text

    def test_alias_taken_by_column(self, registry, models):
        registry.register_belongs_to("Department", "School", {"alias": "name"})

        summary = registry.apply_all()

        assert summary.applied == 0
        assert "already used" in summary.failures[0]["context"]["reason"]

    def test_missing_join_column(self, registry):
        registry.register_many_to_many(
            "Role", "Permission", {"through": "RolePermission", "other_key": "perm_id"}
        )
        summary = registry.apply_all()
        assert summary.applied == 0
        assert "has no column 'perm_id'" in summary.failures[0]["context"]["reason"]

    def test_bad_order_by_is_contained(self, registry):
        registry.register_one_to_many("School", "Department", {"order_by": "missing"})
        registry.register_belongs_to("User", "School")
        summary = registry.apply_all()
        assert summary.applied == 1
        assert summary.total == 2

    def test_join_entity_with_composite_key_belongs_to(self, registry, models, sqlite_connection):
        """A join type keyed on two columns can still point at each side."""
        registry.register_belongs_to("RolePermission", "Role", {"alias": "role"})
        registry.register_belongs_to("RolePermission", "Permission", {"alias": "permission"})

        summary = registry.apply_all()

        assert summary.applied == summary.total == 2
        assert summary.complete

        models.Base.metadata.create_all(sqlite_connection.engine)
        with sqlite_connection.get_session() as session:
            link = models.RolePermission(
                role=models.Role(name="admin"), permission=models.Permission(name="read")
            )
            session.add(link)
            session.commit()

            loaded = session.scalars(select(models.RolePermission)).one()
            assert loaded.role.name == "admin"
            assert loaded.permission.name == "read"

    def test_unknown_back_populates_is_contained(self, registry, models, sqlite_connection):
        """A back_populates naming nothing fails alone; other mappers keep working."""
        _register_role_permissions(registry)
        registry.register_belongs_to("Department", "School", {"back_populates": "nope"})

        summary = registry.apply_all()

        assert summary.applied == 2
        assert summary.total == 3
        assert not summary.complete
        assert "back_populates 'nope'" in summary.failures[0]["context"]["reason"]
        assert "school_id" not in models.Department.__table__.c

        models.Base.metadata.create_all(sqlite_connection.engine)
        with sqlite_connection.get_session() as session:
            session.add(models.Role(name="admin"))
            session.commit()
            assert session.scalars(select(models.Role)).one().permissions == []

    def test_back_populates_names_registered_alias(self, registry, models):
        registry.register_belongs_to("Department", "School", {"back_populates": "departments"})
        registry.register_one_to_many("School", "Department")

        assert registry.apply_all().complete
        assert models.Department.__mapper__.get_property("school").back_populates == "departments"

    def test_configuration_error_is_reported(self, registry):
        """Errors SQLAlchemy raises only when configuring mappers land in failures."""
        registry.register_one_to_one("User", "Profile")
        registry.register_belongs_to("Department", "School", {"cascade": "all, delete-orphan"})

        summary = registry.apply_all()

        assert not summary.complete
        assert summary.applied == 1
        assert summary.failures[0]["context"]["alias"] == "school"
        assert registry.get("Department", "School", "school").applied is False
        assert registry.get("User", "Profile", "profile").applied is True

    def test_configuration_error_without_named_relationship(self, registry, models, monkeypatch):
        def configure(cascade=False):
            raise RuntimeError("mapper trouble")

        monkeypatch.setattr(models.Base.registry, "configure", configure)
        registry.register_belongs_to("Department", "School")

        summary = registry.apply_all()

        assert summary.applied == 1
        assert not summary.complete
        assert summary.failures[0]["error"] == "CampusDBError"
        assert "mapper trouble" in summary.failures[0]["message"]

    def test_self_referencing(self, registry, models, sqlite_connection):
        registry.register_belongs_to(
            "Department", "Department", {"alias": "parent", "foreign_key": "parent_id"}
        )
        registry.register_one_to_many(
            "Department", "Department", {"alias": "children", "foreign_key": "parent_id"}
        )
        assert registry.apply_all().complete

        models.Base.metadata.create_all(sqlite_connection.engine)
        with sqlite_connection.get_session() as session:
            root = models.Department(name="Sciences")
            root.children.append(models.Department(name="Physics"))
            session.add(root)
            session.commit()
            physics = session.scalars(
                select(models.Department).where(models.Department.name == "Physics")
            ).one()
            assert physics.parent.name == "Sciences"


class TestIdempotence:
    """Repeated application never mutates the classes twice."""

    @pytest.fixture
    def declare_calls(self, monkeypatch):
        calls = SimpleNamespace(attempts=[], changed=[])
        original = registry_module.declare_relationship

        def counting(definition, models, inverse=None):
            calls.attempts.append(definition.key)
            changed = original(definition, models, inverse=inverse)
            calls.changed.append(changed)
            return changed

        monkeypatch.setattr(registry_module, "declare_relationship", counting)
        return calls

    def test_second_apply_is_a_no_op(self, registry, declare_calls):
        _register_role_permissions(registry)
        registry.register_belongs_to("Department", "School")

        first = registry.apply_all()
        attempts_after_first = len(declare_calls.attempts)
        second = registry.apply_all()

        assert first.applied == second.applied == 3
        assert attempts_after_first == 3
        assert len(declare_calls.attempts) == attempts_after_first
        assert second.failures == []

    def test_retry_only_failed(self, registry, declare_calls):
        registry.register_belongs_to("Department", "School")
        registry.register_belongs_to("Department", "Ghost")

        registry.apply_all()
        summary = registry.apply_all()

        assert declare_calls.attempts.count(("Department", "School", "school")) == 1
        assert declare_calls.attempts.count(("Department", "Ghost", "ghost")) == 2
        assert summary.applied == 1
        assert len(summary.failures) == 1

    def test_new_registry_adopts_existing_relationships(self, models, declare_calls):
        first = RelationshipRegistry(models.Base)
        _register_role_permissions(first)
        first.apply_all()
        prop = models.Role.__mapper__.get_property("permissions")

        second = RelationshipRegistry(models.Base)
        _register_role_permissions(second)
        summary = second.apply_all()

        assert summary.complete
        assert models.Role.__mapper__.get_property("permissions") is prop
        assert declare_calls.changed == [True, True, False, False]
