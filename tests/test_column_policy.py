"""Tests for resolving per-column audit policies."""
import pytest
from rowaudit.services.errors import ConfigurationError
from rowaudit.services.policy import (
    ColumnPolicy,
    DEFAULT_POLICY,
    PolicyResolver,
    REDACTED,
    ValueTransformer,
    coerce_policies,
    resolve_policies,
)
from host_models import Account, Person


class TestResolvePolicies:
    """Column metadata flags map onto policies."""

    def test_default_policy(self):
        """Columns without flags are audited, not forced, not transformed."""
        policies = resolve_policies([("name", None), ("phone", {})])

        assert policies["name"] == ColumnPolicy(auditable=True, forced=False, transform=None)
        assert policies["phone"] == DEFAULT_POLICY

    def test_not_audited(self):
        policies = resolve_policies([("password", {"audit": False})])

        assert policies["password"].auditable is False
        assert policies["password"].forced is False

    def test_forced(self):
        policies = resolve_policies([("plan", {"force_audit": True})])

        assert policies["plan"].forced is True
        assert policies["plan"].auditable is True

    def test_forced_and_not_audited(self):
        """Both flags are kept; forcing wins when the diff is computed."""
        policies = resolve_policies([("plan", {"audit": False, "force_audit": True})])

        assert policies["plan"].auditable is False
        assert policies["plan"].forced is True

    def test_transform_attached(self):
        policies = resolve_policies([("email", {"audit_transform": "lowercase"})])

        assert isinstance(policies["email"].transform, ValueTransformer)
        assert policies["email"].transform.column == "email"

    def test_false_transform_is_no_transform(self):
        policies = resolve_policies([("email", {"audit_transform": False})])

        assert policies["email"].transform is None

    def test_declaration_order_preserved(self):
        policies = resolve_policies([("z", None), ("a", None), ("m", None)])

        assert list(policies) == ["z", "a", "m"]


class TestValueTransformer:
    """Transform references are resolved lazily against the row context."""

    def test_callable_reference(self):
        transformer = ValueTransformer("name", lambda row, value: f"{row['prefix']}{value}")

        assert transformer({"prefix": ">"}, "x") == ">x"

    def test_builtin_references(self):
        assert ValueTransformer("c", "lowercase")(None, "MixedCase") == "mixedcase"
        assert ValueTransformer("c", "uppercase")(None, "MixedCase") == "MIXEDCASE"
        assert ValueTransformer("c", "strip")(None, "  padded ") == "padded"
        assert ValueTransformer("c", "redact")(None, "secret") == REDACTED
        assert ValueTransformer("c", "redact")(None, None) is None

    def test_builtin_leaves_non_strings_alone(self):
        assert ValueTransformer("c", "lowercase")(None, 42) == 42

    def test_true_uses_conventional_method(self):
        account = Account(username="x", nickname="bob")

        assert ValueTransformer("nickname", True)(account, "bob smith") == "Bob Smith"

    def test_named_method_on_row_context(self):
        class Row:
            def mask(self, value):
                return "*" * len(value)

        assert ValueTransformer("pin", "mask")(Row(), "1234") == "****"

    def test_unresolvable_method_is_configuration_error(self):
        transformer = ValueTransformer("nickname", True)

        with pytest.raises(ConfigurationError) as exc_info:
            transformer(Person(name="x"), "value")

        assert exc_info.value.column == "nickname"
        assert "audit_value_nickname" in str(exc_info.value)

    def test_unknown_name_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            ValueTransformer("email", "no_such_transform")({}, "value")

    def test_row_mapping_methods_are_not_transforms(self):
        """A plain row dict offers no methods, so dict methods never resolve."""
        for name in ("get", "copy"):
            with pytest.raises(ConfigurationError):
                ValueTransformer("email", name)({"email": "a"}, "a")

    def test_invalid_reference_type_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            ValueTransformer("email", 12)({}, "value")

    def test_resolution_is_lazy(self):
        """A broken reference does not fail until it is actually used."""
        policies = resolve_policies([("email", {"audit_transform": "no_such_transform"})])

        assert policies["email"].transform is not None


class TestCoercePolicies:
    """record_mutation accepts several shapes of column policy input."""

    def test_none(self):
        assert coerce_policies(None) == {}

    def test_resolved_policies_pass_through(self):
        policies = {"a": ColumnPolicy(forced=True)}

        assert coerce_policies(policies) == policies

    def test_mapping_of_info(self):
        policies = coerce_policies({"a": {"audit": False}, "b": None})

        assert policies["a"].auditable is False
        assert policies["b"] == DEFAULT_POLICY

    def test_mixed_mapping_is_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            coerce_policies({"a": ColumnPolicy(forced=True), "b": {"audit": False}})

        assert exc_info.value.column == "a"

    def test_empty_mapping(self):
        assert coerce_policies({}) == {}

    def test_sequence_of_pairs(self):
        policies = coerce_policies([("a", {"force_audit": True})])

        assert policies["a"].forced is True


class TestPolicyResolver:
    """Policies are read from SQLAlchemy Column.info and cached per table."""

    def test_reads_column_info(self):
        policies = PolicyResolver().policies_for_table(Account.__table__)

        assert list(policies) == ["id", "username", "password", "plan", "nickname"]
        assert policies["id"] == DEFAULT_POLICY
        assert policies["password"].auditable is False
        assert policies["plan"].forced is True
        assert policies["username"].transform.reference == "lowercase"
        assert policies["nickname"].transform.reference is True

    def test_cached_per_table(self):
        resolver = PolicyResolver()

        first = resolver.policies_for_table(Person.__table__)
        second = resolver.policies_for_table(Person.__table__)

        assert first is second
        assert resolver.policies_for_table(Account.__table__) is not first
