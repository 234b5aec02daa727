"""
Column policy resolution.

Decides, once per table schema, whether each column is audited, forced,
and/or value-transformed. Policies are read from plain mappings shaped like
SQLAlchemy's ``Column.info``:

    Column(String, info={"audit": False})                 # never recorded
    Column(String, info={"force_audit": True})            # always recorded
    Column(String, info={"audit_transform": "lowercase"}) # recorded value transformed
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

from rowaudit.services.errors import ConfigurationError

AUDIT_KEY = "audit"
FORCE_KEY = "force_audit"
TRANSFORM_KEY = "audit_transform"

REDACTED = "[REDACTED]"


def _lowercase(row_context, value):
    return value.lower() if isinstance(value, str) else value


def _uppercase(row_context, value):
    return value.upper() if isinstance(value, str) else value


def _strip(row_context, value):
    return value.strip() if isinstance(value, str) else value


def _redact(row_context, value):
    return None if value is None else REDACTED


BUILTIN_TRANSFORMS: Dict[str, Callable[[Any, Any], Any]] = {
    "lowercase": _lowercase,
    "uppercase": _uppercase,
    "strip": _strip,
    "redact": _redact,
}


class ValueTransformer:
    """
    Substitutes the value written to the audit log for one column.

    The reference is resolved against the row context only when a value is
    actually recorded, so a broken reference on a column that is never
    selected does not fail. Accepted references:

    - a callable ``(row_context, value) -> value``
    - the name of a built-in transform (see BUILTIN_TRANSFORMS)
    - the name of a method on the row context taking ``(value)``
    - ``True``: the row context's ``audit_value_<column>(value)`` method
    """

    def __init__(self, column: str, reference: Any):
        self.column = column
        self.reference = reference

    def resolve(self, row_context: Any) -> Callable[[Any], Any]:
        reference = self.reference
        if callable(reference):
            return lambda value: reference(row_context, value)

        if reference is True:
            method_name = f"audit_value_{self.column}"
        elif isinstance(reference, str):
            builtin = BUILTIN_TRANSFORMS.get(reference)
            if builtin is not None:
                return lambda value: builtin(row_context, value)
            method_name = reference
        else:
            raise ConfigurationError(
                f"Column '{self.column}' has an invalid audit transform: {reference!r}",
                column=self.column
            )

        # A bare row mapping carries values, not transform methods
        method = None if isinstance(row_context, Mapping) else getattr(row_context, method_name, None)
        if not callable(method):
            raise ConfigurationError(
                f"Column '{self.column}' audit transform '{method_name}' "
                f"is not a callable on {type(row_context).__name__}",
                column=self.column
            )
        return method

    def __call__(self, row_context: Any, value: Any) -> Any:
        return self.resolve(row_context)(value)

    def __repr__(self):
        return f"ValueTransformer({self.column!r}, {self.reference!r})"


@dataclass(frozen=True)
class ColumnPolicy:
    """Audit behaviour of a single column."""
    auditable: bool = True
    forced: bool = False
    transform: Optional[ValueTransformer] = None


DEFAULT_POLICY = ColumnPolicy()

ColumnMetadata = Iterable[Tuple[str, Optional[Mapping[str, Any]]]]
PolicyInput = Union[None, Mapping[str, Any], ColumnMetadata]


def resolve_policy(name: str, info: Optional[Mapping[str, Any]]) -> ColumnPolicy:
    """Build the policy of one column from its metadata flags."""
    if not info:
        return DEFAULT_POLICY

    reference = info.get(TRANSFORM_KEY)
    transform = None
    if reference is not None and reference is not False:
        transform = ValueTransformer(name, reference)

    return ColumnPolicy(
        auditable=bool(info.get(AUDIT_KEY, True)),
        forced=bool(info.get(FORCE_KEY, False)),
        transform=transform
    )


def resolve_policies(columns: ColumnMetadata) -> Dict[str, ColumnPolicy]:
    """
    Resolve policies for an ordered sequence of (column name, info) pairs.

    The returned dict keeps column declaration order, which is the order
    field changes are emitted in.
    """
    return {name: resolve_policy(name, info) for name, info in columns}


def coerce_policies(column_policies: PolicyInput) -> Dict[str, ColumnPolicy]:
    """Accept already-resolved policies, raw column metadata, or nothing."""
    if column_policies is None:
        return {}
    if isinstance(column_policies, Mapping):
        resolved = [name for name, policy in column_policies.items() if isinstance(policy, ColumnPolicy)]
        if len(resolved) == len(column_policies):
            return dict(column_policies)
        if resolved:
            raise ConfigurationError(
                "Column policies mix resolved ColumnPolicy values with column info "
                f"mappings (resolved: {', '.join(resolved)})",
                column=resolved[0]
            )
        return resolve_policies(column_policies.items())
    return resolve_policies(column_policies)


class PolicyResolver:
    """
    Caches resolved policies per SQLAlchemy Table.

    Column metadata is static for the life of the process, so each table is
    resolved once.
    """

    def __init__(self):
        self._cache: Dict[Any, Dict[str, ColumnPolicy]] = {}

    def policies_for_table(self, table) -> Dict[str, ColumnPolicy]:
        policies = self._cache.get(table)
        if policies is None:
            policies = resolve_policies((column.name, column.info) for column in table.columns)
            self._cache[table] = policies
        return policies
