"""
Schema Registry

Canonical definitions of the dataset families, their sub-tables,
field types, value domains and derivation formulas.
"""

from .registry import (
    FieldType,
    FieldRole,
    SubTableRole,
    FieldSpec,
    Derivation,
    SubTableSchema,
    FamilySchema,
    FAMILIES,
    FAMILY_ORDER,
    DEFAULT_FAMILIES,
    get_family,
    family_index,
    list_families,
    describe_family,
)

__all__ = [
    "FieldType",
    "FieldRole",
    "SubTableRole",
    "FieldSpec",
    "Derivation",
    "SubTableSchema",
    "FamilySchema",
    "FAMILIES",
    "FAMILY_ORDER",
    "DEFAULT_FAMILIES",
    "get_family",
    "family_index",
    "list_families",
    "describe_family",
]
