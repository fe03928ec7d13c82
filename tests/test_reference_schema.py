"""
Test Suite for Reference Data and the Schema Registry

Tests lookups and registry structure:
- Section/category/test lookups
- Family schemas and describe_family
- Lookup errors
"""

import pytest

from labsynth import reference as ref
from labsynth.exceptions import UnknownCategory, UnknownFamily, UnknownSection
from labsynth.schema import (
    DEFAULT_FAMILIES,
    FAMILY_ORDER,
    FieldRole,
    SubTableRole,
    describe_family,
    family_index,
    get_family,
    list_families,
)


class TestReferenceLookups:
    """Test reference enumerations"""

    def test_sections(self):
        assert ref.SECTIONS == ("KBA", "KMA", "KPA")

    def test_categories_for_section(self):
        assert "Chemistry" in ref.categories_for_section("KBA")
        assert "Culture" in ref.categories_for_section("KMA")

    def test_unknown_section(self):
        with pytest.raises(UnknownSection):
            ref.categories_for_section("XYZ")

    def test_unknown_category(self):
        with pytest.raises(UnknownCategory):
            ref.tests_for_category("Astrology")
        with pytest.raises(UnknownCategory):
            ref.section_for_category("Astrology")

    def test_category_round_trip(self):
        for section in ref.SECTIONS:
            for category in ref.categories_for_section(section):
                assert ref.section_for_category(category) == section
                for test in ref.tests_for_category(category):
                    assert ref.category_for_test(test) == category

    def test_catalog_covers_all_tests(self):
        catalog = ref.test_catalog()
        assert list(catalog["test"]) == ref.all_tests()
        assert set(catalog["section"]) == set(ref.SECTIONS)

    def test_qc_targets_cover_levels(self):
        assert set(ref.QC_TARGETS) == set(ref.QC_LEVELS)

    def test_every_qc_analyte_has_an_instrument(self):
        for analyte in ref.QC_ANALYTES:
            assert ref.QC_ANALYTE_INSTRUMENTS[analyte]

    def test_domain_values(self):
        assert ref.domain_values("section") == ref.SECTIONS
        with pytest.raises(KeyError):
            ref.domain_values("nonexistent")


class TestSchemaRegistry:
    """Test the family registry"""

    def test_default_families(self):
        assert len(DEFAULT_FAMILIES) == 9
        assert "turnaround_time" not in DEFAULT_FAMILIES
        assert list_families() == list(DEFAULT_FAMILIES)
        assert "turnaround_time" in list_families(include_optional=True)

    def test_family_index_is_stable(self):
        for i, name in enumerate(FAMILY_ORDER):
            assert family_index(name) == i

    def test_unknown_family(self):
        with pytest.raises(UnknownFamily):
            get_family("Unknown")
        with pytest.raises(UnknownFamily):
            family_index("Unknown")

    def test_every_family_has_a_base_table(self):
        for name in list_families(include_optional=True):
            family = get_family(name)
            assert family.base_tables
            for table in family.base_tables:
                assert family.sub_table(table).role == SubTableRole.BASE

    def test_derivation_targets_are_declared_fields(self):
        for name in list_families(include_optional=True):
            for table in get_family(name).sub_tables.values():
                for derivation in table.derivations:
                    assert derivation.target in table.field_names

    def test_field_roles(self):
        daily = get_family("activity_volume").sub_table("daily")
        assert daily.keys == ["date", "section"]
        assert daily.base_fields == ["test_count"]
        assert daily.get_field("week").role == FieldRole.DERIVED

    def test_describe_family(self):
        description = describe_family("cost_data")
        assert set(description) == {"test_costs", "monthly", "section_summary"}
        assert description["test_costs"]["derivations"]["total_cost"] == \
            "reagent_cost + labor_cost + overhead_cost"
