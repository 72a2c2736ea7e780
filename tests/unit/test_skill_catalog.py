"""
Unit tests for the skill catalog and backtrack rules.
"""

import json

import pytest

from src.catalog.backtrack import DEFAULT_BACKTRACK_RULES, BacktrackRuleSet
from src.catalog.skills import CATEGORIES, CatalogIntegrityError, SkillCatalog, SkillDefinition, load_catalog
from src.core.mastery import ErrorType, SkillImportance


class TestSkillCatalog:
    def test_lookup_and_iteration_order(self, catalog):
        """Skills iterate in definition order and resolve by id."""
        assert [s.id for s in catalog] == ["B-01", "B-02", "B-03", "I-01", "I-02", "A-01"]
        assert catalog.get("I-01").name == "二次方程式"
        assert catalog.get("nope") is None
        assert catalog.is_valid("A-01")
        assert "B-02" in catalog

    def test_roots_and_successors(self, catalog):
        assert [s.id for s in catalog.roots()] == ["B-01", "A-01"]
        assert [s.id for s in catalog.successors("B-02")] == ["B-03", "I-01"]
        assert [s.id for s in catalog.successors("B-01")] == ["B-02", "I-02"]

    def test_units_group_by_category_and_subcategory(self, catalog):
        units = catalog.units()
        assert list(units) == [("基礎", "数と式"), ("数学I", "二次関数"), ("数学A", "場合の数と確率")]
        assert [s.id for s in units[("数学I", "二次関数")]] == ["I-01", "I-02"]

    def test_validate_returns_prerequisites_first(self, catalog):
        order = catalog.validate()
        assert len(order) == len(catalog)
        for skill in catalog:
            for prereq in skill.prerequisites:
                assert order.index(prereq) < order.index(skill.id)

    def test_cycle_is_rejected(self):
        """A prerequisite cycle fails validation."""
        cyclic = SkillCatalog(
            [
                SkillDefinition("X", "x", "基礎", "u", prerequisites=("Z",)),
                SkillDefinition("Y", "y", "基礎", "u", prerequisites=("X",)),
                SkillDefinition("Z", "z", "基礎", "u", prerequisites=("Y",)),
            ]
        )
        with pytest.raises(CatalogIntegrityError, match="cycle"):
            cyclic.validate()

    def test_dangling_prerequisite_is_rejected(self):
        dangling = SkillCatalog([SkillDefinition("X", "x", "基礎", "u", prerequisites=("MISSING",))])
        with pytest.raises(CatalogIntegrityError, match="MISSING"):
            dangling.validate()

    def test_duplicate_ids_are_rejected(self):
        with pytest.raises(CatalogIntegrityError, match="Duplicate"):
            SkillCatalog([SkillDefinition("X", "x", "基礎", "u"), SkillDefinition("X", "x2", "基礎", "u")])

    def test_from_json(self, tmp_path):
        path = tmp_path / "skills.json"
        path.write_text(
            json.dumps(
                [
                    {"id": "S1", "name": "one", "category": "基礎", "importance": "core"},
                    {"id": "S2", "category": "基礎", "prerequisites": ["S1"], "keywords": ["k"]},
                ]
            ),
            encoding="utf-8",
        )
        catalog = SkillCatalog.from_json(path)
        assert catalog.get("S1").importance is SkillImportance.CORE
        assert catalog.get("S2").name == "S2"
        assert catalog.get("S2").prerequisites == ("S1",)

    def test_bundled_catalog_is_valid(self):
        """The shipped curriculum loads, validates and covers every subject tier."""
        catalog = load_catalog()
        assert len(catalog) == 382
        assert {s.category for s in catalog} == set(CATEGORIES)
        assert catalog.roots()


class TestBacktrackRules:
    def test_find_by_skill_and_error_type(self, rules):
        rule = rules.find("I-02", ErrorType.L2)
        assert rule.id == "BT-I-02-L2"
        assert rules.find("I-02", ErrorType.L3) is None

    def test_for_skill_and_by_error_type(self, rules):
        assert [r.id for r in rules.for_skill("I-02")] == ["BT-I-02-L2", "BT-I-02-L1"]
        assert [r.id for r in rules.by_error_type(ErrorType.L1)] == ["BT-I-01-L1", "BT-I-02-L1"]

    def test_common_weakness_roots_most_frequent_first(self, rules):
        roots = rules.common_weakness_roots()
        assert roots[0] == ("B-01", 2)
        assert dict(roots)["Z-99"] == 1

    def test_unknown_targets_are_reported(self, rules, catalog):
        assert rules.unknown_targets(catalog) == {"BT-I-02-L2": ["Z-99"]}

    def test_default_rules_resolve_against_bundled_catalog(self):
        catalog = load_catalog()
        rule_set = BacktrackRuleSet()
        assert len(rule_set) == len(DEFAULT_BACKTRACK_RULES)
        # Sample rules may point outside the catalog; that is reported, never fatal
        assert isinstance(rule_set.unknown_targets(catalog), dict)
