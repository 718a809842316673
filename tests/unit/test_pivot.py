import pytest

from backend.columns import build_header_index
from backend.pivot import (
    PivotOptions,
    build_pivot,
    metadata_columns,
    normalize_term,
    normalize_tier,
    order_tiers,
    sort_terms,
)

PROMO_HEADER = ["Table Group", "Eligible Products/Models", "Tiers", "36M", "48M"]
LONG_HEADER = ["Program Name", "Eligible Models", "Tiers", "Repayment Term", "Interest Rate",
               "Down Payment", "Front-End Cap", "Dealer Fee"]


def pivot(header, rows, **options):
    return build_pivot(build_header_index(header), rows, PivotOptions(**options) if options else None)


class TestNormalizeTerm:
    @pytest.mark.parametrize("raw, expected", [
        ("36", "36M"),
        ("36.0", "36M"),
        ("36M", "36M"),
        ("36 Months", "36M"),
        (" 72 mo ", "72M"),
        ("Balloon", "Balloon"),
        ("", ""),
    ])
    def test_values(self, raw, expected):
        assert normalize_term(raw) == expected

    @pytest.mark.parametrize("raw", ["36.0", "36 Months", "60", "Balloon", "84M"])
    def test_idempotent(self, raw):
        once = normalize_term(raw)
        assert normalize_term(once) == once


class TestNormalizeTier:
    def test_prefixes_bare_values(self):
        assert normalize_tier("1") == "Tier 1"
        assert normalize_tier("2.1") == "Tier 2.1"

    def test_keeps_existing_prefix(self):
        assert normalize_tier("Tier 1.12") == "Tier 1.12"
        assert normalize_tier("TIER 2") == "TIER 2"

    def test_empty(self):
        assert normalize_tier("  ") == ""


def test_sort_terms_numeric():
    assert sort_terms(["60M", "36M", "84M"]) == ["36M", "60M", "84M"]
    assert sort_terms(["120M", "24M"]) == ["24M", "120M"]


def test_sort_terms_mixed_falls_back_to_text():
    assert sort_terms(["Balloon", "36M", "12M"]) == ["12M", "36M", "Balloon"]
    assert sort_terms(["Lease", "Balloon"]) == ["Balloon", "Lease"]


class TestOrderTiers:
    discovered = ["Tier 3", "Tier 2", "tier 1", "Tier X"]

    def test_lenient_appends_unknown_in_discovery_order(self):
        options = PivotOptions(drop_unknown_tiers=False)
        assert order_tiers(self.discovered, options) == ["tier 1", "Tier 2", "Tier 3", "Tier X"]

    def test_strict_drops_unknown(self):
        options = PivotOptions(drop_unknown_tiers=True)
        assert order_tiers(self.discovered, options) == ["tier 1", "Tier 2"]

    def test_custom_order(self):
        options = PivotOptions(tier_order=("Tier 2", "Tier 1"), drop_unknown_tiers=True)
        assert order_tiers(["Tier 1", "Tier 2"], options) == ["Tier 2", "Tier 1"]


class TestBuildPivot:
    def test_promo_happy_path(self):
        groups = pivot(PROMO_HEADER, [["Group A", "Model X", "Tier 1", "4.99", "5.49"]])

        assert len(groups) == 1
        group = groups[0]
        assert group.name == "Group A"
        assert group.term_order == ["36M", "48M"]
        assert group.tier_order == ["Tier 1"]
        assert group.rate("Tier 1", "36M") == "4.99"
        assert group.rate("Tier 1", "48M") == "5.49"
        assert group.eligibility_items == ["Model X"]
        assert group.meta_columns == []

    def test_groups_keep_discovery_order_and_tiers_follow_canonical_order(self):
        groups = pivot(PROMO_HEADER, [
            ["Group B", "Model Y", "Tier 2", "6.99", "7.49"],
            ["Group A", "Model X", "2.1", "5.99", ""],
            ["Group B", "Model Y", "Tier 1", "3.99", "4.49"],
        ])

        assert [g.name for g in groups] == ["Group B", "Group A"]
        assert groups[0].tier_order == ["Tier 1", "Tier 2"]
        assert groups[1].tier_order == ["Tier 2.1"]
        assert groups[1].term_order == ["36M"]

    def test_duplicate_tier_and_term_last_write_wins(self):
        groups = pivot(LONG_HEADER, [
            ["P1", "Model X", "Tier 1", "36", "4.99", "", "", ""],
            ["P1", "Model X", "Tier 1", "36 Months", "3.49", "", "", ""],
        ])

        assert groups[0].rate("Tier 1", "36M") == "3.49"

    def test_metadata_first_value_wins(self):
        groups = pivot(LONG_HEADER, [
            ["P1", "Model X", "Tier 1", "36", "4.99", "", "$25,000", "$500"],
            ["P1", "Model X", "Tier 1", "48", "5.49", "10%", "$30,000", "$750"],
        ])

        meta = groups[0].meta["Tier 1"]
        assert meta.down_payment == "10%"
        assert meta.front_end_cap == "$25,000"
        assert meta.dealer_fee == "$500"
        assert groups[0].meta_columns == [
            ("down_payment", "Down Payment"),
            ("front_end_cap", "Front-End Cap"),
            ("dealer_fee", "Dealer Fee"),
        ]

    def test_incomplete_rows_are_skipped_without_aborting_the_group(self):
        groups = pivot(LONG_HEADER, [
            ["P1", "Model X", "Tier 1", "36", "4.99", "", "", ""],
            ["P1", "Model Z", "", "48", "5.99", "", "", ""],
            ["P1", "Model Z", "Tier 2", "", "5.99", "", "", ""],
            ["P1", "Model Z", "Tier 2", "48", "", "", "", ""],
            ["P1", "Model X", "Tier 2", "60", "6.49", "", "", ""],
        ])

        group = groups[0]
        assert group.tier_order == ["Tier 1", "Tier 2"]
        assert group.term_order == ["36M", "60M"]
        assert group.rate("Tier 2", "48M") == ""
        assert "Model Z" not in group.eligibility_items

    def test_blank_rows_contribute_nothing(self):
        groups = pivot(PROMO_HEADER, [
            ["", "  ", "", "", ""],
            ["Group A", "Model X", "Tier 1", "4.99", "5.49"],
            ["   ", "", "", "", ""],
        ])

        assert len(groups) == 1
        assert list(groups[0].rates) == ["Tier 1"]

    def test_group_without_terms_is_dropped(self):
        groups = pivot(PROMO_HEADER, [["Group A", "Model X", "Tier 1", "", ""]])
        assert groups == []

    def test_strict_policy_can_empty_a_group(self):
        rows = [["Group A", "Model X", "Tier 9", "4.99", "5.49"]]
        assert pivot(PROMO_HEADER, rows, drop_unknown_tiers=True) == []
        assert pivot(PROMO_HEADER, rows, drop_unknown_tiers=False)[0].tier_order == ["Tier 9"]

    def test_eligibility_is_split_and_deduplicated(self):
        groups = pivot(PROMO_HEADER, [
            ["Group A", "Model X\nModel Y", "Tier 1", "4.99", "5.49"],
            ["Group A", "Model Y", "Tier 2", "5.99", "6.49"],
        ])

        assert groups[0].eligibility_items == ["Model X", "Model Y"]

    def test_product_and_years_form_group_and_eligibility(self):
        header = ["Product", "Eligible Model Years", "Tiers", "36M", "60M"]
        groups = pivot(header, [
            ["Model X", "2024-2025", "1", "3.99", "4.99"],
            ["Model X", "2024-2025", "2", "4.99", "5.99"],
            ["Model Y", "2025", "1", "2.99", "3.99"],
        ])

        assert [g.name for g in groups] == ["Model X 2024-2025", "Model Y 2025"]
        assert groups[0].eligibility_items == ["Model X (2024-2025)"]
        assert groups[0].tier_order == ["Tier 1", "Tier 2"]

    def test_empty_grouping_cell_falls_back_to_whole_sheet_group(self):
        groups = pivot(["Table Group", "Tiers", "36M"], [
            ["", "Tier 1", "4.99"],
            ["Group A", "Tier 1", "5.99"],
        ])

        assert [g.name for g in groups] == ["", "Group A"]

    def test_default_group_name(self):
        index = build_header_index(["TIERS", "36 Months", "48 Months"])
        groups = build_pivot(index, [["TIER 1", "3.9", "4.9"]], default_group="PARTNER")

        assert groups[0].name == "PARTNER"
        assert groups[0].term_order == ["36M", "48M"]

    def test_tier_wide_rows(self):
        header = ["Program Name", "Repayment Term", "Promo Rate RT 1", "Promo Rate RT 1.12", "Dealer Fee RT 1.12"]
        groups = pivot(header, [
            ["Spring Promo", "60", "1.99", "2.99", "$300"],
            ["Spring Promo", "36", "0.99", "1.99", "$250"],
        ])

        group = groups[0]
        assert group.term_order == ["36M", "60M"]
        assert group.tier_order == ["Tier 1", "Tier 1.12"]
        assert group.rate("Tier 1.12", "36M") == "1.99"
        assert group.meta["Tier 1.12"].dealer_fee == "$300"
        assert group.meta["Tier 1"].dealer_fee == ""
        assert ("dealer_fee", "Dealer Fee") in group.meta_columns


def test_metadata_columns_only_for_resolved_roles():
    index = build_header_index(["Tiers", "36M", "Down Payment"])
    assert metadata_columns(index) == [("down_payment", "Down Payment")]


def test_decimal_term_headers_pivot_to_canonical_terms():
    groups = pivot(["Tiers", "36.0", "48.0M"], [["Tier 1", "3.99", "4.99"]])
    assert groups[0].term_order == ["36M", "48M"]
