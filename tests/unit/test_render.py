from backend.columns import build_header_index
from backend.layouts import LayoutResult, SheetFormat
from backend.pivot import build_pivot
from backend.render import esc, render_groups, render_no_data, render_raw_table, render_result


def groups_for(header, rows):
    return build_pivot(build_header_index(header), rows)


def test_esc_covers_text_and_attribute_context():
    assert esc('<b>"A&B"</b>') == "&lt;b&gt;&quot;A&amp;B&quot;&lt;/b&gt;"
    assert esc("O'Brien") == "O&#x27;Brien"
    assert esc(None) == ""


def test_promo_group_table(parse_tables, promo_rows):
    html = render_groups(groups_for(promo_rows[0], promo_rows[1:]))
    tables = parse_tables(html)

    assert tables == [{
        "name": "Group A",
        "headers": ["Tiers", "36M", "48M"],
        "rows": [["Tier 1", "4.99", "5.49"]],
        "eligibility": ["Model X"],
    }]


def test_markup_in_cells_is_escaped():
    header = ["Table Group", "Eligible Products/Models", "Tiers", "36M"]
    html = render_groups(groups_for(header, [["<script>x</script>", "A & B", "Tier 1", "<i>3.99</i>"]]))

    assert "<script>" not in html
    assert "&lt;script&gt;x&lt;/script&gt;" in html
    assert "&lt;i&gt;3.99&lt;/i&gt;" in html
    assert "<li>A &amp; B</li>" in html


def test_metadata_columns_follow_the_source_header(parse_tables):
    header = ["Program Name", "Eligible Models", "Tiers", "36M", "Dealer Fee"]
    html = render_groups(groups_for(header, [
        ["P1", "Model X", "Tier 1", "3.99", "$500"],
        ["P1", "Model X", "Tier 2", "4.99", ""],
    ]))
    table = parse_tables(html)[0]

    assert table["headers"] == ["Tiers", "36M", "Dealer Fee"]
    assert table["rows"] == [["Tier 1", "3.99", "$500"], ["Tier 2", "4.99", ""]]
    assert "Down Payment" not in html


def test_missing_rates_render_as_empty_cells(parse_tables):
    header = ["Table Group", "Eligible Products/Models", "Tiers", "36M", "48M"]
    html = render_groups(groups_for(header, [
        ["G", "M", "Tier 1", "3.99", "4.99"],
        ["G", "M", "Tier 2", "", "5.99"],
    ]))

    assert parse_tables(html)[0]["rows"][1] == ["Tier 2", "", "5.99"]


def test_unnamed_group_has_no_heading():
    html = render_groups(groups_for(["Tiers", "36M"], [["Tier 1", "3.99"]]))
    assert "<h2" not in html
    assert "<h3" not in html


def test_no_groups_renders_placeholder():
    assert render_groups([]) == render_no_data()
    assert "No rate data found." in render_no_data()


def test_raw_table_skips_blank_rows(parse_tables):
    html = render_raw_table(["Tier", "Notes"], [["Tier 1", "Call"], ["", " "], ["Tier 2", "<Ask>"]])
    table = parse_tables(html)[0]

    assert table["headers"] == ["Tier", "Notes"]
    assert table["rows"] == [["Tier 1", "Call"], ["Tier 2", "<Ask>"]]
    assert "&lt;Ask&gt;" in html


def test_raw_table_without_rows_is_placeholder():
    assert render_raw_table(["Tier"], [[""]]) == render_no_data()


def test_render_result_dispatches_on_shape():
    raw = LayoutResult(format=SheetFormat.GENERIC, pattern="Generic Table (Raw)",
                       raw_header=["Tier"], raw_rows=[["Tier 1"]])
    assert 'class="rate-table raw"' in render_result(raw)

    empty = LayoutResult(format=SheetFormat.GENERIC, pattern="Empty Sheet")
    assert render_result(empty) == render_no_data()
