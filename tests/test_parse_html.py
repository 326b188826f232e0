from md2tree import core
from md2tree.core import ParseHtmlOptions, parse_html_content, parse_style


def test_parse_style_basic():
    assert parse_style("max-height: 360px;width:240px") == {"max-height": "360px", "width": "240px"}


def test_parse_style_empty_or_missing():
    assert parse_style(None) is None
    assert parse_style("") is None
    assert parse_style("   ") is None


def test_parse_style_skips_malformed_segments():
    assert parse_style("color: red; bad; : x; a:b:c") == {"color": "red"}
    assert parse_style(" ; : ") is None


def test_top_level_text_wrapped_in_span_and_whitespace_dropped():
    r = parse_html_content("hello <b>world</b>\n\n")
    assert r.ast == [["span", None, "hello "], ["b", None, "world"]]


def test_blacklisted_tags_become_template():
    r = parse_html_content("<script>alert(1)</script><p>Hi</p>")
    assert r.ast[0] == ["template", None, "alert(1)"]
    assert r.tag_names == ["template", "p"]


def test_tag_names_deduplicated_in_first_seen_order():
    r = parse_html_content("<p>a</p><div><p>b</p><span>c</span></div>")
    assert r.tag_names == ["p", "div", "span"]


def test_attributes_and_style_parsed():
    r = parse_html_content('<div id="x" style="color: red" class="a b">t</div>')
    assert r.ast == [["div", {"id": "x", "style": {"color": "red"}, "class": "a b"}, "t"]]


def test_empty_style_attribute_is_omitted():
    r = parse_html_content('<div style=" ; : ">x</div>')
    assert r.ast == [["div", None, "x"]]


def test_comments_reduce_to_empty_string():
    r = parse_html_content("<p>a<!-- note --></p>")
    assert r.ast == [["p", {"class": "paragraph-intro"}, "a", ""]]


def test_anchor_collection_skips_fragments():
    r = parse_html_content('<p><a href="/clock">clock</a><a href="#top">top</a><a>none</a></p>')
    assert [(a.text, a.href) for a in r.anchors] == [("clock", "/clock")]


def test_image_collection():
    r = parse_html_content('<img src="a.png" alt="A"><img src="b.png">')
    assert [(i.text, i.src) for i in r.imgs] == [("A", "a.png"), (None, "b.png")]


def test_heading_ids_generated_and_collected():
    r = parse_html_content("<h1>Hill Valley</h1><h3>Clock Tower!</h3>")
    assert [(h.text, h.level, h.id) for h in r.headings] == [
        ("Hill Valley", 1, "hill-valley"),
        ("Clock Tower!", 3, "clock-tower"),
    ]
    assert '<h1 id="hill-valley">' in r.html


def test_heading_id_prefix():
    r = parse_html_content("<h2>Heading1</h2>", ParseHtmlOptions(heading_id_prefix="doc-"))
    assert r.headings[0].id == "doc-heading1"


def test_existing_heading_id_kept_when_ids_disabled():
    r = parse_html_content('<h2 id="custom">Title</h2><h3>Other</h3>', ParseHtmlOptions(heading_ids=False))
    assert r.headings[0].id == "custom"
    assert r.headings[1].id is None


def test_heading_anchor_inserted_as_first_child():
    r = parse_html_content("<h2>Title</h2>", ParseHtmlOptions(heading_anchors=True))
    assert r.ast == [
        [
            "h2",
            {"id": "title"},
            ["a", {"href": "#title", "class": "heading-anchor", "aria-hidden": "true"}],
            "Title",
        ]
    ]
    assert r.html == '<h2 id="title"><a href="#title" class="heading-anchor" aria-hidden="true"></a>Title</h2>'


def test_paragraph_intro_class_applied_by_default():
    r = parse_html_content("<p>a</p><p>b</p>")
    assert r.ast == [["p", {"class": "paragraph-intro"}, "a"], ["p", None, "b"]]
    assert parse_html_content("<p>a</p>", ParseHtmlOptions(paragraph_intro_class_name=None)).ast == [["p", None, "a"]]


def test_heading_anchor_min_level():
    opts = ParseHtmlOptions(heading_anchors=True, heading_anchor_min_level=2)
    r = parse_html_content("<h1>One</h1><h2>Two</h2>", opts)
    assert r.ast[0] == ["h1", {"id": "one"}, "One"]
    assert r.ast[1][2][0] == "a"


def test_heading_anchor_requires_heading_ids():
    opts = ParseHtmlOptions(heading_anchors=True, heading_ids=False)
    r = parse_html_content('<h2 id="kept">Two</h2>', opts)
    assert r.ast == [["h2", {"id": "kept"}, "Two"]]


def test_paragraph_intro_before_first_sub_heading():
    html = "<h1>T</h1><p>a</p><p>b</p><h2>S</h2><p>c</p>"
    r = parse_html_content(html, ParseHtmlOptions(paragraph_intro_class_name="intro"))
    paragraphs = [node for node in r.ast if node[0] == "p"]
    assert [p[1] for p in paragraphs] == [{"class": "intro"}, {"class": "intro"}, None]


def test_paragraph_intro_without_sub_headings_marks_first_only():
    r = parse_html_content('<p class="lead">a</p><p>b</p>', ParseHtmlOptions(paragraph_intro_class_name="intro"))
    assert r.ast[0][1] == {"class": "lead intro"}
    assert r.ast[1][1] is None


def test_before_serialize_hook_runs_before_reduction():
    def mark(soup):
        soup.find("p")["data-seen"] = "yes"

    r = parse_html_content("<p>x</p>", ParseHtmlOptions(before_serialize=mark))
    assert r.ast == [["p", {"data-seen": "yes", "class": "paragraph-intro"}, "x"]]


def test_node_to_ast_collects_into_given_collector():
    soup = core.parse_html_fragment('<a href="/a">A</a><h4 id="h">H</h4>')
    collector = core.AstCollector()
    ast = core.node_to_ast(soup, collector)
    assert ast == [["a", {"href": "/a"}, "A"], ["h4", {"id": "h"}, "H"]]
    assert collector.tag_names == ["a", "h4"]
    assert collector.headings[0].level == 4


def test_parse_html_reads_file(tmp_path):
    page = tmp_path / "page.html"
    page.write_text("<p>from file</p>", encoding="utf-8")
    r = core.parse_html(page)
    assert r.ast == [["p", {"class": "paragraph-intro"}, "from file"]]
