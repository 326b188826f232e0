from md2tree.core import ParseHtmlOptions, ParseMarkdownOptions, parse_html_content, parse_markdown_content
from md2tree.render import ast_to_html, filter_props, format_style

SAMPLE_MARKDOWN = """\
---
title: Hill Valley
---

# Hill Valley

Save the [clock tower](/clock-tower) & *the* **future**.

<img alt="clock" src="clock.png" style="max-height: 360px;width:240px" class="marty mcfly" />

## Code

```python
|def mph():
    return 88
```

- one
- two
"""


def test_round_trip_markdown_ast():
    r = parse_markdown_content(SAMPLE_MARKDOWN, ParseMarkdownOptions(heading_anchors=True))
    html = ast_to_html(r.ast)
    again = parse_html_content(html, ParseHtmlOptions(heading_ids=False))
    assert again.ast == r.ast
    assert again.tag_names == r.tag_names


def test_top_level_text_round_trip():
    ast = parse_html_content("loose text<p>para</p>").ast
    assert ast_to_html(ast) == '<span>loose text</span><p class="paragraph-intro">para</p>'


def test_attribute_order_preserved():
    ast = [
        ["h2", {"id": "title"}, ["a", {"href": "#title", "class": "heading-anchor", "aria-hidden": "true"}], "Title"],
        ["img", {"src": "a.png", "alt": "A", "class": "wide"}],
    ]
    assert ast_to_html(ast) == (
        '<h2 id="title"><a href="#title" class="heading-anchor" aria-hidden="true"></a>Title</h2>'
        '<img src="a.png" alt="A" class="wide"/>'
    )


def test_substituted_tags_render_as_template():
    assert ast_to_html([["script", None, "alert(1)"]]) == "<template>alert(1)</template>"


def test_event_handlers_and_inner_html_dropped():
    html = ast_to_html([["a", {"href": "/x", "onClick": "evil()", "innerHTML": "<b>x</b>"}, "x"]])
    assert html == '<a href="/x">x</a>'


def test_style_dict_serialized():
    assert format_style({"max-height": "360px", "width": "240px"}) == "max-height: 360px; width: 240px"
    assert ast_to_html([["img", {"style": {"width": "240px"}}]]) == '<img style="width: 240px"/>'


def test_filter_props_passthrough_for_empty():
    assert filter_props(None) is None
    assert filter_props({}) == {}


def test_element_props_hook():
    def element_props(tag, props):
        props = dict(props or {})
        if tag == "p":
            props["class"] = "paragraph"
        if tag == "a":
            props["href"] = props["href"] + "?ref=docs"
        return props

    html = ast_to_html([["p", None, "See ", ["a", {"href": "/clock"}, "clock"]]], element_props=element_props)
    assert html == '<p class="paragraph">See <a href="/clock?ref=docs">clock</a></p>'


def test_empty_strings_and_invalid_nodes_skipped():
    assert ast_to_html([["p", None, "a", ""], None, ["p"]]) == "<p>a</p>"
