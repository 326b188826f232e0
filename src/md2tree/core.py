"""Core parsing pipeline for md2tree."""

from __future__ import annotations

import hashlib
import inspect
import json
import logging
import os
import re
import tempfile
import unicodedata
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple

import markdown
import yaml
from bs4 import BeautifulSoup
from bs4.dammit import EntitySubstitution
from bs4.element import NavigableString, PageElement, PreformattedString, Tag
from bs4.formatter import HTMLFormatter
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

LOG = logging.getLogger("md2tree")

CACHE_DIR_ENV = "MD2TREE_CACHE_DIR"
CACHE_FILE_PREFIX = "md2tree-"
CACHE_BUSTER = "1"

HTML_PARSER = "html.parser"

# Tags that never survive into the AST verbatim.
TAG_SUBSTITUTIONS = frozenset({"script", "link", "meta", "object", "head", "html", "body"})
SUBSTITUTE_TAG = "template"

HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
SUB_HEADINGS = frozenset({"h2", "h3", "h4", "h5", "h6"})

SLUG_FILE_EXTENSIONS = (".markdown", ".md", ".txt", ".html", ".htm", ".jpeg", ".jpg", ".png")

FRONT_MATTER_RE = re.compile(
    r"\A\ufeff?(?:---|= yaml =)[ \t]*\r?\n(?P<yaml>.*?)^(?:---|\.\.\.|= yaml =)[ \t]*(?:\r?\n|\Z)",
    re.DOTALL | re.MULTILINE,
)


@dataclass
class ParseHtmlOptions:
    heading_ids: bool = True
    heading_id_prefix: str = ""
    heading_anchors: bool = False
    heading_anchor_class_name: str = "heading-anchor"
    heading_anchor_min_level: int = 1
    paragraph_intro_class_name: Optional[str] = "paragraph-intro"
    before_serialize: Optional[Callable[[BeautifulSoup], None]] = None


@dataclass
class ParseMarkdownOptions(ParseHtmlOptions):
    breaks: bool = True
    gfm: bool = True
    smartypants: bool = True
    code_syntax_highlighting: bool = True
    lang_prefix: str = "language-"
    use_cache: bool = False
    cache_dir: Optional[str] = None
    before_markdown_to_html: Optional[Callable[[str, Dict[str, Any]], str]] = None
    resolve_markdown_path: Optional[Callable[[str], str]] = None


_OPTION_TYPES: Dict[str, Tuple[type, ...]] = {
    "heading_ids": (bool,),
    "heading_id_prefix": (str,),
    "heading_anchors": (bool,),
    "heading_anchor_class_name": (str,),
    "heading_anchor_min_level": (int,),
    "paragraph_intro_class_name": (str, type(None)),
    "breaks": (bool,),
    "gfm": (bool,),
    "smartypants": (bool,),
    "code_syntax_highlighting": (bool,),
    "lang_prefix": (str,),
    "use_cache": (bool,),
    "cache_dir": (str, type(None)),
}


@dataclass
class AnchorData:
    text: str
    href: Optional[str]


@dataclass
class HeadingData:
    text: str
    level: int
    id: Optional[str]


@dataclass
class ImgData:
    text: Optional[str]
    src: Optional[str]


@dataclass
class AstCollector:
    """Metadata gathered while a fragment is reduced to an AST."""

    anchors: List[AnchorData] = field(default_factory=list)
    headings: List[HeadingData] = field(default_factory=list)
    imgs: List[ImgData] = field(default_factory=list)
    tag_names: List[str] = field(default_factory=list)

    def add_tag_name(self, tag: str) -> None:
        if tag not in self.tag_names:
            self.tag_names.append(tag)


@dataclass
class HtmlResults:
    ast: List[Any]
    anchors: List[AnchorData]
    headings: List[HeadingData]
    imgs: List[ImgData]
    tag_names: List[str]
    html: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MarkdownResults(HtmlResults):
    attributes: Dict[str, Any] = field(default_factory=dict)
    title: Optional[str] = None
    description: Optional[str] = None
    slug: Optional[str] = None
    file_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarkdownResults":
        return cls(
            ast=list(data["ast"]),
            anchors=[AnchorData(**item) for item in data.get("anchors") or []],
            headings=[HeadingData(**item) for item in data.get("headings") or []],
            imgs=[ImgData(**item) for item in data.get("imgs") or []],
            tag_names=list(data.get("tag_names") or []),
            html=str(data.get("html") or ""),
            attributes=dict(data.get("attributes") or {}),
            title=data.get("title"),
            description=data.get("description"),
            slug=data.get("slug"),
            file_path=data.get("file_path"),
        )


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_md2tree_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_md2tree_logger(level)


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")


def load_options_file(path: Path) -> Dict[str, Any]:
    try:
        data_raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ValueError(f"Unable to read options file {path}: {exc}") from exc

    if not isinstance(data_raw, dict):
        raise ValueError(f"Options file {path} must contain a JSON object")

    options: Dict[str, Any] = {}
    for key, value in data_raw.items():
        expected = _OPTION_TYPES.get(key)
        if expected is None:
            raise ValueError(f"Options file {path} has unknown key: {key}")
        if not isinstance(value, expected) or (isinstance(value, bool) and bool not in expected):
            raise ValueError(f"Options file {path} has invalid value for {key}: {value!r}")
        options[key] = value
    return options


def slugify(
    text: str,
    replacement: str = "-",
    remove: Optional[Pattern[str]] = None,
    lower: bool = True,
    strict: bool = True,
    remove_file_extension: bool = True,
    trim_replacement: bool = True,
) -> str:
    slug = text or ""

    if remove_file_extension:
        lowered = slug.lower()
        for ext in SLUG_FILE_EXTENSIONS:
            if lowered.endswith(ext):
                slug = slug[: -len(ext)]
                break

    slug = unicodedata.normalize("NFKD", slug)
    slug = "".join(ch for ch in slug if not unicodedata.combining(ch))
    if remove is not None:
        slug = remove.sub("", slug)
    if strict:
        slug = re.sub(rf"[^A-Za-z0-9\s{re.escape(replacement)}]", "", slug)

    slug = re.sub(r"\s+", replacement, slug.strip())
    if replacement:
        slug = re.sub(rf"(?:{re.escape(replacement)})+", replacement, slug)
    if lower:
        slug = slug.lower()

    # a lone separator is kept as-is
    if trim_replacement and replacement and len(slug) > len(replacement):
        while slug.startswith(replacement):
            slug = slug[len(replacement) :]
        while slug.endswith(replacement):
            slug = slug[: -len(replacement)]
    return slug


def slugify_file_path(file_path: str) -> str:
    basename = os.path.basename(str(file_path))
    if basename.lower() == "index.md":
        basename = os.path.basename(os.path.dirname(str(file_path)))
    return slugify(basename)


def split_front_matter(content: str) -> Tuple[Dict[str, Any], str]:
    match = FRONT_MATTER_RE.match(content)
    if match is None:
        return {}, content

    try:
        data = yaml.safe_load(match.group("yaml"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML front matter: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML front matter must be a mapping, got {type(data).__name__}")
    return data, content[match.end() :]


def parse_style(style: Optional[str]) -> Optional[Dict[str, str]]:
    if not isinstance(style, str) or not style.strip():
        return None

    parsed: Dict[str, str] = {}
    for declaration in style.split(";"):
        parts = declaration.split(":")
        if len(parts) != 2:
            continue
        prop = parts[0].strip()
        if prop:
            parsed[prop] = parts[1].strip()
    return parsed or None


class SourceOrderFormatter(HTMLFormatter):
    """Minimal HTML formatter that keeps attributes in insertion order."""

    def attributes(self, tag: Tag):
        if not tag.attrs:
            return []
        return list(tag.attrs.items())


HTML_FORMATTER = SourceOrderFormatter(entity_substitution=EntitySubstitution.substitute_xml)


def parse_html_fragment(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, HTML_PARSER, multi_valued_attributes=None)


def serialize_html(soup: BeautifulSoup) -> str:
    return soup.decode(formatter=HTML_FORMATTER)


def _markdown_extensions(opts: ParseMarkdownOptions) -> Tuple[List[str], Dict[str, Dict[str, Any]]]:
    fenced_cfg = {"lang_prefix": opts.lang_prefix}
    extensions = ["sane_lists"]
    configs: Dict[str, Dict[str, Any]] = {}
    if opts.gfm:
        extensions.append("extra")
        configs["extra"] = {"fenced_code": fenced_cfg}
    else:
        extensions.append("fenced_code")
        configs["fenced_code"] = fenced_cfg
    if opts.breaks:
        extensions.append("nl2br")
    if opts.smartypants:
        extensions.append("smarty")
    return extensions, configs


def _find_lexer(lang: str):
    try:
        return get_lexer_by_name(lang)
    except ClassNotFound:
        return None


def highlight_code_blocks(soup: BeautifulSoup, lang_prefix: str) -> None:
    """Highlight fenced code with Pygments.

    Lines starting with ``|`` are marked as highlighted: the marker is removed
    and the 1-based line numbers are written to ``data-highlighted-lines`` on
    the ``<pre>`` element.
    """
    for code in soup.select("pre > code"):
        pre = code.parent
        classes = str(code.get("class") or "").split()
        if lang_prefix:
            lang = next((c[len(lang_prefix) :] for c in classes if c.startswith(lang_prefix)), "")
        else:
            lang = classes[0] if classes else ""

        lines = code.get_text().split("\n")
        highlighted_lines: List[int] = []
        for idx, line in enumerate(lines):
            if line.startswith("|"):
                highlighted_lines.append(idx + 1)
                lines[idx] = line[1:]
        source = "\n".join(lines)

        lexer = _find_lexer(lang) if lang else None
        if lexer is None:
            code.string = source
            del code["class"]
            continue

        rendered = highlight(source, lexer, HtmlFormatter(nowrap=True))
        code.clear()
        for child in list(parse_html_fragment(rendered).contents):
            code.append(child.extract())
        del code["class"]
        pre["class"] = f"{lang_prefix}{lang}"
        if highlighted_lines:
            pre["data-highlighted-lines"] = ",".join(str(n) for n in highlighted_lines)


def _is_custom_element(tag: Tag) -> bool:
    return "-" in tag.name


def unwrap_custom_element_paragraphs(soup: BeautifulSoup) -> None:
    # custom elements render on their own, not inside a paragraph
    for paragraph in soup.find_all("p", recursive=False):
        if paragraph.find(_is_custom_element) is not None:
            paragraph.unwrap()


def render_markdown(body: str, opts: Optional[ParseMarkdownOptions] = None) -> str:
    opts = opts or ParseMarkdownOptions()
    extensions, configs = _markdown_extensions(opts)
    html = markdown.markdown(body, extensions=extensions, extension_configs=configs)

    soup = parse_html_fragment(html)
    unwrap_custom_element_paragraphs(soup)
    if opts.code_syntax_highlighting:
        highlight_code_blocks(soup, opts.lang_prefix)
    return serialize_html(soup)


def annotate_headings(soup: BeautifulSoup, opts: ParseHtmlOptions) -> None:
    for heading in soup.find_all(list(HEADING_LEVELS)):
        level = HEADING_LEVELS[heading.name]
        if opts.heading_ids:
            heading_id: Optional[str] = (opts.heading_id_prefix or "") + slugify(heading.get_text())
            heading["id"] = heading_id
        else:
            heading_id = heading.get("id")

        if not (opts.heading_anchors and opts.heading_ids and heading_id):
            continue
        if level < opts.heading_anchor_min_level:
            continue

        attrs = {"href": f"#{heading_id}"}
        if opts.heading_anchor_class_name:
            attrs["class"] = opts.heading_anchor_class_name
        attrs["aria-hidden"] = "true"
        heading.insert(0, soup.new_tag("a", attrs=attrs))


def _add_class(elm: Tag, class_name: str) -> None:
    classes = str(elm.get("class") or "").split()
    if class_name not in classes:
        classes.append(class_name)
    elm["class"] = " ".join(classes)


def add_paragraph_intro_class(soup: BeautifulSoup, class_name: str) -> None:
    root_elements = [child for child in soup.children if isinstance(child, Tag)]
    has_sub_headings = any(elm.name in SUB_HEADINGS for elm in root_elements)

    for elm in root_elements:
        if has_sub_headings and elm.name in SUB_HEADINGS:
            break
        if elm.name == "p":
            _add_class(elm, class_name)
            if not has_sub_headings:
                break


def _attribute_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value)


def node_to_ast(node: PageElement, collector: AstCollector) -> Any:
    """Reduce a parsed node into the serializable AST format.

    ``<div id="foo">bar</div>`` becomes ``["div", {"id": "foo"}, "bar"]``.
    """
    if isinstance(node, NavigableString):
        if isinstance(node, PreformattedString):
            return ""
        return str(node)

    if isinstance(node, BeautifulSoup):
        data: List[Any] = []
        for child in node.children:
            reduced = node_to_ast(child, collector)
            if isinstance(reduced, str):
                # insignificant top level whitespace
                if reduced.strip():
                    data.append(["span", None, reduced])
            else:
                data.append(reduced)
        return data

    if isinstance(node, Tag):
        return _element_to_ast(node, collector)

    return ""


def _element_to_ast(elm: Tag, collector: AstCollector) -> List[Any]:
    original = elm.name.lower()
    tag = SUBSTITUTE_TAG if original in TAG_SUBSTITUTIONS else original
    collector.add_tag_name(tag)

    attrs: Dict[str, Any] = {name: _attribute_value(value) for name, value in elm.attrs.items()}
    if "style" in attrs:
        style = parse_style(attrs["style"])
        if style:
            attrs["style"] = style
        else:
            del attrs["style"]

    if original == "a":
        href = attrs.get("href")
        if href and not href.startswith("#"):
            collector.anchors.append(AnchorData(text=elm.get_text(), href=href))
    elif original in HEADING_LEVELS:
        collector.headings.append(
            HeadingData(text=elm.get_text(), level=HEADING_LEVELS[original], id=attrs.get("id"))
        )
    elif original == "img":
        collector.imgs.append(ImgData(text=attrs.get("alt"), src=attrs.get("src")))

    data: List[Any] = [tag, attrs or None]
    for child in elm.children:
        data.append(node_to_ast(child, collector))
    return data


def parse_html_content(html: str, opts: Optional[ParseHtmlOptions] = None) -> HtmlResults:
    opts = opts or ParseHtmlOptions()
    soup = parse_html_fragment(html)

    if opts.before_serialize is not None:
        opts.before_serialize(soup)

    annotate_headings(soup, opts)
    if opts.paragraph_intro_class_name:
        add_paragraph_intro_class(soup, opts.paragraph_intro_class_name)

    collector = AstCollector()
    ast = node_to_ast(soup, collector)
    LOG.debug(
        "Reduced HTML: %d anchor(s), %d heading(s), %d image(s), tags=%s",
        len(collector.anchors),
        len(collector.headings),
        len(collector.imgs),
        collector.tag_names,
    )

    return HtmlResults(
        ast=ast,
        anchors=collector.anchors,
        headings=collector.headings,
        imgs=collector.imgs,
        tag_names=collector.tag_names,
        html=serialize_html(soup),
    )


def parse_html(file_path: Path, opts: Optional[ParseHtmlOptions] = None) -> HtmlResults:
    content = Path(file_path).read_text(encoding="utf-8")
    return parse_html_content(content, opts)


def _cache_option_value(value: Any) -> str:
    if callable(value):
        try:
            return inspect.getsource(value)
        except (OSError, TypeError):
            return f"{getattr(value, '__module__', '')}.{getattr(value, '__qualname__', repr(value))}"
    return json.dumps(value, sort_keys=True, default=str)


def parse_cache_path(content: str, opts: ParseMarkdownOptions) -> Path:
    digest = hashlib.md5()
    digest.update(content.encode("utf-8"))
    digest.update(CACHE_BUSTER.encode("utf-8"))
    for name in sorted(f.name for f in fields(opts)):
        digest.update(f"{name}:{_cache_option_value(getattr(opts, name))}".encode("utf-8"))

    cache_dir = opts.cache_dir or os.environ.get(CACHE_DIR_ENV) or tempfile.gettempdir()
    return Path(cache_dir) / f"{CACHE_FILE_PREFIX}{digest.hexdigest()}.json"


def read_parse_cache(path: Path) -> Optional[MarkdownResults]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return MarkdownResults.from_dict(data)
    except (OSError, ValueError, TypeError, KeyError) as exc:
        LOG.debug("Parse cache miss for %s: %s", path.name, exc)
        return None


def write_parse_cache(path: Path, results: MarkdownResults) -> None:
    try:
        safe_write_text(path, json.dumps(results.to_dict(), ensure_ascii=False, default=str))
    except OSError as exc:
        LOG.warning("Unable to write parse cache %s: %s", path, exc)


def parse_markdown_content(content: str, opts: Optional[ParseMarkdownOptions] = None) -> MarkdownResults:
    if not isinstance(content, str):
        raise TypeError("content must be a string")

    opts = opts or ParseMarkdownOptions()
    content = content.strip()

    cache_path = parse_cache_path(content, opts) if opts.use_cache else None
    if cache_path is not None:
        cached = read_parse_cache(cache_path)
        if cached is not None:
            LOG.debug("Parse cache hit: %s", cache_path)
            return cached

    attributes, body = split_front_matter(content)
    if opts.before_markdown_to_html is not None:
        body = opts.before_markdown_to_html(body, attributes)

    html = render_markdown(body, opts)
    html_results = parse_html_content(html, opts)

    results = MarkdownResults(
        ast=html_results.ast,
        anchors=html_results.anchors,
        headings=html_results.headings,
        imgs=html_results.imgs,
        tag_names=html_results.tag_names,
        html=html_results.html,
        attributes=dict(attributes),
    )
    for key in ("title", "description", "slug"):
        value = attributes.get(key)
        if isinstance(value, str):
            setattr(results, key, value)

    if cache_path is not None:
        write_parse_cache(cache_path, results)
    return results


def read_markdown_content(file_path: str) -> Tuple[str, str]:
    """Read a markdown file, resolving ids without an extension.

    ``pages/my-file`` is looked up as ``pages/my-file.md`` and then
    ``pages/my-file/index.md``.
    """
    path = Path(file_path)
    ext = path.suffix.lower()

    if ext == ".markdown":
        raise ValueError(f'md2tree only reads ".md" markdown files: {file_path}')
    if ext == ".md":
        return path.read_text(encoding="utf-8"), str(path)

    md_path = Path(f"{file_path}.md")
    index_path = path / "index.md"
    for candidate in (md_path, index_path):
        if candidate.is_file():
            return candidate.read_text(encoding="utf-8"), str(candidate)

    raise RuntimeError(f'Unable to read: "{file_path}". Attempted: "{md_path}", "{index_path}"')


def parse_markdown(markdown_id: str, opts: Optional[ParseMarkdownOptions] = None) -> MarkdownResults:
    opts = opts or ParseMarkdownOptions()

    if opts.resolve_markdown_path is not None:
        file_path = str(opts.resolve_markdown_path(markdown_id))
        content = Path(file_path).read_text(encoding="utf-8")
    else:
        content, file_path = read_markdown_content(markdown_id)

    LOG.info("Parsing markdown: %s", file_path)
    results = parse_markdown_content(content, opts)
    if not isinstance(results.slug, str):
        results.slug = slugify_file_path(file_path)
    results.file_path = file_path
    return results
