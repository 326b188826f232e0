"""Table of contents parsing and page navigation for md2tree."""

from __future__ import annotations

import hashlib
import os
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from bs4.element import NavigableString, PreformattedString, Tag

from .core import LOG, ParseMarkdownOptions, parse_html_fragment, render_markdown

TOC_CACHE_SIZE = 500

TOC_MARKDOWN_OPTIONS = ParseMarkdownOptions(code_syntax_highlighting=False)


@dataclass
class TableOfContentsNode:
    depth: int
    text: Optional[str] = None
    url: Optional[str] = None
    file: Optional[str] = None
    has_parent: bool = False
    children: List["TableOfContentsNode"] = field(default_factory=list)


@dataclass
class TableOfContents:
    toc_file_path: str
    toc_dir_path: str
    root_pages_dir: str
    root: List[TableOfContentsNode] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WalkResult:
    title: str
    file: str
    depth: int
    ancestor_files: Optional[List["WalkResult"]] = None


@dataclass
class PageNavigationData:
    title: Optional[str] = None
    url: Optional[str] = None


@dataclass
class PageNavigation:
    current: PageNavigationData
    parent: Optional[PageNavigationData] = None
    previous: Optional[PageNavigationData] = None
    next: Optional[PageNavigationData] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TocCache:
    """Bounded least-recently-used store of resolved tables of contents."""

    def __init__(self, capacity: int = TOC_CACHE_SIZE) -> None:
        self.capacity = capacity
        self._entries: "OrderedDict[str, TableOfContents]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[TableOfContents]:
        toc = self._entries.get(key)
        if toc is not None:
            self._entries.move_to_end(key)
        return toc

    def put(self, key: str, toc: TableOfContents) -> None:
        self._entries[key] = toc
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            LOG.debug("TOC cache evicted %s", evicted[:12])

    def clear(self) -> None:
        self._entries.clear()


_TOC_CACHE = TocCache()


def clear_toc_cache() -> None:
    _TOC_CACHE.clear()


def toc_cache_key(content: str, toc_file_path: str, root_pages_dir: str, trailing_slash: bool) -> str:
    digest = hashlib.sha256()
    for part in (content, toc_file_path, root_pages_dir, "1" if trailing_slash else "0"):
        digest.update(part.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()


def _is_descendant(path: str, root: str) -> bool:
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path == root or path.startswith(prefix)


def get_url(root_pages_dir: str, page_file_path: Optional[str], trailing_slash: bool = False) -> Optional[str]:
    """Map a markdown page under ``root_pages_dir`` to its site URL.

    ``docs/index.md`` maps to ``/docs`` and ``docs/install.md`` to
    ``/docs/install``. The root index maps to ``/``.
    """
    if not page_file_path:
        return None

    root = os.path.normpath(str(root_pages_dir))
    page = os.path.normpath(str(page_file_path))
    if not _is_descendant(page, root):
        raise ValueError(f'Page file "{page}" must be a descendant of the root directory "{root}"')

    url = os.path.relpath(page, root)
    basename = os.path.basename(url).lower()
    if os.path.splitext(basename)[1] != ".md":
        raise ValueError(f'Page file must have a ".md" extension: {page}')

    if basename == "index.md":
        url = os.path.dirname(url)
    else:
        url = url[:-3]
    url = url.replace(os.sep, "/")

    if url in ("", "."):
        return "/"
    if not url.startswith("/"):
        url = "/" + url
    if trailing_slash and not url.endswith("/"):
        url += "/"
    return url


def _li_children(li: Tag):
    # loose lists wrap the item content in a paragraph
    for child in li.children:
        if isinstance(child, Tag) and child.name == "p":
            yield from child.children
        else:
            yield child


def _apply_link(
    node: TableOfContentsNode,
    link: Tag,
    toc_dir_path: str,
    root_pages_dir: str,
    trailing_slash: bool,
) -> None:
    text = link.get_text(" ", strip=True)
    if text:
        node.text = text

    href = str(link.get("href") or "").strip()
    if not href:
        return
    href = href.split("#", 1)[0].split("?", 1)[0]
    node.url = href or None
    if not href or href.lower().startswith("http"):
        return

    md_path = os.path.normpath(os.path.join(toc_dir_path, href))
    if os.path.isabs(md_path) and os.path.splitext(md_path)[1].lower() == ".md":
        url = get_url(root_pages_dir, md_path, trailing_slash)
        if url:
            node.url = url
        node.file = os.path.relpath(md_path, toc_dir_path)


def parse_table_of_contents_content(
    content: str,
    toc_file_path: str,
    root_pages_dir: str,
    trailing_slash: bool = False,
) -> TableOfContents:
    toc_file_path = str(toc_file_path)
    root_pages_dir = str(root_pages_dir)
    key = toc_cache_key(content, toc_file_path, root_pages_dir, trailing_slash)
    cached = _TOC_CACHE.get(key)
    if cached is not None:
        LOG.debug("TOC cache hit: %s", toc_file_path)
        return cached

    toc_dir_path = os.path.dirname(toc_file_path)
    soup = parse_html_fragment(render_markdown(content, TOC_MARKDOWN_OPTIONS))
    root_ul = soup.find("ul", recursive=False)

    def walk_list(ul: Tag, depth: int, has_parent: bool) -> List[TableOfContentsNode]:
        nodes: List[TableOfContentsNode] = []
        for li in ul.find_all("li", recursive=False):
            node = TableOfContentsNode(depth=depth, has_parent=has_parent)
            add_node = False
            for child in _li_children(li):
                if isinstance(child, PreformattedString):
                    continue
                if isinstance(child, NavigableString):
                    text = str(child).strip()
                    if text:
                        node.text = text
                        add_node = True
                elif isinstance(child, Tag) and child.name == "a":
                    _apply_link(node, child, toc_dir_path, root_pages_dir, trailing_slash)
                    add_node = True
                elif isinstance(child, Tag) and child.name == "ul":
                    children = walk_list(child, depth + 1, True)
                    if children:
                        node.children = children
                        add_node = True
            if add_node:
                nodes.append(node)
        return nodes

    toc = TableOfContents(
        toc_file_path=toc_file_path,
        toc_dir_path=toc_dir_path,
        root_pages_dir=root_pages_dir,
        root=walk_list(root_ul, 0, False) if root_ul is not None else [],
    )
    LOG.info("Parsed table of contents %s: %d top level item(s)", toc_file_path, len(toc.root))
    _TOC_CACHE.put(key, toc)
    return toc


def parse_table_of_contents(
    toc_file_path: Path,
    root_pages_dir: Path,
    trailing_slash: bool = False,
) -> TableOfContents:
    content = Path(toc_file_path).read_text(encoding="utf-8")
    return parse_table_of_contents_content(content, str(toc_file_path), str(root_pages_dir), trailing_slash)


def get_table_of_contents_data(toc: TableOfContents) -> List[WalkResult]:
    results: List[WalkResult] = []

    def walk(ancestors: List[WalkResult], nodes: List[TableOfContentsNode]) -> None:
        for node in nodes:
            file_path = os.path.normpath(os.path.join(toc.toc_dir_path, node.file)) if node.file else ""
            title = node.text or ""
            results.append(WalkResult(title=title, file=file_path, depth=node.depth, ancestor_files=ancestors))
            chain = [WalkResult(title=a.title, file=a.file, depth=a.depth) for a in ancestors]
            chain.append(WalkResult(title=title, file=file_path, depth=node.depth))
            walk(chain, node.children)

    walk([], toc.root)
    return results


def find_best_match(current_file: str, candidates: Optional[Sequence[WalkResult]]) -> Optional[WalkResult]:
    if not candidates:
        return None

    matches = [c for c in candidates if c.file and c.file != current_file and c.title]
    if matches:
        # several entries may point at the same page, keep the last of the first group
        first_file = matches[0].file
        return [m for m in matches if m.file == first_file][-1]

    for candidate in candidates:
        if candidate.file and candidate.file != current_file:
            return candidate
    return candidates[-1]


def _navigation_data(root_pages_dir: str, entry: WalkResult, trailing_slash: bool) -> PageNavigationData:
    return PageNavigationData(title=entry.title or None, url=get_url(root_pages_dir, entry.file, trailing_slash))


def get_page_navigation(
    root_pages_dir: str,
    page_file_path: str,
    table_of_contents: Optional[TableOfContents] = None,
    trailing_slash: bool = False,
) -> PageNavigation:
    root_pages_dir = str(root_pages_dir)
    nav = PageNavigation(current=PageNavigationData(url=get_url(root_pages_dir, page_file_path, trailing_slash)))
    if table_of_contents is None:
        return nav

    entries = get_table_of_contents_data(table_of_contents)
    page_file = os.path.normpath(str(page_file_path))
    current_index = -1
    for idx in range(len(entries) - 1, -1, -1):
        if entries[idx].file == page_file:
            current_index = idx
            break
    if current_index < 0:
        LOG.debug("Page %s not found in table of contents %s", page_file, table_of_contents.toc_file_path)
        return nav

    current = entries[current_index]
    nav.current.title = current.title or None

    previous = find_best_match(current.file, list(reversed(entries[:current_index])))
    if previous is not None:
        nav.previous = _navigation_data(root_pages_dir, previous, trailing_slash)

    following = find_best_match(current.file, entries[current_index + 1 :])
    if following is not None:
        nav.next = _navigation_data(root_pages_dir, following, trailing_slash)

    parent = find_best_match(current.file, list(reversed(current.ancestor_files or [])))
    if parent is not None:
        nav.parent = _navigation_data(root_pages_dir, parent, trailing_slash)

    LOG.debug(
        "Navigation for %s: previous=%s next=%s parent=%s",
        page_file,
        nav.previous.url if nav.previous else None,
        nav.next.url if nav.next else None,
        nav.parent.url if nav.parent else None,
    )
    return nav
