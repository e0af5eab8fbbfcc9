"""Static page rendering: HTML pages, stylesheet and theme script."""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .structure import Book, Section, SectionKind

STYLE_PATH = "css/style.css"
SCRIPT_PATH = "js/main.js"
INDEX_PATH = "index.html"

SECTION_DIRS = {
    SectionKind.CHAPTER: "chapters",
    SectionKind.APPENDIX: "appendices",
}


@dataclass(frozen=True)
class Page:
    path: str
    section: Section
    prev: Optional["Page"] = None
    next: Optional["Page"] = None

    @property
    def title(self) -> str:
        return self.section.title


def section_path(section: Section) -> str:
    if section.kind is SectionKind.FRONT_MATTER:
        return INDEX_PATH
    if section.kind is SectionKind.DOCUMENT:
        return f"{section.id}.html"
    return f"{SECTION_DIRS[section.kind]}/{section.id}.html"


def relative_root(path: str) -> str:
    return "../" * path.count("/")


def asset_base(section: Section) -> str:
    return relative_root(section_path(section)) + "images"


def plan_pages(sections: Sequence[Section]) -> List[Page]:
    """One page per rendered section, linked in reading order."""
    paths = [section_path(section) for section in sections]
    pages: List[Page] = []
    for index, section in enumerate(sections):
        prev_page = Page(paths[index - 1], sections[index - 1]) if index > 0 else None
        next_page = Page(paths[index + 1], sections[index + 1]) if index + 1 < len(sections) else None
        pages.append(Page(paths[index], section, prev=prev_page, next=next_page))
    return pages


def _href(from_path: str, to_path: str) -> str:
    return html.escape(relative_root(from_path) + to_path)


def _link(from_path: str, page_path: str, label: str, current: str) -> str:
    css = ' class="current"' if page_path == current else ""
    return f'<li><a href="{_href(from_path, page_path)}"{css}>{html.escape(label)}</a></li>'


def _sidebar(
    title: str,
    current: str,
    pages: Sequence[Page],
    books: Sequence[Book],
) -> str:
    rendered = {page.section.id: page for page in pages}
    parts = [f"<h2>{html.escape(title)}</h2>", "<ul>", _link(current, INDEX_PATH, "Home", current)]

    for book in books:
        chapters = [rendered[ch.id] for ch in book.chapters if ch.id in rendered]
        if not chapters:
            continue
        parts.append(f'<li class="book"><span class="book-title">{html.escape(book.title)}</span><ul>')
        parts.extend(_link(current, page.path, page.title, current) for page in chapters)
        parts.append("</ul></li>")

    appendices = [page for page in pages if page.section.kind is SectionKind.APPENDIX]
    if appendices:
        parts.append('<li class="appendices"><span class="book-title">Appendices</span><ul>')
        parts.extend(_link(current, page.path, page.title, current) for page in appendices)
        parts.append("</ul></li>")

    for page in pages:
        if page.section.kind is SectionKind.DOCUMENT:
            parts.append(_link(current, page.path, page.title, current))

    parts.append("</ul>")
    return "\n".join(parts)


def _chapter_nav(page: Page) -> str:
    links = []
    if page.prev is not None:
        links.append(f'<a class="prev" href="{_href(page.path, page.prev.path)}">&larr; {html.escape(page.prev.title)}</a>')
    else:
        links.append("<span></span>")
    if page.next is not None:
        links.append(f'<a class="next" href="{_href(page.path, page.next.path)}">{html.escape(page.next.title)} &rarr;</a>')
    return '<nav class="chapter-nav">' + "".join(links) + "</nav>"


def render_section_body(section: Section) -> str:
    lines = []
    if section.heading is not None:
        lines.append(f"<{section.heading.tag}>{section.heading.html}</{section.heading.tag}>")
    elif section.kind is SectionKind.DOCUMENT:
        lines.append(f"<h1>{html.escape(section.title)}</h1>")
    for block in section.blocks:
        lines.append(f"<{block.tag}>{block.html}</{block.tag}>")
    return "\n".join(lines)


def _contents(pages: Sequence[Page]) -> str:
    items = [
        f'<li><a href="{html.escape(page.path)}">{html.escape(page.title)}</a></li>'
        for page in pages
        if page.path != INDEX_PATH
    ]
    if not items:
        return ""
    return '<nav class="toc"><h2>Contents</h2><ol>' + "".join(items) + "</ol></nav>"


def _document(site_title: str, page: Page, sidebar: str, body: str) -> str:
    root = relative_root(page.path)
    head_title = html.escape(site_title) if page.path == INDEX_PATH else f"{html.escape(page.title)} | {html.escape(site_title)}"
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{head_title}</title>
  <link rel="stylesheet" href="{root}{STYLE_PATH}">
</head>
<body>
  <button id="toggle" aria-label="Toggle navigation">&#9776;</button>
  <aside class="sidebar">
{sidebar}
    <button id="theme">Toggle theme</button>
  </aside>
  <main class="content">
{body}
{_chapter_nav(page)}
    <footer>{html.escape(site_title)}</footer>
  </main>
  <div class="image-overlay"></div>
  <script src="{root}{SCRIPT_PATH}"></script>
</body>
</html>
"""


def render_page(site_title: str, page: Page, pages: Sequence[Page], books: Sequence[Book]) -> str:
    sidebar = _sidebar(site_title, page.path, pages, books)
    body = render_section_body(page.section)
    if page.section.kind is SectionKind.FRONT_MATTER:
        body = f"<h1>{html.escape(site_title)}</h1>\n{body}\n{_contents(pages)}"
    return _document(site_title, page, sidebar, body)


def render_site(site_title: str, sections: Sequence[Section], books: Sequence[Book]) -> Dict[str, str]:
    """Map of relative output path to file content for the whole site."""
    pages = plan_pages(sections)
    files = {page.path: render_page(site_title, page, pages, books) for page in pages}
    files[STYLE_PATH] = SITE_CSS
    files[SCRIPT_PATH] = SITE_JS
    return files


def render_fallback_page(site_title: str, body_html: str) -> Dict[str, str]:
    section = Section(SectionKind.FRONT_MATTER, "front-matter", site_title)
    page = Page(INDEX_PATH, section)
    body = f"<h1>{html.escape(site_title)}</h1>\n{body_html}"
    return {
        INDEX_PATH: _document(site_title, page, _sidebar(site_title, INDEX_PATH, [page], []), body),
        STYLE_PATH: SITE_CSS,
        SCRIPT_PATH: SITE_JS,
    }


SITE_CSS = """:root {
  --bg: #fafafa;
  --fg: #222;
  --accent: #2e8bff;
  --border: #ddd;
}

[data-theme="dark"] {
  --bg: #111;
  --fg: #ddd;
  --accent: #7aa6ff;
  --border: #444;
}

* { box-sizing: border-box; }

body {
  margin: 0;
  font-family: system-ui, -apple-system, sans-serif;
  background: var(--bg);
  color: var(--fg);
  line-height: 1.65;
  transition: background-color 0.3s, color 0.3s;
}

a { color: var(--accent); text-decoration: none; }
a:hover { text-decoration: underline; }

.sidebar {
  position: fixed;
  top: 0;
  left: 0;
  bottom: 0;
  width: 280px;
  background: var(--bg);
  border-right: 1px solid var(--border);
  overflow-y: auto;
  transform: translateX(-280px);
  transition: transform 0.3s;
  z-index: 100;
  padding: 1rem;
}
.sidebar.open { transform: translateX(0); }
.sidebar h2 { margin-top: 0; padding: 0.5rem 0; border-bottom: 2px solid var(--accent); }
.sidebar ul { list-style: none; padding: 0 0 0 0.75rem; margin: 0; }
.sidebar li { margin: 0.4rem 0; }
.sidebar .book-title { font-weight: 600; }
.sidebar .current { font-weight: bold; }

.content { padding: 2rem; max-width: 800px; margin: 0 auto; }

@media (min-width: 1024px) {
  .sidebar { transform: translateX(0); }
  .content { margin-left: 280px; }
  #toggle { display: none; }
}

#toggle {
  position: fixed;
  top: 1rem;
  left: 1rem;
  background: var(--accent);
  color: white;
  border: none;
  border-radius: 4px;
  padding: 0.5rem 1rem;
  cursor: pointer;
  z-index: 200;
}

#theme {
  margin-top: 1rem;
  background: var(--accent);
  color: white;
  border: none;
  border-radius: 4px;
  padding: 0.5rem 1rem;
  cursor: pointer;
}

.conlang {
  font-style: italic;
  position: relative;
  cursor: help;
  color: var(--accent);
}
.conlang::after {
  content: attr(data-tr);
  position: absolute;
  bottom: 1.8em;
  left: 50%;
  transform: translateX(-50%);
  background: var(--bg);
  border: 2px solid var(--accent);
  padding: 0.5rem 0.75rem;
  font-style: normal;
  white-space: nowrap;
  border-radius: 6px;
  opacity: 0;
  pointer-events: none;
  transition: opacity 0.3s;
  z-index: 1000;
}
.conlang:hover::after { opacity: 1; }
.conlang.missing { color: #ff6b6b; }

.ui {
  font-family: 'Courier New', monospace;
  background: var(--accent);
  color: white;
  padding: 0.2em 0.5em;
  border-radius: 3px;
}

img.novel-image {
  max-width: 100%;
  height: auto;
  display: block;
  margin: 2rem auto;
  border-radius: 8px;
  cursor: zoom-in;
}

img.novel-image.expanded {
  position: fixed;
  top: 50%;
  left: 50%;
  transform: translate(-50%, -50%);
  max-width: 90vw;
  max-height: 90vh;
  margin: 0;
  z-index: 1000;
  cursor: zoom-out;
  box-shadow: 0 0 50px rgba(0, 0, 0, 0.5);
}

.image-overlay {
  position: fixed;
  inset: 0;
  background: rgba(0, 0, 0, 0.8);
  z-index: 999;
  display: none;
}

.image-overlay.active {
  display: block;
}

.chapter-nav {
  display: flex;
  justify-content: space-between;
  margin: 3rem 0;
  padding: 1rem 0;
  border-top: 1px solid var(--border);
}

footer {
  margin-top: 4rem;
  padding-top: 2rem;
  border-top: 1px solid var(--border);
  text-align: center;
  opacity: 0.7;
  font-size: 0.9rem;
}
"""

SITE_JS = """(() => {
  const root = document.documentElement;
  const sidebar = document.querySelector('.sidebar');
  const toggle = document.getElementById('toggle');
  const theme = document.getElementById('theme');

  toggle?.addEventListener('click', () => {
    sidebar.classList.toggle('open');
    localStorage.setItem('sidebarOpen', sidebar.classList.contains('open'));
  });

  theme?.addEventListener('click', () => {
    const next = root.dataset.theme === 'dark' ? 'light' : 'dark';
    root.dataset.theme = next;
    localStorage.setItem('theme', next);
  });

  const savedTheme = localStorage.getItem('theme');
  const prefersDark = window.matchMedia('(prefers-color-scheme: dark)').matches;
  root.dataset.theme = savedTheme || (prefersDark ? 'dark' : 'light');

  if (localStorage.getItem('sidebarOpen') === 'true' && window.innerWidth < 1024) {
    sidebar.classList.add('open');
  }

  document.addEventListener('click', (e) => {
    if (window.innerWidth < 1024 && sidebar.classList.contains('open')
        && !sidebar.contains(e.target) && e.target !== toggle) {
      sidebar.classList.remove('open');
      localStorage.setItem('sidebarOpen', false);
    }
  });

  const overlay = document.querySelector('.image-overlay');
  const collapse = () => {
    document.querySelectorAll('.novel-image.expanded').forEach((img) => img.classList.remove('expanded'));
    overlay?.classList.remove('active');
  };

  document.querySelectorAll('.novel-image').forEach((img) => {
    img.addEventListener('click', () => {
      const expand = !img.classList.contains('expanded');
      collapse();
      if (expand) {
        img.classList.add('expanded');
        overlay?.classList.add('active');
      }
    });
  });
  overlay?.addEventListener('click', collapse);
})();
"""
