"""Markdown file store for generated wikis.

Layout of one wiki under the wikis directory::

    {package_path}/
        meta.json            wiki record without page bodies
        {lang}/{slug}.md     one page per file, YAML front matter + markdown
        generation.log       "[YYYY-MM-DD HH:MM:SS] message" lines
"""

import json
import logging
import re
import shutil
import threading
from datetime import datetime
from pathlib import Path

from kwiki.generation.frontmatter import build_page_frontmatter, parse_frontmatter
from kwiki.generation.models import Wiki, WikiPage

logger = logging.getLogger(__name__)

META_FILE = "meta.json"
LOG_FILE = "generation.log"
LOG_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_UNSAFE_PATH_CHARS = re.compile(r'[:?*<>|"]')
_SLUG_DASH_CHARS = re.compile(r"[\s　/\\:|]+")
_SLUG_DROP_CHARS = re.compile(r'[?*<>"]')


def sanitize_path(path: str) -> str:
    """Make a package path safe to use as a relative directory."""
    path = _UNSAFE_PATH_CHARS.sub("_", path)
    while "//" in path:
        path = path.replace("//", "/")
    return path.strip("/")


def slugify(title: str) -> str:
    """File name stem for a page title; non-ASCII letters are kept."""
    slug = _SLUG_DASH_CHARS.sub("-", title.lower())
    slug = _SLUG_DROP_CHARS.sub("", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug or "untitled"


class MarkdownStorage:
    """Persists wikis as markdown trees under ``base_dir``."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self._lock = threading.Lock()

    def wiki_dir(self, wiki_id: str) -> Path:
        relative = sanitize_path(wiki_id)
        if not relative or ".." in Path(relative).parts:
            raise ValueError(f"Invalid wiki id: {wiki_id!r}")
        return self.base_dir / relative

    # ------------------------------------------------------------------
    # Wikis
    # ------------------------------------------------------------------

    def save_wiki(self, wiki: Wiki) -> Path:
        """Write the wiki record and every page, replacing earlier page files."""
        wiki_dir = self.wiki_dir(wiki.package_path or wiki.id)
        with self._lock:
            wiki_dir.mkdir(parents=True, exist_ok=True)

            for stale in wiki_dir.glob("*/*.md"):
                stale.unlink()

            used: set[Path] = set()
            for page in wiki.pages:
                language = page.language or wiki.language or "default"
                path = self._page_path(wiki_dir / language, page, used)
                path.parent.mkdir(parents=True, exist_ok=True)
                header = build_page_frontmatter(
                    page_id=page.id,
                    title=page.title,
                    page_type=page.type.value,
                    order=page.order,
                    word_count=page.word_count,
                    reading_time=page.reading_time,
                    created_at=page.created_at,
                    updated_at=page.updated_at,
                )
                path.write_text(header + page.content, encoding="utf-8")

            meta = wiki.to_dict(include_pages=True, include_content=False)
            (wiki_dir / META_FILE).write_text(
                json.dumps(meta, indent=2, ensure_ascii=False), encoding="utf-8"
            )

        logger.info(f"Saved wiki {wiki.id} ({len(wiki.pages)} pages) to {wiki_dir}")
        return wiki_dir

    def _page_path(self, language_dir: Path, page: WikiPage, used: set[Path]) -> Path:
        stem = slugify(page.title)
        path = language_dir / f"{stem}.md"
        suffix = 2
        while path in used:
            path = language_dir / f"{stem}-{suffix}.md"
            suffix += 1
        used.add(path)
        return path

    def load_wiki(self, wiki_id: str) -> Wiki | None:
        """Load a wiki with its page bodies, or None if it is not stored."""
        wiki_dir = self.wiki_dir(wiki_id)
        with self._lock:
            return self._load_dir(wiki_dir)

    def _load_dir(self, wiki_dir: Path) -> Wiki | None:
        meta_path = wiki_dir / META_FILE
        if not meta_path.is_file():
            return None

        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable wiki metadata {meta_path}: {e}")
            return None

        stored_pages = {page.id: page for page in self._load_pages(wiki_dir)}
        pages = []
        for entry in meta.get("pages") or []:
            page = stored_pages.pop(entry.get("id"), None)
            if page is not None:
                pages.append(page)
        pages.extend(sorted(stored_pages.values(), key=lambda page: (page.language, page.order)))

        meta["pages"] = []
        wiki = Wiki.from_dict(meta)
        wiki.pages = pages
        return wiki

    def _load_pages(self, wiki_dir: Path) -> list[WikiPage]:
        pages = []
        for path in sorted(wiki_dir.glob("*/*.md")):
            try:
                raw = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning(f"Skipping unreadable page {path}: {e}")
                continue

            metadata, body = parse_frontmatter(raw)
            metadata = metadata or {}
            language = path.parent.name
            metadata.setdefault("id", f"{path.stem}_{language}")
            metadata.setdefault("title", path.stem.replace("-", " ").title())
            for key in ("created_at", "updated_at"):
                value = metadata.get(key)
                if isinstance(value, datetime):
                    metadata[key] = value.isoformat()
                elif value is not None:
                    metadata[key] = str(value)
            metadata["content"] = body
            pages.append(WikiPage.from_dict(metadata))
        return pages

    def list_wikis(self) -> list[str]:
        """Ids of every stored wiki."""
        ids = []
        with self._lock:
            if not self.base_dir.is_dir():
                return []
            for meta_path in sorted(self.base_dir.rglob(META_FILE)):
                try:
                    ids.append(json.loads(meta_path.read_text(encoding="utf-8"))["id"])
                except (OSError, json.JSONDecodeError, KeyError) as e:
                    logger.warning(f"Skipping unreadable wiki metadata {meta_path}: {e}")
        return ids

    def load_all_wikis(self) -> dict[str, Wiki]:
        wikis = {}
        for wiki_id in self.list_wikis():
            wiki = self.load_wiki(wiki_id)
            if wiki is not None:
                wikis[wiki.id] = wiki
        return wikis

    def delete_wiki(self, wiki_id: str) -> bool:
        """Remove a stored wiki; returns False if nothing was stored."""
        wiki_dir = self.wiki_dir(wiki_id)
        with self._lock:
            if not wiki_dir.is_dir():
                return False
            shutil.rmtree(wiki_dir)
        logger.info(f"Deleted wiki {wiki_id}")
        return True

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def append_log(self, wiki_id: str, message: str, timestamp: datetime | None = None) -> None:
        line = f"[{(timestamp or datetime.now()).strftime(LOG_TIMESTAMP_FORMAT)}] {message}\n"
        wiki_dir = self.wiki_dir(wiki_id)
        with self._lock:
            wiki_dir.mkdir(parents=True, exist_ok=True)
            with (wiki_dir / LOG_FILE).open("a", encoding="utf-8") as f:
                f.write(line)

    def save_logs(self, wiki_id: str, lines: list[str]) -> None:
        """Replace the log file with ``lines`` (already formatted)."""
        wiki_dir = self.wiki_dir(wiki_id)
        with self._lock:
            wiki_dir.mkdir(parents=True, exist_ok=True)
            (wiki_dir / LOG_FILE).write_text(
                "".join(f"{line}\n" for line in lines), encoding="utf-8"
            )

    def load_logs(self, wiki_id: str) -> list[str]:
        log_path = self.wiki_dir(wiki_id) / LOG_FILE
        with self._lock:
            if not log_path.is_file():
                return []
            return [line for line in log_path.read_text(encoding="utf-8").splitlines() if line]
