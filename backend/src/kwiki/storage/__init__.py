"""Result store for generated wikis."""

from kwiki.storage.markdown_storage import MarkdownStorage, sanitize_path, slugify

__all__ = ["MarkdownStorage", "sanitize_path", "slugify"]
