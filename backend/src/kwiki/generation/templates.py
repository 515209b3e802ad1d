"""Prompt template discovery, front matter parsing and rendering.

Templates live under ``{template_dir}/{language}/{name}.md``. Each file may
start with YAML front matter declaring its title, page type and order; the
body is a prompt with ``{{ variable }}`` placeholders (``{{ .Variable }}`` is
accepted too).
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from kwiki.generation.frontmatter import parse_frontmatter

logger = logging.getLogger(__name__)

FALLBACK_LANGUAGE = "en"

SUPPORTED_LANGUAGES: dict[str, str] = {
    "en": "English",
    "zh": "中文",
    "ja": "日本語",
    "ko": "한국어",
    "es": "Español",
    "fr": "Français",
    "de": "Deutsch",
    "ru": "Русский",
    "pt": "Português",
    "it": "Italiano",
}

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*\.?([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def _snake_case(name: str) -> str:
    """``ProjectName`` -> ``project_name``; snake_case input is unchanged."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class TemplateNotFoundError(Exception):
    """Raised when no templates exist for a language or its fallback."""

    pass


class TemplateRenderError(Exception):
    """Raised when a template references an unknown variable."""

    pass


@dataclass
class TemplateMetadata:
    """Front matter declared by a prompt template."""

    title: str = "Untitled"
    type: str = "guide"
    order: int = 999
    description: str = ""
    category: str = ""
    tags: list[str] = field(default_factory=list)
    language: str = ""
    variables: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TemplateMetadata":
        return cls(
            title=str(data.get("title") or "Untitled"),
            type=str(data.get("type") or "guide"),
            order=int(data.get("order", 999)),
            description=str(data.get("description") or ""),
            category=str(data.get("category") or ""),
            tags=list(data.get("tags") or []),
            language=str(data.get("language") or ""),
            variables=list(data.get("variables") or []),
        )


@dataclass
class TemplateInfo:
    """A loaded template: its metadata, body and source location."""

    name: str
    language: str
    metadata: TemplateMetadata
    content: str
    path: Path


@dataclass
class ModuleData:
    name: str
    description: str = ""
    functions: list[str] = field(default_factory=list)


@dataclass
class TemplateData:
    """Facts merged into a template when rendering a prompt."""

    project_name: str
    description: str = ""
    primary_language: str = "Unknown"
    license: str = ""
    language: str = "en"
    modules: list[ModuleData] = field(default_factory=list)

    def variables(self) -> dict[str, str]:
        modules_text = "\n".join(
            f"- {module.name}: {module.description}" if module.description else f"- {module.name}"
            for module in self.modules
        )
        return {
            "project_name": self.project_name,
            "description": self.description,
            "primary_language": self.primary_language,
            "license": self.license,
            "language": self.language,
            "language_name": SUPPORTED_LANGUAGES.get(self.language, self.language),
            "modules": modules_text,
        }


@dataclass
class LanguageInfo:
    code: str
    name: str
    template_count: int = 0
    available: bool = False


@dataclass
class TemplateStatistics:
    total_templates: int = 0
    total_languages: int = 0
    templates_by_type: dict[str, int] = field(default_factory=dict)
    templates_by_language: dict[str, int] = field(default_factory=dict)


@dataclass
class TemplateDocumentationData:
    """Result of scanning the template directory."""

    project_name: str
    description: str
    primary_language: str
    license: str
    language: str
    templates: list[TemplateInfo] = field(default_factory=list)
    languages: list[LanguageInfo] = field(default_factory=list)
    statistics: TemplateStatistics = field(default_factory=TemplateStatistics)


class TemplateManager:
    """Loads prompt templates per language, with English as the fallback."""

    def __init__(self, template_dir: Path):
        self.template_dir = Path(template_dir)

    def supported_languages(self) -> list[str]:
        return list(SUPPORTED_LANGUAGES)

    def language_name(self, code: str) -> str:
        return SUPPORTED_LANGUAGES.get(code, code)

    def _language_files(self, language: str) -> list[Path]:
        language_dir = self.template_dir / language
        if not language_dir.is_dir():
            return []
        return sorted(path for path in language_dir.glob("*.md") if path.is_file())

    def load(self, path: Path, language: str) -> TemplateInfo:
        """Load one template file.

        Raises:
            ValueError: If the front matter block is present but malformed.
        """
        raw = path.read_text(encoding="utf-8")
        metadata, body = parse_frontmatter(raw)
        if metadata is None:
            if raw.startswith("---\n"):
                raise ValueError(f"Invalid front matter in template {path}")
            return TemplateInfo(path.stem, language, TemplateMetadata(), raw, path)
        return TemplateInfo(path.stem, language, TemplateMetadata.from_dict(metadata), body, path)

    def templates_for(self, language: str) -> list[TemplateInfo]:
        """Templates for ``language`` sorted by declared order.

        Falls back to English when the language has no templates.

        Raises:
            TemplateNotFoundError: If neither the language nor English has templates.
        """
        resolved = language
        files = self._language_files(language)
        if not files and language != FALLBACK_LANGUAGE:
            logger.info(f"No templates for {language}, falling back to {FALLBACK_LANGUAGE}")
            resolved = FALLBACK_LANGUAGE
            files = self._language_files(FALLBACK_LANGUAGE)
        if not files:
            raise TemplateNotFoundError(
                f"No templates found for language {language} in {self.template_dir}"
            )

        templates = []
        for path in files:
            try:
                templates.append(self.load(path, resolved))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping template {path}: {e}")

        templates.sort(key=lambda template: template.metadata.order)
        logger.info(f"Loaded {len(templates)} templates for {language}")
        return templates

    def render(self, template: TemplateInfo, data: TemplateData) -> str:
        """Substitute placeholders in ``template`` with values from ``data``.

        Raises:
            TemplateRenderError: If the template references an unknown variable.
        """
        variables = data.variables()

        def substitute(match: re.Match) -> str:
            key = _snake_case(match.group(1))
            if key not in variables:
                raise TemplateRenderError(
                    f"Unknown variable {match.group(1)!r} in template {template.name}"
                )
            return variables[key]

        return PLACEHOLDER_PATTERN.sub(substitute, template.content)

    def validate(self, content: str) -> list[str]:
        """Return a list of problems found in template ``content`` (empty if valid)."""
        problems = []
        if content.startswith("---\n"):
            metadata, _ = parse_frontmatter(content)
            if metadata is None:
                problems.append("invalid front matter")
        known = TemplateData(project_name="").variables()
        for match in PLACEHOLDER_PATTERN.finditer(content):
            if _snake_case(match.group(1)) not in known:
                problems.append(f"unknown variable {match.group(1)!r}")
        return problems

    def scan(self) -> TemplateDocumentationData:
        """Scan every supported language and collect template statistics."""
        data = TemplateDocumentationData(
            project_name="KWiki Template System",
            description="Documentation of the kwiki prompt template system",
            primary_language="Python",
            license="MIT",
            language="zh",
        )
        by_type: Counter[str] = Counter()

        for code in self.supported_languages():
            info = LanguageInfo(code=code, name=self.language_name(code))
            if not self._language_files(code):
                data.languages.append(info)
                continue
            templates = self.templates_for(code)

            info.available = True
            info.template_count = len(templates)
            data.statistics.templates_by_language[code] = len(templates)
            data.templates.extend(templates)
            by_type.update(template.metadata.type for template in templates)
            data.languages.append(info)

        data.statistics.templates_by_type = dict(by_type)
        data.statistics.total_templates = len(data.templates)
        data.statistics.total_languages = len(data.languages)
        return data
