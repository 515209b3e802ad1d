"""Prompts for repository documentation pages."""

from dataclasses import dataclass
from typing import Any

from kwiki.generation.models import PageType
from kwiki.repo.url_parser import RepositoryInfo


@dataclass
class PromptTemplate:
    """A template for generating prompts with variable substitution."""

    template: str

    def render(self, **kwargs: Any) -> str:
        """Render the template with the given variables.

        Raises:
            KeyError: If a required variable is missing.
        """
        return self.template.format(**kwargs)


@dataclass(frozen=True)
class RepositoryPageSpec:
    """One page of the fixed repository documentation set."""

    type: PageType
    title: str
    order: int

    @property
    def page_id_stem(self) -> str:
        return self.title.replace(" ", "-").lower()


# =============================================================================
# Repository Page Template
# =============================================================================

_INTRO = {
    "zh": "你是一个专业的技术文档编写专家。请为以下项目生成高质量的中文技术文档。",
    "en": (
        "You are a professional technical documentation expert. Please generate "
        "high-quality English technical documentation for the following project."
    ),
}

_REQUEST = {
    "zh": '请生成一个详细的{type_name}文档，标题为"{title}"。',
    "en": 'Please generate a detailed {type_name} document titled "{title}".',
}

REPOSITORY_PAGE_TEMPLATE = PromptTemplate(
    """{intro}

项目信息 / Project Information:
- 名称 / Name: {name}
- URL: {url}
- 语言 / Language: {language}
- 框架 / Framework: {framework}
- 描述 / Description: {description}

{request}

请使用Markdown格式，包含适当的标题、代码块、列表等格式。确保内容专业、准确、易于理解。
Please use Markdown format with appropriate headings, code blocks, lists, etc. \
Ensure the content is professional, accurate, and easy to understand."""
)

_PAGE_TYPE_NAMES = {
    "zh": {
        PageType.OVERVIEW: "项目概述",
        PageType.GUIDE: "使用指南",
        PageType.API: "API参考",
        PageType.ARCHITECTURE: "架构设计",
    },
    "en": {
        PageType.OVERVIEW: "project overview",
        PageType.GUIDE: "user guide",
        PageType.API: "API reference",
        PageType.ARCHITECTURE: "architecture design",
    },
}

_FALLBACK_TYPE_NAME = {"zh": "技术文档", "en": "technical documentation"}

# (type, zh title, en title, order)
_REPOSITORY_PAGES = [
    (PageType.OVERVIEW, "项目概述", "Project Overview", 1),
    (PageType.GUIDE, "快速开始", "Getting Started", 2),
    (PageType.GUIDE, "安装指南", "Installation Guide", 3),
    (PageType.API, "API参考", "API Reference", 4),
    (PageType.ARCHITECTURE, "架构设计", "Architecture", 5),
]


def _prompt_language(language: str) -> str:
    return "zh" if language == "zh" else "en"


def localized_title(zh_title: str, en_title: str, language: str) -> str:
    return zh_title if language == "zh" else en_title


def repository_pages(language: str) -> list[RepositoryPageSpec]:
    """The repository page set, titled for ``language`` (non-zh falls back to English)."""
    return [
        RepositoryPageSpec(page_type, localized_title(zh, en, language), order)
        for page_type, zh, en, order in _REPOSITORY_PAGES
    ]


def page_type_name(page_type: PageType, language: str) -> str:
    lang = _prompt_language(language)
    return _PAGE_TYPE_NAMES[lang].get(page_type, _FALLBACK_TYPE_NAME[lang])


def get_repository_page_prompt(
    repo: RepositoryInfo, page_type: PageType, title: str, language: str
) -> str:
    """Build the prompt for one repository documentation page.

    Args:
        repo: Repository facts to embed in the prompt.
        page_type: Page category, used to name the requested document.
        title: Localized page title.
        language: Target language code.

    Returns:
        The rendered prompt string.
    """
    lang = _prompt_language(language)
    return REPOSITORY_PAGE_TEMPLATE.render(
        intro=_INTRO[lang],
        name=repo.name,
        url=repo.url,
        language=repo.language,
        framework=repo.framework,
        description=repo.description,
        request=_REQUEST[lang].format(type_name=page_type_name(page_type, language), title=title),
    )
