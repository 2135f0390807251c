"""Skill taxonomy: canonical skill names, aliases and file-language detection."""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from gitanalyzer.models import SkillCategory, SkillKey

# Canonical name -> aliases, grouped by category.
_KNOWN_SKILLS: dict[SkillCategory, dict[str, tuple[str, ...]]] = {
    SkillCategory.LANGUAGE: {
        "rust": ("rs",),
        "python": ("py", "python3"),
        "javascript": ("js", "ecmascript", "es6", "es2015"),
        "typescript": ("ts",),
        "go": ("golang",),
        "java": (),
        "kotlin": ("kt",),
        "swift": (),
        "c": (),
        "cpp": ("c++", "cxx"),
        "csharp": ("c#", "cs"),
        "ruby": ("rb",),
        "php": (),
        "scala": (),
        "haskell": ("hs",),
        "elixir": ("ex",),
        "sql": ("plsql", "tsql"),
        "shell": ("bash", "sh", "zsh"),
    },
    SkillCategory.FRAMEWORK: {
        "react": ("reactjs", "react.js"),
        "vue": ("vuejs", "vue.js"),
        "angular": ("angularjs",),
        "svelte": ("sveltekit",),
        "nextjs": ("next.js", "next"),
        "express": ("expressjs",),
        "django": (),
        "flask": (),
        "fastapi": (),
        "spring": ("spring boot", "springboot"),
        "rails": ("ruby on rails", "ror"),
        "actix": ("actix-web",),
        "axum": (),
        "gin": (),
        "react native": ("react-native", "rn"),
        "flutter": (),
    },
    SkillCategory.TOOL: {
        "docker": ("dockerfile", "containerization"),
        "kubernetes": ("k8s",),
        "terraform": ("tf", "iac"),
        "aws": ("amazon web services",),
        "gcp": ("google cloud", "google cloud platform"),
        "azure": ("microsoft azure",),
        "git": (),
        "github actions": ("gha",),
        "postgresql": ("postgres", "psql"),
        "mysql": ("mariadb",),
        "mongodb": ("mongo",),
        "redis": (),
        "graphql": ("gql",),
    },
    SkillCategory.DOMAIN: {
        "machine learning": ("ml", "deep learning", "ai"),
        "data science": ("data analysis", "analytics"),
        "devops": ("sre", "platform engineering"),
        "security": ("cybersecurity", "infosec", "appsec"),
        "frontend": ("front-end", "client-side"),
        "backend": ("back-end", "server-side"),
        "distributed systems": ("microservices", "distributed"),
    },
    SkillCategory.PRACTICE: {
        "testing": ("unit testing", "tdd", "test-driven", "integration testing"),
        "documentation": ("docs", "technical writing"),
        "ci/cd": ("continuous integration", "continuous deployment", "continuous delivery"),
        "clean code": ("solid", "dry", "kiss"),
        "refactoring": (),
        "performance optimization": ("perf", "optimization"),
        "error handling": ("exception handling",),
    },
}

_ALIASES: dict[str, str] = {}
_CANONICAL_CATEGORY: dict[str, SkillCategory] = {}
for _category, _skills in _KNOWN_SKILLS.items():
    for _name, _aliases in _skills.items():
        _CANONICAL_CATEGORY[_name] = _category
        for _alias in _aliases:
            _ALIASES[_alias] = _name

_WHITESPACE = re.compile(r"\s+")


def normalize_skill_name(name: str) -> str:
    """Lowercase, collapse whitespace and resolve known aliases."""
    lower = _WHITESPACE.sub(" ", name.strip().lower())
    return _ALIASES.get(lower, lower)


def parse_category(raw: str) -> SkillCategory:
    """Map a free-form category label onto SkillCategory (unknown -> concept)."""
    try:
        return SkillCategory(raw.strip().lower())
    except ValueError:
        return SkillCategory.CONCEPT


def skill_key(name: str, category: str | SkillCategory) -> SkillKey:
    """Build the canonical key; known skills keep their taxonomy category."""
    normalized = normalize_skill_name(name)
    parsed = category if isinstance(category, SkillCategory) else parse_category(category)
    return SkillKey(name=normalized, category=_CANONICAL_CATEGORY.get(normalized, parsed))


# --- File languages ---

_SPECIAL_FILENAMES: dict[str, str] = {
    "dockerfile": "Dockerfile",
    "makefile": "Makefile",
    "gnumakefile": "Makefile",
    "cmakelists.txt": "CMake",
}

_EXTENSION_LANGUAGES: dict[str, str] = {
    "rs": "Rust",
    "py": "Python",
    "pyw": "Python",
    "pyx": "Python",
    "js": "JavaScript",
    "mjs": "JavaScript",
    "cjs": "JavaScript",
    "jsx": "JavaScript",
    "ts": "TypeScript",
    "tsx": "TypeScript",
    "go": "Go",
    "java": "Java",
    "kt": "Kotlin",
    "kts": "Kotlin",
    "scala": "Scala",
    "clj": "Clojure",
    "c": "C",
    "h": "C",
    "cpp": "C++",
    "cc": "C++",
    "cxx": "C++",
    "hpp": "C++",
    "cs": "C#",
    "swift": "Swift",
    "m": "Objective-C",
    "rb": "Ruby",
    "php": "PHP",
    "ex": "Elixir",
    "exs": "Elixir",
    "erl": "Erlang",
    "hs": "Haskell",
    "sh": "Shell",
    "bash": "Shell",
    "zsh": "Shell",
    "ps1": "PowerShell",
    "html": "HTML",
    "css": "CSS",
    "scss": "SCSS",
    "vue": "Vue",
    "svelte": "Svelte",
    "sql": "SQL",
    "graphql": "GraphQL",
    "json": "JSON",
    "yaml": "YAML",
    "yml": "YAML",
    "toml": "TOML",
    "xml": "XML",
    "md": "Markdown",
    "rst": "reStructuredText",
    "txt": "Text",
    "lua": "Lua",
    "r": "R",
    "dart": "Dart",
    "zig": "Zig",
    "jl": "Julia",
    "sol": "Solidity",
    "proto": "Protocol Buffers",
    "tf": "Terraform",
}

# Relevance of a file when a diff has to be truncated (higher first).
_EXTENSION_PRIORITY: dict[str, int] = {
    **dict.fromkeys(("rs", "py", "ts", "js", "go", "java", "cpp", "c", "rb", "swift", "kt"), 100),
    **dict.fromkeys(("tsx", "jsx", "vue", "svelte"), 90),
    **dict.fromkeys(("sql", "graphql"), 80),
    **dict.fromkeys(("yaml", "yml", "toml", "json"), 50),
    **dict.fromkeys(("md", "txt", "rst"), 30),
    "lock": 0,
}
_DEFAULT_PRIORITY = 40

_TEST_PATH = re.compile(r"(^|/)(tests?|spec|__tests__)/|(^|/)test_[^/]+$|_test\.[a-z]+$|\.(test|spec)\.[a-z]+$")
_DOC_PATH = re.compile(r"(^|/)docs?/|\.(md|rst|adoc)$|(^|/)readme", re.IGNORECASE)


def _extension(filename: str) -> str:
    suffix = PurePosixPath(filename).suffix
    return suffix[1:].lower() if suffix else ""


def detect_language(filename: str) -> str | None:
    """Best-effort language name for a file path."""
    base = PurePosixPath(filename).name.lower()
    if base in _SPECIAL_FILENAMES:
        return _SPECIAL_FILENAMES[base]
    if base.startswith("dockerfile."):
        return "Dockerfile"
    if base.endswith(".d.ts"):
        return "TypeScript"
    return _EXTENSION_LANGUAGES.get(_extension(filename))


def file_priority(filename: str) -> int:
    """Relevance rank used to keep the most useful files of a truncated diff."""
    return _EXTENSION_PRIORITY.get(_extension(filename), _DEFAULT_PRIORITY)


def is_test_file(filename: str) -> bool:
    return bool(_TEST_PATH.search(filename.lower()))


def is_doc_file(filename: str) -> bool:
    return bool(_DOC_PATH.search(filename))
