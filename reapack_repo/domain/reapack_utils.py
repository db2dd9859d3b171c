import re
import urllib.parse
from pathlib import PurePosixPath
from typing import Optional, Any, List, Tuple

_VERSION_RE = re.compile(r"^\d[0-9A-Za-z._-]*$")
_VERSION_TOKEN_RE = re.compile(r"\d+|[A-Za-z]+")

# File extension (lower case) -> ReaPack package type.
PACKAGE_TYPES_BY_EXTENSION = {
    ".lua": "script",
    ".eel": "script",
    ".py": "script",
    ".jsfx": "effect",
    ".dll": "extension",
    ".dylib": "extension",
    ".so": "extension",
    ".reaperthemezip": "theme",
    ".reapertheme": "theme",
    ".reaperlangpack": "langpack",
    ".rpp": "projecttpl",
    ".rtracktemplate": "tracktpl",
    ".reaperautoitem": "autoitem",
}


def strip_nulls(value: Any) -> Any:
    """
    Recursively remove keys with value None from dictionaries.

    Lists are preserved, but their elements are also cleaned.
    """
    if isinstance(value, dict):
        return {k: strip_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [strip_nulls(v) for v in value]
    return value


def match_text(value: str, keyword: str, match_type: Optional[str]) -> bool:
    """
    Match a single value against a search keyword.
    """
    if keyword is None:
        return False
    keyword = keyword or ""
    match = (match_type or "Substring").strip() or "Substring"

    # Exact is case-sensitive; everything else we treat as case-insensitive.
    if match == "Exact":
        return value == keyword

    v = value.lower()
    k = keyword.lower()

    if match == "CaseInsensitive":
        return v == k
    if match == "StartsWith":
        return v.startswith(k)
    if match == "Substring":
        return k in v
    if match == "Wildcard":
        # Very simple wildcard support: * and ?
        pattern = "^" + re.escape(keyword).replace(r"\*", ".*").replace(r"\?", ".") + "$"
        return re.search(pattern, value, flags=re.IGNORECASE) is not None

    # Fallback: case-insensitive substring
    return k in v


def is_valid_version(name: Optional[str]) -> bool:
    """ReaPack versions start with a digit and use only letters, digits, '.', '_' and '-'."""
    return bool(name) and _VERSION_RE.fullmatch(name) is not None


def version_key(name: str) -> Tuple:
    """
    Convert a version string into a sortable tuple.

    Numeric segments compare numerically. A trailing alphabetic segment marks
    a pre-release, so '1.0beta1' sorts before '1.0' which sorts before '1.0.1'.
    """
    parts: List[Tuple] = []
    for token in _VERSION_TOKEN_RE.findall(name or ""):
        if token.isdigit():
            parts.append((2, int(token)))
        else:
            parts.append((0, token.lower()))
    parts.append((1, 0))
    return tuple(parts)


def package_type_for(path: str) -> Optional[str]:
    """Infer the package type from a file name, or None when the extension is unknown."""
    suffix = PurePosixPath(path).suffix.lower()
    return PACKAGE_TYPES_BY_EXTENSION.get(suffix)


def is_http_url(url: Optional[str]) -> bool:
    if not url:
        return False
    try:
        parsed = urllib.parse.urlsplit(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and " " not in url


def quote_path(path: str) -> str:
    """Percent-encode each segment of a repository-relative path."""
    return "/".join(urllib.parse.quote(part) for part in PurePosixPath(path).parts)


def render_source_url(
    template: str,
    remote_url: str,
    ref: str,
    path: str,
    version: str = "",
    package: str = "",
) -> str:
    """
    Render a source URL from the configured template.

    Example (default template):
        render_source_url("{remote_url}/raw/{ref}/{path}",
                          "https://github.com/user/Repo", "main", "RAPID/RAPID.lua")
        -> "https://github.com/user/Repo/raw/main/RAPID/RAPID.lua"
    """
    return template.format(
        remote_url=remote_url.rstrip("/"),
        ref=urllib.parse.quote(ref),
        path=quote_path(path),
        version=urllib.parse.quote(version),
        package=urllib.parse.quote(package),
    )


def index_url(remote_url: str, branch: str) -> str:
    """Location the package manager imports the repository from."""
    return f"{remote_url.rstrip('/')}/raw/{urllib.parse.quote(branch)}/index.xml"
