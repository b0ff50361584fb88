"""
Filesystem-safe names for pages written to an output directory.
"""

import re

SCHEME_PATTERN = re.compile(r"^https?://")

# Characters that are unsafe in filenames on at least one platform
UNSAFE_CHARS_PATTERN = re.compile(r'[\\/:*?"<>|]')

MULTIPLE_UNDERSCORES_PATTERN = re.compile(r"_+")

WINDOWS_RESERVED_NAMES = {
    "CON",
    "PRN",
    "AUX",
    "NUL",
    *(f"COM{i}" for i in range(1, 10)),
    *(f"LPT{i}" for i in range(1, 10)),
}

EXTENSIONS = {
    "json": "json",
    "html": "html",
    "markdown": "md",
    "links": "json",
}


def url_to_filename(url: str, extension: str = "md", max_length: int = 64) -> str:
    """
    Derive a filename from a URL.

    The scheme and a trailing slash are dropped, unsafe characters become
    underscores and runs of underscores collapse to one. The stem is cut at
    ``max_length`` before the extension is appended.

    Examples:
        >>> url_to_filename("https://example.com/docs/intro/")
        'example.com_docs_intro.md'

        >>> url_to_filename("http://example.com/a?b=c", "json")
        'example.com_a_b=c.json'
    """
    name = SCHEME_PATTERN.sub("", url)
    if name.endswith("/"):
        name = name[:-1]

    name = UNSAFE_CHARS_PATTERN.sub("_", name)
    name = MULTIPLE_UNDERSCORES_PATTERN.sub("_", name)

    if name.split(".")[0].upper() in WINDOWS_RESERVED_NAMES:
        name = f"{name}_reserved"

    if len(name) > max_length:
        name = name[:max_length]

    if not name:
        name = "index"

    suffix = f".{extension}"
    if not name.endswith(suffix):
        name = f"{name}{suffix}"
    return name


def extension_for_format(fmt: str) -> str:
    """File extension for an output format; unknown formats are plain text."""
    return EXTENSIONS.get(fmt, "txt")
