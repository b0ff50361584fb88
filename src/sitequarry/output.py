"""
Command output: format selection, rendering and file writing.

CLI formats (``markdown``, ``html``, ``json``, ``links``) are separate from the
page formats the processor produces. ``json`` serializes whatever was
produced, so it is backed by markdown at scrape time.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import structlog
from rich.console import Console

from sitequarry.protocols import OutputFormat, PageData
from sitequarry.utils.atomic import atomic_write_text
from sitequarry.utils.slugify import extension_for_format, url_to_filename

logger = structlog.get_logger(__name__)

CLI_FORMATS = ("markdown", "html", "json", "links")


def parse_format_option(value: Optional[str]) -> List[str]:
    """
    Parse ``--format``: one format, ``all`` or a comma-separated list.

    Unknown entries are skipped with a warning; if nothing valid remains
    the result is ``["markdown"]``.
    """
    if not value or not value.strip():
        return ["markdown"]

    value = value.strip().lower()
    if value == "all":
        return list(CLI_FORMATS)

    formats: List[str] = []
    for part in value.split(","):
        fmt = part.strip()
        if not fmt:
            continue
        if fmt not in CLI_FORMATS:
            logger.warning("Unknown format, skipping", format=fmt)
            continue
        if fmt not in formats:
            formats.append(fmt)

    if not formats:
        logger.warning("No valid formats specified, defaulting to markdown", requested=value)
        return ["markdown"]
    return formats


def page_formats(cli_formats: Iterable[str]) -> List[OutputFormat]:
    """Page formats the processor must produce for the given CLI formats."""
    formats: List[OutputFormat] = []
    for fmt in cli_formats:
        target: OutputFormat = "markdown" if fmt == "json" else fmt  # type: ignore[assignment]
        if target not in formats:
            formats.append(target)
    return formats


def render_payload(payload: Dict[str, Any], fmt: str) -> Optional[str]:
    """Text for ``fmt`` or ``None`` when the payload has nothing for it."""
    if fmt == "json":
        return json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    if fmt == "links":
        links = payload.get("links")
        if links is None:
            return None
        body: Dict[str, Any] = {"links": links, "count": len(links)}
        if payload.get("url"):
            body = {"url": payload["url"], **body}
        return json.dumps(body, indent=2, ensure_ascii=False)
    if fmt in ("markdown", "html"):
        return payload.get(fmt) or None
    return None


def _file_extension(fmt: str, formats: List[str]) -> str:
    # links and json share an extension; keep both files when both are asked for
    if fmt == "links" and "json" in formats:
        return "links.json"
    return extension_for_format(fmt)


def write_output(
    payload: Dict[str, Any],
    formats: List[str],
    output: Optional[str] = None,
    *,
    console: Optional[Console] = None,
) -> Optional[Path]:
    """
    Write ``payload`` in the first requested format to ``output`` or stdout.

    A payload without content for that format falls back to JSON. When
    ``output`` lacks the format's extension it is appended.
    """
    fmt = formats[0] if formats else "markdown"
    content = render_payload(payload, fmt)
    if content is None:
        fmt = "json"
        content = render_payload(payload, fmt) or "{}"

    if output is None:
        (console or Console()).print(content, markup=False, highlight=False, soft_wrap=True)
        return None

    path = Path(output)
    extension = extension_for_format(fmt)
    if path.suffix.lstrip(".").lower() != extension:
        path = path.with_name(f"{path.name}.{extension}")

    atomic_write_text(path, content)
    logger.info("Output written", path=str(path), format=fmt)
    return path


def save_page(page: PageData, directory: Path, formats: List[str], *, max_length: int = 64) -> List[Path]:
    """Write one page into ``directory``, one file per format it has content for."""
    url = page.url or (page.metadata.source_url if page.metadata else None)
    if not url:
        logger.warning("Page has no URL, not saving")
        return []

    payload = {"url": url, **page.to_dict()}
    written: List[Path] = []
    for fmt in formats:
        content = render_payload(payload, fmt)
        if content is None:
            continue
        path = Path(directory) / url_to_filename(url, _file_extension(fmt, formats), max_length)
        atomic_write_text(path, content)
        written.append(path)
    return written


def write_directory(
    payload: Dict[str, Any],
    pages: List[PageData],
    directory: Path,
    formats: List[str],
    *,
    max_length: int = 64,
) -> List[Path]:
    """
    Write an ``index.<ext>`` per format with the aggregate payload plus one
    file per page and format.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    written: List[Path] = []
    for fmt in formats:
        content = render_payload(payload, fmt)
        if content is None:
            continue
        path = directory / f"index.{_file_extension(fmt, formats)}"
        atomic_write_text(path, content)
        written.append(path)

    for page in pages:
        written.extend(save_page(page, directory, formats, max_length=max_length))

    logger.info("Directory output written", directory=str(directory), files=len(written))
    return written
