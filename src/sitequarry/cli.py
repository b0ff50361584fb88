"""Command-line interface for SiteQuarry."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TextIO, Tuple, TypeVar, cast

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sitequarry import __version__
from sitequarry.api import SiteQuarry
from sitequarry.config import (
    Config,
    CrawlOptions,
    ExtractOptions,
    MapOptions,
    MonitoringConfig,
    ScrapeOptions,
    SummarizeOptions,
    settings,
)
from sitequarry.crawler.scheduler import validate_seed
from sitequarry.exceptions import InvalidURLError
from sitequarry.observability import configure_logging, start_metrics_server
from sitequarry.output import page_formats, parse_format_option, save_page, write_directory, write_output
from sitequarry.protocols import CrawlResult, PageData
from sitequarry.utils.atomic import atomic_write_json, atomic_write_text
from sitequarry.utils.slugify import url_to_filename

# Payloads go to stdout, progress and diagnostics to stderr
console = Console()
err_console = Console(stderr=True)
logger = structlog.get_logger(__name__)

MIN_SUMMARY_CHARS = 200

F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")


def ensure_scheme(url: str) -> str:
    """Prefix ``https://`` when the URL has no http(s) scheme."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        return f"https://{url}"
    return url


def checked_url(url: str) -> str:
    """Normalize a command-line URL or exit with an error."""
    normalized = ensure_scheme(url)
    try:
        validate_seed(normalized)
    except InvalidURLError as e:
        err_console.print(f"[red]Invalid URL: {url} ({e})[/red]")
        sys.exit(1)
    return normalized


def pick(value: Optional[T], default: T) -> T:
    """The command-line value when given, else the configured default."""
    return default if value is None else value


def merge_markdown(pages: List[PageData]) -> Optional[str]:
    """Concatenate the markdown of several pages, separated by blank lines."""
    parts = [page.markdown for page in pages if page.markdown]
    return "\n\n".join(parts) if parts else None


def output_options(default_format: str = "markdown") -> Callable[[F], F]:
    def decorator(f: F) -> F:
        f = click.option("-o", "--output", type=click.Path(dir_okay=False), help="File to write results to")(f)
        f = click.option(
            "--dir",
            "directory",
            type=click.Path(file_okay=False),
            help="Directory to save output files (filenames derived from URLs)",
        )(f)
        f = click.option(
            "-f",
            "--format",
            "fmt",
            default=default_format,
            show_default=True,
            help="Output format (markdown, html, json, links, all) or comma-separated list",
        )(f)
        return f

    return decorator


def concurrency_options(f: F) -> F:
    f = click.option(
        "--concurrency", type=click.IntRange(min=1), help="Domains crawled concurrently  [default: crawl.concurrency, 5]"
    )(f)
    f = click.option(
        "--domain-delay",
        type=click.IntRange(min=0),
        help="Delay between requests to the same domain in ms  [default: crawl.domain_delay, 200]",
    )(f)
    f = click.option(
        "--domain-concurrency",
        type=click.IntRange(min=1),
        help="In-flight requests per domain  [default: crawl.domain_concurrency, 2]",
    )(f)
    return f


def link_filter_options(f: F) -> F:
    f = click.option("--max-depth", type=click.IntRange(min=0), help="Maximum crawl depth  [default: crawl.max_depth, 3]")(f)
    f = click.option("--include", multiple=True, help="URL pattern to include (repeatable, * wildcard)")(f)
    f = click.option("--exclude", multiple=True, help="URL pattern to exclude (repeatable, * wildcard)")(f)
    f = click.option("--external", is_flag=True, help="Allow links to external domains")(f)
    return f


def llm_options(f: F) -> F:
    f = click.option("--model", help="Ollama model to use")(f)
    f = click.option("--ollama-host", help="Ollama host URL")(f)
    return f


def read_text_file(path: Optional[str], what: str) -> Optional[str]:
    if path is None:
        return None
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        err_console.print(f"[red]Error reading {what} file: {e}[/red]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Configuration file path")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option("--metrics-port", type=int, help="Expose Prometheus metrics on this port while running")
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: str, metrics_port: Optional[int]) -> None:
    """SiteQuarry - scrape, crawl and map websites into clean markdown."""
    ctx.ensure_object(dict)
    loaded = Config.from_yaml(Path(config)) if config else cast(Config, settings)
    ctx.obj["config"] = loaded

    configure_logging(MonitoringConfig(log_level=log_level, log_file=loaded.monitoring.log_file))
    if metrics_port:
        start_metrics_server(metrics_port)


@cli.command()
@click.argument("urls", nargs=-1)
@click.option("--input", "input_file", type=click.File("r"), help="Read URLs from a file (one per line, # comments)")
@click.option("--links", "with_links", is_flag=True, help="Extract and include links")
@click.option("--extract", "with_extract", is_flag=True, help="Extract structured data with the LLM")
@output_options()
@llm_options
@click.pass_context
def scrape(
    ctx: click.Context,
    urls: Tuple[str, ...],
    input_file: Optional[TextIO],
    with_links: bool,
    with_extract: bool,
    output: Optional[str],
    directory: Optional[str],
    fmt: str,
    model: Optional[str],
    ollama_host: Optional[str],
) -> None:
    """Scrape content from one or more URLs."""
    url_list = list(urls)
    if input_file is not None:
        url_list.extend(line.strip() for line in input_file if line.strip() and not line.strip().startswith("#"))

    if not url_list:
        err_console.print("[red]No URLs specified. Use 'scrape URL...' or 'scrape --input FILE'[/red]")
        sys.exit(1)

    valid_urls: List[str] = []
    for url in url_list:
        normalized = ensure_scheme(url)
        try:
            validate_seed(normalized)
        except InvalidURLError:
            err_console.print(f"[yellow]Skipping invalid URL: {url}[/yellow]")
            continue
        valid_urls.append(normalized)

    if not valid_urls:
        err_console.print("[red]No valid URLs to scrape[/red]")
        sys.exit(1)

    formats = parse_format_option(fmt)
    produced = page_formats(formats)
    if with_extract:
        produced.append("extract")
    options = ScrapeOptions(
        formats=produced,
        extract_links=with_links or "links" in formats,
        extract_options=ExtractOptions(model=model, ollama_host=ollama_host) if with_extract else None,
    )

    async def run_scrape() -> None:
        async with SiteQuarry(ctx.obj["config"]) as quarry:
            with err_console.status(f"Scraping {len(valid_urls)} URL(s)..."):
                if len(valid_urls) == 1:
                    result = await quarry.scrape(valid_urls[0], options)
                    pages = [result.data] if result.success else []
                    error = result.error
                else:
                    batch = await quarry.batch_scrape(valid_urls, options)
                    pages, error = batch.data, batch.error

        if not pages:
            err_console.print(f"[red]Scrape failed: {error}[/red]")
            sys.exit(1)
        if error:
            err_console.print(f"[yellow]Note: {error}[/yellow]")

        if len(valid_urls) == 1:
            payload: Dict[str, Any] = pages[0].to_dict()
        else:
            payload = {"urls": valid_urls, "results": [page.to_dict() for page in pages]}
            merged = merge_markdown(pages)
            if merged:
                payload["markdown"] = merged

        if directory:
            max_length = ctx.obj["config"].output.filename_max_length
            if len(valid_urls) == 1:
                written = save_page(pages[0], Path(directory), formats, max_length=max_length)
            else:
                written = write_directory(payload, pages, Path(directory), formats, max_length=max_length)
            err_console.print(f"[green]Saved {len(written)} file(s) to {directory}[/green]")
        else:
            path = write_output(payload, formats, output, console=console)
            if path is not None:
                err_console.print(f"[green]Output written to {path}[/green]")

    asyncio.run(run_scrape())


def print_crawl_summary(result: CrawlResult) -> None:
    table = Table(title="Crawl Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Status", result.status.value)
    table.add_row("Completed", str(result.completed))
    table.add_row("Total", str(result.total))
    table.add_row("Errors", str(len(result.errors)))
    if result.remaining is not None:
        table.add_row("Remaining", str(result.remaining))
    err_console.print(table)


@cli.command()
@click.argument("url")
@click.option("--max-pages", type=click.IntRange(min=1), help="Maximum pages to crawl  [default: crawl.max_pages, 100]")
@link_filter_options
@concurrency_options
@output_options()
@click.pass_context
def crawl(
    ctx: click.Context,
    url: str,
    max_pages: Optional[int],
    max_depth: Optional[int],
    include: Tuple[str, ...],
    exclude: Tuple[str, ...],
    external: bool,
    concurrency: Optional[int],
    domain_delay: Optional[int],
    domain_concurrency: Optional[int],
    output: Optional[str],
    directory: Optional[str],
    fmt: str,
) -> None:
    """Crawl a website starting from URL."""
    start_url = checked_url(url)
    formats = parse_format_option(fmt)
    defaults = ctx.obj["config"].crawl
    options = CrawlOptions(
        max_depth=pick(max_depth, defaults.max_depth),
        max_pages=pick(max_pages, defaults.max_pages),
        include_patterns=list(include) or None,
        exclude_patterns=list(exclude) or None,
        allow_external_domains=external or defaults.allow_external_domains,
        concurrency=pick(concurrency, defaults.concurrency),
        domain_concurrency=pick(domain_concurrency, defaults.domain_concurrency),
        domain_delay=defaults.domain_delay if domain_delay is None else domain_delay / 1000,
        formats=page_formats(formats),
    )

    async def run_crawl() -> None:
        err_console.print(
            Panel.fit(
                f"[bold blue]{start_url}[/bold blue]\nMax depth: {options.max_depth}\nMax pages: {options.max_pages}",
                title="Starting Crawl",
            )
        )
        async with SiteQuarry(ctx.obj["config"]) as quarry:
            with err_console.status("Crawling..."):
                result = await quarry.crawl(start_url, options)

        print_crawl_summary(result)
        if result.completed == 0:
            err_console.print(f"[red]Crawl failed: {result.error or 'No pages were successfully processed'}[/red]")
            sys.exit(1)
        if result.error:
            err_console.print("[yellow]Some pages failed to process; broken links are common.[/yellow]")

        payload = result.to_dict()
        first = result.data[0]
        for key in ("markdown", "html", "links"):
            value = getattr(first, key)
            if value:
                payload[key] = value

        if directory:
            written = write_directory(
                payload,
                result.data,
                Path(directory),
                formats,
                max_length=ctx.obj["config"].output.filename_max_length,
            )
            err_console.print(f"[green]Saved {len(written)} file(s) to {directory}[/green]")
        else:
            path = write_output(payload, formats, output, console=console)
            if path is not None:
                err_console.print(f"[green]Output written to {path}[/green]")

    asyncio.run(run_crawl())


@cli.command(name="map")
@click.argument("url")
@click.option("--search", help="Keep only URLs containing this keyword, most relevant first")
@link_filter_options
@click.option("-o", "--output", type=click.Path(dir_okay=False), help="File to write results to")
@click.option("-f", "--format", "fmt", default="links", show_default=True, help="Output format (links or json)")
@click.pass_context
def map_command(
    ctx: click.Context,
    url: str,
    search: Optional[str],
    max_depth: Optional[int],
    include: Tuple[str, ...],
    exclude: Tuple[str, ...],
    external: bool,
    output: Optional[str],
    fmt: str,
) -> None:
    """Map a website and list its URLs."""
    start_url = checked_url(url)
    defaults = ctx.obj["config"].crawl
    options = MapOptions(
        search=search,
        max_depth=pick(max_depth, defaults.max_depth),
        include_patterns=list(include) or None,
        exclude_patterns=list(exclude) or None,
        allow_external_domains=external or defaults.allow_external_domains,
    )

    async def run_map() -> None:
        async with SiteQuarry(ctx.obj["config"]) as quarry:
            with err_console.status(f"Mapping {start_url}..."):
                result = await quarry.map(start_url, options)

        if not result.success:
            err_console.print(f"[red]Mapping failed: {result.error}[/red]")
            sys.exit(1)

        err_console.print(f"[green]Found {len(result.links)} URLs[/green]")
        payload = {"url": start_url, "count": len(result.links), "links": result.links}
        path = write_output(payload, parse_format_option(fmt), output, console=console)
        if path is not None:
            err_console.print(f"[green]Output written to {path}[/green]")

    asyncio.run(run_map())


@cli.command()
@click.argument("url")
@click.option("--schema", type=click.Path(exists=True, dir_okay=False), help="JSON schema file for extraction")
@click.option("--system-prompt", type=click.Path(exists=True, dir_okay=False), help="File containing the system prompt")
@click.option("--prompt", type=click.Path(exists=True, dir_okay=False), help="File containing a custom prompt")
@click.option("--temperature", type=float, help="Sampling temperature")
@click.option("--top-p", type=float, help="Top-p sampling value")
@click.option("--dir", "directory", type=click.Path(file_okay=False), help="Directory to save markdown and extraction")
@click.option("-o", "--output", type=click.Path(dir_okay=False), help="File to write results to")
@llm_options
@click.pass_context
def extract(
    ctx: click.Context,
    url: str,
    schema: Optional[str],
    system_prompt: Optional[str],
    prompt: Optional[str],
    temperature: Optional[float],
    top_p: Optional[float],
    directory: Optional[str],
    output: Optional[str],
    model: Optional[str],
    ollama_host: Optional[str],
) -> None:
    """Scrape URL and extract structured data from it with the LLM."""
    start_url = checked_url(url)

    schema_text = read_text_file(schema, "schema")
    try:
        schema_data = json.loads(schema_text) if schema_text else None
    except json.JSONDecodeError as e:
        err_console.print(f"[red]Schema file is not valid JSON: {e}[/red]")
        sys.exit(1)

    model_options: Dict[str, float] = {}
    if temperature is not None:
        model_options["temperature"] = temperature
    if top_p is not None:
        model_options["top_p"] = top_p

    options = ScrapeOptions(
        formats=["markdown", "extract"],
        extract_options=ExtractOptions(
            schema=schema_data,
            system_prompt=read_text_file(system_prompt, "system prompt"),
            prompt=read_text_file(prompt, "prompt"),
            model=model,
            ollama_host=ollama_host,
            model_options=model_options or None,
        ),
    )

    async def run_extract() -> None:
        async with SiteQuarry(ctx.obj["config"]) as quarry:
            with err_console.status(f"Scraping and extracting {start_url}..."):
                result = await quarry.scrape(start_url, options)

        if not result.success:
            err_console.print(f"[red]Scraping failed: {result.error}[/red]")
            sys.exit(1)

        data = result.data
        if directory:
            base = url_to_filename(start_url, "md").removesuffix(".md")
            if data.markdown:
                atomic_write_text(Path(directory) / f"{base}.md", data.markdown)
            if data.extract is not None:
                atomic_write_json(Path(directory) / f"{base}_extracted.json", data.extract)
            err_console.print(f"[green]Saved results to {directory}[/green]")
        else:
            path = write_output(data.to_dict(), ["json"], output, console=console)
            if path is not None:
                err_console.print(f"[green]Output written to {path}[/green]")

        problem = (data.extract or {}).get("error")
        if problem:
            err_console.print(f"[yellow]Extraction encountered an issue: {problem}[/yellow]")
            if "connect" in str(problem).lower():
                err_console.print("Install Ollama from https://ollama.com/ and start it with 'ollama serve'")
            elif "model" in str(problem).lower():
                err_console.print(f"Run: ollama pull {model or 'a suitable model'}")

    asyncio.run(run_extract())


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--max-length", default=200, show_default=True, type=click.IntRange(min=1), help="Maximum summary length in words")
@click.option("-o", "--output", type=click.Path(dir_okay=False), help="File to write results to")
@click.option("-f", "--format", "fmt", default="markdown", type=click.Choice(["markdown", "json"]), show_default=True)
@llm_options
@click.pass_context
def summarize(
    ctx: click.Context,
    file: str,
    max_length: int,
    output: Optional[str],
    fmt: str,
    model: Optional[str],
    ollama_host: Optional[str],
) -> None:
    """Summarize the content of FILE with the LLM."""
    content = read_text_file(file, "input") or ""
    if len(content.strip()) < MIN_SUMMARY_CHARS:
        err_console.print("[red]Content is too short for meaningful summarization[/red]")
        sys.exit(1)

    options = SummarizeOptions(model=model, ollama_host=ollama_host, max_length=max_length)

    async def run_summarize() -> None:
        async with SiteQuarry(ctx.obj["config"]) as quarry:
            with err_console.status(f"Summarizing {file} ({len(content)} characters)..."):
                result = await quarry.summarize(content, options)

        if not result.success:
            err_console.print(f"[red]Summarization failed: {result.error}[/red]")
            sys.exit(1)

        payload = {"source_file": file, "content_length": len(content), "summary": result.summary}
        if fmt == "markdown":
            payload = {"markdown": result.summary}
        path = write_output(payload, [fmt], output, console=console)
        if path is not None:
            err_console.print(f"[green]Output written to {path}[/green]")

    asyncio.run(run_summarize())


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
