"""CLI entry point for newsunfurl."""

import asyncio

import typer

from newsunfurl import __version__
from newsunfurl.clients.redirect import HttpRedirectResolver
from newsunfurl.config import get_settings
from newsunfurl.services.decoder import DecodeError, TokenDecoder
from newsunfurl.services.retry import RetryOrchestrator, classify as classify_error
from newsunfurl.utils.logging import get_logger, setup_logging

app = typer.Typer(
    help="Decode Google News links and inspect the retry policy.",
    no_args_is_help=True,
)


@app.callback()
def main(
    log_level: str | None = typer.Option(None, "--log-level", help="Override NEWSUNFURL_LOG_LEVEL"),
) -> None:
    """Configure logging before running a command."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level, settings.json_logs)
    get_logger(__name__).debug("newsunfurl starting", version=__version__)


@app.command()
def decode(link: str = typer.Argument(..., help="Google News link or article id")) -> None:
    """Print the destination URL of a Google News link."""
    try:
        url = asyncio.run(_decode(link))
    except DecodeError as e:
        typer.echo(f"error: {e.reason} ({classify_error(e).value})", err=True)
        raise typer.Exit(code=1) from e
    typer.echo(url)


async def _decode(link: str) -> str:
    settings = get_settings()
    async with HttpRedirectResolver(user_agent=settings.user_agent) as resolver:
        decoder = TokenDecoder.from_settings(settings, resolver)
        return await decoder.decode(link)


@app.command()
def classify(message: str = typer.Argument(..., help="Error message to classify")) -> None:
    """Print whether an error message is retryable or permanent."""
    typer.echo(classify_error(message).value)


@app.command()
def backoff(attempt: int = typer.Argument(..., min=0, help="Number of attempts made so far")) -> None:
    """Print a sample delay before the next retry."""
    settings = get_settings()
    orchestrator = RetryOrchestrator(
        max_attempts=settings.max_attempts,
        base_delay=settings.base_backoff_seconds,
        max_jitter=settings.max_jitter_seconds,
    )
    delay = orchestrator.compute_backoff(attempt)
    typer.echo(f"{delay.total_seconds():.3f}s")
