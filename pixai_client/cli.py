"""PixAI command-line interface."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
import httpx

from .client import PixAIClient
from .errors import PixAIError
from .models import GenerationTask, MediaRecord


def _fail(error: Exception) -> None:
    click.echo(f"✗ {error}", err=True)
    sys.exit(1)


def _make_client(api_key: str | None) -> PixAIClient:
    return PixAIClient(api_key=api_key)


def _first_media(media: MediaRecord | list[MediaRecord]) -> MediaRecord:
    if isinstance(media, list):
        if not media:
            raise PixAIError("Task produced no media.")
        return media[0]
    return media


api_key_option = click.option(
    "--api-key",
    envvar="PIXAI_API_KEY",
    default=None,
    help="PixAI API key (defaults to $PIXAI_API_KEY).",
)


@click.group()
@click.version_option(package_name="pixai-client")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def app(verbose: bool) -> None:
    """PixAI CLI - generate, upload and download media."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")


@app.command()
@click.argument("prompt")
@api_key_option
@click.option("--model-id", default=None, help="Model version id from the model market.")
@click.option("--width", type=int, default=512, show_default=True)
@click.option("--height", type=int, default=512, show_default=True)
@click.option("--negative-prompt", default=None, help="Content to keep out of the image.")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path, dir_okay=False),
    default=Path("output.png"),
    show_default=True,
    help="Where to write the first generated image.",
)
def generate(
    prompt: str,
    api_key: str | None,
    model_id: str | None,
    width: int,
    height: int,
    negative_prompt: str | None,
    output: Path,
) -> None:
    """Generate an image from PROMPT and download it."""

    def _on_update(task: GenerationTask) -> None:
        click.echo(f"Task {task.id}: {task.status_value}")

    async def _run() -> None:
        async with _make_client(api_key) as client:
            parameters = {"prompts": prompt, "width": width, "height": height}
            if model_id:
                parameters["modelId"] = model_id
            if negative_prompt:
                parameters["negativePrompts"] = negative_prompt
            click.echo("Generating image...")
            task = await client.generate_image(parameters, on_update=_on_update)
            media = _first_media(await client.get_media_from_task(task))
            click.echo("Downloading generated image...")
            output.write_bytes(await client.download_media(media))
            click.echo(f"✓ Saved {output}")

    try:
        asyncio.run(_run())
    except (PixAIError, ValueError, httpx.HTTPError) as e:
        _fail(e)


@app.command()
@click.argument("source")
@api_key_option
def upload(source: str, api_key: str | None) -> None:
    """Upload SOURCE (a local file or an http(s) URL) and print its media id."""

    async def _run() -> None:
        async with _make_client(api_key) as client:
            value: str | Path = source
            if not source.startswith(("http://", "https://")):
                value = Path(source)
                if not value.is_file():
                    raise PixAIError(f"No such file: {source}")
            media = await client.upload_media(value)
            click.echo(media.id)

    try:
        asyncio.run(_run())
    except (PixAIError, ValueError, httpx.HTTPError) as e:
        _fail(e)


@app.command()
@click.argument("media_id")
@api_key_option
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path, dir_okay=False),
    required=True,
    help="File to write the media to.",
)
def download(media_id: str, api_key: str | None, output: Path) -> None:
    """Download the public variant of MEDIA_ID."""

    async def _run() -> None:
        async with _make_client(api_key) as client:
            media = await client.get_media(media_id)
            output.write_bytes(await client.download_media(media))
            click.echo(f"✓ Saved {output}")

    try:
        asyncio.run(_run())
    except (PixAIError, ValueError, httpx.HTTPError) as e:
        _fail(e)


if __name__ == "__main__":  # pragma: no cover
    app()
