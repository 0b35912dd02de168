"""Command line interface for chatting with a configured model."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from .agent.session import ConversationSession
from .core.utils.config import Settings, load_settings
from .core.utils.deadline import CancellationError
from .core.utils.logger import configure_logging, get_logger
from .providers.llm import RetryConfig, create_client
from .providers.llm.base import LLMClient, ModelInvocationError
from .skills.loader import SkillLoadError, load_skills

LOGGER = get_logger(__name__)

EXIT_COMMANDS = {"exit", "quit", ":q"}


def get_llm_client(ctx: click.Context) -> LLMClient:
    client = ctx.obj.get("llm_client")
    if client:
        return client
    settings: Settings = ctx.obj["settings"]
    if not settings.api_key and settings.provider.lower() not in {"ollama"}:
        raise click.ClickException("No API key configured. Set LANGCHAT_API_KEY or update the config file.")

    retry_config = RetryConfig(
        max_retries=3,
        initial_delay=0.5,
        max_delay=5.0,
        backoff_multiplier=2.0,
        jitter_ratio=0.3,
    )
    try:
        client = create_client(
            settings.provider,
            settings.api_key,
            settings.model,
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            temperature=settings.temperature,
            retry_config=retry_config,
            default_headers=settings.request_headers,
            provider_only=settings.provider_only,
            provider_config=settings.provider_config,
        )
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.obj["llm_client"] = client
    return client


def _open_session(ctx: click.Context) -> ConversationSession:
    settings: Settings = ctx.obj["settings"]
    return ConversationSession(get_llm_client(ctx), settings=settings)


def _echo_chunk(chunk: bytes) -> None:
    click.echo(chunk.decode("utf-8", errors="replace"), nl=False)
    sys.stdout.flush()


def _ask(
    session: ConversationSession,
    message: str,
    *,
    skills: bool,
    mcp: bool,
    stream: bool,
) -> None:
    try:
        if stream:
            session.chat_stream(message, skills, mcp, _echo_chunk)
            click.echo()
        else:
            click.echo(session.chat(message, skills, mcp))
    except CancellationError as exc:
        raise click.ClickException(f"Request timed out: {exc}") from exc
    except ModelInvocationError as exc:
        raise click.ClickException(f"Model call failed: {exc}") from exc


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config file.")
@click.option("--verbose", is_flag=True, help="Enable verbose logging output.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """Chat with a model, optionally assisted by skills and MCP tools."""
    settings = load_settings(config_path)
    if verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings.log_level, structured=settings.structured_logging)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@click.argument("message", nargs=-1, required=True)
@click.option("--skills", "use_skills", is_flag=True, help="Let the model delegate to a loaded skill.")
@click.option("--mcp", "use_mcp", is_flag=True, help="Let the model use MCP tools.")
@click.option("--stream/--no-stream", default=False, help="Print tokens as they arrive.")
@click.pass_context
def ask(ctx: click.Context, message: tuple[str, ...], use_skills: bool, use_mcp: bool, stream: bool) -> None:
    """Send a single MESSAGE and print the reply."""
    text = " ".join(message).strip()
    if not text:
        raise click.UsageError("MESSAGE must not be empty.")
    with _open_session(ctx) as session:
        if use_skills or use_mcp:
            settings: Settings = ctx.obj["settings"]
            session.wait_until_loaded(settings.bootstrap_timeout)
        _ask(session, text, skills=use_skills, mcp=use_mcp, stream=stream)


@cli.command()
@click.option("--skills", "use_skills", is_flag=True, help="Let the model delegate to a loaded skill.")
@click.option("--mcp", "use_mcp", is_flag=True, help="Let the model use MCP tools.")
@click.option("--stream/--no-stream", default=True, help="Print tokens as they arrive.")
@click.pass_context
def chat(ctx: click.Context, use_skills: bool, use_mcp: bool, stream: bool) -> None:
    """Interactive conversation; type 'exit' to leave."""
    with _open_session(ctx) as session:
        click.echo("Type 'exit' to quit.")
        while True:
            try:
                line = click.prompt("you", prompt_suffix="> ", default="", show_default=False)
            except (EOFError, click.Abort):
                click.echo()
                break
            text = line.strip()
            if not text:
                continue
            if text.lower() in EXIT_COMMANDS:
                break
            if session.loading and (use_skills or use_mcp):
                click.echo("(tools are still loading; answering with what is available)")
            try:
                _ask(session, text, skills=use_skills, mcp=use_mcp, stream=stream)
            except click.ClickException as exc:
                click.echo(f"Error: {exc.format_message()}", err=True)


@cli.command(name="skills")
@click.option("--dir", "skills_dir", type=click.Path(path_type=Path), help="Skills directory to inspect.")
@click.pass_context
def list_skills(ctx: click.Context, skills_dir: Optional[Path]) -> None:
    """List skill packages and the tools they provide."""
    settings: Settings = ctx.obj["settings"]
    directory = skills_dir or settings.skills_dir
    if directory is None:
        raise click.ClickException("No skills directory configured. Pass --dir or set skills_dir.")
    try:
        skills = load_skills(directory, script_timeout=settings.script_timeout)
    except SkillLoadError as exc:
        raise click.ClickException(str(exc)) from exc
    if not skills:
        click.echo(f"No skills found in {directory}")
        return
    for skill in skills:
        click.echo(f"{skill.name}: {skill.description}")
        for descriptor in skill.tool_descriptors:
            click.echo(f"  - {descriptor.name}")


def main() -> None:  # pragma: no cover - console script entry point
    cli(obj={})


__all__ = ["cli", "get_llm_client", "main"]
