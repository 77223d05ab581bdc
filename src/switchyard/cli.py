from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Optional

import typer

from .bootstrap import AppContext, build_app
from .config_loader import ConfigError
from .core.chat_session import ChatSession
from .core.errors import PartialFailure, ProviderError
from .providers.registry import ProviderRegistry

app = typer.Typer(add_completion=False, help="Talk to local and remote LLM providers.")
keys_app = typer.Typer(help="Manage stored API keys.")
app.add_typer(keys_app, name="keys")

DEFAULT_CONFIG = Path("config/default.yaml")

CHAT_HELP = (
    "Commands: /help, /providers, /use <id>, /model <id>, /stats, /summary, /reset, /exit, /quit"
)


def _load(ctx: typer.Context) -> AppContext:
    config: Path = ctx.obj or DEFAULT_CONFIG
    try:
        return build_app(config)
    except (FileNotFoundError, ConfigError, ProviderError) as e:
        typer.echo(f"[config] {e}", err=True)
        raise typer.Exit(code=2)


def _fail(message: str) -> None:
    typer.echo(f"[error] {message}", err=True)
    raise typer.Exit(code=1)


def _print_providers(registry: ProviderRegistry) -> None:
    for p in registry.providers:
        marker = "*" if p is registry.active else " "
        print(f"{marker} {p.provider_id:<14} {p.display_name:<18} {p.provider_type.display_name} [{p.state.value}]")


def _print_stats(registry: ProviderRegistry) -> None:
    provider = registry.active
    if provider is None:
        print("No active provider.")
        return
    s = provider.get_usage_statistics()
    print(f"{provider.display_name}")
    print(f"  requests:      {s.request_count} ({s.error_count} failed)")
    print(f"  tokens:        {s.token_count}")
    print(f"  avg latency:   {s.average_response_time:.2f}s")
    if s.estimated_cost is not None:
        print(f"  est. cost:     ${s.estimated_cost:.4f}")


async def _handle_command(line: str, session: ChatSession, registry: ProviderRegistry) -> None:
    cmd, _, arg = line.partition(" ")
    arg = arg.strip()

    if cmd == "/help":
        print(CHAT_HELP)
    elif cmd == "/providers":
        _print_providers(registry)
    elif cmd == "/use":
        if not arg:
            print("Usage: /use <provider id>")
            return
        provider = await registry.switch(arg)
        print(f"Switched to {provider.display_name}.")
    elif cmd == "/model":
        if not arg:
            active = registry.active
            names = ", ".join(m.id for m in active.available_models) if active else ""
            print(f"Models: {names}")
            return
        model = registry.update_selected_model(arg)
        if model is not None:
            print(f"Using model {model.id}.")
    elif cmd == "/stats":
        _print_stats(registry)
    elif cmd == "/summary":
        summary = await session.summarize()
        print(summary or "(nothing to summarize)")
    elif cmd == "/reset":
        await session.reset()
        print("Conversation cleared.")
    else:
        print(f"Unknown command {cmd}. {CHAT_HELP}")


async def _stream_reply(session: ChatSession, user_input: str) -> None:
    gen = session.run_turn_stream(user_input)
    try:
        async for piece in gen:
            print(piece, end="", flush=True)
        print("")
    except (KeyboardInterrupt, asyncio.CancelledError):
        # Ctrl+C under asyncio.run arrives as a cancellation of the main task
        task = asyncio.current_task()
        if task is not None and hasattr(task, "uncancel"):
            task.uncancel()
        await gen.aclose()
        print("\n[stream interrupted]")


async def _chat_loop(app_ctx: AppContext, use_stream: bool) -> None:
    registry = app_ctx.registry
    try:
        provider = await registry.start()
        session = ChatSession(registry)
        print(f"switchyard chat with {provider.display_name}. Type /help for commands. Ctrl+C to quit.")

        while True:
            try:
                user_input = input("you> ").strip()
            except (EOFError, KeyboardInterrupt):
                print("\nBye.")
                return

            if not user_input:
                continue
            if user_input in ("/exit", "/quit"):
                print("Bye.")
                return

            try:
                if user_input.startswith("/"):
                    await _handle_command(user_input, session, registry)
                elif use_stream:
                    await _stream_reply(session, user_input)
                else:
                    reply = await session.run_turn(user_input)
                    print(reply.text)
            except ProviderError as e:
                print(f"\n[error] {e}")
    finally:
        await app_ctx.close()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to the YAML config."),
):
    ctx.obj = config
    if ctx.invoked_subcommand is None:
        chat(ctx)


@app.command()
def chat(ctx: typer.Context):
    """Interactive chat with the active provider."""
    app_ctx = _load(ctx)
    use_stream = bool((app_ctx.cfg.get("runtime") or {}).get("stream", False))
    try:
        asyncio.run(_chat_loop(app_ctx, use_stream))
    except ProviderError as e:
        _fail(str(e))


@app.command()
def providers(ctx: typer.Context):
    """List registered providers (* marks the active one)."""
    app_ctx = _load(ctx)
    _print_providers(app_ctx.registry)
    asyncio.run(app_ctx.close())


@app.command()
def use(ctx: typer.Context, provider_id: str = typer.Argument(..., help="Provider id, e.g. openai")):
    """Switch the active provider and remember the choice."""
    app_ctx = _load(ctx)

    async def run():
        try:
            return await app_ctx.registry.switch(provider_id)
        finally:
            await app_ctx.close()

    try:
        provider = asyncio.run(run())
    except ProviderError as e:
        _fail(str(e))
    print(f"Active provider: {provider.display_name}")


@app.command()
def models(ctx: typer.Context):
    """List the active provider's models (* marks the selected one)."""
    app_ctx = _load(ctx)

    async def run():
        try:
            provider = await app_ctx.registry.start()
            # cleanup empties the catalog
            return provider.display_name, list(provider.available_models), provider.selected_model
        finally:
            await app_ctx.close()

    try:
        name, catalog, selected = asyncio.run(run())
    except ProviderError as e:
        _fail(str(e))
    print(f"{name}:")
    for m in catalog:
        marker = "*" if selected is not None and m.id == selected.id else " "
        print(f"{marker} {m.id:<28} {m.name} ({m.context_window} ctx)")


@keys_app.command("set")
def keys_set(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Provider kind, e.g. openai"),
    key: str = typer.Option(..., "--key", prompt=True, hide_input=True, help="The API key."),
):
    """Validate and store an API key."""
    app_ctx = _load(ctx)

    async def run():
        try:
            return await app_ctx.store_credential(kind, key)
        finally:
            await app_ctx.close()

    try:
        provider = asyncio.run(run())
    except ProviderError as e:
        _fail(str(e))
    print(f"Stored key for {provider.display_name}.")


@keys_app.command("delete")
def keys_delete(ctx: typer.Context, kind: str = typer.Argument(..., help="Provider kind")):
    """Delete a stored API key."""
    app_ctx = _load(ctx)

    async def run():
        try:
            await app_ctx.delete_credential(kind)
        finally:
            await app_ctx.close()

    try:
        asyncio.run(run())
    except ProviderError as e:
        _fail(str(e))
    print(f"Deleted key for {kind}.")


@keys_app.command("list")
def keys_list(ctx: typer.Context):
    """Show which providers have a stored key."""
    app_ctx = _load(ctx)
    stored = app_ctx.key_store.list_with_credentials()
    for kind in app_ctx.key_store.kinds:
        print(f"{kind:<14} {'set' if kind in stored else 'not set'}")
    asyncio.run(app_ctx.close())


@keys_app.command("clear")
def keys_clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
):
    """Delete every stored API key."""
    if not yes:
        typer.confirm("Delete all stored API keys?", abort=True)
    app_ctx = _load(ctx)

    async def run():
        try:
            return await app_ctx.clear_credentials()
        finally:
            await app_ctx.close()

    try:
        cleared: Optional[list] = asyncio.run(run())
    except PartialFailure as e:
        for err in e.errors:
            typer.echo(f"[error] {err}", err=True)
        _fail(f"Cleared {len(e.succeeded)} key(s); {len(e.errors)} failed.")
    except ProviderError as e:
        _fail(str(e))
    print(f"Cleared {len(cleared or [])} key(s).")
