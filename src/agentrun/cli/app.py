"""Main CLI application using Typer."""

import typer
import yaml
from rich.console import Console

from agentrun import __version__

# Create Typer app
app = typer.Typer(
    name="agentrun",
    help="agentrun - run tool-calling LLM agents from the command line",
    no_args_is_help=True,
)

console = Console()


@app.command()
def version():
    """Show agentrun version."""
    console.print(f"agentrun version {__version__}")


@app.command()
def run(
    message: str = typer.Argument(..., help="Message to send to the agent"),
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file (default: ~/.agentrun/agentrun.yaml)",
    ),
    stream: bool | None = typer.Option(None, "--stream/--no-stream", help="Override agent.stream"),
    trace: bool | None = typer.Option(None, "--trace/--no-trace", help="Override trace.enabled"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run one agent turn with the built-in tools."""
    from agentrun.cli.run import run_command

    code = run_command(
        message,
        config_path=config_path,
        stream=stream,
        trace=trace,
        verbose=verbose,
    )
    if code:
        raise typer.Exit(code)


@app.command("config")
def show_config(
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file (default: ~/.agentrun/agentrun.yaml)",
    ),
):
    """Print the effective configuration as YAML."""
    from agentrun.config.loader import ConfigError, load_config

    try:
        config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    data = config.model_dump()
    if data["llm"].get("api_key"):
        data["llm"]["api_key"] = "***"
    typer.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), nl=False)


if __name__ == "__main__":
    app()
