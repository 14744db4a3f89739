"""ANSI-formatted stderr output using Rich."""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)

PREVIEW_CHARS = 500


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Task structure ----------------------------------------------------------


def task_header(task: str) -> None:
    _console.print(Rule(f"Task: {escape(task[:80])}", style="cyan"))


def model_request(model: str, token_est: int) -> None:
    text = Text()
    text.append(f"  Requesting {model}", style="cyan")
    text.append(f" (~{token_est} tokens)", style="dim")
    _console.print(text)


def llm_timing(elapsed: float) -> None:
    _console.print(Text(f"  LLM responded in {elapsed:.1f}s", style="green"))


def llm_spinner(label: str = "Waiting for LLM"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {label}", spinner="dots")


def stream_text(fragment: str) -> None:
    """Echo a streamed response fragment without a trailing newline."""
    _console.print(Text(fragment, style="blue"), end="", soft_wrap=True)


def stream_end() -> None:
    _console.print()


def separator() -> None:
    _console.print(Rule(style="dim"))


# -- Directives --------------------------------------------------------------


def thought(text: str) -> None:
    line = Text()
    line.append("  [thought] ", style="yellow")
    line.append(text, style="dim italic")
    _console.print(line)


def action(name: str, args: list[str]) -> None:
    header = Text()
    header.append("  ▶ ", style="bold magenta")
    header.append(name, style="bold magenta")
    _console.print(header)
    for arg in args:
        preview = arg if len(arg) <= PREVIEW_CHARS else arg[:PREVIEW_CHARS] + "..."
        for line in preview.splitlines() or [""]:
            _console.print(Text(f"    {line}", style="dim"))


def observation(name: str, elapsed: float, text: str) -> None:
    header = Text()
    header.append(f"  ✓ {name}", style="green")
    header.append(f"  {elapsed:.1f}s", style="green")
    _console.print(header)
    if text:
        _console.print(Text(f"    {text[:PREVIEW_CHARS]}", style="dim"))


def tool_missing(name: str) -> None:
    line = Text()
    line.append(f"  ✗ {name}", style="bold red")
    line.append("  no such tool, reported back to the model", style="red")
    _console.print(line)


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


def final_answer(text: str) -> None:
    _console.print(Text("  ✓ Final answer received", style="bold green"))
    if text:
        _console.print(Text(f"    {text[:PREVIEW_CHARS]}", style="green"))


def cancelled(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="bold yellow"))


# -- Retries -----------------------------------------------------------------


def retry(count: int, max_count: int, reason: str) -> None:
    line = Text()
    line.append(f"  ⚠ Retry {count}/{max_count}: ", style="bold yellow")
    line.append(reason, style="yellow")
    _console.print(line)


def content_analysis(details: list[str]) -> None:
    _console.print(Text("  Response analysis:", style="dim"))
    for detail in details:
        _console.print(Text(f"    - {detail}", style="dim"))


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def confirm_prompt(question: str) -> None:
    _console.print(Text(f"{question} (y/N): ", style="bold yellow"), end="")


def repl_banner(project_dir: str) -> None:
    _console.print(Text(f"Project directory: {project_dir}", style="dim"))
    _console.print(
        Text(
            "Interactive mode. Type a task, /help for commands, quit or Ctrl-D to exit.",
            style="dim",
        )
    )
