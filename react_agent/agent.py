import argparse
import functools
import os
import sys
import time
from importlib import metadata
from pathlib import Path

import tiktoken

from . import fmt
from .callparse import parse_action
from .config import (
    _UNSET,
    apply_config_to_args,
    load_config,
    load_env,
    require_api_key,
)
from .errors import AgentError, ApiError, ParseError, RetryLimitError, ToolError
from .tags import (
    has_complete_action,
    interpret,
    missing_action_details,
)
from .tools import CANCELLED_BY_OPERATOR, SHELL_TOOL_NAME, ToolRegistry

MAX_RETRIES = 5
SETTLE_DELAY = 0.1  # seconds to wait after </action> shows up in a stream

STATE_DIR = ".react-agent"


@functools.lru_cache(maxsize=1)
def _encoder():
    return tiktoken.get_encoding("cl100k_base")


def question_envelope(text: str) -> str:
    return f"<question>{text}</question>"


def observation_envelope(text: str) -> str:
    return f"<observation>{text}</observation>"


def retry_prompt(retry_count: int) -> str:
    return (
        "Please output the complete action tag again, in the form "
        f"<action>tool_name(arguments)</action>. This is retry {retry_count}."
    )


def estimate_tokens(messages: list) -> int:
    """Count tokens across all messages using tiktoken."""
    total = 0
    for m in messages:
        total += len(_encoder().encode(m.get("content", "") or ""))
    # Per-message overhead (role, separators), about 4 tokens each
    total += 4 * len(messages)
    return total


# ---------------------------------------------------------------------------
# Model transport
# ---------------------------------------------------------------------------


def _completion_kwargs(
    messages, model, api_key, base_url, temperature, max_output_tokens
) -> dict:
    if base_url:
        model_str = f"openai/{model}"
        kwargs = {"api_base": base_url, "api_key": api_key}
    else:
        # Don't double the prefix if the user already wrote "openrouter/...".
        bare_id = model.removeprefix("openrouter/")
        model_str = f"openrouter/{bare_id}"
        kwargs = {"api_key": api_key}

    completion_kwargs = dict(model=model_str, messages=messages, **kwargs)
    if temperature is not None:
        completion_kwargs["temperature"] = temperature
    if max_output_tokens is not None:
        completion_kwargs["max_tokens"] = max_output_tokens
    return completion_kwargs


def call_llm(
    messages,
    *,
    model,
    api_key,
    base_url=None,
    temperature=None,
    max_output_tokens=None,
    verbose=False,
):
    """Call LiteLLM and return the full response text."""
    import litellm

    litellm.suppress_debug_info = True

    completion_kwargs = _completion_kwargs(
        messages, model, api_key, base_url, temperature, max_output_tokens
    )
    if verbose:
        fmt.model_request(completion_kwargs["model"], estimate_tokens(messages))

    t0 = time.monotonic()
    try:
        if verbose:
            with fmt.llm_spinner():
                response = litellm.completion(**completion_kwargs)
        else:
            response = litellm.completion(**completion_kwargs)
    except Exception as e:
        raise ApiError(f"LLM call failed: {e}") from e

    if verbose:
        fmt.llm_timing(time.monotonic() - t0)
    return response.choices[0].message.content or ""


def call_llm_stream(
    messages,
    *,
    model,
    api_key,
    base_url=None,
    temperature=None,
    max_output_tokens=None,
    verbose=False,
):
    """Stream a completion and return the accumulated text.

    Reading stops early once a complete action has arrived, after a short
    settling delay, so text the model invents after ``</action>`` (such as
    a made-up observation) is not waited for.
    """
    import litellm

    litellm.suppress_debug_info = True

    completion_kwargs = _completion_kwargs(
        messages, model, api_key, base_url, temperature, max_output_tokens
    )
    if verbose:
        fmt.model_request(completion_kwargs["model"], estimate_tokens(messages))

    t0 = time.monotonic()
    try:
        stream = litellm.completion(stream=True, **completion_kwargs)
    except Exception as e:
        raise ApiError(f"LLM call failed: {e}") from e

    content = ""
    try:
        for chunk in stream:
            if not chunk.choices:
                continue
            text = chunk.choices[0].delta.content
            if not text:
                continue
            if verbose:
                fmt.stream_text(text)
            content += text

            if has_complete_action(content):
                time.sleep(SETTLE_DELAY)
                break
    except Exception as e:
        if verbose:
            fmt.stream_end()
        fmt.warning(f"stream interrupted: {e}")
    else:
        if verbose:
            fmt.stream_end()
    finally:
        close = getattr(stream, "close", None)
        if close is not None:
            close()

    if verbose:
        fmt.llm_timing(time.monotonic() - t0)
        if interpret(content).kind not in ("action", "final_answer"):
            fmt.warning("response holds neither a complete action nor a final answer")
    return content


# ---------------------------------------------------------------------------
# Conversation loop
# ---------------------------------------------------------------------------


def _persist(messages: list, history: list) -> None:
    """Copy every non-system message of the running task into history."""
    history[:] = [m for m in messages if m["role"] != "system"]


def run_agent_loop(
    messages: list,
    history: list,
    *,
    registry: ToolRegistry,
    call_model,
    confirm,
    verbose: bool = False,
    max_retries: int = MAX_RETRIES,
) -> str:
    """Drive one task until the model gives a final answer.

    messages must start with the system prompt and end with the question;
    it is extended in place. After each completed exchange the non-system
    messages are copied into history.

    Returns the final answer, or CANCELLED_BY_OPERATOR when the operator
    declines a shell command.

    Raises:
        RetryLimitError: After max_retries unusable replies.
        ToolError: When a tool fails.
        ApiError: When the model call fails.
    """
    retry_count = 0

    while True:
        if retry_count >= max_retries:
            raise RetryLimitError(
                f"the model failed to produce a usable reply {max_retries} times "
                "for this task; rephrase the task or check the connection"
            )

        content = call_model(messages)
        directive = interpret(content)

        if directive.thought and verbose:
            fmt.thought(directive.thought)

        if directive.kind == "final_answer":
            if verbose:
                fmt.final_answer(directive.text)
            messages.append({"role": "assistant", "content": content})
            _persist(messages, history)
            return directive.text

        try:
            if directive.kind != "action":
                raise ParseError("the reply has no complete <action> tag", content)
            tool_name, args = parse_action(directive.text)
        except ParseError as e:
            retry_count += 1
            if verbose:
                fmt.content_analysis(missing_action_details(content))
            fmt.retry(retry_count, max_retries, str(e))
            messages.append({"role": "user", "content": retry_prompt(retry_count)})
            continue

        if verbose:
            fmt.action(tool_name, args)

        if tool_name == SHELL_TOOL_NAME:
            command = " ".join(args)
            if not confirm(f"Run shell command {command!r}?"):
                if verbose:
                    fmt.cancelled(CANCELLED_BY_OPERATOR)
                return CANCELLED_BY_OPERATOR

        if tool_name not in registry and verbose:
            fmt.tool_missing(tool_name)
        t0 = time.monotonic()
        try:
            observation = registry.invoke(tool_name, args)
        except ToolError as e:
            if verbose:
                fmt.tool_error(tool_name, str(e))
            raise
        if verbose:
            fmt.observation(tool_name, time.monotonic() - t0, observation)

        messages.append({"role": "assistant", "content": content})
        messages.append({"role": "user", "content": observation_envelope(observation)})
        _persist(messages, history)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="react-agent",
        description="A command-line ReAct agent that works on files inside a project directory.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=_package_version(),
    )
    parser.add_argument(
        "project_directory",
        metavar="PROJECT_DIRECTORY",
        help="Directory the agent's file tools are confined to.",
    )
    parser.add_argument(
        "--task",
        default=None,
        help="Run a single task and exit instead of starting the interactive loop.",
    )
    parser.add_argument(
        "--model",
        default=_UNSET,
        help="Model identifier (default: $OPENAI_MODEL_NAME or moonshotai/kimi-k2).",
    )
    parser.add_argument(
        "--api-key",
        default=_UNSET,
        help="API key for the provider (overrides $OPENROUTER_API_KEY).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="OpenAI-compatible endpoint (default: $OPENAI_API_BASE, else OpenRouter).",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: provider default).",
    )
    parser.add_argument(
        "--max-output-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens per reply (default: provider default).",
    )
    parser.add_argument(
        "--no-stream",
        dest="stream",
        action="store_false",
        default=_UNSET,
        help="Wait for complete replies instead of streaming them.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress diagnostics; only print final answers.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )
    return parser


def _package_version() -> str:
    try:
        return metadata.version("react-agent")
    except metadata.PackageNotFoundError:
        return "unknown"


def resolve_project_dir(path: str) -> Path:
    """Canonicalize the project directory, or raise AgentError."""
    p = Path(path).expanduser()
    if not p.exists():
        raise AgentError(f"project directory {path!r} does not exist")
    if not p.is_dir():
        raise AgentError(f"{path!r} is not a directory")
    return p.resolve()


def main():
    parser = build_parser()
    args = parser.parse_args()

    try:
        project_dir = resolve_project_dir(args.project_directory)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)

    try:
        config = {**load_env(), **load_config(project_dir)}
        apply_config_to_args(args, config)
        args.verbose = not args.quiet
        fmt.init(color=args.color, no_color=args.no_color)
        api_key = require_api_key(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)

    try:
        sys.exit(_run_main(args, project_dir, api_key))
    except KeyboardInterrupt:
        print(file=sys.stderr)
        sys.exit(130)


def _run_main(args, project_dir: Path, api_key: str) -> int:
    from .session import Session
    from .tools import console_confirm, create_default_tools

    transport = call_llm_stream if args.stream else call_llm
    call_model = functools.partial(
        transport,
        model=args.model,
        api_key=api_key,
        base_url=args.base_url,
        temperature=args.temperature,
        max_output_tokens=args.max_output_tokens,
        verbose=args.verbose,
    )
    session = Session(
        str(project_dir),
        call_model=call_model,
        registry=create_default_tools(str(project_dir), console_confirm),
        confirm=console_confirm,
        verbose=args.verbose,
    )

    if args.task is not None:
        try:
            answer = session.run(args.task)
        except AgentError as e:
            fmt.error(str(e))
            return 1
        print(answer)
        return 0

    repl_loop(session, verbose=args.verbose)
    return 0


# ---------------------------------------------------------------------------
# Interactive task loop
# ---------------------------------------------------------------------------

_EXIT_WORDS = {"quit", "exit", "/quit", "/exit"}


def _repl_help() -> None:
    fmt.info(
        "Available commands:\n"
        "  /help              Show this help message\n"
        "  /clear             Forget the conversation so far\n"
        "  /history           Show how many messages the conversation holds\n"
        "  quit, exit         Leave the program"
    )


def run_repl_task(session, task: str) -> str | None:
    """Run one task, reporting failures instead of raising them."""
    try:
        answer = session.run(task)
    except AgentError as e:
        fmt.error(f"task failed: {e}")
        fmt.info("Enter a new task or quit to exit.")
        fmt.separator()
        return None
    print(answer)
    fmt.separator()
    return answer


def repl_loop(session, *, verbose: bool = True) -> None:
    """Read tasks from the operator until they quit."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory

    history_path = os.path.join(session.project_dir, STATE_DIR, "task_history")
    os.makedirs(os.path.dirname(history_path), exist_ok=True)
    prompt_session = PromptSession(
        history=FileHistory(history_path),
        enable_history_search=True,
    )
    prompt_text = FormattedText([("bold fg:ansigreen", "task> ")])

    if verbose:
        fmt.repl_banner(session.project_dir)

    while True:
        try:
            print(file=sys.stderr)  # blank line before prompt
            line = prompt_session.prompt(prompt_text)
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)
            break

        line = line.strip()
        if not line:
            fmt.warning("task cannot be empty, please enter a task")
            continue
        if line.lower() in _EXIT_WORDS:
            break

        cmd = line.split(None, 1)[0].lower()
        if cmd == "/help":
            _repl_help()
            continue
        elif cmd == "/clear":
            dropped = session.conversation_length
            session.clear_history()
            fmt.info(f"conversation cleared ({dropped} messages removed)")
            continue
        elif cmd == "/history":
            fmt.info(f"conversation holds {session.conversation_length} messages")
            continue

        run_repl_task(session, line)

    fmt.info("Goodbye!")


if __name__ == "__main__":
    main()
