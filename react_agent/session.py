"""Public library API for react-agent: the Session class."""

from . import fmt
from .agent import MAX_RETRIES, question_envelope, run_agent_loop
from .prompt import operating_system_name, project_entries, render_system_prompt
from .tools import ToolRegistry, console_confirm, create_default_tools


class Session:
    """A conversation with the agent about one project directory.

    The session owns the conversation history: every task sees the earlier
    tasks' exchanges, and only a completed exchange is ever added to it.
    The system prompt is not part of the history; it is rendered again
    before each task from the current tools and directory contents.
    """

    def __init__(
        self,
        project_dir: str,
        *,
        call_model,
        registry: ToolRegistry | None = None,
        confirm=console_confirm,
        verbose: bool = False,
        max_retries: int = MAX_RETRIES,
    ):
        self.project_dir = project_dir
        self.call_model = call_model
        self.confirm = confirm
        self.registry = (
            registry
            if registry is not None
            else create_default_tools(project_dir, confirm)
        )
        self.verbose = verbose
        self.max_retries = max_retries
        self._history: list[dict] = []

    @property
    def history(self) -> list[dict]:
        """A copy of the conversation so far, without the system prompt."""
        return [dict(m) for m in self._history]

    @property
    def conversation_length(self) -> int:
        return len(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def system_prompt(self) -> str:
        return render_system_prompt(
            self.registry.tool_list(),
            operating_system_name(),
            project_entries(self.project_dir),
        )

    def run(self, task: str) -> str:
        """Run one task and return its final answer.

        Raises AgentError subclasses when the task fails; the history then
        keeps whatever exchanges completed before the failure.
        """
        if self.verbose:
            fmt.task_header(task)

        messages = [{"role": "system", "content": self.system_prompt()}]
        messages.extend(dict(m) for m in self._history)
        messages.append({"role": "user", "content": question_envelope(task)})

        return run_agent_loop(
            messages,
            self._history,
            registry=self.registry,
            call_model=self.call_model,
            confirm=self.confirm,
            verbose=self.verbose,
            max_retries=self.max_retries,
        )
