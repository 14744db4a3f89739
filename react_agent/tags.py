"""Recognition of the tagged segments a model embeds in its replies.

A reply may carry a ``<thought>``, an ``<action>`` and/or a
``<final_answer>`` segment anywhere inside free-form prose. Only the first
complete pair of each tag is considered: content runs from the first
opening tag to the first closing tag after it, and is stripped.
"""

from dataclasses import dataclass

THOUGHT = "thought"
ACTION = "action"
FINAL_ANSWER = "final_answer"

PREVIEW_CHARS = 100


def open_tag(tag: str) -> str:
    return f"<{tag}>"


def close_tag(tag: str) -> str:
    return f"</{tag}>"


def extract_tag(text: str, tag: str) -> str | None:
    """Return the stripped content of the first complete ``tag`` pair, or None."""
    opening = open_tag(tag)
    start = text.find(opening)
    if start == -1:
        return None
    content_start = start + len(opening)
    end = text.find(close_tag(tag), content_start)
    if end == -1:
        return None
    return text[content_start:end].strip()


def extract_thought(text: str) -> str | None:
    return extract_tag(text, THOUGHT)


def extract_action(text: str) -> str | None:
    return extract_tag(text, ACTION)


def extract_final_answer(text: str) -> str | None:
    return extract_tag(text, FINAL_ANSWER)


def has_complete_action(text: str) -> bool:
    """True when the first ``</action>`` comes after the first ``<action>``."""
    start = text.find(open_tag(ACTION))
    end = text.find(close_tag(ACTION))
    if start == -1 or end == -1:
        return False
    return end > start


def has_open_action(text: str) -> bool:
    """True when an ``<action>`` has started but is not closed yet.

    Such a reply was most likely cut off mid-action.
    """
    return open_tag(ACTION) in text and not has_complete_action(text)


@dataclass(frozen=True)
class Directive:
    """What a single model reply asks for.

    kind is one of "final_answer", "action", "reasoning" or "none".
    text holds the final answer, the raw call expression or the thought.
    thought is the reasoning segment, when present, whatever the kind.
    """

    kind: str
    text: str = ""
    thought: str | None = None


def interpret(text: str) -> Directive:
    """Classify a reply. A final answer always wins over an action."""
    thought = extract_thought(text)
    answer = extract_final_answer(text)
    if answer is not None:
        return Directive("final_answer", answer, thought)
    action = extract_action(text)
    if action is not None:
        return Directive("action", action, thought)
    if thought is not None:
        return Directive("reasoning", thought, thought)
    return Directive("none")


def missing_action_details(text: str) -> list[str]:
    """Describe why no action could be extracted, for operator diagnostics."""
    details = [
        f"content length: {len(text)} characters",
        f"contains {open_tag(FINAL_ANSWER)}: {open_tag(FINAL_ANSWER) in text}",
        f"contains {close_tag(FINAL_ANSWER)}: {close_tag(FINAL_ANSWER) in text}",
        f"contains {open_tag(ACTION)}: {open_tag(ACTION) in text}",
        f"contains {close_tag(ACTION)}: {close_tag(ACTION) in text}",
    ]
    start = text.find(open_tag(ACTION))
    if has_open_action(text):
        details.append(
            f"content from {open_tag(ACTION)}: {text[start : start + PREVIEW_CHARS]!r}"
        )
    return details
