"""Prompt templates used by the fork pipeline."""

from __future__ import annotations

from jinja2 import Template

SEED_PROMPT = Template(
    "This conversation is forked from the attached {{ chatlog_filename }}. "
    "Simply say 'Acknowledged' and wait for user input."
)

SUMMARY_REQUEST = Template(
    "{{ summary_prompt }}\n\n"
    "{% if files_forwarded %}"
    "IMPORTANT: Don't include any information already present in the other attachments, "
    "as those will be forwarded to the new chat as well. Do not summarize the content of "
    "any attached files - only summarize the conversation itself."
    "{% else %}"
    "IMPORTANT: Since files will NOT be forwarded to the new conversation, please also "
    "include summaries of any file contents that are relevant to understanding the "
    "conversation."
    "{% endif %}"
)

SUMMARY_CHATLOG = Template(
    "{% for turn in turns %}"
    "{% if not loop.first %}\n\n{% endif %}"
    "[{{ 'User' if turn.sender == 'human' else 'Assistant' }}]\n{{ turn.text }}"
    "{% endfor %}"
)

SUMMARY_ACKNOWLEDGEMENT = (
    "Acknowledged. I understand the context from the summary and am ready to continue "
    "our conversation."
)


def seed_prompt(chatlog_filename: str = "chatlog.txt") -> str:
    return SEED_PROMPT.render(chatlog_filename=chatlog_filename)


def summary_request(summary_prompt: str, *, files_forwarded: bool) -> str:
    return SUMMARY_REQUEST.render(summary_prompt=summary_prompt, files_forwarded=files_forwarded)


def summary_chatlog(turns: list[dict[str, str]]) -> str:
    """Render ``[{"sender": ..., "text": ...}]`` as a role-tagged chatlog."""
    return SUMMARY_CHATLOG.render(turns=turns)
