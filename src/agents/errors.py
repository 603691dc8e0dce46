# Understood/src/agents/errors.py
# @ai-rules:
# 1. [Pattern]: friendly_error() is the ONLY text a user ever sees for an unexpected failure.
# 2. [Pattern]: is_transient() matches on the exception string, same as the SDK error messages (429/529/overloaded).
"""Error taxonomy and user-facing error wording."""
from __future__ import annotations

OVERLOAD_MESSAGE = "The AI is temporarily overloaded. Please try uploading again in a minute or two."
GENERIC_MESSAGE = "Something went wrong generating your copy. Please try again."


class IntakeError(Exception):
    """Media intake failed in a way the user should hear about."""

    def __init__(self, user_message: str):
        super().__init__(user_message)
        self.user_message = user_message


def is_transient(e: BaseException) -> bool:
    """Check if an exception is an LLM overload or rate-limit error."""
    err_str = str(e)
    return any(code in err_str for code in ["overloaded", "Overloaded", "529", "rate_limit", "429"])


def friendly_error(e: BaseException) -> str:
    """Map any exception to the single friendly message posted to the thread."""
    if isinstance(e, IntakeError):
        return e.user_message
    if is_transient(e):
        return OVERLOAD_MESSAGE
    return GENERIC_MESSAGE
