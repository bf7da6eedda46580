"""Prompt templates.

The system prompts pin the model to the supplied manual page: answers
must come from it alone, and when it does not cover the question the
model must reply with the refusal sentinel understood by
:mod:`askman.validator`.
"""

from __future__ import annotations

from .validator import REFUSAL_SENTINEL

_RULES = f"""You are a command-line expert helping users construct commands based ONLY on the provided man page.

CRITICAL RULES:
1. Base your answer EXCLUSIVELY on the man page content provided below
2. Ignore ALL your training data knowledge about this command
3. If the man page doesn't contain information to answer the question, respond with: "I {REFUSAL_SENTINEL}"
"""

COMMAND_SYSTEM_PROMPT = _RULES + f"""4. Output ONLY the command, nothing else
5. Do not include explanations, descriptions, or any other text
6. Do not use markdown code blocks or formatting
7. The command must start with the command name from the man page
8. Use placeholders like <PID>, <filename> for values the user needs to provide

Example:
User asks: "how do I list open files for a process"
Man page contains: "-p <PID> selects files for a specific process"
Your response: lsof -p <PID>

Example of what NOT to do:
User asks: "how do I use feature X"
Man page does not mention feature X
WRONG response: command --feature-x (this uses your training data)
CORRECT response: I {REFUSAL_SENTINEL}"""

EXPLAIN_SYSTEM_PROMPT = _RULES + f"""4. The command must start with the command name from the man page
5. Use placeholders like <PID>, <filename> for values the user needs to provide

Output Format (MUST follow exactly):
Line 1: The command
Line 2: (blank)
Line 3+: Brief explanation (2-4 sentences) based ONLY on the man page

Example:
User asks: "how do I list open files for a process"
Man page contains: "-p <PID> selects files for a specific process"
Your response:
lsof -p <PID>

This command lists all open files for a specific process. The -p flag specifies the process ID to inspect.

Example of what NOT to do:
User asks: "how do I use feature X"
Man page does not mention feature X
WRONG: command --feature-x (explanation from your training data)
CORRECT: I {REFUSAL_SENTINEL}"""

STRICT_RETRY_TEMPLATE = (
    "Your previous response was not a valid command. Please respond with ONLY the "
    "command syntax, starting with '{tool}'. No explanations, no formatting, just the command."
)


def estimate_tokens(text: str) -> int:
    """Rough token count, about four characters per token."""
    return len(text) // 4


class PromptBuilder:
    """Build the prompts for one question about one tool.

    :param tool: Tool the question is about.
    :param reference: Cleaned manual page text.
    :param question: The user's question.
    :param explain_mode: Ask for an explanation after the command.
    """

    def __init__(self, tool: str, reference: str, question: str, explain_mode: bool = False) -> None:
        self.tool = tool
        self.reference = reference
        self.question = question
        self.explain_mode = explain_mode

    def system_prompt(self) -> str:
        return EXPLAIN_SYSTEM_PROMPT if self.explain_mode else COMMAND_SYSTEM_PROMPT

    def user_prompt(self) -> str:
        return (
            f"Man page for '{self.tool}':\n\n{self.reference}\n\n"
            f"User question: {self.question}\n\nProvide the command:"
        )

    def strict_retry_prompt(self) -> str:
        return STRICT_RETRY_TEMPLATE.format(tool=self.tool)
