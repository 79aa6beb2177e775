"""Prompt assembly for context-aware chat.

Prompt component order:
    1) System instructions describing the three context section kinds.
    2) Injected context: labeled segments joined by `CONTEXT_SEPARATOR`, or the
       no-context marker produced by the assembler.
    3) The user question as a separate `user` message.

Email drafting uses a separate single-turn prompt (`build_email_prompt`) whose
reply is expected as JSON and parsed leniently by `parse_email_draft`.

Prompt safety model:
    Context and user text are interpolated as raw strings. Trust boundaries
    and size limits are the caller's responsibility.
"""

import json
import logging
import re
from typing import List, Optional, Tuple


logger = logging.getLogger(__name__)


CONTEXT_SEPARATOR = "\n\n---\n\n"

SYSTEM_TEMPLATE = (
    "You are a helpful AI assistant. You have access to:\n\n"
    "1. RECENT CONVERSATION: Your immediate conversation history for context and continuity\n"
    "2. RELEVANT HISTORY: Semantically related past conversations for deeper context\n"
    "3. DOCUMENTS: Uploaded documents that may be relevant\n\n"
    "Context:\n"
    "{context}\n\n"
    "Instructions:\n"
    "- Maintain natural conversation flow using recent messages\n"
    "- Reference relevant history and documents when helpful\n"
    "- If referencing document content, mention the document name\n"
    "- If no relevant context exists, respond naturally to the current question"
)


def build_chat_prompt(segments: List[str], question: str) -> List[dict]:
    """Build OpenAI-style chat messages from context segments and a question.

    Args:
        segments: Output of `ContextAssembler.assemble(...).segments`.
        question: Current user input.

    Returns:
        `[{"role": "system", ...}, {"role": "user", ...}]`.
    """
    context = CONTEXT_SEPARATOR.join(segment for segment in segments if segment)

    return [
        {"role": "system", "content": SYSTEM_TEMPLATE.format(context=context)},
        {"role": "user", "content": question.strip()},
    ]


# ============================================================
# Email drafting
# ============================================================

DEFAULT_EMAIL_SUBJECT = "Email from AI Assistant"

EMAIL_INSTRUCTIONS = (
    "INSTRUCTIONS:\n"
    "1. Write a clear, concise, and {tone} email\n"
    "2. Create an appropriate subject line\n"
    "3. Structure the email with proper greeting, body, and closing\n"
    "4. Make it actionable and specific\n"
    "5. Keep it concise but complete\n"
    "6. Use the background information if relevant, but don't mention it explicitly\n\n"
    "Generate a JSON response with this EXACT format:\n"
    "{{\n"
    '  "subject": "Your subject line here",\n'
    '  "body": "Your email body here with proper formatting and line breaks"\n'
    "}}\n\n"
    "Make sure the JSON is valid and the body includes proper paragraph breaks "
    "using \\n\\n where appropriate."
)


def build_email_prompt(
    context: str,
    tone: str = "professional",
    recipient: Optional[str] = None,
    subject_hint: Optional[str] = None,
    background: str = "",
) -> List[dict]:
    """Build a single-turn prompt asking for a JSON `{subject, body}` draft.

    Sections, in order: the text to write about, tone, recipient, optional
    subject hint, optional background (relevant chat history), instructions.
    """
    parts = [
        f"You are an AI email assistant. Generate a {tone} email based on the following information:",
        f"CONTEXT TO WRITE ABOUT:\n{context.strip()}",
        f"TONE: {tone}\nRECIPIENT: {recipient or 'the recipient'}"
        + (f"\nSUBJECT HINT: {subject_hint}" if subject_hint else ""),
    ]

    if background:
        parts.append(f"RELEVANT BACKGROUND INFORMATION:\n{background}")

    parts.append(EMAIL_INSTRUCTIONS.format(tone=tone))

    return [{"role": "user", "content": "\n\n".join(parts)}]


def parse_email_draft(
    response: str,
    subject_hint: Optional[str] = None,
    context: str = "",
) -> Tuple[str, str]:
    """Parse the model's JSON draft into `(subject, body)`.

    Markdown code fences around the JSON are tolerated. When the reply is not
    valid JSON or lacks either field, the subject falls back to the hint (or a
    generic subject) and the body to the non-empty reply lines joined by blank
    lines (or the original context when the reply is empty).
    """
    text = (response or "").strip()
    fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)

    try:
        parsed = json.loads(text)
        subject = parsed["subject"]
        body = parsed["body"]
        if isinstance(subject, str) and isinstance(body, str) and subject.strip() and body.strip():
            return subject.strip(), body.strip()
        logger.warning("Email draft JSON is missing subject or body")
    except (ValueError, KeyError, TypeError):
        logger.warning("Email draft response was not valid JSON; using raw text")

    lines = [line.strip() for line in (response or "").splitlines() if line.strip()]
    return subject_hint or DEFAULT_EMAIL_SUBJECT, "\n\n".join(lines) or context
