from __future__ import annotations

from typing import Any

NOTE_SECTIONS: tuple[str, ...] = (
    "CHIEF COMPLAINT",
    "HISTORY OF PRESENT ILLNESS",
    "REVIEW OF SYSTEMS",
    "PHYSICAL EXAMINATION",
    "ASSESSMENT AND PLAN",
)

SYSTEM_PROMPT = (
    "You are a medical scribe assistant. Your task is to convert a doctor-patient "
    "conversation into a structured clinical note.\n\n"
    "The clinical note should include the following sections:\n\n"
    "**CHIEF COMPLAINT**\n"
    "The main reason for the visit in 1-2 sentences.\n\n"
    "**HISTORY OF PRESENT ILLNESS**\n"
    "Detailed description of the current problem including onset, duration, severity, "
    "and associated symptoms.\n\n"
    "**REVIEW OF SYSTEMS**\n"
    "Relevant symptoms mentioned, organized by body system.\n\n"
    "**PHYSICAL EXAMINATION**\n"
    "Any examination findings discussed during the conversation.\n\n"
    "**ASSESSMENT AND PLAN**\n"
    "Diagnosis or differential diagnoses, and the treatment plan discussed.\n\n"
    "Generate a professional, concise clinical note based on the conversation. "
    "Use medical terminology appropriately."
)


def build_user_message(conversation: str) -> str:
    # The conversation is embedded verbatim; no trimming or escaping.
    return (
        "Doctor-Patient Conversation:\n\n"
        f"{conversation}\n\n"
        "Generate the clinical note:"
    )


def build_messages(conversation: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_message(conversation)},
    ]


def build_chat_payload(
    conversation: str,
    *,
    model: str,
    temperature: float = 0.3,
    max_tokens: int = 1024,
) -> dict[str, Any]:
    return {
        "model": model,
        "messages": build_messages(conversation),
        "stream": True,
        "options": {
            "temperature": float(temperature),
            "num_predict": int(max_tokens),
        },
    }
