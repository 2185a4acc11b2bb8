# app/services/feedback/prompt.py

from __future__ import annotations

from typing import Iterable

SYSTEM_PROMPT = "You are a kind English teacher."

_TEMPLATE = """You are an English speaking coach for B1-B2 students.
Below are {count} example sentences from the lesson.
The student just gave a 90-second response based on these examples.

Examples:
{examples}

Student's 90s response:
{transcript}

Please:
- Give feedback in **simple English (A2-B1 level)**.
- Focus on 3 short parts:

💬 Fluency — comment + 1 suggestion
🧠 Vocabulary — comment + 1 simple reword
🛠 Grammar — comment + 1 correction (use 👉 and ✅)
"""


def build_feedback_prompt(examples: Iterable[str], transcript: str) -> str:
    items = [s.strip() for s in examples if isinstance(s, str) and s.strip()]
    numbered = "\n".join(f"{i}. {s}" for i, s in enumerate(items, start=1))
    return _TEMPLATE.format(
        count=len(items),
        examples=numbered or "(none)",
        transcript=(transcript or "").strip() or "(no speech detected)",
    )
