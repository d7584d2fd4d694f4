"""External arbitration of disputed downvotes."""
from datetime import datetime

from focus_engine.content import parse_json
from focus_engine.models import AiVerdict
from focus_engine.schemas import validate_verdict

ARBITRATION_PROMPT = """You are an impartial academic judge resolving a peer review dispute.

Course: {course}
Topic: {topic}
Task: {title}

Theory questions that were asked:
{questions}

The student's handwritten solutions were submitted as: {submission}

Downvoter's complaint:
"{reason}"

Decide whether the complaint identifies a substantive error in the solutions.
Minor formatting issues and vague complaints favour the student.

Output ONLY a JSON object:
{{"decision": "downvoter_correct" or "reviewee_correct", "reasoning": "2-3 sentences", "confidence": 0.0 to 1.0}}"""


class ContentArbiter:
    """Asks the content service for a verdict on a disputed downvote."""

    def __init__(self, client):
        self.client = client

    def arbitrate(self, *, theory_questions: list[str], submission_ref: str, reason: str,
                  title: str, topic: str, course: str) -> AiVerdict:
        questions = "\n".join(f"Q{i}: {q}" for i, q in enumerate(theory_questions, start=1))
        prompt = ARBITRATION_PROMPT.format(
            course=course, topic=topic, title=title, questions=questions or "(none recorded)",
            submission=submission_ref or "(no reference)", reason=reason,
        )
        verdict = validate_verdict(parse_json(self.client.generate(prompt)))
        return AiVerdict(
            decision=verdict.decision,
            confidence=verdict.confidence,
            reasoning=verdict.reasoning,
            reviewed_at=datetime.now(),
        )
