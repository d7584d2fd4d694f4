"""Quiz question generation: 6 timed MCQs, then 7 written theory questions."""
from focus_engine.content import parse_json
from focus_engine.models import McqQuestion
from focus_engine.schemas import MCQ_COUNT, OPTION_COUNT, THEORY_COUNT, validate_mcqs, validate_theory_questions

MCQ_PROMPT = """Generate {count} unique conceptual multiple-choice questions for a rapid-fire quiz (15s per question).
Course: {course} | Topic: {topic} | Task: {title}

Rules:
- {count} questions, {options} options each (index 0-{last}), mixed difficulty
- Test conceptual understanding, not recall
- correctAnswer is the index of the correct option; vary its position

Output ONLY a JSON array:
[{{"question": "", "options": ["A", "B", "C", "D"], "correctAnswer": 0}}]"""

THEORY_PROMPT = """Generate {count} theory questions that require handwritten solutions (derivations, numericals, proofs, diagrams).
Course: {course} | Topic: {topic} | Task: {title}

Rules:
- {count} questions: 2 easy, 3 medium, 2 hard
- Self-contained, 5-15 minutes each

Output ONLY a JSON array of strings."""


def generate_mcqs(client, title: str, topic: str, course: str) -> list[McqQuestion]:
    prompt = MCQ_PROMPT.format(
        count=MCQ_COUNT, options=OPTION_COUNT, last=OPTION_COUNT - 1,
        course=course, topic=topic, title=title,
    )
    mcqs = validate_mcqs(parse_json(client.generate(prompt)))
    return [
        McqQuestion(question=m.question, options=list(m.options), correct_answer=m.correct_answer)
        for m in mcqs
    ]


def generate_theory_questions(client, title: str, topic: str, course: str) -> list[str]:
    prompt = THEORY_PROMPT.format(count=THEORY_COUNT, course=course, topic=topic, title=title)
    return validate_theory_questions(parse_json(client.generate(prompt)))
