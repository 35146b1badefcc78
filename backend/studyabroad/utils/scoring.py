"""Test-attempt scoring.

Answers are compared after trimming and case-folding. Every question
adds its points to its section total and the overall total; earned
points only when the answer matches.
"""

from typing import Any, Iterable, Optional, Tuple


def normalize_answer(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple, set)):
        return ",".join(sorted(normalize_answer(v) for v in value))
    return str(value).strip().casefold()


def percentage(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


def score_attempt(sections: Iterable[Tuple[Any, Iterable[Any]]], answers: dict,
                  passing_score: Optional[float]) -> dict:
    """Score `answers` (question id -> answer) against `(section, questions)` pairs.

    Returns overall and per-section totals plus a per-question review
    including the correct answer and explanation.
    """
    answers = {str(k): v for k, v in (answers or {}).items()}
    section_scores = []
    question_results = []
    earned = total = correct = count = 0
    for section, questions in sections:
        s_earned = s_total = s_correct = s_count = 0
        for q in questions:
            given = answers.get(str(q.id))
            is_correct = (
                q.correct_answer is not None
                and given is not None
                and normalize_answer(given) == normalize_answer(q.correct_answer)
            )
            points = q.points or 0
            s_total += points
            s_count += 1
            if is_correct:
                s_earned += points
                s_correct += 1
            question_results.append({
                "question_id": q.id,
                "section_id": section.id,
                "user_answer": given,
                "correct_answer": q.correct_answer,
                "is_correct": is_correct,
                "points": points,
                "points_earned": points if is_correct else 0,
                "explanation": q.explanation,
            })
        section_scores.append({
            "section_id": section.id,
            "section_name": section.section_name,
            "earned_points": s_earned,
            "total_points": s_total,
            "correct_answers": s_correct,
            "total_questions": s_count,
            "score": percentage(s_earned, s_total),
        })
        earned += s_earned
        total += s_total
        correct += s_correct
        count += s_count
    score = percentage(earned, total)
    passed = score >= passing_score if passing_score is not None else True
    return {
        "score": score,
        "passed": passed,
        "earned_points": earned,
        "total_points": total,
        "correct_answers": correct,
        "total_questions": count,
        "section_scores": section_scores,
        "question_results": question_results,
    }
