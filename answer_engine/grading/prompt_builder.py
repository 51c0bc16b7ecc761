"""
Prompt builder for AI scoring of open-ended answers.

The provider is asked for a single JSON object holding a score within
the question's points, a self-reported confidence and short feedback.
"""

from answer_engine.models import Question


class PromptBuilder:
    """
    Builds scoring prompts for open-ended answers.

    The prompts are designed to:
    1. Bound the score by the question's points
    2. Make the provider report how sure it is
    3. Produce a single JSON object
    """

    SYSTEM_PROMPT = """You are an examiner scoring a student's answer to one question of a language exam.

RULES:
1. Score ONLY against the question and, when given, the reference answer.
2. The score MUST be a number between 0 and the question's maximum points.
3. Report your confidence between 0.0 and 1.0. Use a low confidence when the answer is off-topic, unreadable, or the task is ambiguous.
4. Keep feedback short and addressed to the student.

OUTPUT RULES:
- Your output MUST be valid JSON matching the exact format specified.
- Do not add any text before or after the JSON."""

    @staticmethod
    def build_scoring_prompt(question: Question, submitted_text: str) -> str:
        """
        Build the user prompt for scoring.

        Args:
            question: The question being answered.
            submitted_text: The student's answer text.

        Returns:
            The formatted user prompt.
        """
        question_text = PromptBuilder._format_question(question)

        prompt = f"""SCORING TASK

{question_text}

STUDENT ANSWER:
---BEGIN ANSWER---
{submitted_text}
---END ANSWER---

OUTPUT FORMAT (respond with ONLY this JSON, no other text):
{{
  "score": <number between 0 and {question.points}>,
  "confidence": <number between 0.0 and 1.0>,
  "feedback": "<short feedback for the student>"
}}"""

        return prompt

    @staticmethod
    def _format_question(question: Question) -> str:
        """Format the question for the prompt."""
        lines: list[str] = [
            f"QUESTION TYPE: {question.type.value}",
            f"MAXIMUM POINTS: {question.points}",
        ]
        if question.skill:
            lines.append(f"SKILL: {question.skill}")
        if question.level:
            lines.append(f"LEVEL: {question.level}")
        lines.append("")
        lines.append("QUESTION:")
        lines.append(question.text or "(no question text)")
        if question.correct_answer:
            lines.append("")
            lines.append("REFERENCE ANSWER:")
            lines.append(question.correct_answer)
        return "\n".join(lines)

    @staticmethod
    def get_system_prompt() -> str:
        """Get the system prompt for scoring."""
        return PromptBuilder.SYSTEM_PROMPT
