"""
Answer Engine CLI Application.

Provides a command-line interface for evaluating submissions and for
working the manual review queue of an answer store.
"""

import logging
from decimal import Decimal
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from answer_engine.config import Settings, get_settings
from answer_engine.grading import AIProviderError, UnsupportedQuestionType, levenshtein, similarity
from answer_engine.grading.matcher import normalize
from answer_engine.models import GradeOutcome, Question, QuestionType, ReviewFilter
from answer_engine.review import ScoreOutOfRange
from answer_engine.service import AnswerEngine
from answer_engine.storage import (
    AnswerNotFound,
    AttemptNotFound,
    QuestionNotFound,
    SqlRepository,
    create_db_and_tables,
    create_db_engine,
)

LOG = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="answer-engine",
    help="Answer evaluation and review reconciliation",
    add_completion=False,
)

console = Console()


def _configure_logging(settings: Settings, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _engine(settings: Settings) -> AnswerEngine:
    db = create_db_engine(settings.database_url)
    return AnswerEngine(SqlRepository(db), settings)


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """Answer evaluation and review reconciliation."""
    _configure_logging(get_settings(), verbose)


@app.command()
def evaluate(
    question_type: Annotated[str, typer.Argument(help="Question type, e.g. short_answer")],
    submitted: Annotated[str, typer.Argument(help="The submitted answer")],
    correct: Annotated[
        Optional[str],
        typer.Option("--correct", "-c", help="Correct answer"),
    ] = None,
    points: Annotated[
        float,
        typer.Option("--points", "-p", help="Points for the question"),
    ] = 1.0,
) -> None:
    """
    Evaluate one submission against a question.

    Open-ended types are scored by the AI provider when one is configured.
    """
    settings = get_settings()
    try:
        qtype = QuestionType(question_type)
    except ValueError:
        console.print(f"[red]Error:[/red] {UnsupportedQuestionType(question_type)}")
        raise typer.Exit(1)

    try:
        question = Question(id=0, type=qtype, correct_answer=correct, points=Decimal(str(points)))
    except ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid question: {e.errors()[0]['msg']}")
        raise typer.Exit(1)
    engine = _engine(settings)
    try:
        outcome = engine.evaluate_submission(question, submitted)
    finally:
        engine.close()
    _display_outcome(outcome, question)


@app.command(name="similarity")
def similarity_cmd(
    first: Annotated[str, typer.Argument(help="First string")],
    second: Annotated[str, typer.Argument(help="Second string")],
) -> None:
    """Show the edit distance and similarity of two answers."""
    a, b = normalize(first), normalize(second)
    table = Table(title="Similarity")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Levenshtein distance", str(levenshtein(a, b)))
    table.add_row("Similarity", f"{similarity(a, b):.3f}")
    console.print(table)


@app.command()
def init_db() -> None:
    """Create the answer store tables."""
    settings = get_settings()
    create_db_and_tables(create_db_engine(settings.database_url))
    console.print(f"[green]✓ Tables created in[/green] {settings.database_url}")


@app.command()
def pending(
    skill: Annotated[
        Optional[str],
        typer.Option("--skill", "-s", help="Only answers of this skill"),
    ] = None,
    exam: Annotated[
        Optional[int],
        typer.Option("--exam", "-e", help="Only attempts of this exam"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum attempts to list"),
    ] = 20,
) -> None:
    """List attempts awaiting manual review, highest priority first."""
    engine = _engine(get_settings())
    items = engine.list_pending_reviews(ReviewFilter(skill=skill, exam_id=exam, limit=limit))

    if not items:
        console.print("[green]No answers awaiting review[/green]")
        return

    table = Table(title="Pending Reviews")
    table.add_column("Attempt", justify="right", style="cyan")
    table.add_column("Student", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Days", justify="right")
    table.add_column("Flagged", justify="right")
    table.add_column("Answers")

    for item in items:
        priority = f"[bold]{item.priority}[/bold]" if item.has_high_weight_skill else str(item.priority)
        table.add_row(
            str(item.attempt_id),
            str(item.student_id),
            priority,
            str(item.days_pending),
            str(item.flagged_answer_count),
            ", ".join(str(f.answer_id) for f in item.flagged_answers),
        )
    console.print(table)


@app.command()
def review(
    answer_id: Annotated[int, typer.Argument(help="Answer to grade")],
    score: Annotated[float, typer.Argument(help="Awarded points")],
    reviewer: Annotated[int, typer.Option("--reviewer", "-r", help="Reviewer id")],
    feedback: Annotated[
        Optional[str],
        typer.Option("--feedback", "-f", help="Feedback for the student"),
    ] = None,
    correct: Annotated[
        Optional[bool],
        typer.Option("--correct/--incorrect", help="Override correctness"),
    ] = None,
) -> None:
    """Submit a manual review for one answer."""
    engine = _engine(get_settings())
    try:
        result = engine.submit_review(
            answer_id, Decimal(str(score)), feedback, correct, reviewer_id=reviewer
        )
    except (AnswerNotFound, QuestionNotFound, ScoreOutOfRange) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓ Answer {answer_id} scored {result.answer.score}[/green]")
    console.print(
        f"Attempt {result.answer.attempt_id}: "
        f"{result.totals.total_score} / {result.totals.max_score} ({result.totals.percentage:.1f}%)"
    )


@app.command()
def flag(
    answer_id: Annotated[int, typer.Argument(help="Answer to flag")],
    reason: Annotated[
        Optional[str],
        typer.Option("--reason", help="Why the answer needs review"),
    ] = None,
) -> None:
    """Flag an answer for manual review."""
    engine = _engine(get_settings())
    try:
        answer = engine.flag(answer_id, reason)
    except AnswerNotFound as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[yellow]⚑ Answer {answer.id} flagged:[/yellow] {answer.review_reason}")


@app.command()
def totals(
    attempt_id: Annotated[int, typer.Argument(help="Attempt to total")],
) -> None:
    """Show an attempt's totals."""
    engine = _engine(get_settings())
    try:
        result = engine.get_attempt_totals(attempt_id)
    except AttemptNotFound as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    color = "green" if result.passed else "red"
    console.print(
        Panel(
            f"[{color}][bold]{result.total_score} / {result.max_score}[/bold] "
            f"({result.percentage:.1f}%)[/{color}]\n"
            f"Graded: {result.graded_count}  Pending: {result.pending_count}",
            title=f"Attempt {attempt_id}",
        )
    )


@app.command()
def health() -> None:
    """
    Check if the engine is operational.

    Verifies configuration and, when configured, AI provider connectivity.
    """
    try:
        settings = get_settings()
        console.print("[bold]Answer Engine Health Check[/bold]\n")

        console.print("[dim]Checking configuration...[/dim]")
        console.print(f"  Database: {settings.database_url}")
        console.print(f"  Fuzzy threshold: {settings.fuzzy_match_threshold}")
        console.print(f"  High-weight skills: {', '.join(settings.high_weight_skills) or '-'}")
        console.print(f"  AI pre-pass: {'enabled' if settings.ai_enabled else 'disabled'}")

        if settings.ai_enabled:
            console.print(f"  AI model: {settings.ai_model} @ {settings.ai_base_url}")
            console.print("\n[dim]Checking AI provider connectivity...[/dim]")
            engine = _engine(settings)
            try:
                healthy = engine.grading.health_check()
            finally:
                engine.close()
            if healthy:
                console.print("[green]✓ AI provider is reachable[/green]")
            else:
                console.print("[red]✗ AI provider is not reachable[/red]")
                raise typer.Exit(1)

        console.print("\n[green]All systems operational[/green]")

    except AIProviderError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _display_outcome(outcome: GradeOutcome, question: Question) -> None:
    """Display a grade outcome."""
    if outcome.needs_manual_review and outcome.score is None:
        console.print(
            Panel(
                f"[yellow]Deferred to manual review[/yellow]\nReason: {outcome.reason}",
                title="Outcome",
            )
        )
        return

    color = "green" if outcome.is_correct else "red"
    lines = [
        f"[{color}][bold]{outcome.score} / {question.points}[/bold][/{color}]",
        f"Correct: {outcome.is_correct}",
        f"Source: {outcome.source.value if outcome.source else '-'}",
    ]
    if outcome.needs_manual_review:
        lines.append(f"[yellow]⚠ Needs review: {outcome.reason}[/yellow]")
    if outcome.feedback:
        lines.append(f"Feedback: {outcome.feedback}")
    console.print(Panel("\n".join(lines), title="Outcome"))


if __name__ == "__main__":
    app()
