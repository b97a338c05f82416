"""
Typer CLI for the leetnode recommender.

Commands:
    leetnode db init                      - Create database tables
    leetnode content load PATH            - Load users/topics/courses/questions from JSON
    leetnode evaluate PATH                - Evaluate a question-data JSON file
    leetnode recommend USER COURSE        - Serve a new question from the weakest topic
    leetnode current USER COURSE          - Show the open question, or serve one
    leetnode submit USER INSTANCE KEY...  - Answer a served question
    leetnode mastery USER                 - Show per-topic mastery

Usage:
    leetnode --help
    leetnode --database-url sqlite:///leetnode.db db init
    leetnode evaluate question.json --randomize
    leetnode recommend u1 circuits --exclude 12 --exclude 14
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import NoReturn

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from recommender.core.exceptions import EvaluationError, QuestionDataError, RecommenderError
from recommender.core.logging_config import configure_logging

app = typer.Typer(
    help="leetnode: adaptive question recommendation and mastery tracking",
    no_args_is_help=True,
)

console = Console()


# ========================================
# Context Builder (Dependency Injection)
# ========================================


class CLIContext:
    """
    Dependency injection container for CLI commands.

    Services are built on first use so `--help` and `evaluate` never touch
    the database.
    """

    def __init__(self, database_url: str | None = None):
        self.settings = get_settings()
        self.database_url = database_url
        self._engine = None
        self._session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self):
        if self._engine is None:
            from recommender.db.database import build_engine, get_engine

            if self.database_url:
                self._engine = build_engine(self.database_url, echo=self.settings.database_echo)
            else:
                self._engine = get_engine()
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._session_factory is None:
            from recommender.db.database import make_session_factory

            self._session_factory = make_session_factory(self.engine)
        return self._session_factory

    def recommender(self):
        from recommender.learning import QuestionRecommender

        return QuestionRecommender(self.session_factory, settings=self.settings)

    def attempts(self):
        from recommender.learning import AttemptService

        return AttemptService(self.session_factory, settings=self.settings)

    def tracker(self):
        from recommender.learning import MasteryTracker

        return MasteryTracker(self.session_factory, settings=self.settings)


@app.callback()
def main_callback(
    ctx: typer.Context,
    database_url: str | None = typer.Option(
        None, "--database-url", help="Override DATABASE_URL for this invocation"
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Console log level"),
):
    """Adaptive practice engine."""
    configure_logging(get_settings(), level=log_level)
    ctx.obj = CLIContext(database_url=database_url)


def _fail(message: str) -> NoReturn:
    rprint(f"[red]✗[/red] {escape(message)}")
    raise typer.Exit(code=1)


def _show_evaluation_error(error: EvaluationError) -> NoReturn:
    table = Table(title="Evaluation Error", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field, value in error.to_dict().items():
        table.add_row(field, escape(str(value)))
    console.print(table)
    raise typer.Exit(code=1)


def _answers_table(answers: list[dict], title: str = "Answers") -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("Key", style="dim")
    table.add_column("Answer")
    table.add_column("Correct", justify="center")
    for answer in answers:
        table.add_row(
            answer["key"],
            escape(answer["answerContent"]),
            "[green]✓[/green]" if answer.get("isCorrect") else "",
        )
    return table


def _variables_table(variables: list[dict]) -> Table:
    table = Table(title="Variables", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Value", justify="right")
    table.add_column("Unit", style="dim")
    for variable in variables:
        table.add_row(
            escape(variable["name"]),
            escape(str(variable.get("value", variable.get("default", "")))),
            escape(variable.get("unit") or ""),
        )
    return table


# ========================================
# DATABASE COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init(ctx: typer.Context) -> None:
    """
    Create all tables from the SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from recommender.db.database import init_db

    init_db(ctx.obj.engine)
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# CONTENT COMMANDS
# ========================================

content_app = typer.Typer(help="Content authoring")
app.add_typer(content_app, name="content")


@content_app.command("load")
def content_load(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Content JSON file"),
) -> None:
    """Load users, topics, courses and questions from a JSON document."""
    from recommender.content import QuestionBank
    from recommender.db.database import session_scope

    try:
        with session_scope(ctx.obj.session_factory) as session:
            counts = QuestionBank(session, settings=ctx.obj.settings).load_content(path)
    except EvaluationError as e:
        _show_evaluation_error(e)
    except RecommenderError as e:
        _fail(str(e))

    table = Table(title="Loaded Content", show_header=True)
    table.add_column("Section", style="cyan")
    table.add_column("Count", justify="right")
    for section, count in counts.items():
        table.add_row(section, str(count))
    console.print(table)


# ========================================
# EVALUATION
# ========================================


@app.command("evaluate")
def evaluate_file(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Question data JSON"),
    randomize: bool = typer.Option(False, "--randomize", "-r", help="Re-sample random inputs"),
) -> None:
    """Evaluate question data (variables + methods) and show the result."""
    from recommender.evaluator import DistractorConfig, QuestionEvaluator

    settings = ctx.obj.settings
    evaluator = QuestionEvaluator(
        distractor_config=DistractorConfig.from_settings(settings),
        preview_seed=settings.preview_seed,
    )
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        result = evaluator.evaluate_question_data(raw, randomize=randomize)
    except json.JSONDecodeError as e:
        _fail(f"{path} is not valid JSON: {e}")
    except EvaluationError as e:
        _show_evaluation_error(e)
    except QuestionDataError as e:
        _fail(str(e))

    console.print(_variables_table(result.variables_json()))
    console.print(_answers_table(result.answers_json()))


# ========================================
# LEARNER COMMANDS
# ========================================


def _show_recommendation(rec) -> None:
    rprint(
        f"[bold]Instance {rec.instance_id}[/bold]  "
        f"question {rec.question_id}.{rec.variation_id}  "
        f"[cyan]{escape(rec.topic_name)}[/cyan] "
        f"([{rec.mastery_level.color}]{rec.topic_mastery:.0%} {rec.mastery_level.display_name}[/])"
    )
    rprint(f"  {escape(rec.question_title)}")
    if rec.variables:
        console.print(_variables_table(rec.variables))
    console.print(_answers_table(rec.answers, title="Options"))


@app.command("recommend")
def recommend(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Learner id"),
    course_slug: str = typer.Argument(..., help="Course slug"),
    exclude: list[int] = typer.Option(
        [], "--exclude", "-x", help="Question id to skip (repeatable)"
    ),
) -> None:
    """Serve a new question from the learner's weakest topic."""
    try:
        rec = ctx.obj.recommender().recommend_question(user_id, course_slug, exclude)
    except EvaluationError as e:
        _show_evaluation_error(e)
    except RecommenderError as e:
        _fail(str(e))
    _show_recommendation(rec)


@app.command("current")
def current(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Learner id"),
    course_slug: str = typer.Argument(..., help="Course slug"),
    prev: int | None = typer.Option(None, "--prev", help="Question id the learner moved away from"),
) -> None:
    """Show the learner's open question, serving a new one if needed."""
    try:
        rec = ctx.obj.recommender().current_or_recommend(user_id, course_slug, prev)
    except EvaluationError as e:
        _show_evaluation_error(e)
    except RecommenderError as e:
        _fail(str(e))
    _show_recommendation(rec)


@app.command("submit")
def submit(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Learner id"),
    instance_id: int = typer.Argument(..., help="Question instance id"),
    keys: list[str] = typer.Argument(..., help="Selected option keys"),
) -> None:
    """Answer a served question."""
    try:
        result = ctx.obj.attempts().submit_attempt(user_id, instance_id, keys)
    except RecommenderError as e:
        _fail(str(e))

    if result.is_correct:
        rprint(f"[green]✓ Correct[/green] (+{result.points_awarded} points)")
    else:
        rprint(f"[red]✗ Incorrect[/red] (+{result.points_awarded} points)")
        rprint(f"  Correct keys: {', '.join(result.correct_keys)}")

    snapshot = result.mastery
    rprint(
        f"  {escape(snapshot.topic_name)}: "
        f"[{snapshot.level.color}]{snapshot.mastery_percentage:.1f}%[/] "
        f"{snapshot.level.display_name}"
    )
    if snapshot.flagged:
        rprint("[yellow]⚠[/yellow] Flagged for tutor follow-up")


@app.command("mastery")
def mastery(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Learner id"),
) -> None:
    """Show per-topic mastery, weakest first."""
    try:
        snapshots = ctx.obj.tracker().get_masteries(user_id)
    except RecommenderError as e:
        _fail(str(e))

    if not snapshots:
        rprint("[yellow]⚠[/yellow] No mastery records yet")
        return

    table = Table(title=f"Mastery for {escape(user_id)}", show_header=True)
    table.add_column("Topic", style="cyan")
    table.add_column("Mastery", justify="right")
    table.add_column("Level")
    table.add_column("Weekly", justify="right")
    table.add_column("Fortnightly", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Flagged", justify="center")
    for snap in snapshots:
        table.add_row(
            escape(snap.topic_name),
            f"{snap.mastery_percentage:.1f}%",
            f"[{snap.level.color}]{snap.level.display_name}[/]",
            f"{snap.weekly_mastery:.0%}",
            f"{snap.fortnightly_mastery:.0%}",
            str(snap.error_meter),
            "[yellow]⚠[/yellow]" if snap.flagged else "",
        )
    console.print(table)
    logger.debug(f"Listed {len(snapshots)} mastery records for {user_id}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
