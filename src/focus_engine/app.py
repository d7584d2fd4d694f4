"""Interactive CLI application."""
import logging
from datetime import datetime

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import IntPrompt, Prompt
from rich.table import Table

from focus_engine.arbitration import ContentArbiter
from focus_engine.content import ContentClient
from focus_engine.courses import EVENT_TYPES, create_announcement, get_task, list_courses, list_tasks
from focus_engine.dashboard import (
    get_course_leaderboard, get_global_leaderboard, get_tolerance_color, get_tolerance_status,
    get_user_summary,
)
from focus_engine.db import init_db
from focus_engine.errors import NotFoundError
from focus_engine.jobs import Scheduler, default_jobs
from focus_engine.ledger import get_entries
from focus_engine.planner import generate_announcement_plan
from focus_engine.quiz import (
    answer_question, attempt_info, get_theory_questions, settle_quiz, start_quiz, submit_theory,
)
from focus_engine.review import cast_review, list_pending_downvotes, respond_to_downvote
from focus_engine.seed import is_seeded, seed_all
from focus_engine.settings import Settings
from focus_engine.users import list_users

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


class Session:
    """What the menu loop carries between commands."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.db_path = settings.db_path
        self.user_id: int | None = None
        self._client: ContentClient | None = None

    @property
    def client(self) -> ContentClient:
        # Built on first use so commands that never generate work without an API key.
        if self._client is None:
            self._client = ContentClient.from_settings(self.settings)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


def show_welcome():
    console.print(Panel(
        "[bold]Focus Engine[/bold]\n[dim]Study plans with something at stake[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("user", "Switch user"),
        ("status", "Balance, streak and grace period"),
        ("plan", "Open tasks"),
        ("quiz", "Stake tokens on a task quiz"),
        ("review", "Vote on a submission or answer a downvote"),
        ("announce", "Announce an event and generate its plan"),
        ("ledger", "Token history"),
        ("leaderboard", "Reputation and course rankings"),
        ("jobs", "Run due periodic jobs"),
        ("seed", "Load demo data"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")


def require_user(session: Session) -> int:
    if session.user_id is None:
        cmd_user(session)
    return session.user_id


def cmd_user(session: Session):
    users = list_users(session.db_path)
    if not users:
        raise NotFoundError("No users yet. Run 'seed' first.")
    for u in users:
        console.print(f"  [cyan]{u.id}[/cyan]) {u.name}")
    session.user_id = IntPrompt.ask("Select user", choices=[str(u.id) for u in users])


def cmd_status(session: Session):
    user_id = require_user(session)
    summary = get_user_summary(session.db_path, user_id)
    tolerance = get_tolerance_status(session.db_path, user_id)
    color = get_tolerance_color(tolerance)
    console.print(Panel(
        f"Balance: [bold]{summary['token_balance']}[/bold] tokens  |  "
        f"Reputation: [bold]{summary['reputation']}[/bold]\n"
        f"Streak: {summary['current_streak']} days (best {summary['longest_streak']})  |  "
        f"Tasks due today: {summary['due_today']} of {summary['open_tasks']} open\n"
        f"Quizzes: {summary['quizzes_taken']} taken, {summary['pass_rate']}% passed, "
        f"avg score {summary['avg_mcq_score']}",
        title=summary["name"], border_style="blue",
    ))
    console.print(
        f"  Grace period: [{color}]{tolerance['label']}[/{color}]  "
        f"{tolerance['tolerance_remaining']} of {tolerance['tolerance_cap']} days left"
    )
    if tolerance["current_bleed_rate"]:
        console.print(
            f"  [red]Losing {tolerance['current_bleed_rate']} tokens today, "
            f"{tolerance['next_bleed_rate']} tomorrow[/red]"
        )


def cmd_plan(session: Session):
    user_id = require_user(session)
    table = Table(title="Open Tasks")
    table.add_column("ID", justify="right")
    table.add_column("Date")
    table.add_column("Course")
    table.add_column("Task")
    table.add_column("Difficulty")
    table.add_column("Stake", justify="right")
    table.add_column("Urgency")
    courses = {c.id: c for c in list_courses(session.db_path)}
    shown = 0
    for status in ("pending", "in_progress"):
        for task in list_tasks(session.db_path, status=status):
            if task.assigned_to not in (None, user_id):
                continue
            table.add_row(
                str(task.id), task.scheduled_date, courses[task.course_id].code, task.title,
                task.difficulty, str(task.token_stake), task.urgency_label,
            )
            shown += 1
    if not shown:
        console.print("[yellow]No open tasks.[/yellow]")
        return
    console.print(table)


def run_quiz_session(session: Session, task_id: int) -> dict:
    user_id = session.user_id
    info = attempt_info(session.db_path, user_id, task_id)
    console.print(
        f"Attempt #{info['next_attempt_number']} stakes [bold]{info['next_stake']}[/bold] tokens "
        f"(task stake {info['original_stake']})"
    )
    if Prompt.ask("Start?", choices=["y", "n"], default="y") != "y":
        return {}
    quiz = start_quiz(session.db_path, user_id, task_id, session.client)
    for mcq in quiz["mcqs"]:
        console.print(f"\n[bold]Q{mcq['index'] + 1}.[/bold] {mcq['question']}  [dim]({mcq['time_limit']}s)[/dim]")
        for letter, option in zip("abcd", mcq["options"]):
            console.print(f"  [cyan]{letter})[/cyan] {option}")
        answer = Prompt.ask("Your answer (s to skip)", choices=["a", "b", "c", "d", "s"])
        selected = None if answer == "s" else "abcd".index(answer)
        response = answer_question(session.db_path, quiz["attempt_id"], mcq["index"], selected)
        if response.is_correct:
            console.print(f"[green]Correct! +{response.points}[/green]")
        elif response.is_correct is None:
            console.print(f"[yellow]Unattempted {response.points}[/yellow]")
        else:
            console.print(f"[red]Incorrect. {response.points}[/red]")
    result = settle_quiz(session.db_path, quiz["attempt_id"])
    verdict = "[green]PASSED[/green]" if result["passed"] else "[red]FAILED[/red]"
    console.print(
        f"\n[bold]Score: {result['score']}/{result['max_score']}[/bold] {verdict} "
        f"(need {result['threshold']}), tokens awarded: {result['tokens_awarded']}"
    )
    return result | {"attempt_id": quiz["attempt_id"]}


def cmd_quiz(session: Session):
    require_user(session)
    task_id = IntPrompt.ask("Task ID")
    console.print(f"[bold]{get_task(session.db_path, task_id).title}[/bold]")
    result = run_quiz_session(session, task_id)
    if not result.get("passed"):
        return
    console.print("\n[bold]Theory questions[/bold] (answer on paper, then submit a reference)")
    for i, question in enumerate(get_theory_questions(session.db_path, result["attempt_id"], session.client), 1):
        console.print(f"  {i}. {question}")
    ref = Prompt.ask("Submission reference (blank to submit later)", default="")
    if ref:
        submit_theory(session.db_path, result["attempt_id"], ref)
        console.print("[green]Submitted. Your work is now open for peer review.[/green]")


def cmd_review(session: Session):
    user_id = require_user(session)
    pending = list_pending_downvotes(session.db_path, user_id)
    if pending:
        table = Table(title="Downvotes awaiting your response")
        table.add_column("ID", justify="right")
        table.add_column("Task", justify="right")
        table.add_column("Wager", justify="right")
        table.add_column("Reason")
        for r in pending:
            table.add_row(str(r["id"]), str(r["task_id"]), str(r["wager"]), r["reason"])
        console.print(table)
    mode = Prompt.ask("Action", choices=["vote", "respond"], default="respond" if pending else "vote")
    if mode == "respond":
        review_id = IntPrompt.ask("Review ID", choices=[str(r["id"]) for r in pending])
        action = Prompt.ask("Agree or dispute?", choices=["agree", "disagree"])
        review = respond_to_downvote(
            session.db_path, review_id, user_id, action, arbiter=ContentArbiter(session.client),
        )
        console.print(f"Review {review_id}: [bold]{review['dispute_status']}[/bold]")
        if review["ai_reasoning"]:
            console.print(f"[dim]{review['ai_reasoning']}[/dim]")
        return
    reviewee_id = IntPrompt.ask("Reviewee user ID")
    task_id = IntPrompt.ask("Task ID")
    review_type = Prompt.ask("Vote", choices=["upvote", "downvote"])
    wager = IntPrompt.ask("Wager", default=5)
    reason = Prompt.ask("Reason", default="") if review_type == "downvote" else ""
    review_id = cast_review(session.db_path, user_id, reviewee_id, task_id, review_type, wager, reason)
    console.print(f"[green]Review {review_id} recorded.[/green]")


def cmd_announce(session: Session):
    courses = list_courses(session.db_path)
    for c in courses:
        console.print(f"  [cyan]{c.id}[/cyan]) {c.code} {c.title}")
    course_id = IntPrompt.ask("Course", choices=[str(c.id) for c in courses])
    event_type = Prompt.ask("Event type", choices=list(EVENT_TYPES), default="quiz")
    title = Prompt.ask("Title")
    topics = [t.strip() for t in Prompt.ask("Topics (comma separated)").split(",") if t.strip()]
    event_date = Prompt.ask("Event date (YYYY-MM-DD)")
    datetime.fromisoformat(event_date)
    announcement_id = create_announcement(session.db_path, course_id, event_type, title, topics, event_date)
    with console.status("Generating plan..."):
        task_ids = generate_announcement_plan(session.db_path, announcement_id, session.client)
    console.print(f"[green]Created {len(task_ids)} tasks for {title}.[/green]")


def cmd_ledger(session: Session):
    user_id = require_user(session)
    table = Table(title="Token Ledger")
    table.add_column("When")
    table.add_column("Type")
    table.add_column("Amount", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Note")
    for e in get_entries(session.db_path, user_id, limit=20):
        amount = f"[green]+{e.amount}[/green]" if e.amount > 0 else f"[red]{e.amount}[/red]"
        table.add_row((e.created_at or "")[:16], e.type, amount, str(e.balance_after), e.note)
    console.print(table)


def cmd_leaderboard(session: Session):
    table = Table(title="Reputation")
    table.add_column("#", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Reputation", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Streak", justify="right")
    for row in get_global_leaderboard(session.db_path):
        table.add_row(
            str(row["rank"]), row["name"], str(row["reputation"]),
            str(row["token_balance"]), str(row["streak"]),
        )
    console.print(table)
    for course in list_courses(session.db_path):
        rows = get_course_leaderboard(session.db_path, course.id, limit=3)
        if rows:
            top = ", ".join(f"{r['name']} ({r['proficiency_score']})" for r in rows)
            console.print(f"  [cyan]{course.code}[/cyan] {top}")


def cmd_jobs(session: Session):
    scheduler = Scheduler(session.db_path, default_jobs(session.db_path, session.client))
    results = scheduler.run_pending()
    if not results:
        console.print("[dim]Nothing due.[/dim]")
    for name, result in results.items():
        console.print(f"  [cyan]{name:<16}[/cyan] {result}")


def main():
    settings = Settings()
    setup_logging(settings.log_level)
    init_db(settings.db_path)
    session = Session(settings)
    show_welcome()
    if not is_seeded(settings.db_path):
        console.print("[dim]Empty database. Use 'seed' to load demo data.[/dim]")

    commands = {
        "user": cmd_user,
        "status": cmd_status,
        "plan": cmd_plan,
        "quiz": cmd_quiz,
        "review": cmd_review,
        "announce": cmd_announce,
        "ledger": cmd_ledger,
        "leaderboard": cmd_leaderboard,
        "jobs": cmd_jobs,
    }
    try:
        while True:
            show_menu()
            choice = Prompt.ask("\n[bold]>[/bold]", default="status").strip().lower()
            try:
                if choice in commands:
                    commands[choice](session)
                elif choice == "seed":
                    seed_all(session.db_path)
                    console.print("[green]Demo data loaded.[/green]")
                elif choice in ("quit", "exit", "q"):
                    console.print("[dim]Keep the streak going.[/dim]")
                    break
                else:
                    console.print("[red]Unknown command. Try again.[/red]")
            except KeyboardInterrupt:
                console.print("\n[dim]Use 'quit' to exit.[/dim]")
            except Exception as e:
                logger.debug("Command %s failed", choice, exc_info=True)
                console.print(f"[red]Error: {e}[/red]")
    finally:
        session.close()


if __name__ == "__main__":
    main()
