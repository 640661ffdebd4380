"""Rich-based display functions for InboxOwl."""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .conditions import AttachmentCondition, TextCondition
from .constants import SNIPPET_DISPLAY_LIMIT, SPAM_THRESHOLD
from .models import AnalysisResult, Category, Email, Rule, SyncResult

console = Console()


def _score_color(score: float) -> str:
    """Return a Rich color name based on the spam score."""
    if score > SPAM_THRESHOLD:
        return "red"
    if score >= 0.3:
        return "yellow"
    return "green"


def _truncate(text: str, limit: int = SNIPPET_DISPLAY_LIMIT) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= limit else text[: limit - 1] + "…"


def describe_conditions(rule: Rule) -> str:
    """One-line rendering of a rule's conditions."""
    if rule.parse_error is not None:
        return f"[red]invalid: {escape(rule.parse_error)}[/red]"
    parts = []
    for c in rule.conditions:
        if isinstance(c, TextCondition):
            parts.append(f'{c.field.value} {c.operator.value} "{escape(c.value)}"')
        elif isinstance(c, AttachmentCondition):
            parts.append("has attachment")
        else:
            parts.append(f"[dim]{escape(c.field)} (unknown)[/dim]")
    return " AND ".join(parts)


def display_emails(emails: list[Email], categories: dict[int, Category]) -> None:
    """Display stored emails, newest first."""
    table = Table(title="Emails")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("From")
    table.add_column("Subject")
    table.add_column("Date", style="dim")
    table.add_column("Categories")

    for email in emails:
        names = sorted(escape(categories[cid].name) for cid in email.category_ids if cid in categories)
        subject = escape(_truncate(email.subject or "(no subject)"))
        if email.has_attachment:
            subject += " 📎"
        table.add_row(str(email.id), escape(_truncate(email.sender, 30)), subject, escape(email.date), ", ".join(names))

    console.print(table)
    console.print(f"[dim]{len(emails)} emails[/dim]")


def display_email(email: Email, categories: dict[int, Category]) -> None:
    """Display one email with its full body."""
    names = sorted(escape(categories[cid].name) for cid in email.category_ids if cid in categories)
    lines = [
        f"[bold]From:[/bold] {escape(email.sender)}",
        f"[bold]Date:[/bold] {escape(email.date)}",
        f"[bold]Subject:[/bold] {escape(email.subject or '(no subject)')}",
    ]
    if names:
        lines.append(f"[bold]Categories:[/bold] {', '.join(names)}")
    if email.attachments:
        lines.append(f"[bold]Attachments:[/bold] {escape(', '.join(email.attachments))}")
    lines.append("")
    lines.append(escape(email.body or email.snippet or "(empty)"))
    console.print(Panel("\n".join(lines), title=f"Email {email.id}"))


def display_categories(categories: list[Category]) -> None:
    table = Table(title="Categories")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Name")
    table.add_column("Color")
    table.add_column("Emails", justify="right")

    for category in categories:
        table.add_row(str(category.id), escape(category.name), escape(category.color), str(category.email_count))

    console.print(table)


def display_rules(rules: list[Rule], categories: dict[int, Category]) -> None:
    """Display rules in evaluation order."""
    table = Table(title="Rules (first match wins)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Name")
    table.add_column("Conditions")
    table.add_column("Category")
    table.add_column("Active")

    for idx, rule in enumerate(rules, start=1):
        category = categories.get(rule.category_id)
        table.add_row(
            str(idx),
            str(rule.id),
            escape(rule.name),
            describe_conditions(rule),
            escape(category.name) if category else "[red]missing[/red]",
            "[green]yes[/green]" if rule.is_active else "[dim]no[/dim]",
        )

    console.print(table)


def display_analysis(result: AnalysisResult) -> None:
    """Display a spam verdict, its reasons and the summary."""
    color = _score_color(result.spam_score)
    verdict = "SPAM" if result.is_spam else "Not spam"

    lines = [
        f"[bold]Verdict:[/bold] [{color}]{verdict}[/{color}]",
        f"[bold]Spam score:[/bold] [{color}]{result.spam_score:.2f}[/{color}]",
    ]
    if result.category:
        category = escape(result.category)
        if result.matched_rule:
            category += f" [dim](rule: {escape(result.matched_rule)})[/dim]"
        lines.append(f"[bold]Category:[/bold] {category}")

    if result.reasons:
        lines.append("")
        lines.append("[bold]Reasons:[/bold]")
        for reason in result.reasons:
            lines.append(f"  - {escape(reason)}")

    lines.append("")
    lines.append("[bold]Summary:[/bold]")
    lines.append(escape(result.summary))

    title = "Analysis" if result.email_id is None else f"Analysis of email {result.email_id}"
    console.print(Panel("\n".join(lines), title=title, subtitle=f"[dim]{result.source}[/dim]"))


def display_sync_result(result: SyncResult) -> None:
    if result.skipped:
        console.print("[yellow]Synced moments ago; skipping. Use --force to sync anyway.[/yellow]")
        return
    if result.error:
        console.print(f"[red]{escape(result.error)}[/red]")
        console.print("[dim]Showing previously stored emails is still possible.[/dim]")
        return
    summary = (
        f"Fetched {result.fetched} messages "
        f"({result.created} new, {result.updated} updated), "
        f"{result.categorized} filed by rules"
    )
    if result.failed:
        summary += f", [red]{result.failed} failed[/red]"
    console.print(Panel(summary, title="Sync"))


def create_progress(description: str) -> Progress:
    """Create a configured Rich Progress bar."""
    return Progress(
        SpinnerColumn(),
        TextColumn(f"[bold blue]{description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )
