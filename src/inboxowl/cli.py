"""CLI entry point for InboxOwl."""

from __future__ import annotations

import functools
import json

import click

from .analysis import EmailAnalyzer
from .categorizer import Categorizer
from .conditions import parse_condition_shorthand
from .constants import MESSAGE_CACHE_NAMESPACE, SYNC_CACHE_NAMESPACE
from .display import (
    console,
    create_progress,
    display_analysis,
    display_categories,
    display_email,
    display_emails,
    display_rules,
    display_sync_result,
)
from .errors import InboxOwlError, NotFoundError, ValidationError
from .generative import OpenAIClient
from .log import configure_logging
from .rules import RuleService
from .settings import Settings
from .store import MailStore
from .ttl_cache import PersistentTTLCache, SyncThrottle


def _reports_errors(func):
    """Turn InboxOwl errors into a one-line CLI error."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except InboxOwlError as e:
            raise click.ClickException(str(e)) from e

    return wrapper


def _build_generative(settings: Settings) -> OpenAIClient | None:
    if not settings.generative_enabled:
        return None
    return OpenAIClient(
        api_key=settings.openai_api_key.get_secret_value(),
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout,
    )


def _open_store(settings: Settings) -> tuple[MailStore, int]:
    store = MailStore(db_path=settings.db_path)
    return store, store.get_or_create_user(settings.user)


def _category_id(store: MailStore, user_id: int, name: str) -> int:
    category = store.get_category_by_name(user_id, name)
    if category is None:
        raise NotFoundError(f"Category {name!r}")
    return category.id


def _collect_conditions(conditions: tuple[str, ...], conditions_json: str | None) -> list:
    if conditions_json:
        try:
            parsed = json.loads(conditions_json)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid rule condition format: {e}") from e
        return parsed
    if not conditions:
        raise ValidationError("Give at least one --condition or --conditions-json")
    return [parse_condition_shorthand(c) for c in conditions]


@click.group()
@click.version_option(version="0.1.0", prog_name="inboxowl")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """InboxOwl - sort your Gmail inbox with rules and screen it for spam."""
    settings = Settings()
    configure_logging(settings.log_level, settings.log_format)
    ctx.obj = settings


@cli.command()
def auth() -> None:
    """Test or reset Gmail authentication."""
    from .auth import check_auth

    address = check_auth()
    if address is None:
        raise click.ClickException("Authentication failed.")
    console.print(f"Authenticated as [bold]{address}[/bold]")


@cli.command()
@click.option("-m", "--max-messages", default=50, type=int, show_default=True, help="Maximum messages to fetch.")
@click.option("--force", is_flag=True, help="Sync even if a sync just ran.")
@click.pass_obj
@_reports_errors
def sync(settings: Settings, max_messages: int, force: bool) -> None:
    """Fetch inbox messages and file them by your rules."""
    from .auth import get_gmail_service
    from .sync import sync_mailbox

    try:
        service = get_gmail_service()
    except FileNotFoundError as e:
        raise click.ClickException(str(e)) from e

    store, user_id = _open_store(settings)
    with store:
        throttle = SyncThrottle(
            window=settings.sync_throttle_seconds,
            cache=PersistentTTLCache(store, SYNC_CACHE_NAMESPACE, ttl=settings.sync_throttle_seconds),
        )
        content_cache = PersistentTTLCache(
            store,
            MESSAGE_CACHE_NAMESPACE,
            ttl=settings.content_cache_ttl,
            max_keys=settings.content_cache_max_keys,
            eviction=settings.cache_eviction,
        )
        rule_service = RuleService(store, settings.unknown_field_policy)
        with create_progress("Syncing") as progress:
            task = progress.add_task("syncing", total=None)

            def on_batch(batch_num: int, total: int) -> None:
                progress.update(task, completed=batch_num, total=total)

            result = sync_mailbox(
                service,
                store,
                user_id,
                rule_service,
                throttle=throttle,
                content_cache=content_cache,
                max_results=max_messages,
                batch_size=settings.sync_batch_size,
                batch_delay=settings.sync_batch_delay,
                force=force,
                callback=on_batch,
            )

    display_sync_result(result)


@cli.group(invoke_without_command=True)
@click.option("-c", "--category", default=None, help="Only emails in this category.")
@click.option("-n", "--limit", default=50, type=int, show_default=True, help="Maximum emails to show.")
@click.pass_context
@_reports_errors
def emails(ctx: click.Context, category: str | None, limit: int) -> None:
    """List stored emails."""
    if ctx.invoked_subcommand is not None:
        return
    store, user_id = _open_store(ctx.obj)
    with store:
        category_id = _category_id(store, user_id, category) if category else None
        found = store.list_emails(user_id, category_id=category_id, limit=limit)
        categories = {c.id: c for c in store.list_categories(user_id)}

    if not found:
        console.print("[dim]No emails stored. Run 'sync' first.[/dim]")
        return
    display_emails(found, categories)


@emails.command(name="show")
@click.argument("email_id", type=int)
@click.pass_obj
@_reports_errors
def emails_show(settings: Settings, email_id: int) -> None:
    """Show one stored email with its full body."""
    store, user_id = _open_store(settings)
    with store:
        email = store.get_email(email_id)
        if email is None or email.user_id != user_id:
            raise NotFoundError("Email")
        categories = {c.id: c for c in store.list_categories(user_id)}
    display_email(email, categories)


# --- categories ---


@cli.group(name="categories")
def categories_group() -> None:
    """Manage categories."""


@categories_group.command(name="list")
@click.pass_obj
def categories_list(settings: Settings) -> None:
    """Show your categories."""
    store, user_id = _open_store(settings)
    with store:
        categories = store.list_categories(user_id)

    if not categories:
        console.print("[dim]No categories yet.[/dim]")
        return
    display_categories(categories)


@categories_group.command(name="add")
@click.argument("name")
@click.option("--color", default="", help="Display color, e.g. '#3b82f6'.")
@click.pass_obj
@_reports_errors
def categories_add(settings: Settings, name: str, color: str) -> None:
    """Create a category."""
    store, user_id = _open_store(settings)
    with store:
        category = store.create_category(user_id, name, color)
    console.print(f"[green]Created category {category.name!r} (id {category.id}).[/green]")


@categories_group.command(name="update")
@click.argument("category_id", type=int)
@click.option("--name", default=None, help="New name.")
@click.option("--color", default=None, help="New color.")
@click.pass_obj
@_reports_errors
def categories_update(settings: Settings, category_id: int, name: str | None, color: str | None) -> None:
    """Rename or recolor a category."""
    store, user_id = _open_store(settings)
    with store:
        category = store.update_category(user_id, category_id, name=name, color=color)
    console.print(f"[green]Updated category {category.name!r}.[/green]")


@categories_group.command(name="delete")
@click.argument("category_id", type=int)
@click.pass_obj
@_reports_errors
def categories_delete(settings: Settings, category_id: int) -> None:
    """Delete a category and its rules. Emails are kept."""
    store, user_id = _open_store(settings)
    with store:
        store.delete_category(user_id, category_id)
    console.print("[green]Category deleted.[/green]")


@categories_group.command(name="assign")
@click.argument("category_id", type=int)
@click.argument("email_ids", nargs=-1, required=True, type=int)
@click.pass_obj
@_reports_errors
def categories_assign(settings: Settings, category_id: int, email_ids: tuple[int, ...]) -> None:
    """Put stored emails into a category by hand."""
    store, user_id = _open_store(settings)
    with store:
        category = store.assign_emails(user_id, category_id, email_ids)
    console.print(f"[green]Category {category.name!r} now has {category.email_count} emails.[/green]")


# --- rules ---


@cli.group(name="rules")
def rules_group() -> None:
    """Manage filing rules."""


@rules_group.command(name="list")
@click.pass_obj
def rules_list(settings: Settings) -> None:
    """Show your rules in the order they are tried."""
    store, user_id = _open_store(settings)
    with store:
        rules = store.list_rules(user_id)
        categories = {c.id: c for c in store.list_categories(user_id)}

    if not rules:
        console.print("[dim]No rules yet.[/dim]")
        return
    display_rules(rules, categories)


_condition_option = click.option(
    "--condition",
    "conditions",
    multiple=True,
    help="field:operator:value, e.g. 'subject:contains:invoice' or 'hasAttachment'. Repeat to AND.",
)
_conditions_json_option = click.option(
    "--conditions-json",
    default=None,
    help='Conditions as JSON, e.g. \'[{"field": "subject", "operator": "contains", "value": "invoice"}]\'.',
)


@rules_group.command(name="add")
@click.argument("name")
@click.option("-c", "--category", required=True, help="Category the rule files emails into.")
@_condition_option
@_conditions_json_option
@click.option("--inactive", is_flag=True, help="Store the rule without applying it.")
@click.pass_obj
@_reports_errors
def rules_add(
    settings: Settings,
    name: str,
    category: str,
    conditions: tuple[str, ...],
    conditions_json: str | None,
    inactive: bool,
) -> None:
    """Create a rule and file matching stored emails."""
    payload = _collect_conditions(conditions, conditions_json)
    store, user_id = _open_store(settings)
    with store:
        service = RuleService(store, settings.unknown_field_policy)
        rule = service.create_rule(
            user_id, name, payload, _category_id(store, user_id, category), is_active=not inactive
        )
    console.print(f"[green]Created rule {rule.name!r} (id {rule.id}).[/green]")


@rules_group.command(name="update")
@click.argument("rule_id", type=int)
@click.option("--name", default=None, help="New name.")
@click.option("-c", "--category", default=None, help="New target category.")
@_condition_option
@_conditions_json_option
@click.option("--active/--inactive", default=None, help="Enable or disable the rule.")
@click.pass_obj
@_reports_errors
def rules_update(
    settings: Settings,
    rule_id: int,
    name: str | None,
    category: str | None,
    conditions: tuple[str, ...],
    conditions_json: str | None,
    active: bool | None,
) -> None:
    """Change a rule and re-file its category."""
    store, user_id = _open_store(settings)
    with store:
        current = store.get_rule(user_id, rule_id)
        if current is None:
            raise NotFoundError("Rule")
        if conditions or conditions_json:
            payload = _collect_conditions(conditions, conditions_json)
        else:
            payload = current.raw_conditions
        service = RuleService(store, settings.unknown_field_policy)
        rule = service.update_rule(
            user_id,
            rule_id,
            name or current.name,
            payload,
            _category_id(store, user_id, category) if category else current.category_id,
            is_active=current.is_active if active is None else active,
        )
    console.print(f"[green]Updated rule {rule.name!r}.[/green]")


@rules_group.command(name="delete")
@click.argument("rule_id", type=int)
@click.pass_obj
@_reports_errors
def rules_delete(settings: Settings, rule_id: int) -> None:
    """Delete a rule. Emails it filed stay in their categories."""
    store, user_id = _open_store(settings)
    with store:
        RuleService(store, settings.unknown_field_policy).delete_rule(user_id, rule_id)
    console.print("[green]Rule deleted.[/green]")


@rules_group.command(name="recompute")
@click.pass_obj
def rules_recompute(settings: Settings) -> None:
    """Re-file every stored email from scratch using the active rules."""
    store, user_id = _open_store(settings)
    with store:
        counts = RuleService(store, settings.unknown_field_policy).recompute_memberships(user_id)
        names = {c.id: c.name for c in store.list_categories(user_id)}

    if not counts:
        console.print("[dim]No active rules.[/dim]")
        return
    for category_id, count in counts.items():
        console.print(f"  {names.get(category_id, category_id)}: {count} emails")


# --- analysis ---


@cli.command()
@click.argument("email_id", type=int)
@click.option("--refresh", is_flag=True, help="Ignore the stored analysis and analyze again.")
@click.pass_obj
@_reports_errors
def analyze(settings: Settings, email_id: int, refresh: bool) -> None:
    """Check a stored email for spam and summarize it."""
    store, user_id = _open_store(settings)
    with store:
        email = store.get_email(email_id)
        if email is None or email.user_id != user_id:
            raise NotFoundError("Email")
        analyzer = EmailAnalyzer(
            store,
            Categorizer(store, settings.unknown_field_policy),
            _build_generative(settings),
        )
        result = analyzer.analyze_email(email_id, refresh=refresh)
    display_analysis(result)


@cli.command()
@click.option("-s", "--subject", default="", help="Email subject.")
@click.option("-b", "--body", default="", help="Email body.")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.pass_obj
@_reports_errors
def check(settings: Settings, subject: str, body: str, as_json: bool) -> None:
    """Check arbitrary text for spam without storing anything."""
    store, _ = _open_store(settings)
    with store:
        analyzer = EmailAnalyzer(store, generative=_build_generative(settings))
        result = analyzer.analyze(subject, body)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return
    display_analysis(result)


# --- cache ---


@cli.group(name="cache")
def cache_group() -> None:
    """Manage stored analyses and sync caches."""


@cache_group.command(name="info")
@click.pass_obj
def cache_info(settings: Settings) -> None:
    """Show store statistics."""
    with MailStore(db_path=settings.db_path) as store:
        info = store.get_info()

    console.print(f"[bold]Database size:[/bold] {info['db_file_size'] / 1024:.1f} KB")
    console.print(f"[bold]Emails:[/bold] {info['email_count']}")
    console.print(f"[bold]Categories:[/bold] {info['category_count']}")
    console.print(f"[bold]Rules:[/bold] {info['rule_count']}")
    console.print(f"[bold]Analyses:[/bold] {info['analysis_count']}")
    console.print(f"[bold]Sync and message cache entries:[/bold] {info['cache_entry_count']}")


@cache_group.command(name="clear")
@click.option("--email-id", default=None, type=int, help="Only forget this email's analysis.")
@click.option("--sync", "sync_state", is_flag=True, help="Also forget the sync throttle and cached message bodies.")
@click.pass_obj
def cache_clear(settings: Settings, email_id: int | None, sync_state: bool) -> None:
    """Forget stored analyses so they are recomputed."""
    with MailStore(db_path=settings.db_path) as store:
        removed = store.clear_analyses(email_id)
        if sync_state:
            dropped = store.delete_cache_entries()
    console.print(f"[green]Analysis cache cleared ({removed} removed).[/green]")
    if sync_state:
        console.print(f"[green]Sync cache cleared ({dropped} entries removed).[/green]")
