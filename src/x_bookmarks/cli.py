"""CLI interface for x-bookmarks.

Commands:
    setup    - Configure X API credentials
    login    - Connect your X account (OAuth 2.0 PKCE)
    logout   - Forget the stored credential
    status   - Show account, sync and library status
    sync     - Pull bookmarks from X into the local library
    list     - List bookmarks with filters
    show     - Show one bookmark
    edit     - Edit notes, category or pin state
    delete   - Delete bookmarks
    search   - Search recent posts on X (cached)
    post     - Look up one post on X
    thread   - Show a post and its replies
    profile  - Show an account and its recent posts
    save     - Save a post found on X as a bookmark
    import   - Import bookmarks from a JSON export
    export   - Export bookmarks as JSON or CSV
    tag, category, rule, watch, cache - management groups
"""

import json
import sys
from contextlib import contextmanager
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import click

from .config import (
    CONFIG_FILE,
    AIConfig,
    AppConfig,
    XConfig,
    config_exists,
    load_config,
    save_config,
)
from .errors import (
    NotFoundError,
    RateLimitedError,
    ReauthenticationRequiredError,
    SyncInProgressError,
    XBookmarksError,
)
from .logging_config import setup_logging


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", type=click.Path(), default=None, help="Config file path")
@click.pass_context
def main(ctx, verbose, config):
    """X Bookmarks — sync, organize and research your X bookmarks."""
    setup_logging(debug=verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else CONFIG_FILE


@contextmanager
def open_app(ctx):
    """Load config, open the library, and turn known failures into exit code 1."""
    config_path = ctx.obj["config_path"]
    if not config_exists(config_path):
        click.echo("Error: No config found. Run 'x-bookmarks setup' first.", err=True)
        sys.exit(1)
    try:
        config = load_config(config_path)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    # Lazy import so --help stays fast
    from .app import App

    app = App(config)
    try:
        yield app
    except RateLimitedError as e:
        click.echo(f"Error: {e}. Try again after the window resets.", err=True)
        sys.exit(1)
    except ReauthenticationRequiredError as e:
        click.echo(f"Error: {e}\nRun 'x-bookmarks login' to reconnect.", err=True)
        sys.exit(1)
    except SyncInProgressError as e:
        click.echo(f"Error: {e} Wait for it to finish.", err=True)
        sys.exit(1)
    except XBookmarksError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        app.close()


def _echo_bookmark(b) -> None:
    pin = "📌 " if b.is_pinned else ""
    date = b.created_at.strftime("%Y-%m-%d") if b.created_at else "----------"
    text = " ".join(b.text.split())
    if len(text) > 80:
        text = text[:77] + "..."
    click.echo(f"{pin}{b.id}  {date}  @{b.author_username}: {text}")
    if b.tags:
        click.echo(f"    tags: {', '.join(t.name for t in b.tags)}")


def _echo_post(post, indent: str = "") -> None:
    text = " ".join(post.text.split())
    click.echo(f"{indent}{post.id}  ♥{post.likes}  @{post.author_username}: {text[:100]}")
    click.echo(f"{indent}    {post.tweet_url}")


# ── Account ──


@main.command()
@click.pass_context
def setup(ctx):
    """Configure X API credentials."""
    config_path = ctx.obj["config_path"]

    click.echo("X Bookmarks — Setup")
    click.echo("=" * 40)
    click.echo()
    click.echo("You need an X developer app with OAuth 2.0 enabled.")
    click.echo("  1. Open https://developer.twitter.com and create an app")
    click.echo("  2. Enable OAuth 2.0 (type: Web App) and add the callback URL")
    click.echo("  3. Copy the OAuth 2.0 Client ID and Client Secret")
    click.echo()

    client_id = click.prompt("client_id")
    client_secret = click.prompt("client_secret", hide_input=True, default="", show_default=False)
    callback_url = click.prompt("callback_url", default="http://localhost:5173/callback")

    click.echo()
    click.echo("(Optional) App bearer token for `search` — press Enter to skip.")
    bearer_token = click.prompt("bearer_token", hide_input=True, default="", show_default=False)
    click.echo("(Optional) Anthropic API key for `category auto` — press Enter to skip.")
    api_key = click.prompt("anthropic_api_key", hide_input=True, default="", show_default=False)

    config = AppConfig(
        x=XConfig(
            client_id=client_id,
            client_secret=client_secret,
            callback_url=callback_url,
            bearer_token=bearer_token,
        ),
        ai=AIConfig(api_key=api_key),
    )

    save_config(config, config_path)
    click.echo(f"\nConfig saved to {config_path}")
    click.echo("Run 'x-bookmarks login' to connect your X account.")


@main.command()
@click.pass_context
def login(ctx):
    """Connect your X account."""
    with open_app(ctx) as app:
        request = app.oauth.get_auth_url()
        click.echo("Open this URL in your browser and authorize the app:")
        click.echo()
        click.echo(request.url)
        click.echo()
        redirect = click.prompt("Paste the full URL you were redirected to")

        query = parse_qs(urlsplit(redirect.strip()).query)
        if "error" in query:
            click.echo(f"Error: Authorization denied ({query['error'][0]})", err=True)
            sys.exit(1)
        code = (query.get("code") or [""])[0]
        state = (query.get("state") or [""])[0]
        if not code:
            click.echo("Error: No authorization code found in that URL.", err=True)
            sys.exit(1)

        _, username = app.credentials.complete_login(code, state)
        click.echo(f"Logged in as @{username}.")


@main.command()
@click.pass_context
def logout(ctx):
    """Forget the stored X credential."""
    with open_app(ctx) as app:
        app.credentials.logout()
        click.echo("Logged out.")


@main.command()
@click.pass_context
def status(ctx):
    """Show account, sync and library status."""
    config_path = ctx.obj["config_path"]
    has_config = config_exists(config_path)

    click.echo("X Bookmarks — Status")
    click.echo("=" * 40)
    click.echo(f"Config: {'Found' if has_config else 'Not configured'} ({config_path})")

    if not has_config:
        click.echo("\nRun 'x-bookmarks setup' to get started.")
        return

    with open_app(ctx) as app:
        identity = app.credentials.identity()
        click.echo(f"Account: @{identity[1]}" if identity else "Account: Not logged in")

        state = app.state.get()
        last = state.last_sync_at.strftime("%Y-%m-%d %H:%M UTC") if state.last_sync_at else "Never"
        click.echo(f"Last sync: {last}")
        if state.sync_started_at:
            click.echo(f"Sync running since: {state.sync_started_at.strftime('%Y-%m-%d %H:%M UTC')}")

        stats = app.store.stats()
        click.echo(f"Bookmarks: {stats['bookmarks']}")
        click.echo(f"Tags: {stats['tags']}")
        click.echo(f"Categories: {stats['categories']}")
        click.echo(f"Database: {app.config.db_path}")


# ── Library ──


@main.command()
@click.pass_context
def sync(ctx):
    """Pull bookmarks from X into the local library."""
    with open_app(ctx) as app:
        click.echo("Syncing bookmarks from X...")
        result = app.syncer.sync()
        click.echo(
            f"Done: {result.new_count} new, {result.updated_count} updated, "
            f"{result.total_synced} total."
        )


@main.command(name="list")
@click.option("--tag", "tags", multiple=True, help="Filter by tag name (repeatable, OR)")
@click.option("--category", "category_id", type=int, default=None, help="Filter by category id")
@click.option("--author", default=None, help="Filter by author username")
@click.option("--pinned", is_flag=True, help="Only pinned bookmarks")
@click.option("-q", "--query", default=None, help="Full-text search")
@click.option("--sort", default="bookmarked_at", help="bookmarked_at, created_at, likes, impressions, retweets")
@click.option("--order", type=click.Choice(["asc", "desc"]), default="desc")
@click.option("--page", default=1, help="Page number")
@click.option("--limit", default=20, help="Bookmarks per page (max 100)")
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
@click.pass_context
def list_bookmarks(ctx, tags, category_id, author, pinned, query, sort, order, page, limit, as_json):
    """List bookmarks, pinned first."""
    from .models import BookmarkFilter

    with open_app(ctx) as app:
        result = app.store.query(
            BookmarkFilter(
                tags=list(tags),
                category_id=category_id,
                author=author,
                pinned_only=pinned,
                text=query,
            ),
            sort=sort,
            order=order,
            page=page,
            limit=limit,
        )
        if as_json:
            click.echo(json.dumps([b.to_dict() for b in result.items], indent=2, ensure_ascii=False))
            return
        if not result.items:
            click.echo("No bookmarks found.")
            return
        for b in result.items:
            _echo_bookmark(b)
        click.echo(f"\nPage {result.page}/{max(result.total_pages, 1)} ({result.total} bookmarks)")


@main.command()
@click.argument("bookmark_id")
@click.pass_context
def show(ctx, bookmark_id):
    """Show one bookmark in full."""
    with open_app(ctx) as app:
        b = app.store.get(bookmark_id)
        click.echo(f"@{b.author_username} ({b.author_name})")
        click.echo(b.tweet_url)
        click.echo()
        click.echo(b.text)
        click.echo()
        click.echo(
            f"likes {b.likes} · retweets {b.retweets} · replies {b.replies} · "
            f"quotes {b.quotes} · impressions {b.impressions}"
        )
        if b.created_at:
            click.echo(f"Posted: {b.created_at.isoformat()}")
        if b.category_id is not None:
            click.echo(f"Category: {app.store.get_category(b.category_id).name}")
        if b.tags:
            click.echo(f"Tags: {', '.join(t.name for t in b.tags)}")
        if b.is_pinned:
            click.echo("Pinned")
        if b.notes:
            click.echo(f"Notes: {b.notes}")


@main.command()
@click.argument("bookmark_id")
@click.option("--notes", default=None, help="Replace notes")
@click.option("--category", "category_id", type=int, default=None, help="Set category id")
@click.option("--no-category", is_flag=True, help="Clear the category")
@click.option("--pin/--unpin", default=None, help="Pin or unpin")
@click.pass_context
def edit(ctx, bookmark_id, notes, category_id, no_category, pin):
    """Edit a bookmark's notes, category or pin state."""
    changes = {}
    if notes is not None:
        changes["notes"] = notes
    if no_category:
        changes["category_id"] = None
    elif category_id is not None:
        changes["category_id"] = category_id
    if pin is not None:
        changes["is_pinned"] = pin

    with open_app(ctx) as app:
        b = app.store.update(bookmark_id, **changes)
        click.echo(f"Updated {b.id}.")


@main.command()
@click.argument("bookmark_ids", nargs=-1, required=True)
@click.pass_context
def delete(ctx, bookmark_ids):
    """Delete bookmarks from the local library."""
    with open_app(ctx) as app:
        removed = app.store.bulk_delete(list(bookmark_ids))
        click.echo(f"Deleted {removed} bookmark(s).")


@main.command(name="import")
@click.argument("input_file", type=click.Path(exists=True))
@click.pass_context
def import_cmd(ctx, input_file):
    """Import bookmarks from a JSON export. Existing ids are skipped."""
    content = Path(input_file).read_text(encoding="utf-8")
    try:
        document = json.loads(content)
    except json.JSONDecodeError as e:
        click.echo(f"Error: {input_file} is not valid JSON: {e}", err=True)
        sys.exit(1)
    records = document.get("bookmarks") if isinstance(document, dict) else document

    with open_app(ctx) as app:
        result = app.store.import_bookmarks(records)
        click.echo(
            f"Imported {result.imported}, skipped {result.skipped} of {result.total}."
        )


@main.command()
@click.option("--format", "fmt", type=click.Choice(["json", "csv"]), default="json")
@click.option("-o", "--output", type=click.Path(), default=None, help="Output file")
@click.pass_context
def export(ctx, fmt, output):
    """Export every bookmark with its tags.

    If -o is not specified, the export is written to stdout.
    """
    from .converter import bookmarks_to_csv, bookmarks_to_json

    with open_app(ctx) as app:
        bookmarks = app.store.export()

    if fmt == "csv":
        if output:
            with open(output, "w", encoding="utf-8", newline="") as f:
                bookmarks_to_csv(bookmarks, f)
        else:
            click.echo(bookmarks_to_csv(bookmarks), nl=False)
    else:
        content = bookmarks_to_json(bookmarks)
        if output:
            Path(output).write_text(content, encoding="utf-8")
        else:
            click.echo(content)

    if output:
        click.echo(f"Exported {len(bookmarks)} bookmarks to {output}", err=True)


# ── Research ──


@main.command()
@click.argument("query")
@click.option("--sort", default="likes", help="likes, impressions, retweets, replies or recent")
@click.option("--pages", default=1, help="Result pages to fetch (100 posts each)")
@click.option("--since", default=None, help="Time window: 30m, 24h, 7d or an ISO date")
@click.option("--min-likes", default=0)
@click.option("--min-impressions", default=0)
@click.option("--limit", default=30)
@click.pass_context
def search(ctx, query, sort, pages, since, min_likes, min_impressions, limit):
    """Search recent posts on X."""
    from .research import SearchParams

    with open_app(ctx) as app:
        result = app.research.search(
            query,
            SearchParams(
                sort=sort,
                pages=pages,
                since=since,
                min_likes=min_likes,
                min_impressions=min_impressions,
                limit=limit,
            ),
        )
        for post in result.posts:
            _echo_post(post)
        source = "cache" if result.from_cache else "X API"
        click.echo(f"\n{len(result.posts)} of {result.total} posts (from {source})")


@main.command()
@click.argument("post_id")
@click.pass_context
def post(ctx, post_id):
    """Look up a single post on X."""
    with open_app(ctx) as app:
        found = app.client.get_post(post_id)
        if found is None:
            raise NotFoundError("post", post_id)
        click.echo(f"@{found.author_username} ({found.author_name})")
        click.echo(found.tweet_url)
        click.echo()
        click.echo(found.text)
        click.echo()
        click.echo(
            f"likes {found.likes} · retweets {found.retweets} · replies {found.replies} · "
            f"impressions {found.impressions}"
        )


@main.command()
@click.argument("post_id")
@click.option("--pages", default=2, help="Reply pages to fetch (100 posts each)")
@click.pass_context
def thread(ctx, post_id, pages):
    """Show a post and the replies in its conversation."""
    with open_app(ctx) as app:
        posts = app.research.thread(post_id, pages=pages)
        for p in posts:
            _echo_post(p)
        click.echo(f"\n{len(posts)} posts in thread")


@main.command()
@click.argument("username")
@click.option("--count", default=20, help="Recent posts to show")
@click.option("--replies", is_flag=True, help="Include replies")
@click.pass_context
def profile(ctx, username, count, replies):
    """Show an account and its recent posts."""
    with open_app(ctx) as app:
        result = app.research.profile(username, count=count, include_replies=replies)
        user = result.user
        click.echo(f"@{user.username} ({user.name})")
        if user.description:
            click.echo(user.description)
        click.echo(
            f"followers {user.followers} · following {user.following} · posts {user.post_count}"
        )
        click.echo()
        for p in result.posts:
            _echo_post(p)


@main.command()
@click.argument("post_id")
@click.pass_context
def save(ctx, post_id):
    """Save a post found on X into the library."""
    with open_app(ctx) as app:
        bookmark, created = app.research.save_bookmark(app.store, post_id)
        if created:
            click.echo(f"Saved {bookmark.id} from @{bookmark.author_username}.")
        else:
            click.echo(f"Already bookmarked: {bookmark.id}")


# ── Tags ──


@main.group()
def tag():
    """Manage tags."""


@tag.command(name="list")
@click.pass_context
def tag_list(ctx):
    with open_app(ctx) as app:
        tags = app.store.list_tags()
        if not tags:
            click.echo("No tags.")
        for t in tags:
            click.echo(f"{t.id:>4}  {t.name}  {t.color}  ({t.bookmark_count})")


@tag.command(name="create")
@click.argument("name")
@click.option("--color", default=None, help="Hex color, default #6366f1")
@click.pass_context
def tag_create(ctx, name, color):
    with open_app(ctx) as app:
        t = app.store.create_tag(name, color)
        click.echo(f"Created tag {t.id}: {t.name}")


@tag.command(name="update")
@click.argument("tag_id", type=int)
@click.option("--name", default=None)
@click.option("--color", default=None)
@click.pass_context
def tag_update(ctx, tag_id, name, color):
    with open_app(ctx) as app:
        t = app.store.update_tag(tag_id, name=name, color=color)
        click.echo(f"Updated tag {t.id}: {t.name} {t.color}")


@tag.command(name="delete")
@click.argument("tag_id", type=int)
@click.pass_context
def tag_delete(ctx, tag_id):
    with open_app(ctx) as app:
        app.store.delete_tag(tag_id)
        click.echo(f"Deleted tag {tag_id}.")


@tag.command(name="add")
@click.argument("tag_id", type=int)
@click.argument("bookmark_ids", nargs=-1, required=True)
@click.pass_context
def tag_add(ctx, tag_id, bookmark_ids):
    """Attach a tag to bookmarks."""
    with open_app(ctx) as app:
        added = app.store.bulk_tag(list(bookmark_ids), [tag_id])
        click.echo(f"Tagged {added} bookmark(s).")


@tag.command(name="remove")
@click.argument("tag_id", type=int)
@click.argument("bookmark_ids", nargs=-1, required=True)
@click.pass_context
def tag_remove(ctx, tag_id, bookmark_ids):
    """Detach a tag from bookmarks."""
    with open_app(ctx) as app:
        removed = app.store.bulk_untag(list(bookmark_ids), [tag_id])
        click.echo(f"Untagged {removed} bookmark(s).")


# ── Categories ──


@main.group()
def category():
    """Manage categories."""


@category.command(name="list")
@click.pass_context
def category_list(ctx):
    with open_app(ctx) as app:
        categories = app.store.list_categories()
        if not categories:
            click.echo("No categories.")
        for c in categories:
            click.echo(f"{c.id:>4}  {c.name}  [{c.icon}]  ({c.bookmark_count})")


@category.command(name="create")
@click.argument("name")
@click.option("--icon", default=None, help="Icon name, default 'folder'")
@click.pass_context
def category_create(ctx, name, icon):
    with open_app(ctx) as app:
        c = app.store.create_category(name, icon)
        click.echo(f"Created category {c.id}: {c.name}")


@category.command(name="update")
@click.argument("category_id", type=int)
@click.option("--name", default=None)
@click.option("--icon", default=None)
@click.option("--sort-order", type=int, default=None)
@click.pass_context
def category_update(ctx, category_id, name, icon, sort_order):
    with open_app(ctx) as app:
        c = app.store.update_category(category_id, name=name, icon=icon, sort_order=sort_order)
        click.echo(f"Updated category {c.id}: {c.name}")


@category.command(name="delete")
@click.argument("category_id", type=int)
@click.pass_context
def category_delete(ctx, category_id):
    """Delete a category. Its bookmarks become uncategorized."""
    with open_app(ctx) as app:
        app.store.delete_category(category_id)
        click.echo(f"Deleted category {category_id}.")


@category.command(name="auto")
@click.argument("category_id", type=int)
@click.pass_context
def category_auto(ctx, category_id):
    """Use AI to file uncategorized bookmarks into a category."""
    from .categorizer import auto_categorize

    def progress(current, total, message):
        click.echo(f"[{current}/{total}] {message}", err=True)

    with open_app(ctx) as app:
        result = auto_categorize(app.store, category_id, app.classifier(), on_progress=progress)
        click.echo(f"Categorized {result.categorized} of {result.total} uncategorized bookmarks.")


# ── Auto-tag rules ──


@main.group()
def rule():
    """Manage auto-tag rules."""


@rule.command(name="list")
@click.pass_context
def rule_list(ctx):
    with open_app(ctx) as app:
        rules = app.store.list_rules()
        if not rules:
            click.echo("No rules.")
        for r in rules:
            click.echo(f"{r.id:>4}  {r.rule_type.value:<10} {r.pattern!r} -> {r.tag_name}")


@rule.command(name="add")
@click.argument("tag_id", type=int)
@click.argument("rule_type", type=click.Choice(["keyword", "hashtag", "author", "url_domain"]))
@click.argument("pattern")
@click.pass_context
def rule_add(ctx, tag_id, rule_type, pattern):
    with open_app(ctx) as app:
        r = app.store.add_rule(tag_id, rule_type, pattern)
        click.echo(f"Added rule {r.id}: {r.rule_type.value} {r.pattern!r} -> {r.tag_name}")


@rule.command(name="delete")
@click.argument("rule_id", type=int)
@click.pass_context
def rule_delete(ctx, rule_id):
    with open_app(ctx) as app:
        app.store.delete_rule(rule_id)
        click.echo(f"Deleted rule {rule_id}.")


@rule.command(name="apply")
@click.option("--bookmark", "bookmark_id", default=None, help="Apply to one bookmark only")
@click.pass_context
def rule_apply(ctx, bookmark_id):
    """Run auto-tag rules over the library."""
    with open_app(ctx) as app:
        if bookmark_id:
            attached = app.autotagger.apply_rules(bookmark_id)
            click.echo(f"Attached {attached} tag(s) to {bookmark_id}.")
        else:
            considered = app.autotagger.apply_all()
            click.echo(f"Applied rules to {considered} bookmarks.")


# ── Watchlist ──


@main.group()
def watch():
    """Manage the account watchlist."""


@watch.command(name="list")
@click.pass_context
def watch_list(ctx):
    with open_app(ctx) as app:
        entries = app.store.list_watchlist()
        if not entries:
            click.echo("Watchlist is empty.")
        for w in entries:
            note = f"  {w.note}" if w.note else ""
            click.echo(f"@{w.username}{note}")


@watch.command(name="add")
@click.argument("username")
@click.option("--note", default="")
@click.pass_context
def watch_add(ctx, username, note):
    with open_app(ctx) as app:
        w = app.store.add_watch(username, note)
        click.echo(f"Watching @{w.username}.")


@watch.command(name="remove")
@click.argument("username")
@click.pass_context
def watch_remove(ctx, username):
    with open_app(ctx) as app:
        app.store.remove_watch(username)
        click.echo(f"Stopped watching @{username.lstrip('@')}.")


@watch.command(name="check")
@click.pass_context
def watch_check(ctx):
    """Show recent posts from every watched account."""
    with open_app(ctx) as app:
        reports = app.research.check_watchlist(app.store)
        if not reports:
            click.echo("Watchlist is empty.")
        for r in reports:
            note = f"  ({r.note})" if r.note else ""
            click.echo(f"@{r.username}{note}")
            if r.error:
                click.echo(f"    error: {r.error}")
            elif not r.posts:
                click.echo("    no recent posts")
            for p in r.posts:
                _echo_post(p, indent="    ")


# ── Search cache ──


@main.group()
def cache():
    """Maintain the search result cache."""


@cache.command(name="clear")
@click.pass_context
def cache_clear(ctx):
    with open_app(ctx) as app:
        removed = app.cache.clear()
        click.echo(f"Removed {removed} cache entries.")


@cache.command(name="prune")
@click.option("--ttl-minutes", type=float, default=None, help="Default: research.cache_ttl_minutes")
@click.pass_context
def cache_prune(ctx, ttl_minutes):
    with open_app(ctx) as app:
        ttl = (ttl_minutes if ttl_minutes is not None else app.config.cache_ttl_minutes) * 60
        removed = app.cache.prune(ttl)
        click.echo(f"Removed {removed} expired cache entries.")
