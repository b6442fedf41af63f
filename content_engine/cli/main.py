import json
from typing import Callable, Optional

import typer
from rich import print

from content_engine.config.settings import get_settings
from content_engine.db.database import init_db
from content_engine.models.errors import ContentEngineError
from content_engine.services.ollama_client import OllamaClient
from content_engine.tools.logging_setup import setup_logging
from content_engine.workflows.actions import Action, dispatch
from content_engine.workflows.pipeline import ContentPipeline, build_pipeline


app = typer.Typer(help="Feed-to-WordPress content engine")


@app.callback()
def main():
    setup_logging()


def _execute(fn: Callable[[ContentPipeline], dict], label: str) -> None:
    try:
        result = fn(build_pipeline())
    except (ContentEngineError, ValueError) as e:
        print(f"[bold red]{label} failed[/bold red]: {e}")
        raise SystemExit(1)
    print(f"[bold green]{label} complete[/bold green]")
    print(result)


def _act(action: Action | str, label: str, **params) -> None:
    _execute(lambda p: dispatch(p, action, params), label)


@app.command()
def doctor():
    """Check config + DB connectivity."""
    s = get_settings()
    print("[bold green]Config loaded[/bold green]")
    print("Ollama:", s.ollama_base_url, "| Model:", s.ollama_model, "| Embeddings:", s.ollama_embed_model)
    print("DataForSEO:", "configured" if s.has_dataforseo else "[yellow]missing[/yellow]")
    print("Ollama OK:", OllamaClient(s).ping())
    init_db()
    print("[bold green]DB OK[/bold green]")


@app.command("add-site")
def add_site(
    name: str,
    url: str,
    wp_username: Optional[str] = typer.Option(None, help="WordPress user"),
    wp_app_password: Optional[str] = typer.Option(None, help="WordPress application password"),
):
    """Register a WordPress site."""
    def _add(p: ContentPipeline) -> dict:
        site = p.sites.add(name, url, wp_username=wp_username, wp_app_password=wp_app_password)
        return {"site_id": site.id, "name": site.name}

    _execute(_add, "Add site")


@app.command("add-feed")
def add_feed(
    url: str,
    site_id: Optional[int] = typer.Option(None),
    name: Optional[str] = typer.Option(None),
    poll_interval_minutes: int = typer.Option(60),
):
    """Register an RSS/Atom feed."""
    def _add(p: ContentPipeline) -> dict:
        feed = p.feeds.add(url, name=name, site_id=site_id, poll_interval_minutes=poll_interval_minutes)
        return {"feed_id": feed.id, "name": feed.name}

    _execute(_add, "Add feed")


@app.command()
def poll(feed_id: Optional[int] = typer.Option(None), site_id: Optional[int] = typer.Option(None)):
    """Poll one feed, or every enabled feed."""
    if feed_id is not None:
        _act(Action.POLL_FEED, "Poll", feed_id=feed_id)
    else:
        _act(Action.POLL_ALL_FEEDS, "Poll", site_id=site_id)


@app.command()
def score(
    item_id: Optional[int] = typer.Option(None),
    limit: Optional[int] = typer.Option(None),
    site_id: Optional[int] = typer.Option(None),
):
    """Score one item, or a batch of ingested items."""
    if item_id is not None:
        _act(Action.SCORE_ITEM, "Score", item_id=item_id)
    else:
        _act(Action.SCORE_BATCH, "Score", limit=limit, site_id=site_id)


@app.command()
def extract(
    item_ids: Optional[str] = typer.Option(None, help="Comma-separated item ids"),
    limit: Optional[int] = typer.Option(None),
    site_id: Optional[int] = typer.Option(None),
):
    """Extract facts and keywords from scored items."""
    _act(Action.EXTRACT_FACTS, "Extract", item_ids=item_ids, limit=limit, site_id=site_id)


@app.command()
def verify(
    item_ids: Optional[str] = typer.Option(None, help="Comma-separated item ids"),
    limit: Optional[int] = typer.Option(None),
    site_id: Optional[int] = typer.Option(None),
):
    """Verify extracted facts against search results."""
    _act(Action.FACT_CHECK, "Fact check", item_ids=item_ids, limit=limit, site_id=site_id)


@app.command()
def embed(limit: Optional[int] = typer.Option(None), site_id: Optional[int] = typer.Option(None)):
    """Embed items that have no vector yet."""
    _act(Action.EMBED_ITEMS, "Embed", limit=limit, site_id=site_id)


@app.command()
def cluster(site_id: Optional[int] = typer.Option(None)):
    """Group similar items into labeled clusters."""
    _act(Action.CLUSTER_ITEMS, "Cluster", site_id=site_id)


@app.command()
def label(site_id: Optional[int] = typer.Option(None)):
    """Retry labeling clusters that have no label."""
    _act(Action.LABEL_CLUSTERS, "Label", site_id=site_id)


@app.command()
def skip(item_ids: str = typer.Argument(..., help="Comma-separated item ids")):
    """Exclude items from generation."""
    _act(Action.SKIP_ITEMS, "Skip", item_ids=item_ids)


@app.command()
def generate(
    item_ids: str = typer.Argument(..., help="Comma-separated item ids"),
    preset: str = typer.Option("full-article"),
    persona: Optional[str] = typer.Option(None),
    site_id: Optional[int] = typer.Option(None),
    section: Optional[str] = typer.Option(None, help="Generate only this section, without a run"),
):
    """Generate article sections from source items."""
    if section:
        _act(Action.GENERATE_SECTION, "Generate", section_type=section, item_ids=item_ids, preset=preset)
    else:
        _act(
            Action.GENERATE_ALL_SECTIONS, "Generate",
            item_ids=item_ids, preset=preset, persona=persona, site_id=site_id,
        )


@app.command()
def assemble(run_id: int):
    """Assemble a generated run into one HTML article."""
    _act(Action.ASSEMBLE_ARTICLE, "Assemble", run_id=run_id)


@app.command()
def publish(run_id: int, site_id: int):
    """Push an assembled run to WordPress as a draft."""
    _act(Action.PUBLISH_TO_WP, "Publish", run_id=run_id, site_id=site_id)


@app.command()
def run(
    site_id: int,
    preset: str = typer.Option("full-article"),
    min_score: Optional[int] = typer.Option(None),
    persona: Optional[str] = typer.Option(None),
    cluster: bool = typer.Option(False, "--cluster/--no-cluster"),
):
    """Run the full pipeline for one site."""
    try:
        _act(
            Action.RUN_FULL_PIPELINE, "Run",
            site_id=site_id, preset=preset, min_score=min_score, persona=persona, cluster=cluster,
        )
    except KeyboardInterrupt:
        # the run keeps its last status
        print("[bold yellow]Run interrupted[/bold yellow]; resume it with `resume`")
        raise SystemExit(130)


@app.command()
def resume(run_id: int):
    """Continue an unfinished run from its recorded status."""
    _act(Action.RESUME_RUN, "Resume", run_id=run_id)


@app.command()
def action(name: str, params: str = typer.Option("{}", help="JSON object of action params")):
    """Run any action by name."""
    try:
        parsed = json.loads(params)
    except json.JSONDecodeError as e:
        print(f"[bold red]Bad params[/bold red]: {e}")
        raise SystemExit(2)
    _act(name, name, **parsed)


if __name__ == "__main__":
    app()
