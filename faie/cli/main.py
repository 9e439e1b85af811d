import json
import time
from pathlib import Path

import typer
from rich import print
from rich.table import Table
from sqlalchemy.orm import Session

from faie.config.settings import get_settings
from faie.db.database import get_engine, init_db
from faie.errors import ValidationError
from faie.models.schemas import Ignored
from faie.services import ledger
from faie.services.classifiers import Classifier
from faie.services.enrichment import BackgroundEnricher, EnrichmentEngine
from faie.services.normalizer import normalize
from faie.services.ollama_client import OllamaClient
from faie.services.summary import send_daily_summary
from faie.workflows.ingest import ingest_item
from faie.workflows.run_retry import list_dead_letters, run_retry
from faie.tools.logging_setup import setup_logging
setup_logging()


app = typer.Typer(help="Feedback ingestion and enrichment pipeline")


def _enricher() -> EnrichmentEngine:
    init_db()
    return EnrichmentEngine(get_engine())


@app.command()
def doctor():
    """Check config, DB connectivity and the Ollama server."""
    s = get_settings()
    print("[bold green]Config loaded[/bold green]")
    print("Ollama:", s.ollama_base_url, "| Model:", s.ollama_model, "| Embed:", s.ollama_embed_model)
    print("Telegram:", "enabled" if s.telegram_enabled else "disabled")
    init_db()
    print("[bold green]DB OK[/bold green]")
    try:
        ok = OllamaClient(s).ping()
    except Exception as e:
        ok = False
        print(f"[yellow]{e}[/yellow]")
    print("[bold green]Ollama OK[/bold green]" if ok else "[bold red]Ollama unreachable[/bold red]")


@app.command()
def ingest(
    source: str = typer.Argument(..., help="github | slack | support"),
    file: Path = typer.Argument(..., exists=True, readable=True, help="JSON payload"),
    event: str = typer.Option(None, help="GitHub event name (issues, issue_comment)"),
):
    """Ingest one payload from a file and wait for its enrichment."""
    enricher = _enricher()
    background = BackgroundEnricher(enricher, max_workers=get_settings().enrich_workers)
    body = file.read_text(encoding="utf-8")
    try:
        parsed = normalize(source, json.loads(body), event)
    except (ValidationError, ValueError) as e:
        print(f"[bold red]Rejected[/bold red]: {e}")
        raise SystemExit(1)

    if isinstance(parsed, Ignored):
        print(f"[yellow]Ignored[/yellow]: {parsed.reason}")
        return

    outcome = ingest_item(enricher.engine, parsed, body, background)
    print(outcome.model_dump())
    background.shutdown(wait=True)


@app.command()
def retry():
    """Re-run enrichment for stranded and failed records (cron entry point)."""
    try:
        result = run_retry(_enricher())
        print("[bold green]Retry complete[/bold green]")
        print(result)
    except Exception as e:
        print(f"[bold red]Retry failed[/bold red]: {e}")
        raise SystemExit(1)


@app.command()
def worker():
    """Run the retry pass every RETRY_INTERVAL_MINUTES until interrupted."""
    s = get_settings()
    enricher = _enricher()
    while True:
        try:
            print(run_retry(enricher))
        except RuntimeError as e:
            print(f"[yellow]{e}[/yellow]")
        time.sleep(s.retry_interval_minutes * 60)


@app.command()
def summary():
    """Send the last-24h summary to Telegram."""
    init_db()
    print(send_daily_summary(get_engine()))


@app.command()
def themes(limit: int = 20):
    """Show theme aggregates by count."""
    init_db()
    table = Table("theme", "count", "avg sentiment", "avg urgency")
    with Session(get_engine()) as session:
        for t in ledger.list_themes(session, limit):
            table.add_row(t.theme_name, str(t.count), f"{t.avg_sentiment:.2f}", f"{t.avg_urgency:.1f}")
    print(table)


@app.command()
def similar(text: str, top_k: int = 5):
    """Find stored feedback semantically close to TEXT."""
    enricher = _enricher()
    vec = Classifier().embed(text)
    if not vec:
        print("[bold red]No embedding returned[/bold red]")
        raise SystemExit(1)
    for m in enricher.vector_index.query(vec, top_k):
        print(f"{m.feedback_id}  {m.score:.3f}  {m.metadata}")


@app.command("dead-letters")
def dead_letters():
    """List records that exhausted their retry budget."""
    init_db()
    s = get_settings()
    with Session(get_engine()) as session:
        for row in list_dead_letters(session, s):
            print(f"{row.id}  retries={row.retry_count}  error={row.processing_error}")


if __name__ == "__main__":
    app()
