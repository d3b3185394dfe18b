"""Command-line interface for EvidenceScout."""

import asyncio
import json
import logging
from pathlib import Path

import click

from evidence_scout.config import get_settings
from evidence_scout.errors import EvidenceScoutError


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(package_name="evidence-scout")
@click.option("--log-level", default=None, help="Override LOG_LEVEL from the environment")
def main(log_level: str | None):
    """EvidenceScout: evidence retrieval and appraisal for clinical questions."""
    configure_logging(log_level or get_settings().log_level)


@main.command()
@click.option("--host", default=None, help="Bind address (default from HOST)")
@click.option("--port", type=int, default=None, help="Port (default from PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: str | None, port: int | None, reload: bool):
    """Run the HTTP API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "evidence_scout.api.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


async def _run_query(
    question: str, use_ai: bool, max_results: int, synthesize: bool
) -> dict:
    from evidence_scout.services.container import Services

    services = Services.build(get_settings())
    try:
        session = await services.coordinator.run(
            question, use_ai=use_ai, max_results=max_results
        )
        result = {
            "question": session.question.text,
            "searchStrategy": session.query,
            "state": session.state.value,
            "articles": [a.to_wire() for a in session.articles],
        }
        if synthesize and session.articles and use_ai:
            synthesis = await services.coordinator.synthesize(session)
            result["synthesis"] = synthesis.model_dump(by_alias=True)
        return result
    finally:
        await services.close()


@main.command()
@click.argument("question")
@click.option("--no-ai", is_flag=True, help="Search with the question text, skip LLM appraisal")
@click.option(
    "-n",
    "--max-results",
    default=10,
    show_default=True,
    type=click.IntRange(1, 50),
    help="Number of articles to retrieve",
)
@click.option("--synthesize", is_flag=True, help="Also produce a cross-article synthesis")
@click.option("-o", "--output", type=click.Path(), help="Output file path (JSON)")
def query(question: str, no_ai: bool, max_results: int, synthesize: bool, output: str | None):
    """Answer a clinical QUESTION with ranked, appraised PubMed articles."""
    click.echo(f"Question: {question}")
    try:
        result = asyncio.run(_run_query(question, not no_ai, max_results, synthesize))
    except EvidenceScoutError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    click.echo(f"Search strategy: {result['searchStrategy']}")
    click.echo(f"{len(result['articles'])} articles:")
    for i, article in enumerate(result["articles"], 1):
        score = article.get("priorityScore")
        flag = " [analysis failed]" if article.get("analysisError") else ""
        click.echo(
            f"  {i}. PMID {article['pmid']} ({score if score is not None else '-'}) "
            f"{article.get('title', '')}{flag}"
        )
    if "synthesis" in result:
        click.echo(f"\nEvidence rating: {result['synthesis']['evidenceRating']}/5")

    if output:
        Path(output).write_text(json.dumps(result, indent=2, ensure_ascii=False))
        click.echo(f"\nResults saved to: {output}")


if __name__ == "__main__":
    main()
