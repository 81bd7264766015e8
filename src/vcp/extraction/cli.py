"""Label prompts from the command line.

Usage:
    vcp-label "A lone astronaut walks across Mars, shot on 35mm film at 24fps"
    vcp-label "..." --context subject="lone astronaut" --no-llm --json
    cat prompts.txt | vcp-label -    # one prompt per line, through a cached session

Environment Variables:
    See ``vcp.config``; VCP_LLM_MODEL selects the model unless --model is given.
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click

from vcp.cache import ResultCache, live_version
from vcp.config import parse_env
from vcp.extraction.open_vocab import SpanExtractor, create_extractor
from vcp.extraction.pipeline import PipelineResult, run
from vcp.extraction.session import LabelingSession
from vcp.extraction.types import CONTEXT_FIELDS, LabelingPolicy
from vcp.shared.storage import create_storage


def _format_table(result: PipelineResult) -> str:
    if result.is_adversarial:
        return "Prompt flagged as adversarial; no spans returned."
    if not result.spans:
        return "No spans found."

    lines = [
        "Start  End    Conf  Source       Category                      Quote",
        "-----  -----  ----  -----------  ----------------------------  -----",
    ]
    for span in result.spans:
        quote = span.quote if len(span.quote) <= 40 else span.quote[:37] + "..."
        lines.append(
            f"{span.start:<7}{span.end:<7}{span.confidence:<6.2f}{span.source.value:<13}"
            f"{span.category:<30}{quote}"
        )
    return "\n".join(lines)


def _parse_context(pairs: tuple[str, ...]) -> dict[str, Any]:
    context = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or key not in CONTEXT_FIELDS:
            raise click.BadParameter(
                f"expected FIELD=VALUE with FIELD in {', '.join(CONTEXT_FIELDS)}; got {pair!r}",
                param_hint="--context",
            )
        context[key] = value
    return context


async def _label_lines(
    lines,
    context: dict[str, Any],
    options: dict[str, Any],
    extractor: SpanExtractor,
    env: dict[str, Any],
    json_output: bool,
) -> int:
    """Label each non-empty line through one cached session; returns the count."""
    storage = create_storage(env["cache_storage"], path=env["cache_path"], url=env["cache_url"])
    cache = ResultCache(
        storage,
        version=live_version(env["template_version"]),
        max_entries=env["cache_max_entries"],
        ttl_seconds=env["cache_ttl_hours"] * 3600,
    )
    await cache.start()
    session = LabelingSession(
        extractor,
        cache=cache,
        policy_base=LabelingPolicy.from_config(env),
        cooldown_seconds=env["rate_limit_cooldown"],
    )
    count = 0
    try:
        for line in lines:
            text = line.strip()
            if not text:
                continue
            result = await session.label(text, context, options)
            count += 1
            if json_output:
                click.echo(json.dumps(result.to_dict(), ensure_ascii=False))
                continue
            click.echo(f"> {text}")
            click.echo(_format_table(result))
            if result.meta.get("status") == "stale":
                click.echo(f"(stale result; model cooling down for {result.meta['cooldown_remaining']}s)", err=True)
            click.echo("")
    finally:
        await cache.dispose()
    return count


@click.command()
@click.argument("text")
@click.option("--context", "context_pairs", multiple=True, help="Known field, e.g. subject=astronaut")
@click.option("--model", default=None, help="LLM model (default: VCP_LLM_MODEL)")
@click.option("--no-llm", is_flag=True, help="Deterministic matchers only")
@click.option("--max-spans", type=int, default=None)
@click.option("--min-confidence", type=float, default=None)
@click.option("--json", "json_output", is_flag=True, help="Output raw JSON instead of a table")
def main(
    text: str,
    context_pairs: tuple[str, ...],
    model: str | None,
    no_llm: bool,
    max_spans: int | None,
    min_confidence: float | None,
    json_output: bool,
) -> None:
    """Label visual control points in TEXT (or in each stdin line when TEXT is -)."""
    env = parse_env()
    extractor = create_extractor(
        "none" if no_llm else (model or env["llm_model"]),
        chunk_chars=env["chunk_chars"],
    )
    options = {"maxSpans": max_spans, "minConfidence": min_confidence}
    context = _parse_context(context_pairs)

    if text == "-":
        try:
            count = asyncio.run(_label_lines(
                click.get_text_stream("stdin"), context, options, extractor, env, json_output,
            ))
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        click.echo(f"Labeled {count} prompts", err=True)
        return

    try:
        result = asyncio.run(run(
            text,
            context,
            options,
            extractor=extractor,
            policy_base=LabelingPolicy.from_config(env),
        ))
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        click.echo(_format_table(result))
        open_vocab = result.meta.get("open_vocab", {})
        if not open_vocab.get("ok", True):
            click.echo(f"\nWarning: open-vocabulary stage failed ({open_vocab.get('reason')})", err=True)


if __name__ == "__main__":
    main()
