"""CLI entry point for agent-transcripts."""

import sys
from pathlib import Path
from typing import Optional
import json

import click

from .models import SchemaIssue
from .registry import AGENT_INFO, SUPPORTED_AGENTS
from .schema_logger import SchemaLogger
from .shared import expand_home


def get_default_dir(agent: str, home: Optional[str] = None) -> Path:
    """Default transcript root for an agent, with ~ resolved against home."""
    return Path(expand_home(AGENT_INFO[agent].default_path, home or Path.home()))


def make_logger(verbose: bool) -> SchemaLogger:
    """Schema logger that echoes each issue to stderr when verbose."""
    def echo_issue(issue: SchemaIssue) -> None:
        location = f"#{issue.entry_index}" if issue.entry_index is not None else ""
        click.echo(
            f"[{issue.agent}] {issue.issue_type}: {issue.description} "
            f"({Path(issue.transcript_path).name}{location})",
            err=True,
        )

    return SchemaLogger(on_issue=echo_issue if verbose else None)


def resolve_agent_dirs(home, claude_dir, codex_dir, gemini_dir, agents) -> dict[str, Path]:
    overrides = {'claude': claude_dir, 'codex': codex_dir, 'gemini': gemini_dir}
    selected = agents or SUPPORTED_AGENTS
    return {
        agent: Path(overrides[agent]) if overrides[agent] else get_default_dir(agent, home)
        for agent in selected
    }


def format_duration(duration_ms: Optional[int]) -> str:
    if duration_ms is None:
        return "-"
    minutes, seconds = divmod(duration_ms // 1000, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    return f"{minutes}m{seconds:02d}s"


def dir_options(f):
    f = click.option("--gemini-dir", default=None, help="Gemini sessions root (default ~/.gemini/tmp)")(f)
    f = click.option("--codex-dir", default=None, help="Codex sessions root (default ~/.codex/sessions)")(f)
    f = click.option("--claude-dir", default=None, help="Claude projects root (default ~/.claude/projects)")(f)
    f = click.option("--home", default=None, help="Home directory used to resolve default roots")(f)
    f = click.option("--agent", "agents", multiple=True, type=click.Choice(SUPPORTED_AGENTS), help="Limit to an agent (repeatable)")(f)
    return f


@click.group()
@click.version_option(package_name="agent-transcripts")
def main():
    """Agent Transcripts - read Claude Code, Codex CLI and Gemini CLI session logs."""
    pass


@main.command()
@dir_options
@click.option("--recent", default=10, show_default=True, help="Number of most recent transcripts to list")
@click.option("--format", "output_format", default="text", type=click.Choice(['text', 'json']), help="Output format")
@click.option("--verbose", is_flag=True, help="Echo schema issues to stderr")
def scan(agents, home, claude_dir, codex_dir, gemini_dir, recent, output_format, verbose):
    """Discover transcripts and summarize each agent's sessions."""
    from .sessions import scan_all_transcripts

    agent_dirs = resolve_agent_dirs(home, claude_dir, codex_dir, gemini_dir, agents)
    logger = make_logger(verbose)

    result = scan_all_transcripts(agent_dirs, schema_logger=logger)
    transcripts = result['transcripts']

    if output_format == 'json':
        data = {
            'stats': result['stats'],
            'transcripts': [t.to_dict() for t in transcripts],
        }
        click.echo(json.dumps(data, indent=2))
        return

    for agent, path in agent_dirs.items():
        click.echo(f"{AGENT_INFO[agent].name}: {result['stats'][agent]} transcripts ({path})")
    click.echo(f"Total: {result['stats']['total']}")

    if not transcripts:
        click.echo("No transcripts found.")
        return

    click.echo("")
    click.echo("Most recent")
    click.echo("-" * 30)
    for t in sorted(transcripts, key=lambda t: t.modified_at, reverse=True)[:max(0, recent)]:
        when = t.modified_at.strftime('%Y-%m-%d %H:%M')
        duration = format_duration(t.stats.duration_ms if t.stats else None)
        marker = "  (subagent)" if t.is_subagent else ""
        click.echo(f"  [{when}] {t.agent:<6} {t.entry_count:>5} entries {duration:>7}  {t.name}{marker}")

    if len(logger):
        click.echo("")
        click.echo(f"Schema issues: {len(logger)} (use --verbose for details)", err=True)


@main.command()
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("--agent", default=None, type=click.Choice(SUPPORTED_AGENTS), help="Transcript format (detected from path if omitted)")
@click.option("--offset", default=0, show_default=True, help="Index of the first entry")
@click.option("--limit", default=50, show_default=True, help="Maximum number of entries")
@click.option("--raw", "include_raw", is_flag=True, help="Include the original record as _raw")
@click.option("--format", "output_format", default="text", type=click.Choice(['text', 'json']), help="Output format")
@click.option("--verbose", is_flag=True, help="Echo schema issues to stderr")
def entries(path, agent, offset, limit, include_raw, output_format, verbose):
    """Print a page of normalized entries from one transcript."""
    from .registry import detect_agent_from_file, parse_entries

    logger = make_logger(verbose)

    try:
        if agent is None:
            agent = detect_agent_from_file(path)
        result = parse_entries(
            path,
            agent,
            offset=offset,
            limit=limit,
            include_raw=include_raw,
            schema_logger=logger,
        )
    except (OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if output_format == 'json':
        data = {
            'agent': result['agent'],
            'total': result['total'],
            'offset': offset,
            'entries': [e.to_dict() for e in result['entries']],
        }
        click.echo(json.dumps(data, indent=2, default=str))
        return

    shown = len(result['entries'])
    click.echo(f"{AGENT_INFO[result['agent']].name}: showing {shown} of {result['total']} entries")
    click.echo("")
    for entry in result['entries']:
        label = entry.type.upper()
        if entry.tool_name:
            label = f"{label} {entry.tool_name}"
        text = (entry.text or "").strip()
        if len(text) > 200:
            text = text[:200] + "..."
        click.echo(f"[{entry.timestamp}] {label}: {text}")


@main.command()
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("--agent", default=None, type=click.Choice(SUPPORTED_AGENTS), help="Transcript format (detected from path if omitted)")
@click.option("--no-subagents", is_flag=True, help="Do not attach Claude subagent transcripts")
@click.option("--verbose", is_flag=True, help="Echo schema issues to stderr")
def info(path, agent, no_subagents, verbose):
    """Print one transcript's metadata and stats as JSON."""
    from .registry import detect_agent_from_file, parse_transcript

    logger = make_logger(verbose)

    try:
        if agent is None:
            agent = detect_agent_from_file(path)
        transcript = parse_transcript(
            path,
            agent,
            schema_logger=logger,
            scan_subagents=not no_subagents,
        )
    except (OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(transcript.to_dict(), indent=2))


@main.command()
@click.argument("path", type=click.Path(dir_okay=False))
def detect(path):
    """Detect which agent wrote a transcript file."""
    from .registry import detect_agent_from_file

    try:
        agent = detect_agent_from_file(path)
    except OSError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if agent is None:
        click.echo("Could not detect agent type", err=True)
        sys.exit(1)

    click.echo(agent)


@main.command()
@dir_options
@click.option("--limit", default=50, show_default=True, help="Maximum transcripts analyzed per agent")
@click.option("--verbose", is_flag=True, help="Echo schema issues to stderr")
def analyze(agents, home, claude_dir, codex_dir, gemini_dir, limit, verbose):
    """Report unknown entry types, unrecognized fields and logged schema issues."""
    from .analyze import analyze_transcripts, format_analysis_report

    agent_dirs = resolve_agent_dirs(home, claude_dir, codex_dir, gemini_dir, agents)
    logger = make_logger(verbose)

    for agent, agent_path in agent_dirs.items():
        click.echo(f"{AGENT_INFO[agent].name}: {agent_path}")
    click.echo("")

    result = analyze_transcripts(agent_dirs, limit=limit, schema_logger=logger)
    report = format_analysis_report(result)
    click.echo(report)

    # Exit with error if any transcript could not be read
    if result['errors']:
        sys.exit(1)


if __name__ == "__main__":
    main()
