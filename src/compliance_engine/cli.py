"""
Command-line interface for the compliance engine.

Commands:
- evaluate: build a subject from a JSON file and print the generated tasks
- rules: list the loaded rules, optionally validating the whole set
"""

import argparse
import asyncio
import json
import sys
from datetime import date, datetime
from typing import Callable, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from compliance_engine.context.builder import ContextBuilder
from compliance_engine.context.provider import InMemoryProfileProvider
from compliance_engine.core.config import ComplianceSettings
from compliance_engine.core.exceptions import RuleEngineError
from compliance_engine.core.logging import configure_logging
from compliance_engine.engine.engine import RuleEngine
from compliance_engine.engine.models import RuleEngineResult
from compliance_engine.rules.loader import RuleLoader
from compliance_engine.rules.sources import FileRuleSource, RuleSource
from compliance_engine.rules.validation import RuleAnalyzer, RuleValidator

PRIORITY_STYLES = {"high": "red", "medium": "yellow", "low": "green"}


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="compliance-engine",
        description="Generate compliance tasks from declarative rules",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s evaluate student.json                 # Evaluate with bundled rules
  %(prog)s evaluate student.json --today 2024-03-01 --json
  %(prog)s rules --validate                      # Check the bundled rule set
  %(prog)s rules --rules extra.yaml --no-bundled
        """,
    )
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_rule_options(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--rules",
            action="append",
            default=[],
            metavar="FILE",
            help="Additional JSON/YAML rule document (repeatable)",
        )
        sub.add_argument("--no-bundled", action="store_true", help="Skip the bundled rule sets")

    evaluate = subparsers.add_parser("evaluate", help="Evaluate one subject")
    evaluate.add_argument("profile", help='JSON file with {"profile": ..., "documents": ..., "tasks": ...}')
    evaluate.add_argument("--today", type=date.fromisoformat, help="Evaluate as of this date (YYYY-MM-DD)")
    evaluate.add_argument("--json", action="store_true", help="Print the full result as JSON")
    add_rule_options(evaluate)

    rules = subparsers.add_parser("rules", help="List loaded rules")
    rules.add_argument("--validate", action="store_true", help="Validate the rule set")
    add_rule_options(rules)

    return parser


def build_loader(settings: ComplianceSettings, rule_files: List[str], bundled: bool) -> RuleLoader:
    sources: List[RuleSource] = []
    if bundled:
        sources.extend(RuleLoader.default_sources(settings.loader))
    sources.extend(FileRuleSource(path) for path in rule_files)
    return RuleLoader(sources=sources, config=settings.loader)


def fixed_clock(today: Optional[date]) -> Optional[Callable[[], datetime]]:
    if today is None:
        return None
    moment = datetime.combine(today, datetime.min.time())
    return lambda: moment


def print_result(console: Console, result: RuleEngineResult) -> None:
    context = result.context
    console.print(Panel.fit(
        f"[bold]{context.name or result.subject_id}[/bold]\n"
        f"Visa: {context.visa_type.value}  Phase: {context.current_phase.value}\n"
        f"Risk score: {context.compliance.risk_score}/100",
        title="Subject",
    ))

    table = Table(title=f"Tasks ({len(result.generated_tasks)})")
    table.add_column("Due", style="cyan")
    table.add_column("Priority")
    table.add_column("Task")
    table.add_column("Rule", style="dim")
    for task in result.generated_tasks:
        style = PRIORITY_STYLES.get(task.priority.value, "white")
        title = f"{task.title} [dim](blocked)[/dim]" if task.is_blocked else task.title
        table.add_row(
            task.due_date.isoformat(),
            f"[{style}]{task.priority.value}[/{style}]",
            title,
            task.rule_id,
        )
    console.print(table)

    for error in result.errors:
        console.print(f"[red]Error:[/red] {error}")

    if result.performance:
        perf = result.performance
        console.print(
            f"[dim]{perf.rules_evaluated} rules evaluated, {perf.rules_matched} matched "
            f"in {perf.execution_time_ms:.1f} ms[/dim]"
        )


async def run_evaluate(args: argparse.Namespace, settings: ComplianceSettings, console: Console) -> int:
    provider = InMemoryProfileProvider.from_json_file(args.profile)
    subject_id = next(iter(provider.profiles))
    clock = fixed_clock(args.today)

    loader = build_loader(settings, args.rules, bundled=not args.no_bundled)
    engine = await RuleEngine.from_loader(
        loader,
        ContextBuilder(provider, clock=clock),
        config=settings.engine,
        clock=clock,
    )
    result = await engine.evaluate_for_subject(subject_id)

    if args.json:
        console.print_json(result.model_dump_json(by_alias=True))
    else:
        print_result(console, result)
    return 1 if result.errors else 0


async def run_rules(args: argparse.Namespace, settings: ComplianceSettings, console: Console) -> int:
    loader = build_loader(settings, args.rules, bundled=not args.no_bundled)
    rules = await loader.load_all()

    table = Table(title=f"Rules ({len(rules)})")
    table.add_column("ID", style="cyan")
    table.add_column("Group")
    table.add_column("Visa types")
    table.add_column("Priority", justify="right")
    for rule in sorted(rules, key=lambda r: -r.priority):
        table.add_row(
            rule.id,
            rule.rule_group.value,
            ", ".join(visa.value for visa in rule.visa_types),
            str(rule.priority),
        )
    console.print(table)

    stats = RuleAnalyzer.analyze_rule_set(rules)
    console.print(json.dumps(stats, indent=2))

    if not args.validate:
        return 0

    report = RuleValidator().validate_rule_set(rules)
    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    for error in report.errors:
        console.print(f"[red]Error:[/red] {error}")
    console.print("[green]Rule set is valid[/green]" if report.is_valid else "[red]Rule set is invalid[/red]")
    return 0 if report.is_valid else 1


async def run(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    console = Console()

    settings = ComplianceSettings.from_yaml(args.config) if args.config else ComplianceSettings()
    if args.verbose:
        settings.logging.log_level = "DEBUG"
    configure_logging(settings.logging)

    try:
        if args.command == "evaluate":
            return await run_evaluate(args, settings, console)
        return await run_rules(args, settings, console)
    except RuleEngineError as e:
        console.print(f"[red]{e}[/red]")
        return 2
    except (FileNotFoundError, json.JSONDecodeError) as e:
        console.print(f"[red]Could not read input: {e}[/red]")
        return 2


def main(argv: Optional[List[str]] = None) -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(run(argv)))


if __name__ == "__main__":
    main()
