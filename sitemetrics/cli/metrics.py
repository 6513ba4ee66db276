# ==============================================================================
# Metrics Commands
# ==============================================================================
"""
Metric commands for the sitemetrics CLI.

Each command is a thin wrapper over AnalyticsEngine: options become query
parameters, results are printed as a rich table or as JSON.
"""

from datetime import datetime
from typing import Annotated, Any, Callable, Optional

import typer
from rich.console import Console
from rich.table import Table

from sitemetrics.cli.shared import C, I, fail, print_json, window_params
from sitemetrics.core.engine import get_engine
from sitemetrics.core.errors import AnalyticsError
from sitemetrics.core.models import Granularity

# ==============================================================================
# Shared Options
# ==============================================================================

WebsiteOption = Annotated[str, typer.Option("--website", "-w", help="Website id")]
FromOption = Annotated[
    datetime, typer.Option("--from", formats=["%Y-%m-%d"], help="First day (YYYY-MM-DD)")
]
ToOption = Annotated[
    datetime, typer.Option("--to", formats=["%Y-%m-%d"], help="Last day, inclusive (YYYY-MM-DD)")
]
GranularityOption = Annotated[
    Granularity, typer.Option("--granularity", "-g", help="Bucket width")
]
LimitOption = Annotated[int, typer.Option("--limit", "-n", help="Number of rows")]
JsonOption = Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")]


def _run(metric: Callable[..., Any], json_output: bool, **params: Any) -> Any:
    """Call an engine method, turning engine errors into a clean exit."""
    try:
        return metric(**params)
    except AnalyticsError as e:
        fail(e, json_output)


def _window(website: str, date_from: datetime, date_to: datetime) -> dict[str, Any]:
    return window_params(website, date_from.date(), date_to.date())


def _print_table(title: str, columns: list[str], rows: list[list[Any]]) -> None:
    if not rows:
        print(f"\n  {C.BRIGHT_YELLOW}{I.WARN} No matching rows{C.RESET}\n")
        return
    table = Table(title=title, show_header=True, header_style="bold")
    for i, column in enumerate(columns):
        table.add_column(column, justify="left" if i == 0 else "right")
    for row in rows:
        table.add_row(*(_cell(value) for value in row))
    print()
    Console().print(table)
    print()


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:,.2f}"
    if isinstance(value, int):
        return f"{value:,}"
    return str(value)


# ==============================================================================
# Commands
# ==============================================================================


def metrics_funnel(
    website: WebsiteOption,
    date_from: FromOption,
    date_to: ToOption,
    start_event: Annotated[
        Optional[str], typer.Option("--start-event", help="Event X (default: any page view)")
    ] = None,
    end_event: Annotated[
        Optional[str], typer.Option("--end-event", help="Event Y (default: any custom event)")
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Show X -> Y conversion within the same session.

    Examples:
        sitemetrics metrics funnel -w <id> --from 2025-07-01 --to 2025-08-31 \\
            --start-event "Start Free Trial" --end-event Purchase
    """
    engine = get_engine()
    result = _run(
        engine.funnel,
        json_output,
        event_x=start_event,
        event_y=end_event,
        **_window(website, date_from, date_to),
    )
    if json_output:
        print_json(result)
        return
    _print_table(
        "Conversion Funnel",
        ["Start", "End", "Started", "Converted", "Rate %"],
        [
            [
                result.event_x or "(page view)",
                result.event_y or "(custom event)",
                result.started_sessions,
                result.converted_sessions,
                result.conversion_rate,
            ]
        ],
    )


def metrics_dropoffs(
    website: WebsiteOption,
    date_from: FromOption,
    date_to: ToOption,
    event: Annotated[Optional[str], typer.Option("--event", "-e", help="Only this event")] = None,
    limit: LimitOption = 10,
    json_output: JsonOption = False,
) -> None:
    """Show the events sessions most often end on."""
    engine = get_engine()
    items = _run(
        engine.event_dropoffs,
        json_output,
        event_name=event,
        limit=limit,
        **_window(website, date_from, date_to),
    )
    if json_output:
        print_json(items)
        return
    _print_table(
        "Event Dropoffs",
        ["Event", "Sessions", "Dropoffs", "Rate %"],
        [[i.event_name, i.sessions_with_event, i.dropoff_sessions, i.dropoff_rate] for i in items],
    )


def metrics_activation(
    website: WebsiteOption,
    date_from: FromOption,
    date_to: ToOption,
    event: Annotated[
        Optional[str], typer.Option("--event", "-e", help="Target event (default: any custom event)")
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Show the share of sessions doing an event on their first day."""
    engine = get_engine()
    result = _run(
        engine.first_day_activation,
        json_output,
        event_name=event,
        **_window(website, date_from, date_to),
    )
    if json_output:
        print_json(result)
        return
    _print_table(
        "First-Day Activation",
        ["Event", "Sessions", "Activated", "Rate %"],
        [
            [
                result.event_name or "(custom event)",
                result.total_sessions,
                result.sessions_with_event,
                result.percentage,
            ]
        ],
    )


def metrics_transitions(
    website: WebsiteOption,
    date_from: FromOption,
    date_to: ToOption,
    raw_paths: Annotated[
        bool, typer.Option("--raw-paths", help="Keep query strings, fragments and case")
    ] = False,
    min_support: Annotated[
        int, typer.Option("--min-support", help="Drop pairs seen fewer times")
    ] = 1,
    json_output: JsonOption = False,
) -> None:
    """Show page-to-page transitions (an empty target is an exit)."""
    engine = get_engine()
    rows = _run(
        engine.path_transitions,
        json_output,
        normalize_paths=not raw_paths,
        min_support=min_support,
        **_window(website, date_from, date_to),
    )
    if json_output:
        print_json(rows)
        return
    _print_table(
        "Path Transitions",
        ["From", "To", "Transitions"],
        [[r.from_path, r.to_path or "(exit)", r.transitions] for r in rows],
    )


def metrics_bounce_rate(
    website: WebsiteOption,
    date_from: FromOption,
    date_to: ToOption,
    granularity: GranularityOption = Granularity.DAY,
    json_output: JsonOption = False,
) -> None:
    """Show visits and single-page visits per bucket."""
    engine = get_engine()
    buckets = _run(
        engine.bounce_rate,
        json_output,
        granularity=granularity,
        **_window(website, date_from, date_to),
    )
    if json_output:
        print_json(buckets)
        return
    _print_table(
        f"Bounce Rate ({granularity.value})",
        ["Bucket", "Visits", "Bounces", "Rate %"],
        [
            [b.bucket_start, b.visits, b.bounces, round(b.bounces / b.visits * 100, 2) if b.visits else 0.0]
            for b in buckets
        ],
    )


def metrics_arpu(
    website: WebsiteOption,
    date_from: FromOption,
    date_to: ToOption,
    granularity: GranularityOption = Granularity.DAY,
    paying: Annotated[
        bool, typer.Option("--paying", help="Divide by paying users instead of active users")
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Show revenue, users and average revenue per user per bucket."""
    engine = get_engine()
    window = _window(website, date_from, date_to)
    revenue = _run(engine.arpu_revenue, json_output, granularity=granularity, **window)
    users = _run(
        engine.arpu_denominators,
        json_output,
        granularity=granularity,
        model="paying_users" if paying else "active_users",
        **window,
    )

    user_counts = {u.bucket_start: u.user_count for u in users}
    revenue_by_bucket = {r.bucket_start: r.revenue for r in revenue}
    rows = []
    for bucket in sorted(set(user_counts) | set(revenue_by_bucket)):
        amount = revenue_by_bucket.get(bucket, 0.0)
        count = user_counts.get(bucket, 0)
        rows.append([bucket, amount, count, round(amount / count, 2) if count else 0.0])

    if json_output:
        print_json(
            [dict(zip(["bucket_start", "revenue", "user_count", "arpu"], row)) for row in rows]
        )
        return
    _print_table(f"ARPU ({granularity.value})", ["Bucket", "Revenue", "Users", "ARPU"], rows)


def metrics_events(
    website: WebsiteOption,
    date_from: FromOption,
    date_to: ToOption,
    limit: LimitOption = 10,
    json_output: JsonOption = False,
) -> None:
    """Show the most frequent custom events."""
    engine = get_engine()
    result = _run(
        engine.most_frequent_events, json_output, limit=limit, **_window(website, date_from, date_to)
    )
    if json_output:
        print_json(result)
        return
    _print_table(
        f"Most Frequent Events ({result.total_events:,} total)",
        ["Event", "Count", "Share %"],
        [[e.event_name, e.event_count, e.percentage] for e in result.events],
    )
