"""
Display module using Rich for the live analytics dashboard.
"""

from typing import List, Dict, Optional
from datetime import datetime
from rich.console import Console, Group
from rich.table import Table
from rich.panel import Panel
from rich.text import Text
from rich import box

from core.models import (
    AnalysisResult, ContractRecord, DislocationAlert, RealizedVolStats,
    VolatilitySmile, TermStructure, SmileAlert
)
from core.symbols import format_option_symbol
from analysis.realized_vol import analyze_iv_vs_rv


console = Console()


def format_currency(value: float) -> str:
    """Format value as currency."""
    return f"${value:,.2f}"


def format_percent(value: float, decimals: int = 2) -> str:
    """Format value as percentage."""
    return f"{value * 100:.{decimals}f}%"


def color_by_value(value: float, threshold: float = 0, invert: bool = False) -> str:
    """Return color based on value."""
    if invert:
        return "red" if value > threshold else "green"
    return "green" if value > threshold else "red"


def highlight_change(text: str, current: float, previous: Optional[float], tolerance: float = 1e-9) -> str:
    """Green if the value rose since the last recompute, red if it fell."""
    if previous is None or abs(current - previous) <= tolerance:
        return text
    color = "green" if current > previous else "red"
    return f"[{color}]{text}[/{color}]"


def render_header(source: str, rate: float) -> Panel:
    return Panel(
        Text("OPTIONS STREAM ANALYTICS", style="bold cyan", justify="center"),
        subtitle=f"{source} | r={rate:.2%} | {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        box=box.DOUBLE
    )


def display_header(source: str, rate: float):
    """Display application header."""
    console.print(render_header(source, rate))
    console.print()


def contracts_table(records: List[ContractRecord], title: str = "Contracts") -> Table:
    """IV and Greeks for every record, highlighted against the prior recompute."""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("Contract", style="bold", width=26)
    table.add_column("Last", justify="right", width=8)
    table.add_column("Bid/Ask", justify="right", width=13)
    table.add_column("Spread", justify="right", width=7)
    table.add_column("Spot", justify="right", width=9)
    table.add_column("DTE", justify="right", width=5)
    table.add_column("IV", justify="right", width=8)
    table.add_column("Delta", justify="right", width=7)
    table.add_column("Gamma", justify="right", width=7)
    table.add_column("Vega", justify="right", width=7)
    table.add_column("Vanna", justify="right", width=7)
    table.add_column("Charm", justify="right", width=8)
    table.add_column("Volga", justify="right", width=7)

    for r in records:
        bid_ask = f"{r.bid_price:.2f}/{r.ask_price:.2f}" if r.has_quote else "-"
        spread = highlight_change(f"{r.spread:.2f}", r.spread, r.previous.spread if r.has_quote else None)

        if not r.analytics_valid:
            table.add_row(
                format_option_symbol(r.symbol),
                f"{r.last_price:.2f}" if r.has_trade else "-",
                bid_ask, spread, "-", "-",
                "[dim]waiting[/dim]", "", "", "", "", "", "",
            )
            continue

        bs = r.analytics
        prev = r.previous.analytics

        def cell(name: str, fmt: str) -> str:
            value = getattr(bs, name)
            return highlight_change(format(value, fmt), value, getattr(prev, name) if prev else None)

        iv = cell("implied_vol", ".2%")
        if not bs.iv_converged:
            iv = f"[yellow]{format_percent(bs.implied_vol)}*[/yellow]"

        table.add_row(
            format_option_symbol(r.symbol),
            f"{r.last_price:.2f}" if r.has_trade else "-",
            bid_ask,
            spread,
            f"{r.underlying_price:.2f}",
            f"{r.days_to_expiry:.1f}",
            iv,
            cell("delta", ".3f"),
            cell("gamma", ".4f"),
            cell("vega", ".2f"),
            cell("vanna", ".3f"),
            cell("charm", ".2f"),
            cell("volga", ".2f"),
        )

    return table


def realized_vol_table(stats: Dict[str, RealizedVolStats]) -> Table:
    table = Table(title="Realized Volatility (Parkinson)", box=box.ROUNDED)

    table.add_column("Underlying", style="cyan")
    table.add_column("Bars", justify="right")
    table.add_column("RV 10d", justify="right")
    table.add_column("RV 20d", justify="right")
    table.add_column("RV 30d", justify="right")
    table.add_column("Trend", justify="right")
    table.add_column("Mean/Std", justify="right")

    for symbol, s in stats.items():
        trend_color = color_by_value(s.rv_trend, invert=True)
        table.add_row(
            symbol,
            str(s.bar_count),
            format_percent(s.rv_10d, 1),
            format_percent(s.rv_20d, 1),
            format_percent(s.rv_30d, 1),
            f"[{trend_color}]{s.rv_trend:+.1%}[/{trend_color}]",
            f"{s.rv_mean:.1%} / {s.rv_std:.1%}" if s.rv_std > 0 else "N/A",
        )

    return table


def iv_rv_table(records: List[ContractRecord], stats: Dict[str, RealizedVolStats], threshold: float = 0.15) -> Table:
    """Implied vs realized comparison for contracts with converged IV."""
    table = Table(title="IV vs RV", box=box.ROUNDED)

    table.add_column("Contract", style="bold", width=26)
    table.add_column("IV", justify="right")
    table.add_column("RV", justify="right")
    table.add_column("Spread", justify="right")
    table.add_column("Pctl", justify="right")
    table.add_column("Regime")
    table.add_column("Signal")

    for r in records:
        if not r.has_fresh_analytics:
            continue
        analysis = analyze_iv_vs_rv(r.analytics.implied_vol, stats.get(r.underlying), r.days_to_expiry, threshold)
        if analysis.signal == "NO_DATA":
            continue

        signal_color = {"EXPENSIVE": "red", "CHEAP": "green"}.get(analysis.signal, "white")
        table.add_row(
            format_option_symbol(r.symbol),
            format_percent(r.analytics.implied_vol, 1),
            format_percent(analysis.relevant_rv, 1),
            f"{analysis.iv_rv_spread * 100:+.1f}%",
            f"{analysis.iv_percentile * 100:.0f}",
            analysis.vol_regime.value,
            f"[{signal_color}]{analysis.signal}[/{signal_color}]",
        )

    return table


def smile_table(smiles: List[VolatilitySmile], term_structures: Optional[Dict[str, TermStructure]] = None) -> Table:
    table = Table(title="Volatility Smiles", box=box.ROUNDED)

    table.add_column("Underlying", style="cyan")
    table.add_column("Expiry")
    table.add_column("Pts", justify="right")
    table.add_column("ATM", justify="right")
    table.add_column("Put Skew", justify="right")
    table.add_column("Call Skew", justify="right")
    table.add_column("Curv", justify="right")
    table.add_column("R²", justify="right")
    table.add_column("Shape")

    term_structures = term_structures or {}
    for s in smiles:
        if not s.sufficient_data:
            table.add_row(s.underlying, s.expiry, str(s.point_count), "[dim]insufficient[/dim]",
                          "", "", "", "", "")
            continue

        shapes = []
        if s.has_put_skew:
            shapes.append("put skew")
        if s.has_call_skew:
            shapes.append("call skew")
        if s.has_smile:
            shapes.append("smile")
        if s.is_inverted:
            shapes.append("[red]inverted[/red]")
        term = term_structures.get(s.underlying)
        if term and term.backwardation:
            shapes.append("[yellow]backwardation[/yellow]")

        r2_color = "green" if s.r_squared >= 0.7 else "yellow" if s.r_squared >= 0.5 else "red"
        table.add_row(
            s.underlying,
            s.expiry,
            str(s.point_count),
            format_percent(s.atm_vol, 1),
            f"{s.put_skew * 100:+.1f}%",
            f"{s.call_skew * 100:+.1f}%",
            f"{s.smile_curvature:.2f}",
            f"[{r2_color}]{s.r_squared:.2f}[/{r2_color}]",
            ", ".join(shapes) or "flat",
        )

    return table


def alerts_table(alerts: List[DislocationAlert], smile_alerts: Optional[List[SmileAlert]] = None) -> Table:
    table = Table(title="Dislocations", box=box.ROUNDED, show_lines=True)

    table.add_column("Contract", style="bold", width=26)
    table.add_column("Flags", style="yellow")
    table.add_column("Recommendation", style="green")

    for a in alerts:
        if a.has_anomaly:
            table.add_row(format_option_symbol(a.symbol), a.alert_message, a.trade_recommendation)

    for sa in smile_alerts or []:
        table.add_row(
            f"{sa.underlying} {sa.expiry}",
            sa.pattern,
            f"ATM {sa.atm_vol:.1%}, skew {sa.put_skew:+.1%}/{sa.call_skew:+.1%}, R² {sa.r_squared:.2f}",
        )

    return table


def render_dashboard(
    records: List[ContractRecord],
    stats: Dict[str, RealizedVolStats],
    result: Optional[AnalysisResult] = None,
    source: str = "",
    rate: float = 0.0,
    threshold: float = 0.15
) -> Group:
    """Everything the live view shows, as one renderable."""
    parts = [
        render_header(source, rate),
        contracts_table(records),
    ]
    if stats:
        parts.append(realized_vol_table(stats))
        parts.append(iv_rv_table(records, stats, threshold))
    if result is not None:
        parts.append(smile_table(result.smiles, result.term_structures))
        if result.anomaly_count or result.smile_alerts:
            parts.append(alerts_table(result.alerts, result.smile_alerts))
        parts.append(Text(
            f"Last analysis {result.generated_at:%H:%M:%S}: "
            f"{result.contracts_analyzed} contracts, {len(result.smiles)} smiles, "
            f"{result.anomaly_count} dislocations",
            style="dim",
        ))
    return Group(*parts)


def display_analysis_summary(result: AnalysisResult):
    """Display summary of one analysis cycle."""
    console.print()
    summary_table = Table(title="Analysis Summary", box=box.ROUNDED)

    summary_table.add_column("Metric", style="cyan")
    summary_table.add_column("Value", justify="right")

    summary_table.add_row("Generated", result.generated_at.strftime('%Y-%m-%d %H:%M:%S'))
    summary_table.add_row("Contracts Analyzed", str(result.contracts_analyzed))
    summary_table.add_row("Smiles", str(len(result.smiles)))
    summary_table.add_row("Smile Alerts", str(len(result.smile_alerts)))
    anomaly_str = f"[red]{result.anomaly_count}[/red]" if result.anomaly_count else "0"
    summary_table.add_row("Dislocations", anomaly_str)

    for underlying, term in result.term_structures.items():
        label = "backwardation" if term.backwardation else "contango"
        summary_table.add_row(f"{underlying} Term Slope", f"{term.slope:+.3f}/yr ({label})")

    console.print(summary_table)
