"""
Plotly charts for volatility smiles and term structure.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import plotly.graph_objects as go
import plotly.io as pio
from plotly.subplots import make_subplots

from core.models import OptionType, TermStructure, VolatilitySmile

logger = logging.getLogger(__name__)


def smile_figure(
    smiles: List[VolatilitySmile],
    term_structures: Optional[Dict[str, TermStructure]] = None
) -> go.Figure:
    """
    IV against moneyness for every smile with enough points, calls and puts
    as separate marker series, plus ATM term structure when available.
    """
    term_structures = term_structures or {}
    rows = 2 if term_structures else 1
    titles = ("Implied Volatility Smiles", "ATM Term Structure") if rows == 2 else ("Implied Volatility Smiles",)
    fig = make_subplots(rows=rows, cols=1, subplot_titles=titles, vertical_spacing=0.12)

    for smile in smiles:
        if not smile.sufficient_data:
            continue
        name = f"{smile.underlying} {smile.expiry}"
        points = sorted(smile.points, key=lambda p: p.moneyness)

        fig.add_trace(go.Scatter(
            x=[p.moneyness for p in points],
            y=[p.implied_vol for p in points],
            mode='lines', name=name, line=dict(width=1), legendgroup=name,
        ), row=1, col=1)

        for option_type, symbol in ((OptionType.CALL, 'circle'), (OptionType.PUT, 'diamond')):
            side = [p for p in points if p.option_type == option_type]
            if not side:
                continue
            fig.add_trace(go.Scatter(
                x=[p.moneyness for p in side],
                y=[p.implied_vol for p in side],
                mode='markers', name=f"{name} {option_type.value}s",
                marker=dict(symbol=symbol, size=7), legendgroup=name, showlegend=False,
                hovertemplate="K=%{customdata:.2f}<br>K/S=%{x:.3f}<br>IV=%{y:.2%}",
                customdata=[p.strike for p in side],
            ), row=1, col=1)

    for underlying, term in term_structures.items():
        if not term.atm_by_expiry:
            continue
        expiries = list(term.atm_by_expiry)
        fig.add_trace(go.Scatter(
            x=expiries,
            y=[term.atm_by_expiry[e] for e in expiries],
            mode='lines+markers', name=f"{underlying} ATM",
            line=dict(dash='dash' if term.backwardation else 'solid'),
        ), row=2, col=1)

    fig.add_vline(x=1.0, line=dict(color='gray', dash='dot'), row=1, col=1)
    fig.update_xaxes(title_text="Moneyness (K/S)", row=1, col=1)
    fig.update_yaxes(title_text="Implied Vol", tickformat=".0%", row=1, col=1)
    if rows == 2:
        fig.update_xaxes(title_text="Expiry (YYMMDD)", type='category', row=2, col=1)
        fig.update_yaxes(title_text="ATM Vol", tickformat=".0%", row=2, col=1)

    fig.update_layout(template="plotly_dark", height=450 * rows, legend=dict(orientation="h", y=-0.1))
    return fig


def write_smile_html(
    path: Union[str, Path],
    smiles: List[VolatilitySmile],
    term_structures: Optional[Dict[str, TermStructure]] = None
) -> Path:
    """Write a standalone HTML smile chart and return its path."""
    path = Path(path)
    fig = smile_figure(smiles, term_structures)
    pio.write_html(fig, file=str(path), auto_open=False, include_plotlyjs=True, full_html=True)
    logger.info(f"Wrote smile chart to {path}")
    return path
