"""
Dislocation Analysis Module.

Screens each contract's higher-order Greeks and its IV/RV spread for values a
consistent Black-Scholes surface should not produce:
- Vanna with the wrong sign for its moneyness, or excessive magnitude
- Volga far above or far below a normal baseline
- Positive or excessive charm
- Vanna/volga ratio outside its empirical band
- IV rich or cheap against the underlying's realized vol

Flagged contracts get deterministic, rule-based trade suggestions.
"""

import logging
from typing import Iterable, List, Mapping, Optional

from core.config import DislocationConfig
from core.models import ContractRecord, DislocationAlert, RealizedVolStats
from analysis.realized_vol import analyze_iv_vs_rv

logger = logging.getLogger(__name__)


def expected_vanna_sign(record: ContractRecord) -> float:
    """
    Black-Scholes vanna is -phi(d1) d2 / sigma: negative when spot is above
    strike (ITM call, OTM put), positive below (OTM call, ITM put).
    """
    return -1.0 if record.underlying_price > record.strike else 1.0


def generate_recommendations(
    record: ContractRecord,
    alert: DislocationAlert,
    config: Optional[DislocationConfig] = None
) -> List[str]:
    """Map a flag combination to suggested structures."""
    cfg = config or DislocationConfig()
    bs = record.analytics
    lines = []

    moneyness = record.underlying_price / record.strike if record.strike > 0 else 0.0
    days_to_expiry = record.days_to_expiry
    upper, lower = 1.0 + cfg.atm_band, 1.0 - cfg.atm_band
    is_itm = moneyness > upper if record.is_call else moneyness < lower
    is_atm = lower <= moneyness <= upper

    # Vanna
    if alert.vanna_anomaly and abs(bs.vanna) > cfg.excessive_vanna:
        if bs.vanna > 0 and not record.is_call:
            lines.append("SELL PUT SPREADS - Vol premium expensive")
        elif bs.vanna < 0 and record.is_call and is_itm:
            lines.append("BUY CALL CALENDARS - Vol dislocated")
        elif abs(bs.vanna) > cfg.strong_vanna:
            lines.append("STRADDLE TRADE - Vol/spot correlation break")

    # Volga
    if alert.volga_anomaly and bs.volga > cfg.rich_volga:
        if days_to_expiry < 30:
            lines.append("SELL IRON CONDORS - Expensive convexity near expiry")
        elif is_atm:
            lines.append("SELL ATM STRADDLES - Rich vol premium")
        else:
            lines.append("SHORT VOL POSITION - Overpriced vol insurance")
    elif alert.volga_anomaly and bs.volga < cfg.cheap_volga and days_to_expiry > 7:
        lines.append("BUY BUTTERFLIES - Cheap convexity opportunity")

    # Charm
    if alert.charm_anomaly and bs.charm > 0:
        lines.append("AVOID DELTA HEDGING - Expensive gamma exposure")
        if days_to_expiry < 7:
            lines.append("WEEKLY EXPIRY PLAY - Unusual theta decay")

    # Vanna/volga ratio
    if alert.vanna_volga_ratio > cfg.vanna_volga_high:
        lines.append("VOL SURFACE ARBITRAGE - Smile dislocation")
        if record.is_call and is_itm:
            lines.append("SELL ITM CALLS vs BUY OTM CALLS")
        elif not record.is_call and is_itm:
            lines.append("SELL ITM PUTS vs BUY OTM PUTS")
    elif 0 < alert.vanna_volga_ratio < cfg.vanna_volga_low:
        lines.append("RATIO SPREAD - Directional vol play")

    # Calendars
    if alert.vanna_anomaly and alert.volga_anomaly:
        if days_to_expiry < 30:
            lines.append("SELL FRONT MONTH - Calendar opportunity")
        else:
            lines.append("BUY CALENDARS - Sell front vol, buy back vol")

    if abs(bs.vanna) > cfg.risk_vanna or bs.volga > cfg.risk_volga:
        lines.append("HIGH RISK - Size positions carefully")

    # IV vs RV
    if alert.iv_rv_anomaly and alert.iv_rv_spread > 0:
        lines.append("SELL VOL - IV extremely expensive vs RV")
    elif alert.iv_rv_anomaly and alert.iv_rv_spread < 0:
        lines.append("BUY VOL - IV extremely cheap vs RV")

    if not lines:
        if alert.vanna_anomaly:
            lines.append("MONITOR - Watch for entry opportunity")
        if alert.volga_anomaly:
            lines.append("VOL PLAY - Volatility mispricing detected")
        if alert.iv_rv_anomaly:
            lines.append("IV-RV DISLOCATION - Volatility premium anomaly")

    return lines


class DislocationAnalyzer:
    """Per-contract Greek and IV/RV dislocation screening."""

    def __init__(self, config: Optional[DislocationConfig] = None):
        self.config = config or DislocationConfig()

    def analyze(self, record: ContractRecord, rv: Optional[RealizedVolStats] = None) -> Optional[DislocationAlert]:
        """
        Screen one contract. Returns None when the record has no valid,
        converged analytics.
        """
        if not record.analytics_valid or not record.analytics.iv_converged:
            return None

        cfg = self.config
        bs = record.analytics
        alert = DislocationAlert(symbol=record.symbol)

        # Vanna: sign test is meaningless inside the ATM band where d2 ~ 0
        moneyness = record.underlying_price / record.strike if record.strike > 0 else 0.0
        vanna_magnitude = abs(bs.vanna)
        near_atm = abs(moneyness - 1.0) <= cfg.atm_band
        wrong_sign = not near_atm and bs.vanna * expected_vanna_sign(record) < 0
        excessive_vanna = vanna_magnitude > cfg.excessive_vanna

        if wrong_sign or excessive_vanna:
            alert.vanna_anomaly = True
            if wrong_sign:
                alert.messages.append("VANNA SIGN INVERSION")
            if excessive_vanna:
                alert.messages.append(f"HIGH VANNA {vanna_magnitude:.3f}")

        # Volga
        volga_magnitude = abs(bs.volga)
        high_volga = volga_magnitude > cfg.high_volga_multiple * cfg.normal_volga
        low_volga = (volga_magnitude < cfg.low_volga_multiple * cfg.normal_volga
                     and record.time_to_expiry > cfg.min_time_for_low_volga)

        if high_volga or low_volga:
            alert.volga_anomaly = True
            if high_volga:
                alert.messages.append(f"HIGH VOLGA {volga_magnitude:.1f}")
            if low_volga:
                alert.messages.append(f"LOW VOLGA {volga_magnitude:.1f}")

        # Charm
        positive_charm = bs.charm > 0 and record.time_to_expiry > cfg.min_time_for_charm_sign
        excessive_charm = abs(bs.charm) > cfg.excessive_charm

        if positive_charm or excessive_charm:
            alert.charm_anomaly = True
            if positive_charm:
                alert.messages.append(f"POSITIVE CHARM {bs.charm:.1f}")
            if excessive_charm:
                alert.messages.append(f"HIGH CHARM {abs(bs.charm):.1f}")

        # Vanna/volga ratio
        if volga_magnitude > cfg.min_volga_for_ratio:
            alert.vanna_volga_ratio = abs(bs.vanna / bs.volga)
            if alert.vanna_volga_ratio < cfg.vanna_volga_low or alert.vanna_volga_ratio > cfg.vanna_volga_high:
                alert.messages.append(f"VANNA/VOLGA {alert.vanna_volga_ratio:.3f}")

        # IV vs RV
        if rv is not None and rv.rv_20d > 0:
            iv_rv = analyze_iv_vs_rv(bs.implied_vol, rv, record.days_to_expiry, cfg.iv_rv_threshold)
            alert.iv_rv_spread = iv_rv.iv_rv_spread
            alert.rv_signal = iv_rv.signal

            if abs(iv_rv.iv_rv_spread) > cfg.iv_rv_threshold * iv_rv.relevant_rv:
                alert.iv_rv_anomaly = True
                alert.messages.append(f"IV-RV: {iv_rv.iv_rv_spread * 100:+.1f}% ({iv_rv.signal})")

        if alert.has_anomaly:
            alert.recommendations = generate_recommendations(record, alert, cfg)

        return alert

    def analyze_all(
        self,
        records: Iterable[ContractRecord],
        rv_by_underlying: Optional[Mapping[str, RealizedVolStats]] = None
    ) -> List[DislocationAlert]:
        """Screen every record with converged analytics, in table order."""
        rv_by_underlying = rv_by_underlying or {}
        alerts = []
        for record in records:
            alert = self.analyze(record, rv_by_underlying.get(record.underlying))
            if alert is not None:
                alerts.append(alert)

        flagged = sum(1 for a in alerts if a.has_anomaly)
        if flagged:
            logger.debug(f"{flagged} of {len(alerts)} contracts show dislocations")
        return alerts
