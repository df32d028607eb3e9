"""
Volatility Smile Construction Module.

Rebuilds, every analysis cycle, one smile per (underlying, expiry) from
records with valid, converged analytics and measures:
- ATM volatility (interpolated on the per-strike curve)
- Put and call skew against the OTM wings
- Curvature at the money and fit quality (R^2 of IV vs ln moneyness)
- Pattern flags and anomaly screening
- ATM term structure per underlying
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from core.config import SmileConfig
from core.models import (
    ContractRecord, OptionType, SmilePoint, VolatilitySmile, TermStructure, SmileAlert
)

logger = logging.getLogger(__name__)


def _strike_curve(points: List[SmilePoint]) -> List[Tuple[float, float]]:
    """(moneyness, iv) per strike, averaging calls and puts that share a strike."""
    by_strike: Dict[float, List[SmilePoint]] = OrderedDict()
    for point in sorted(points, key=lambda p: p.strike):
        by_strike.setdefault(point.strike, []).append(point)

    curve = []
    for same_strike in by_strike.values():
        curve.append((
            float(np.mean([p.moneyness for p in same_strike])),
            float(np.mean([p.implied_vol for p in same_strike])),
        ))
    return curve


def _nearest_atm_index(curve: List[Tuple[float, float]]) -> int:
    return int(np.argmin([abs(m - 1.0) for m, _ in curve]))


def interpolate_atm_vol(curve: List[Tuple[float, float]], tolerance: float = 0.01) -> float:
    """
    ATM vol on a strike-sorted (moneyness, iv) curve.

    Nearest point if within `tolerance` of moneyness 1.0, else linear
    interpolation between the bracketing strikes, else the nearest point.
    """
    if not curve:
        return 0.0

    best = _nearest_atm_index(curve)
    if abs(curve[best][0] - 1.0) < tolerance:
        return curve[best][1]

    for (m0, v0), (m1, v1) in zip(curve, curve[1:]):
        if m0 <= 1.0 <= m1 and m1 > m0:
            t = (1.0 - m0) / (m1 - m0)
            return v0 + t * (v1 - v0)

    return curve[best][1]


def smile_curvature(curve: List[Tuple[float, float]]) -> float:
    """Three-point second difference centred at the point nearest ATM."""
    if len(curve) < 3:
        return 0.0

    idx = min(max(_nearest_atm_index(curve), 1), len(curve) - 2)
    (x0, y0), (x1, y1), (x2, y2) = curve[idx - 1], curve[idx], curve[idx + 1]
    h1, h2 = x1 - x0, x2 - x1
    if h1 <= 0 or h2 <= 0:
        return 0.0
    return (y2 - 2 * y1 + y0) / (h1 * h2)


def fit_r_squared(points: List[SmilePoint]) -> float:
    """R^2 of a linear fit of IV against ln(moneyness)."""
    if len(points) < 3:
        return 0.0

    x = np.log([p.moneyness for p in points])
    y = np.array([p.implied_vol for p in points])
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0

    r = np.corrcoef(x, y)[0, 1]
    return float(r * r)


class SmileConstructor:
    """
    Builds volatility smiles from record snapshots.

    Key analyses:
    1. Grouping - One smile per (underlying, expiry) in first-seen order
    2. Shape - ATM vol, wing skews, curvature, fit quality
    3. Patterns - Put/call skew, smile, inverted smile
    4. Term structure - ATM vol across expiries
    """

    def __init__(self, config: Optional[SmileConfig] = None):
        self.config = config or SmileConfig()

    def build_smiles(self, records: Iterable[ContractRecord]) -> List[VolatilitySmile]:
        smiles: Dict[Tuple[str, str], VolatilitySmile] = OrderedDict()

        for record in records:
            if not record.analytics_valid or not record.analytics.iv_converged:
                continue
            if record.underlying_price <= 0 or record.strike <= 0 or record.analytics.implied_vol <= 0:
                continue

            key = (record.underlying, record.expiry)
            smile = smiles.get(key)
            if smile is None:
                smile = VolatilitySmile(
                    underlying=record.underlying,
                    expiry=record.expiry,
                    time_to_expiry=record.time_to_expiry,
                    underlying_price=record.underlying_price,
                )
                smiles[key] = smile

            if len(smile.points) >= self.config.max_points:
                continue

            smile.points.append(SmilePoint(
                strike=record.strike,
                implied_vol=record.analytics.implied_vol,
                moneyness=record.moneyness,
                time_to_expiry=record.time_to_expiry,
                option_type=record.option_type,
            ))

        for smile in smiles.values():
            self.analyze_smile(smile)

        logger.debug(f"Built {len(smiles)} smiles")
        return list(smiles.values())

    def analyze_smile(self, smile: VolatilitySmile) -> VolatilitySmile:
        cfg = self.config
        smile.last_update = datetime.now()

        if len(smile.points) < cfg.min_points:
            smile.sufficient_data = False
            return smile

        smile.sufficient_data = True
        smile.points.sort(key=lambda p: p.strike)

        vols = [p.implied_vol for p in smile.points]
        smile.min_vol = min(vols)
        smile.max_vol = max(vols)

        curve = _strike_curve(smile.points)
        smile.atm_vol = interpolate_atm_vol(curve, cfg.atm_tolerance)
        smile.smile_curvature = smile_curvature(curve)
        smile.r_squared = fit_r_squared(smile.points)

        otm_put = self._nearest_otm(smile.points, OptionType.PUT)
        otm_call = self._nearest_otm(smile.points, OptionType.CALL)

        smile.put_skew = smile.atm_vol - otm_put.implied_vol if otm_put and smile.atm_vol > 0 else 0.0
        smile.call_skew = otm_call.implied_vol - smile.atm_vol if otm_call and smile.atm_vol > 0 else 0.0

        self._detect_patterns(smile)
        return smile

    def _nearest_otm(self, points: List[SmilePoint], option_type: OptionType) -> Optional[SmilePoint]:
        """OTM wing point closest to its moneyness boundary."""
        if option_type == OptionType.PUT:
            wing = [p for p in points if p.option_type == option_type and p.moneyness < self.config.otm_put_moneyness]
            return max(wing, key=lambda p: p.moneyness) if wing else None

        wing = [p for p in points if p.option_type == option_type and p.moneyness > self.config.otm_call_moneyness]
        return min(wing, key=lambda p: p.moneyness) if wing else None

    def _detect_patterns(self, smile: VolatilitySmile):
        cfg = self.config
        smile.has_put_skew = smile.put_skew > cfg.skew_threshold
        smile.has_call_skew = smile.call_skew > cfg.skew_threshold
        smile.has_smile = (smile.smile_curvature > cfg.smile_threshold
                           and (smile.max_vol - smile.atm_vol) > cfg.smile_threshold)
        smile.is_inverted = (smile.smile_curvature < -cfg.smile_threshold
                             and (smile.atm_vol - smile.min_vol) > cfg.smile_threshold)

    def is_smile_anomaly(self, smile: VolatilitySmile) -> bool:
        cfg = self.config
        if not smile.sufficient_data:
            return False

        if abs(smile.put_skew) > cfg.extreme_skew or abs(smile.call_skew) > cfg.extreme_skew:
            return True
        if smile.is_inverted:
            return True
        if smile.r_squared < cfg.min_r_squared and smile.point_count >= cfg.min_points_for_fit_check:
            return True
        return (smile.max_vol - smile.min_vol) > cfg.extreme_vol_range

    def smile_alerts(self, smiles: Iterable[VolatilitySmile]) -> List[SmileAlert]:
        """Named patterns for every anomalous smile."""
        cfg = self.config
        alerts = []

        for smile in smiles:
            if not self.is_smile_anomaly(smile):
                continue

            patterns = []
            if smile.has_put_skew and abs(smile.put_skew) > cfg.alert_skew:
                patterns.append("EXTREME PUT SKEW")
            if smile.has_call_skew and abs(smile.call_skew) > cfg.alert_skew:
                patterns.append("EXTREME CALL SKEW")
            if smile.is_inverted:
                patterns.append("INVERTED SMILE")
            if smile.r_squared < cfg.poor_fit_r_squared:
                patterns.append("POOR FIT - POTENTIAL MISPRICING")

            for pattern in patterns:
                alerts.append(SmileAlert(
                    underlying=smile.underlying,
                    expiry=smile.expiry,
                    pattern=pattern,
                    atm_vol=smile.atm_vol,
                    put_skew=smile.put_skew,
                    call_skew=smile.call_skew,
                    r_squared=smile.r_squared,
                ))
                logger.info(f"Smile alert {pattern}: {smile.underlying} {smile.expiry} ATM {smile.atm_vol:.1%}")

        return alerts

    def term_structures(self, smiles: Iterable[VolatilitySmile]) -> Dict[str, TermStructure]:
        """ATM vol by expiry per underlying, with the fitted slope per year."""
        grouped: Dict[str, List[VolatilitySmile]] = OrderedDict()
        for smile in smiles:
            if smile.sufficient_data and smile.atm_vol > 0:
                grouped.setdefault(smile.underlying, []).append(smile)

        structures = {}
        for underlying, group in grouped.items():
            group.sort(key=lambda s: s.time_to_expiry)
            structure = TermStructure(
                underlying=underlying,
                atm_by_expiry={s.expiry: s.atm_vol for s in group},
            )

            if len(group) >= 2:
                times = np.array([s.time_to_expiry for s in group])
                atm = np.array([s.atm_vol for s in group])
                if np.ptp(times) > 0:
                    structure.slope = float(np.polyfit(times, atm, 1)[0])
                structure.backwardation = bool(atm[0] > atm[-1])

            structures[underlying] = structure

        return structures
