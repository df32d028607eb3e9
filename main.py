#!/usr/bin/env python3
"""
Options Stream Analytics CLI - Main Entry Point

Streams option and underlying ticks into the analytics engine and shows live
implied volatility, Greeks, smiles and dislocation alerts.
"""

import argparse
import logging
import threading
import time
from datetime import datetime, date
from typing import List, Optional

from rich.live import Live

from analyzer import StreamAnalyzer, AnalyticsReader
from core.config import AnalyticsConfig
from core.symbols import parse_option_symbol
from data.history import HistoricalBarLoader, fetch_risk_free_rate
from data.mock_feed import MockMarketFeed, build_mock_chain
from data.ticks import TickRouter, replay_file
from ui.display import console, display_header, display_analysis_summary, render_dashboard
from ui.charts import write_smile_html


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )
    # Reduce noise from third-party libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('yfinance').setLevel(logging.WARNING)
    logging.getLogger('peewee').setLevel(logging.WARNING)


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Options Stream Analytics - live IV, Greeks, smiles and dislocations',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                                  # Mock feed on QQQ and SPY
  python main.py -u AAPL TSLA                     # Mock chains for other underlyings
  python main.py -s QQQ250801C00560000 QQQ250801P00560000
  python main.py --replay capture.jsonl           # Replay a recorded session
  python main.py --live-rate --history            # T-bill rate and yfinance history
  python main.py --cycles 3 --json                # Three analysis cycles, JSON output
  python main.py --smile-html smiles.html         # Export the final smiles
        """
    )

    parser.add_argument(
        '-s', '--symbols',
        nargs='+',
        help='Option symbols to track, e.g. QQQ250801C00560000'
    )

    parser.add_argument(
        '-u', '--underlyings',
        nargs='+',
        default=['QQQ', 'SPY'],
        help='Underlyings for the generated mock chain (default: QQQ SPY)'
    )

    parser.add_argument(
        '--rate',
        type=float,
        default=0.05,
        help='Risk-free rate (default: 0.05 = 5%%)'
    )

    parser.add_argument(
        '--live-rate',
        action='store_true',
        help='Use the 13-week T-bill yield, falling back to --rate'
    )

    source = parser.add_argument_group('Data source')

    source.add_argument(
        '--replay',
        metavar='FILE',
        help='Replay a JSON-lines tick capture instead of the mock feed'
    )

    source.add_argument(
        '--replay-delay',
        type=float,
        default=0.0,
        help='Seconds to pause between replayed lines (default: 0)'
    )

    source.add_argument(
        '--history',
        action='store_true',
        help='Seed realized vol from yfinance daily bars (mock feed seeds synthetic bars otherwise)'
    )

    source.add_argument(
        '--history-days',
        type=int,
        default=90,
        help='Days of daily bars to seed (default: 90)'
    )

    source.add_argument(
        '--seed',
        type=int,
        help='Random seed for the mock feed'
    )

    timing = parser.add_argument_group('Timing')

    timing.add_argument(
        '--analysis-interval',
        type=float,
        default=10.0,
        help='Seconds between analysis cycles (default: 10)'
    )

    timing.add_argument(
        '--display-interval',
        type=float,
        default=1.0,
        help='Seconds between dashboard refreshes (default: 1)'
    )

    timing.add_argument(
        '--tick-interval',
        type=float,
        default=2.0,
        help='Seconds between mock feed rounds (default: 2)'
    )

    timing.add_argument(
        '--throttle-ms',
        type=float,
        default=100.0,
        help='Minimum milliseconds between recomputes per contract (default: 100)'
    )

    timing.add_argument(
        '--cycles',
        type=int,
        help='Stop after this many analysis cycles'
    )

    output = parser.add_argument_group('Output')

    output.add_argument(
        '--json',
        action='store_true',
        help='Print the final snapshot and analysis as JSON instead of the dashboard'
    )

    output.add_argument(
        '--smile-html',
        metavar='FILE',
        help='Write the final smiles as an interactive HTML chart'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )

    return parser.parse_args(argv)


def build_config(args) -> AnalyticsConfig:
    config = AnalyticsConfig()
    config.risk_free_rate = args.rate
    config.store.recompute_throttle_ms = args.throttle_ms
    config.stream.analysis_interval_seconds = args.analysis_interval
    config.stream.display_interval_seconds = args.display_interval
    config.stream.mock_interval_seconds = args.tick_interval
    config.stream.history_days = args.history_days

    if args.symbols:
        valid = [s for s in args.symbols if parse_option_symbol(s) is not None]
        for bad in set(args.symbols) - set(valid):
            console.print(f"[yellow]Ignoring unparseable symbol {bad}[/yellow]")
        config.symbols = valid
    elif not args.replay:
        config.symbols = build_mock_chain(args.underlyings)

    return config


def output_json(analyzer: StreamAnalyzer, result):
    """Output the final snapshot and analysis as JSON."""
    import json

    def json_serializer(obj):
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()
        if hasattr(obj, 'value'):  # Enum
            return obj.value
        if hasattr(obj, 'item'):  # numpy scalar
            return obj.item()
        raise TypeError(f"Type {type(obj)} not serializable")

    frame = analyzer.snapshot_frame()
    output = {
        'generated_at': result.generated_at.isoformat(),
        'risk_free_rate': analyzer.risk_free_rate,
        'summary': {
            'contracts': len(frame),
            'contracts_analyzed': result.contracts_analyzed,
            'smiles': len(result.smiles),
            'dislocations': result.anomaly_count,
        },
        'contracts': frame.to_dict(orient='records'),
        'realized_vol': {
            symbol: {
                'rv_10d': s.rv_10d,
                'rv_20d': s.rv_20d,
                'rv_30d': s.rv_30d,
                'rv_trend': s.rv_trend,
                'bars': s.bar_count,
            }
            for symbol, s in analyzer.rv_stats().items()
        },
        'smiles': [
            {
                'underlying': s.underlying,
                'expiry': s.expiry,
                'points': s.point_count,
                'sufficient_data': s.sufficient_data,
                'atm_vol': s.atm_vol,
                'put_skew': s.put_skew,
                'call_skew': s.call_skew,
                'curvature': s.smile_curvature,
                'r_squared': s.r_squared,
            }
            for s in result.smiles
        ],
        'term_structures': {
            u: {'atm_by_expiry': t.atm_by_expiry, 'slope': t.slope, 'backwardation': t.backwardation}
            for u, t in result.term_structures.items()
        },
        'smile_alerts': [
            {'underlying': a.underlying, 'expiry': a.expiry, 'pattern': a.pattern}
            for a in result.smile_alerts
        ],
        'dislocations': [
            {
                'symbol': a.symbol,
                'flags': a.messages,
                'recommendations': a.recommendations,
                'vanna_volga_ratio': a.vanna_volga_ratio,
                'iv_rv_spread': a.iv_rv_spread,
            }
            for a in result.alerts if a.has_anomaly
        ],
    }

    print(json.dumps(output, indent=2, default=json_serializer))


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.verbose)
    logger = logging.getLogger('main')

    config = build_config(args)
    stop_event = threading.Event()

    analyzer = StreamAnalyzer(config)
    rate = fetch_risk_free_rate(args.rate) if args.live_rate else args.rate
    analyzer.set_risk_free_rate(rate)

    source = f"replay {args.replay}" if args.replay else "mock feed"
    if not args.json:
        display_header(source, rate)
        console.print(f"[cyan]Contracts:[/cyan] {len(config.symbols) or 'from capture'}")
        console.print(f"[cyan]Underlyings:[/cyan] {', '.join(config.get_underlyings()) or 'from capture'}")
        console.print(f"[cyan]Analysis Interval:[/cyan] {config.stream.analysis_interval_seconds:.1f}s")
        console.print()

    # Historical bars for realized vol
    feed = None
    if not args.replay:
        feed = MockMarketFeed(analyzer, config.symbols, config, stop_event, seed=args.seed)
    if args.history:
        HistoricalBarLoader(config).seed(analyzer, config.get_underlyings() or args.underlyings)
    elif feed is not None:
        feed.seed_history()

    # Ingestion
    replay_thread = None
    if args.replay:
        router = TickRouter(analyzer)
        replay_thread = threading.Thread(
            target=replay_file,
            args=(args.replay, router, args.replay_delay, stop_event),
            name="replay",
            daemon=True,
        )
        replay_thread.start()
    else:
        feed.start()

    reader = AnalyticsReader(analyzer, config.stream.analysis_interval_seconds, stop_event)
    reader.start()

    def finished() -> bool:
        if args.cycles is not None and reader.cycles >= args.cycles:
            return True
        # A finished replay with no cycle limit gets one more analysis and exits
        return args.cycles is None and replay_thread is not None and not replay_thread.is_alive()

    try:
        if args.json:
            while not finished():
                time.sleep(0.1)
        else:
            with Live(console=console, refresh_per_second=4, screen=False) as live:
                while not finished():
                    live.update(render_dashboard(
                        analyzer.snapshot(), analyzer.rv_stats(), analyzer.last_result,
                        source, analyzer.risk_free_rate, config.dislocation.iv_rv_threshold,
                    ))
                    time.sleep(config.stream.display_interval_seconds)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        stop_event.set()
        if feed is not None:
            feed.stop()
        reader.join(timeout=5.0)
        if replay_thread is not None:
            replay_thread.join(timeout=5.0)

    result = analyzer.run_analysis_cycle()

    if args.smile_html:
        write_smile_html(args.smile_html, result.smiles, result.term_structures)

    if args.json:
        output_json(analyzer, result)
    else:
        display_analysis_summary(result)
        dropped = analyzer.store.dropped_ticks
        if dropped:
            console.print(f"[yellow]Dropped ticks: {dropped}[/yellow]")


if __name__ == '__main__':
    main()
