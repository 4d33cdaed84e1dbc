#!/usr/bin/env python3
"""
SLOTENGINE — Slot Engine CLI

Usage:
    python -m tools.slot_cli simulate --rounds 20000 --seed 0xC0DEFACE
    python -m tools.slot_cli weights --rtp 1.2
    python -m tools.slot_cli layout
    python -m tools.slot_cli scenario --seed 42
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.settings import EngineConfig, configure_logging
from config.slot_layout import ConfigurationError, load_layout
from sim_engine.slots.evaluator import PaylineEvaluator
from sim_engine.slots.prng import Mulberry32
from sim_engine.slots.rng_engine import WeightedRngEngine
from sim_engine.slots.scenarios import ScenarioCatalog
from tools.slot_montecarlo import MonteCarloValidator


def _int(value: str) -> int:
    return int(value, 0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Slot outcome engine tools")
    parser.add_argument("--log-level", type=str, default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Monte Carlo audit of the scenario catalog")
    sim.add_argument("--rounds", type=int, default=20_000)
    sim.add_argument("--draws", type=int, default=200_000, help="Cosmetic symbol draws")
    sim.add_argument("--seed", type=_int, default=None, help="Master seed (default from env)")
    sim.add_argument("--tolerance", type=float, default=0.05)
    sim.add_argument("--json", action="store_true", help="Print the JSON report")

    weights = sub.add_parser("weights", help="Show the current symbol weight table")
    weights.add_argument("--rtp", type=float, default=None,
                         help="Simulate running RTP (paid / wagered) before computing")
    weights.add_argument("--loss-streak", type=int, default=0)

    sub.add_parser("layout", help="Dump the active layout as JSON")

    scenario = sub.add_parser("scenario", help="Draw and evaluate one scenario")
    scenario.add_argument("--seed", type=_int, default=None, help="Master seed (default from env)")
    scenario.add_argument("--draw-seed", type=_int, default=None, help="Seed for the deck draw")
    scenario.add_argument("--bet", type=float, default=1.0)
    return parser


def _cmd_simulate(args, console: Console) -> int:
    seed = EngineConfig.master_seed() if args.seed is None else args.seed
    console.print(f"\n[bold cyan]⚡ Slot Engine — Monte Carlo audit (seed 0x{seed:08X})[/bold cyan]\n")
    catalog = ScenarioCatalog.build(seed, layout=load_layout())
    mc = MonteCarloValidator(tolerance=args.tolerance, seed=seed)
    report = mc.validate_all(catalog, n_rounds=args.rounds, n_draws=args.draws)

    if args.json:
        console.print_json(report.to_json())
        return 0 if report.overall_pass else 1

    result = report.catalog
    table = Table(title="Scenario catalog")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Rounds", f"{result.n_rounds:,}")
    table.add_row("Theoretical RTP", f"{result.theoretical_rtp:.4f}")
    table.add_row("Measured RTP", f"{result.measured_rtp:.4f}")
    style = "green" if result.rtp_pass else "red"
    table.add_row("Delta", f"[{style}]{result.rtp_delta:.4f}[/{style}] (±{result.tolerance})")
    table.add_row("Hit frequency", f"{result.measured_hit_frequency*100:.2f}%")
    table.add_row("Exact match", f"{result.exact_match_rate*100:.2f}%")
    table.add_row("Degraded", str(result.degraded))
    table.add_row("Max loss streak", str(result.streak_analysis.get("max_loss_streak", 0)))
    table.add_row("Chi²", f"{result.chi_squared:.2f}")
    console.print(table)

    categories = Table(title="Category frequencies")
    categories.add_column("Category", style="cyan")
    categories.add_column("Measured")
    categories.add_column("Declared")
    for name, (measured, declared) in result.category_frequencies.items():
        categories.add_row(name, f"{measured*100:.2f}%", f"{declared*100:.2f}%")
    console.print(categories)

    symbols = report.symbols
    style = "green" if symbols.passed else "red"
    console.print(
        f"Symbol weights: max deviation [{style}]{symbols.max_deviation*100:.3f}%[/{style}] "
        f"over {symbols.n_draws:,} draws"
    )
    verdict = "[bold green]✅ ALL PASS[/bold green]" if report.overall_pass else "[bold red]❌ SOME FAILED[/bold red]"
    console.print(verdict)
    return 0 if report.overall_pass else 1


def _cmd_weights(args, console: Console) -> int:
    layout = load_layout()
    engine = WeightedRngEngine(layout)
    if args.rtp is not None:
        engine.begin_spin(100.0)
        engine.complete_spin(100.0 * args.rtp)
    for _ in range(max(0, args.loss_streak)):
        engine.begin_spin(0.0)
        engine.complete_spin(0.0)

    weights = engine.compute_weights()
    total = sum(w.weight for w in weights)
    baseline = engine.baseline_weights()

    table = Table(title=f"Symbol weights (RTP {engine.current_rtp:.3f}, streak {engine.loss_streak})")
    table.add_column("Symbol", style="cyan")
    table.add_column("Tier")
    table.add_column("Baseline")
    table.add_column("Adjustment")
    table.add_column("Weight")
    table.add_column("Share")
    for w in weights:
        table.add_row(
            w.symbol,
            layout.symbols[w.symbol].payout_tier.value,
            f"{baseline[w.symbol]:.1f}",
            f"{w.adjustment:.3f}",
            f"{w.weight:.1f}",
            f"{w.weight / total * 100:.2f}%",
        )
    console.print(table)
    return 0


def _cmd_layout(args, console: Console) -> int:
    console.print_json(load_layout().model_dump_json())
    return 0


def _cmd_scenario(args, console: Console) -> int:
    seed = EngineConfig.master_seed() if args.seed is None else args.seed
    draw_source = Mulberry32(args.draw_seed) if args.draw_seed is not None else None
    evaluator = PaylineEvaluator(load_layout())
    catalog = ScenarioCatalog.build(seed, evaluator=evaluator, source=draw_source)
    scenario = catalog.next_scenario()
    result = evaluator.evaluate(scenario.grid, args.bet)

    grid_text = "\n".join("  ".join(f"{cell:>4}" for cell in row) for row in scenario.grid)
    console.print(Panel(
        grid_text,
        title=f"Scenario #{scenario.display_id} — {scenario.category.value}",
        subtitle=f"base ×{scenario.base_multiplier}" + (" (degraded)" if scenario.degraded else ""),
    ))
    for win in result.winning_lines:
        console.print(f"  {win.line_id:11s} {win.symbol:>4} x{win.count}  → {win.payout:.2f}")
    console.print(f"[bold]Total win:[/bold] {result.total_win:.2f} on bet {args.bet}")
    return 0


COMMANDS = {
    "simulate": _cmd_simulate,
    "weights": _cmd_weights,
    "layout": _cmd_layout,
    "scenario": _cmd_scenario,
}


def main(argv=None, console: Console = None) -> int:
    args = build_parser().parse_args(argv)
    console = console or Console()
    configure_logging(getattr(logging, args.log_level.upper(), None) if args.log_level else None)
    try:
        return COMMANDS[args.command](args, console)
    except ConfigurationError as e:
        console.print(f"[bold red]❌ Configuration error:[/bold red] {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
