# =============================================================================
# FINPLAN ENGINE - MAIN ENTRY POINT
# =============================================================================
# Command-line interface for running the projection engine.
#
# Usage:
#   python main.py calculate demo
#   python main.py calculate demo --scenario optimistic --force
#   python main.py metrics demo
#   python main.py compare demo
#   python main.py validate demo
# =============================================================================

import argparse
import json
import logging
import sys
from pathlib import Path

from finplan.assumptions import YamlInputRepository, validate_assumptions
from finplan.errors import FinplanError
from finplan.scenario import validate_scenario_ordering
from finplan.service import CalculationService
from finplan.store import FinancialOutputStore
from finplan.validation_report import format_report

logger = logging.getLogger("finplan")


def build_service(assumptions_dir: Path, database_url: str) -> CalculationService:
    repository = YamlInputRepository(assumptions_dir)
    store = FinancialOutputStore.from_url(database_url)
    return CalculationService(repository, store)


def print_summary(summary: dict):
    """Print a run summary."""
    print("\nSUMMARY:")
    print(f"  Months:            {summary.get('months_calculated', 0)}")
    print(f"  Total Revenue:     {summary.get('total_revenue', 0):,.0f}")
    print(f"  Total COGS:        {summary.get('total_cogs', 0):,.0f}")
    print(f"  Total OpEx:        {summary.get('total_opex', 0):,.0f}")
    print(f"  Net Income:        {summary.get('net_income', 0):,.0f}")
    print(f"  Gross Margin:      {summary.get('gross_margin_percent', 0):.2f}%")
    print(f"  Min Cash Balance:  {summary.get('min_cash_balance', 0):,.0f}")
    print(f"  Profitability:     {summary.get('profitability', '')}")


def run_calculate(service: CalculationService, args):
    """Trigger a calculation and print its summary."""
    print(f"\nCalculating project: {args.project} (scenario: {args.scenario or 'base'})")
    print("-" * 40)

    result = service.trigger_calculation(args.project, args.scenario, force=args.force)
    print(result.message)

    if result.warnings:
        print("\nWARNINGS:")
        for warning in result.warnings[:10]:
            print(f"  - {warning}")

    print_summary(result.summary)
    return result


def run_status(service: CalculationService, args):
    status = service.get_status(args.project, args.scenario)
    print(json.dumps(status.to_dict(), indent=2, default=str))
    return status


def run_delete(service: CalculationService, args):
    removed = service.delete_calculation(args.project, args.scenario)
    print(f"Deleted {removed} rows")
    return removed


def run_metrics(service: CalculationService, args):
    """Print valuation metrics of the stored series."""
    output = service.get_metrics(args.project, args.scenario)
    if args.json:
        print(json.dumps(output.to_dict(), indent=2, default=str))
        return output

    print("\nKEY METRICS:")
    print(f"  Total Revenue:     {output.total_revenue:,.0f}")
    print(f"  Net Profit:        {output.net_profit:,.0f}")
    print(f"  ROI:               {output.roi:.2f}%")
    print(f"  NPV:               {output.npv:,.0f}")
    converged = "" if output.irr_converged else " (not converged)"
    print(f"  IRR:               {output.irr:.2f}%{converged}")
    print(f"  Payback:           {output.payback_period} months")
    if output.drci is not None:
        recovered = "" if output.drci.recovered else " (not recovered)"
        print(f"  DRCI:              {output.drci.years:.2f} years{recovered}")
    if output.dscr_min is not None:
        print(f"  Min DSCR:          {output.dscr_min:.2f}")
    print(f"  Peak Funding Need: {output.peak_funding_need:,.0f}")
    for name, rating in output.ratings.items():
        print(f"  Rating {name.upper():10} {rating}")

    if output.warnings:
        print("\nWARNINGS:")
        for warning in output.warnings:
            print(f"  - {warning}")
    return output


def run_risks(service: CalculationService, args):
    output = service.get_risks(args.project, args.scenario)
    print(json.dumps(output.to_dict(), indent=2, default=str))
    return output


def run_compare(service: CalculationService, args):
    """Run scenarios and print the comparison."""
    matrix = service.compare_scenarios(args.project, args.scenarios or None)

    print("\n" + "=" * 60)
    print(f"COMPARISON vs {str(matrix.base_scenario).upper()}")
    print("=" * 60)

    for metric in ["total_revenue", "net_profit", "npv"]:
        print(f"\n{metric}:")
        for scenario_id in matrix.scenarios:
            value = matrix.metrics.get(metric, {}).get(scenario_id, 0)
            delta = matrix.deltas.get(metric, {}).get(scenario_id, 0)
            print(f"  {scenario_id:18}: {value:>15,.0f}  ({delta:+.1%})")

    print(f"\nBest case:  {matrix.best_case}")
    print(f"Worst case: {matrix.worst_case}")
    print(f"NPV variance: {matrix.npv_variance:,.0f}")
    return matrix


def run_sensitivity(service: CalculationService, args):
    """Print sensitivity bands and, optionally, the stress set."""
    results = service.sensitivity(args.project, args.step)
    if args.stress:
        results.update(service.stress_test(args.project))

    print("\n" + "=" * 60)
    print("SENSITIVITY")
    print("=" * 60)
    for scenario_id, result in results.items():
        print(f"\n{scenario_id.upper()}")
        print("-" * 40)
        print(f"  Revenue:    {result.total_revenue:,.0f}")
        print(f"  Net Profit: {result.net_profit:,.0f}")
        print(f"  NPV:        {result.npv:,.0f}")
        print(f"  IRR:        {result.irr:.2f}%")

    ordering_errors = validate_scenario_ordering(results)
    if ordering_errors:
        print("\nFAILED - Ordering violations:")
        for error in ordering_errors:
            print(f"  - {error}")
    else:
        print("\nPASSED - Scenario ordering is correct")
    return results


def run_validation(service: CalculationService, args):
    """Validate assumptions and print the model report."""
    assumptions = service.repository.load_assumptions(args.project)
    errors = validate_assumptions(assumptions)
    if errors:
        print("\nASSUMPTION ERRORS:")
        for error in errors:
            print(f"  - {error}")

    report = service.validate_model(args.project, args.scenario)
    print(format_report(report))
    return report


COMMANDS = {
    "calculate": run_calculate,
    "status": run_status,
    "delete": run_delete,
    "metrics": run_metrics,
    "risks": run_risks,
    "compare": run_compare,
    "sensitivity": run_sensitivity,
    "validate": run_validation,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Finplan projection and valuation engine")
    parser.add_argument("--dir", "-d", default="assumptions", help="Assumptions directory")
    parser.add_argument("--db", default="sqlite:///finplan.db", help="Database URL for stored outputs")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    calc_parser = subparsers.add_parser("calculate", help="Calculate and store monthly projections")
    calc_parser.add_argument("project", help="Project ID")
    calc_parser.add_argument("--scenario", "-s", help="Scenario ID (base case when omitted)")
    calc_parser.add_argument("--force", "-f", action="store_true", help="Recalculate existing outputs")

    for name, help_text in (
        ("status", "Show calculation status"),
        ("delete", "Delete stored outputs"),
        ("metrics", "Show valuation metrics"),
        ("risks", "Show risk indicators and alerts"),
        ("validate", "Validate assumptions and model"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("project", help="Project ID")
        sub.add_argument("--scenario", "-s", help="Scenario ID (base case when omitted)")
        if name == "metrics":
            sub.add_argument("--json", action="store_true", help="Print as JSON")

    cmp_parser = subparsers.add_parser("compare", help="Compare scenarios")
    cmp_parser.add_argument("project", help="Project ID")
    cmp_parser.add_argument("scenarios", nargs="*", help="Scenario IDs (all when omitted)")

    sens_parser = subparsers.add_parser("sensitivity", help="Run sensitivity analysis")
    sens_parser.add_argument("project", help="Project ID")
    sens_parser.add_argument("--step", type=float, default=None, help="Revenue band step (default from settings)")
    sens_parser.add_argument("--stress", action="store_true", help="Include the fixed stress set")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    service = build_service(Path(args.dir), args.db)
    try:
        handler(service, args)
    except FinplanError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
