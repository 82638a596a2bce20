#!/usr/bin/env python3
"""
IPAudit - AI Strategy Audit against Granted Claims
Main Entry Point

Usage:
    python main.py -s strategies.json -g granted.csv                  # Correlate, audit, report
    python main.py -s strategies.json -g granted.csv --correlate-only # Data map only
    python main.py --report <run_id>                                  # Regenerate a run's report
    python main.py --list                                             # List audit runs
"""

import sys
import argparse
import logging
from pathlib import Path

import yaml

from ipaudit.ai_providers import AIProviderFactory, AuthorizationError
from ipaudit.auditor import AUTHORIZATION_REMEDIATION, CaseAuditor, summarize
from ipaudit.correlation import CorrelationSettings, InputError, correlate, load_inputs
from ipaudit.database import DatabaseManager
from ipaudit.report_generator import ReportGenerator, format_correlation_table, format_summary


DEFAULT_CONFIG = {
    'ai_provider': 'gemini',
    'model_mode': 'full',
    'api_keys': {},
    'models': {},
    'paths': {'output_folder': 'output', 'database': 'output/ipaudit.db'},
    'logging': {'level': 'INFO', 'file': 'output/ipaudit.log', 'verbose': False},
}


def setup_logging(config: dict):
    """Configure logging based on config"""
    log_level = getattr(logging, (config.get('logging') or {}).get('level', 'INFO'))
    log_file = (config.get('logging') or {}).get('file', 'output/ipaudit.log')

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )

    return logging.getLogger(__name__)


def load_config(config_path: str = "config.yaml") -> dict:
    """Load configuration from YAML file, filling in defaults for missing sections"""
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    for key, value in DEFAULT_CONFIG.items():
        if isinstance(value, dict):
            config[key] = {**value, **(config.get(key) or {})}
        else:
            config.setdefault(key, value)

    Path(config['paths']['output_folder']).mkdir(parents=True, exist_ok=True)
    Path(config['paths']['database']).parent.mkdir(parents=True, exist_ok=True)

    return config


def generate_report(run_id: str, config: dict, logger: logging.Logger) -> dict:
    """Generate report for a stored audit run"""
    logger.info(f"Generating report for audit run: {run_id}")

    db_manager = DatabaseManager(config['paths']['database'])
    report_gen = ReportGenerator(db_manager, config['paths']['output_folder'])

    report_format = (config.get('report') or {}).get('format', 'both')
    output_files = report_gen.generate_report(run_id, format=report_format)

    logger.info(f"Report generated: {output_files}")
    return output_files


def list_runs(config: dict) -> None:
    db_manager = DatabaseManager(config['paths']['database'])
    runs = db_manager.list_runs()

    if not runs:
        print("\nNo audit runs recorded yet.")
        return

    print("\nAudit Runs:")
    print("-" * 70)
    for run in runs:
        print(f"  ID: {run['id']}")
        print(f"  Model: {run['ai_provider']} / {run['ai_model']}")
        print(f"  Inputs: {run['strategies_file']} + {run['ground_truth_file']}")
        print(f"  Matches: {run['cases_matched']} / {run['cases_total']}")
        print(f"  Results: {run['results']}")
        print(f"  Status: {run['status']}")
        print(f"  Started: {run['start_time']}")
        print("-" * 70)


def run_audit(args: argparse.Namespace, config: dict, logger: logging.Logger) -> int:
    """Correlate the two input files, audit every case and write the report"""
    try:
        json_raw, csv_headers, csv_rows = load_inputs(args.strategies, args.ground_truth)
        correlation = correlate(json_raw, csv_rows, CorrelationSettings.from_config(config),
                                csv_headers=csv_headers)
    except InputError as e:
        logger.error(f"Extraction error: {e}")
        print(f"\nError: {e}")
        print("Ensure the strategy JSON is valid and the CSV has clear headers.")
        return 1

    print()
    print(format_correlation_table(correlation))
    for warning in correlation.warnings:
        print(f"  WARNING: {warning}")

    if args.correlate_only or not correlation.cases:
        return 0

    try:
        provider = AIProviderFactory.create_from_config(config)
    except AuthorizationError as e:
        logger.error(str(e))
        print(f"\n{AUTHORIZATION_REMEDIATION}")
        return 1

    model_info = AIProviderFactory.get_model_info(config)
    db_manager = DatabaseManager(config['paths']['database'])
    run_id = db_manager.start_run(
        ai_provider=model_info['provider'],
        ai_model=model_info['model'],
        strategies_file=Path(args.strategies).name,
        ground_truth_file=Path(args.ground_truth).name,
        cases_total=len(correlation.cases),
        cases_matched=correlation.matched_count,
    )
    matched_by_app = {c.app_number: c.is_matched for c in correlation.cases}

    def _progress(index, total, case, result):
        percent = round(index / total * 100)
        status = f"{result.final_score:g}%" if result else "no result"
        print(f"  [{percent:3d}%] {case.app_number}: {status}")

    auditor = CaseAuditor.from_config(provider, config)
    print(f"\nExecuting delta audit on {len(correlation.cases)} case(s)...")
    outcome = auditor.run_batch(
        correlation.cases,
        progress=_progress,
        on_result=lambda r: db_manager.store_result(run_id, r, matched=matched_by_app.get(r.app_number, False)),
    )

    status = "halted" if outcome.halted else "completed"
    db_manager.finish_run(run_id, status, errors=outcome.failures, halt_reason=outcome.halt_reason or None)

    print("\n" + "=" * 60)
    print("AUDIT SUMMARY")
    print("=" * 60)
    print(f"Run ID: {run_id}")
    print(format_summary(summarize(outcome.results)))
    if outcome.failures:
        print(f"\nFailed: {len(outcome.failures)}")
        for app_number, message in outcome.failures:
            print(f"  - {app_number}: {message}")
    if outcome.halted:
        print(f"\nBatch halted: {outcome.halt_reason}")

    if outcome.results and not args.no_report:
        output_files = generate_report(run_id, config, logger)
        print("\nReport generated:")
        for fmt, path in output_files.items():
            print(f"  {fmt}: {path}")

    print("\n" + "=" * 60)
    return 2 if outcome.halted else 0


def main():
    parser = argparse.ArgumentParser(
        description="IPAudit - AI Strategy Audit against Granted Claims",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py -s strategies.json -g granted.csv                  # Full audit
    python main.py -s strategies.json -g granted.csv --correlate-only # Check the data map
    python main.py -s strategies.json -g granted.csv --fast           # Use fast/cheap model
    python main.py --provider claude -s s.json -g g.csv               # Override provider
    python main.py --report 1a2b3c4d-...                              # Regenerate report
    python main.py --list                                             # List audit runs
        """
    )

    parser.add_argument('--strategies', '-s', type=str, help='Path to the AI strategy JSON file')
    parser.add_argument('--ground-truth', '-g', type=str, help='Path to the granted claims CSV file')
    parser.add_argument('--correlate-only', action='store_true',
                        help='Only correlate the files and print the data map')
    parser.add_argument('--report', '-r', type=str, metavar='RUN_ID', help='Generate report for an audit run')
    parser.add_argument('--list', '-l', action='store_true', help='List audit runs')
    parser.add_argument('--config', '-c', type=str, default='config.yaml', help='Path to config file')
    parser.add_argument('--provider', '-p', type=str, choices=sorted(AIProviderFactory.PROVIDERS),
                        help='Override AI provider from config')
    parser.add_argument('--fast', action='store_true', help='Use fast/cheap model')
    parser.add_argument('--no-report', action='store_true', help='Skip report generation after the audit')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        print(f"Error: Config file not found: {args.config}")
        print("Please ensure config.yaml exists in the project directory.")
        sys.exit(1)

    if args.provider:
        config['ai_provider'] = args.provider
    if args.fast:
        config['model_mode'] = 'fast'
    if args.verbose:
        config.setdefault('logging', {})['verbose'] = True

    logger = setup_logging(config)

    model_info = AIProviderFactory.get_model_info(config)
    logger.info("=" * 60)
    logger.info("IPAudit - AI Strategy Audit against Granted Claims")
    logger.info(f"AI Provider: {model_info['provider']}")
    logger.info(f"Model: {model_info['model']} ({model_info['mode']} mode)")
    logger.info(f"Verbose Logging: {'ENABLED' if config['logging'].get('verbose') else 'disabled'}")
    logger.info("=" * 60)

    if args.list:
        list_runs(config)
        return

    if args.report:
        try:
            output_files = generate_report(args.report, config, logger)
        except ValueError as e:
            print(f"\nError generating report: {e}")
            sys.exit(1)
        print("\nReport generated successfully!")
        for fmt, path in output_files.items():
            print(f"  {fmt}: {path}")
        return

    if not args.strategies or not args.ground_truth:
        parser.error("both --strategies and --ground-truth are required")

    sys.exit(run_audit(args, config, logger))


if __name__ == "__main__":
    main()
