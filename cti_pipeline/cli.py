#!/usr/bin/env python3
"""
CTI pipeline command line interface.

Provides collection, offline analysis, query suggestion, translation and
full-cycle commands over the same configuration.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .collectors import FileRecordSource
from .errors import ConfigurationError, PipelineError
from .normalizers import DataSource, RawRecord
from .pipeline import CTIPipeline
from .utils.env import load_config

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: str = None):
    """Set up logging configuration."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)


def format_json_output(data: Any, indent: int = 2) -> str:
    """Format data as pretty JSON."""
    return json.dumps(data, indent=indent, default=str, sort_keys=True)


def format_table_output(data: Dict[str, Any], title: str = None) -> str:
    """Format data as a simple key/value listing."""
    output = []
    if title:
        output.append(f"\n{title}")
        output.append("=" * len(title))
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            output.append(f"{key}: {json.dumps(value, default=str)}")
        else:
            output.append(f"{key}: {value}")
    return "\n".join(output)


def saved_records(pipeline: CTIPipeline) -> List[RawRecord]:
    """Newest saved records of every source."""
    records: List[RawRecord] = []
    for source in DataSource:
        replay = FileRecordSource(source, pipeline.config.raw_dir)
        if replay.is_available():
            records.extend(replay.collect())
    return records


def cmd_collect(args, pipeline: CTIPipeline) -> int:
    """Collect from every source and save raw records."""
    result = pipeline.collect(queries=args.query or pipeline.previous_queries())
    summary = {'counts': result.counts(), 'errors': result.errors,
               'paths': {k: str(v) for k, v in result.paths.items()}}
    if args.json:
        print(format_json_output(summary))
    else:
        print(format_table_output(summary['counts'], 'Collected Records'))
        for name, error in result.errors.items():
            print(f"✗ {name}: {error}")
    return 0 if result.all_records() else 1


def cmd_analyze(args, pipeline: CTIPipeline) -> int:
    """Analyze saved raw records without collecting."""
    records = saved_records(pipeline)
    if not records:
        print(f"No saved records under {pipeline.config.raw_dir}")
        return 1
    result = pipeline.process(records)
    if args.json:
        print(format_json_output(result.to_dict()))
    else:
        status = result.artifact['status']
        print(f"Risk: {status['riskLevel']} ({status['riskScore']}), trend {status['trend']}")
        for path in result.paths + result.translated_paths:
            print(f"✓ {path}")
    return 0


def cmd_queries(args, pipeline: CTIPipeline) -> int:
    """Suggest follow-up queries for the saved records."""
    context = pipeline.build_context(saved_records(pipeline))
    suggestions = pipeline.suggest_queries(context)
    if args.json:
        print(format_json_output([s.to_dict() for s in suggestions]))
    elif not suggestions:
        print("No indicators extracted, no queries suggested")
    else:
        for s in suggestions:
            print(f"[{s.priority.value}] {s.query_string}  ({', '.join(s.tags)})")
            print(f"    {s.rationale}")
    return 0


def cmd_translate(args, pipeline: CTIPipeline) -> int:
    """Translate a published artifact."""
    paths = pipeline.translate_file(Path(args.file))
    for path in paths:
        print(f"✓ {path}")
    return 0


def cmd_history(args, pipeline: CTIPipeline) -> int:
    """Show the historical score trend."""
    context = pipeline.history.context()
    summary = {
        'runs': len(context.previous),
        'averageScore': round(context.average_risk_score, 1),
        'trend': context.trend_direction,
        'recurringCves': context.common_cves,
    }
    if args.json:
        print(format_json_output(summary))
    else:
        print(format_table_output(summary, 'Run History'))
    return 0


def cmd_run(args, pipeline: CTIPipeline) -> int:
    """Run a full cycle."""
    result = pipeline.run(queries=args.query)
    if args.json:
        print(format_json_output(result.to_dict()))
    else:
        status = result.artifact['status']
        print(f"Collected: {result.counts}")
        print(f"Risk: {status['riskLevel']} ({status['riskScore']}), trend {status['trend']}")
        for path in result.paths + result.translated_paths:
            print(f"✓ {path}")
        for name, error in result.errors.items():
            print(f"✗ {name}: {error}")
    return 0


COMMANDS = {
    'collect': cmd_collect,
    'analyze': cmd_analyze,
    'queries': cmd_queries,
    'translate': cmd_translate,
    'history': cmd_history,
    'run': cmd_run,
}

NEEDS_SOURCES = {'collect', 'analyze', 'queries', 'run'}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cross-source threat intelligence pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full collection, analysis and publishing cycle
  cti-pipeline run

  # Analyze saved records without the reasoning service
  cti-pipeline --no-llm analyze

  # Suggest follow-up Shodan queries
  cti-pipeline queries --json

  # Translate a published dashboard
  cti-pipeline translate data/cti-output/cti-dashboard.json
        """
    )
    parser.add_argument('--config', help='YAML configuration file')
    parser.add_argument('--json', action='store_true', help='Output in JSON format')
    parser.add_argument('--no-llm', action='store_true',
                        help='Skip the reasoning service and use deterministic fallbacks')
    parser.add_argument('--no-translate', action='store_true', help='Skip artifact translation')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Set logging level')
    parser.add_argument('--log-file', help='Also log to this file')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    collect_parser = subparsers.add_parser('collect', help='Collect raw records from every source')
    collect_parser.add_argument('--query', action='append', help='Extra search query (repeatable)')

    subparsers.add_parser('analyze', help='Analyze saved records and publish the dashboard')
    subparsers.add_parser('queries', help='Suggest follow-up collection queries')

    translate_parser = subparsers.add_parser('translate', help='Translate a published artifact')
    translate_parser.add_argument('file', help='Artifact JSON file')

    subparsers.add_parser('history', help='Show the historical risk trend')

    run_parser = subparsers.add_parser('run', help='Collect, analyze, publish and translate')
    run_parser.add_argument('--query', action='append', help='Extra search query (repeatable)')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.log_level, args.log_file)

    overrides: Dict[str, Any] = {}
    if args.no_llm:
        overrides['reasoning'] = {'enabled': False}
    if args.no_translate:
        overrides['translation'] = {'enabled': False}

    try:
        config = load_config(args.config, overrides)
        if args.command in NEEDS_SOURCES:
            config.validate_sources()
        pipeline = CTIPipeline(config)
        return COMMANDS[args.command](args, pipeline)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except PipelineError as e:
        logger.error(f"Command failed: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
