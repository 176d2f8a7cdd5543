#!/usr/bin/env python3
"""
CLI Script for Managing the Active-Learning Model Lifecycle

Provides command-line access to scenarios, review queues, incremental
training, registry versions and rollback.
"""

import argparse
import logging
import sys
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import Settings
from services.active_learning.orchestrator import create_orchestrator, TrainingState
from services.database.scenarios import ScenarioManager
from services.training.parameters import TrainingParameters, TrainingPreset
from utils.error_handling import LifecycleError
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

def load_config(config_path: Optional[str]) -> Dict[str, Any]:
    """Load settings overrides from a YAML file.

    Keys are Settings field names, optionally grouped in sections::

        training:
          min_samples_for_training: 10
        registry:
          regression_threshold: 0.05
    """
    if not config_path:
        return {}

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        print(f"Config file not found: {config_path}")
        print("Using default configuration...")
        return {}
    except yaml.YAMLError as e:
        print(f"Error loading config: {e}")
        print("Using default configuration...")
        return {}

    overrides: Dict[str, Any] = {}
    for key, value in config_data.items():
        if isinstance(value, dict):
            overrides.update(value)
        else:
            overrides[key] = value

    known = set(Settings.model_fields)
    ignored = sorted(k for k in overrides if k not in known)
    if ignored:
        print(f"Ignoring unknown config keys: {', '.join(ignored)}")
    return {k: v for k, v in overrides.items() if k in known}

def build_settings(args) -> Settings:
    settings = Settings(**load_config(args.config))
    settings.ensure_directories()
    return settings

def init_command(args) -> int:
    """Create the database and seed built-in scenarios"""
    orchestrator = create_orchestrator(args.settings)
    created = ScenarioManager(orchestrator.store).ensure_built_in_scenarios()
    print(f"Database ready, {len(created)} built-in scenarios created")
    return 0

def scenarios_command(args) -> int:
    orchestrator = create_orchestrator(args.settings)
    scenarios = ScenarioManager(orchestrator.store).list_scenarios()

    print(f"=== Scenarios ({len(scenarios)}) ===\n")
    for scenario in scenarios:
        marker = " [built-in]" if scenario.is_built_in else ""
        print(f"  {scenario.id}: {scenario.name}{marker}")
        print(f"     Types: {', '.join(scenario.entity_types) or '(any)'}")
    return 0

def status_command(args) -> int:
    """Show counts, active model and registry pointer for a scenario"""
    settings = args.settings
    orchestrator = create_orchestrator(settings)
    scenario_id = args.scenario

    print("=== Active-Learning Status ===\n")
    print(f"Scenario: {scenario_id}")
    print(f"  Annotated Texts: {orchestrator.get_annotated_count(scenario_id)}")
    print(f"  Verified Texts: {orchestrator.get_verified_count(scenario_id)}")
    print(f"  Pending Review: {orchestrator.get_pending_uncertain_count(scenario_id)}")
    print(f"  Min Samples For Training: {settings.min_samples_for_training}")
    print()
    print(f"Active Model: {orchestrator.get_current_model_tag() or '(none)'}")

    if orchestrator.registry is not None:
        info = orchestrator.registry.get_current_version_info(settings.active_model_name)
        if info:
            print(f"  Registry Version: {info.version} (accuracy {info.accuracy:.2%}, {info.samples} samples)")

    latest = orchestrator.get_latest_applied_session(scenario_id)
    if latest:
        print(f"  Last Promotion: {latest.applied_at} F1 {latest.metrics_after.f1:.2%}")
    return 0

def train_command(args) -> int:
    """Run one incremental training round"""
    orchestrator = create_orchestrator(args.settings)
    parameters = TrainingParameters.for_preset(args.preset)
    if args.seed is not None:
        parameters.seed = args.seed

    def progress(stage: str, detail: str, percent: float) -> None:
        print(f"  [{percent:5.1f}%] {stage}: {detail}")

    print(f"Training scenario {args.scenario} with preset '{args.preset}'...")
    result = orchestrator.train_incremental(args.scenario, parameters, progress=progress)

    print()
    print(f"Result: {result.state.value}")
    print(f"  {result.message}")
    if result.metrics_before and result.metrics_after:
        print(f"  F1: {result.metrics_before.f1:.2%} -> {result.metrics_after.f1:.2%}")
        print(f"  Split: train={result.train_count} validation={result.validation_count} test={result.test_count}")
    if result.registry_version:
        print(f"  Registry Version: {result.registry_version}")

    return 0 if result.state in (TrainingState.PROMOTED, TrainingState.REJECTED) else 1

def history_command(args) -> int:
    orchestrator = create_orchestrator(args.settings)
    sessions = orchestrator.get_learning_sessions(args.scenario)[:args.limit]

    print(f"Learning Sessions (last {args.limit}):")
    if not sessions:
        print("  No sessions recorded")
        return 0

    for session in sessions:
        status = "applied" if session.model_applied else ("improved" if session.is_improved else "discarded")
        print(f"  {session.trained_at}: F1 {session.metrics_before.f1:.2%} -> {session.metrics_after.f1:.2%} "
              f"[{status}] samples={session.sample_count_after} ({session.duration_seconds:.1f}s)")
    return 0

def versions_command(args) -> int:
    settings = args.settings
    orchestrator = create_orchestrator(settings)
    if orchestrator.registry is None:
        print("Registry publishing is disabled")
        return 1

    name = args.model or settings.active_model_name
    current = orchestrator.registry.get_current_version(name)
    versions = orchestrator.registry.get_versions(name)

    print(f"Versions of {name}:")
    if not versions:
        print("  No versions published")
    for info in versions:
        marker = "*" if info.version == current else " "
        print(f" {marker} {info.version}  accuracy={info.accuracy:.2%}  samples={info.samples}  "
              f"trained={info.trained_at}  file={info.file_name}")
    return 0

def rollback_command(args) -> int:
    settings = args.settings
    orchestrator = create_orchestrator(settings)
    if orchestrator.registry is None:
        print("Registry publishing is disabled")
        return 1

    name = args.model or settings.active_model_name
    if not orchestrator.registry.rollback(name, args.version):
        print(f"Unknown model or version: {name} {args.version}")
        return 1

    orchestrator.live_model.reload(str(orchestrator.registry.current_model_path(name)))
    print(f"Rolled back {name} to {args.version}")
    return 0

def evaluate_command(args) -> int:
    orchestrator = create_orchestrator(args.settings)
    metrics = orchestrator.evaluate_current_model(args.scenario)

    print(f"Current model on scenario {args.scenario} ({metrics.sample_count} samples):")
    print(f"  Precision: {metrics.precision:.2%}")
    print(f"  Recall: {metrics.recall:.2%}")
    print(f"  Micro F1: {metrics.micro_f1:.2%}")
    print(f"  Macro F1: {metrics.macro_f1:.2%}")
    for label, f1 in metrics.per_type_f1.items():
        print(f"    {label}: {f1:.2%} (support {metrics.per_type_support.get(label, 0)})")
    return 0

def enqueue_command(args) -> int:
    """Queue the least confident paragraphs of a text file for review"""
    orchestrator = create_orchestrator(args.settings)
    document = Path(args.file).read_text(encoding='utf-8')
    inserted = orchestrator.enqueue_document(document, args.scenario, top_n=args.top_n)
    print(f"Queued {inserted} new texts for review")
    return 0

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Manage the active-learning model lifecycle")
    parser.add_argument('--config', '-c',
                       default=None,
                       help='Path to YAML settings overlay')
    parser.add_argument('--log-level', '-l',
                       default=None,
                       help='Logging level (defaults to the configured log_level)')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('init', help='Create database and built-in scenarios')
    subparsers.add_parser('scenarios', help='List scenarios')

    status_parser = subparsers.add_parser('status', help='Show scenario and model status')
    status_parser.add_argument('--scenario', '-s', type=int, required=True, help='Scenario ID')

    train_parser = subparsers.add_parser('train', help='Run incremental training')
    train_parser.add_argument('--scenario', '-s', type=int, required=True, help='Scenario ID')
    train_parser.add_argument('--preset', '-p', choices=[e.value for e in TrainingPreset],
                             default=TrainingPreset.STANDARD.value, help='Training preset')
    train_parser.add_argument('--seed', type=int, default=None, help='Override split seed')

    history_parser = subparsers.add_parser('history', help='Show learning sessions')
    history_parser.add_argument('--scenario', '-s', type=int, required=True, help='Scenario ID')
    history_parser.add_argument('--limit', type=int, default=20,
                               help='Maximum number of sessions to show')

    versions_parser = subparsers.add_parser('versions', help='List registry versions')
    versions_parser.add_argument('--model', '-m', help='Model name (defaults to active model)')

    rollback_parser = subparsers.add_parser('rollback', help='Roll back to an archived version')
    rollback_parser.add_argument('version', help='Version tag, e.g. v2')
    rollback_parser.add_argument('--model', '-m', help='Model name (defaults to active model)')

    evaluate_parser = subparsers.add_parser('evaluate', help='Evaluate current model on verified samples')
    evaluate_parser.add_argument('--scenario', '-s', type=int, required=True, help='Scenario ID')

    enqueue_parser = subparsers.add_parser('enqueue', help='Queue uncertain paragraphs from a text file')
    enqueue_parser.add_argument('file', help='UTF-8 text file')
    enqueue_parser.add_argument('--scenario', '-s', type=int, required=True, help='Scenario ID')
    enqueue_parser.add_argument('--top-n', type=int, default=None, help='Maximum entries to queue')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    args.settings = build_settings(args)
    setup_logging(
        level=args.log_level or args.settings.log_level,
        log_file=args.settings.log_file,
        json_format=args.settings.json_logs,
    )

    # Command dispatch
    commands = {
        'init': init_command,
        'scenarios': scenarios_command,
        'status': status_command,
        'train': train_command,
        'history': history_command,
        'versions': versions_command,
        'rollback': rollback_command,
        'evaluate': evaluate_command,
        'enqueue': enqueue_command,
    }

    try:
        return commands[args.command](args)
    except LifecycleError as e:
        print(f"Error: {e.message}")
        return 1

if __name__ == "__main__":
    sys.exit(main())
