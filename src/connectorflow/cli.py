"""
CLI tool for connector resolution and workflow runs.

Provides terminal access to:
- Dependency resolution and failure explanations
- Lockfile validation and updates
- Workflow validation and execution plans
- Local workflow runs against the bundled adapters
"""

import sys
import json
import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional

from connector_registry import (
    ConnectorRegistry,
    DependencyResolver,
    LockfileError,
    RegistrySnapshot,
    ResolutionStrategy,
    generate_lockfile,
    load_lockfile,
    save_lockfile,
    update_lockfile,
    validate_lockfile,
)
from connector_sdk import ConnectorAdapterFactory, InMemoryCredentialStore
from connectorflow.config import get_settings
from connectorflow.observability import setup_logging
from connectorpacks.core import REGISTRY_ENTRIES, register_all
from workflow_runtime import (
    RunMode,
    RunStatus,
    WorkflowCycleError,
    WorkflowExecutionEngine,
    load_workflow,
)


def load_registry(path: Optional[str]) -> RegistrySnapshot:
    """Registry document from ``path`` or settings, else the bundled connectors."""
    path = path or get_settings().registry_path
    if path:
        return RegistrySnapshot.from_file(path)
    return ConnectorRegistry(REGISTRY_ENTRIES).snapshot()


def build_factory() -> ConnectorAdapterFactory:
    factory = ConnectorAdapterFactory()
    factory.discover_entry_points()
    register_all(factory)
    return factory


def _strategy(value: Optional[str]) -> Optional[ResolutionStrategy]:
    if value is None:
        return get_settings().default_resolution_strategy
    return ResolutionStrategy(value)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _load_json_arg(value: Optional[str]) -> Dict[str, Any]:
    """Inline JSON object or ``@path`` to a JSON file."""
    if not value:
        return {}
    text = Path(value[1:]).read_text(encoding="utf-8") if value.startswith("@") else value
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


# ==============================================================================
# Resolution commands
# ==============================================================================

def cmd_resolve(args: argparse.Namespace) -> int:
    """Resolve requested connectors and optionally write a lockfile."""
    resolver = DependencyResolver(load_registry(args.registry), max_steps=get_settings().max_resolution_steps)
    lockfile = load_lockfile(args.lockfile) if args.lockfile else None

    result = resolver.resolve(args.requests, strategy=_strategy(args.strategy), lockfile=lockfile)
    _print_json(result.model_dump(mode="json", by_alias=True))

    if not result.success:
        return 1
    if args.write_lockfile:
        save_lockfile(generate_lockfile(result), args.write_lockfile)
    return 0


def cmd_explain(args: argparse.Namespace) -> int:
    """Explain why requested connectors do or do not resolve."""
    resolver = DependencyResolver(load_registry(args.registry), max_steps=get_settings().max_resolution_steps)
    diagnostics = resolver.explain_failure(args.requests, strategy=_strategy(args.strategy))
    _print_json(diagnostics.model_dump(mode="json", by_alias=True))
    return 1 if diagnostics.has_conflicts else 0


def cmd_lock(args: argparse.Namespace) -> int:
    """Validate or update a lockfile."""
    snapshot = load_registry(args.registry)
    lockfile = load_lockfile(args.lockfile)

    if args.lock_command == "validate":
        result = validate_lockfile(lockfile, snapshot, requested=args.requests or None)
        _print_json(result.model_dump(mode="json", by_alias=True))
        return 0 if result.is_valid else 1

    resolver = DependencyResolver(snapshot, max_steps=get_settings().max_resolution_steps)
    try:
        updated = update_lockfile(lockfile, resolver, strategy=_strategy(args.strategy) or ResolutionStrategy.HIGHEST_COMPATIBLE)
    except LockfileError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    save_lockfile(updated, args.output or args.lockfile)
    _print_json(updated.model_dump(mode="json", by_alias=True))
    return 0


# ==============================================================================
# Workflow commands
# ==============================================================================

def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a workflow definition."""
    workflow = load_workflow(args.workflow)
    engine = WorkflowExecutionEngine(build_factory())
    result = engine.validate(workflow)
    _print_json(result.model_dump(mode="json", by_alias=True))
    return 0 if result.is_valid else 1


def cmd_plan(args: argparse.Namespace) -> int:
    """Print the execution plan of a workflow."""
    workflow = load_workflow(args.workflow)
    engine = WorkflowExecutionEngine(build_factory())
    try:
        plan = engine.get_execution_plan(workflow)
    except WorkflowCycleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    _print_json(plan.model_dump(mode="json", by_alias=True))
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Run a workflow locally and print the run record."""
    workflow = load_workflow(args.workflow)

    credentials = InMemoryCredentialStore()
    for credential_id, secret in _load_json_arg(args.credentials).items():
        credentials.put(credential_id, secret, workflow.tenant_id)

    engine = WorkflowExecutionEngine(build_factory(), credentials=credentials)
    run = engine.submit(workflow, mode=args.mode, input=_load_json_arg(args.input), triggered_by="cli")
    run = engine.execute(run, workflow)

    _print_json(run.model_dump(mode="json", by_alias=True))
    return 0 if run.status == RunStatus.COMPLETED else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="connectorflow",
        description="Connector resolution and workflow execution",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", help="Override CONNECTORFLOW_LOG_LEVEL")
    parser.add_argument("--plain-logs", action="store_true", help="Human-readable logs instead of JSON")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")
    strategies = [s.value for s in ResolutionStrategy]

    # resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve connector versions")
    resolve_parser.add_argument("requests", nargs="+", help="Requests as 'connectorId@range'")
    resolve_parser.add_argument("--registry", help="Registry document (JSON or YAML)")
    resolve_parser.add_argument("--strategy", choices=strategies, help="Resolution strategy")
    resolve_parser.add_argument("--lockfile", help="Lockfile whose pins are honored")
    resolve_parser.add_argument("--write-lockfile", help="Write the result as a lockfile")

    # explain command
    explain_parser = subparsers.add_parser("explain", help="Explain a resolution failure")
    explain_parser.add_argument("requests", nargs="+", help="Requests as 'connectorId@range'")
    explain_parser.add_argument("--registry", help="Registry document (JSON or YAML)")
    explain_parser.add_argument("--strategy", choices=strategies, help="Resolution strategy")

    # lock command
    lock_parser = subparsers.add_parser("lock", help="Validate or update a lockfile")
    lock_parser.add_argument("lock_command", choices=["validate", "update"])
    lock_parser.add_argument("lockfile", help="Lockfile path")
    lock_parser.add_argument("requests", nargs="*", help="Requests the pins must satisfy (validate)")
    lock_parser.add_argument("--registry", help="Registry document (JSON or YAML)")
    lock_parser.add_argument("--strategy", choices=strategies, help="Strategy for update")
    lock_parser.add_argument("--output", help="Write the updated lockfile here instead of in place")

    # workflow commands
    validate_parser = subparsers.add_parser("validate", help="Validate a workflow")
    validate_parser.add_argument("workflow", help="Workflow document (JSON or YAML)")

    plan_parser = subparsers.add_parser("plan", help="Show the execution plan of a workflow")
    plan_parser.add_argument("workflow", help="Workflow document (JSON or YAML)")

    run_parser = subparsers.add_parser("run", help="Run a workflow locally")
    run_parser.add_argument("workflow", help="Workflow document (JSON or YAML)")
    run_parser.add_argument("--input", help="Run input as JSON or @file")
    run_parser.add_argument("--mode", default=RunMode.MANUAL.value, choices=[m.value for m in RunMode])
    run_parser.add_argument("--credentials", help="Credential secrets by id, as JSON or @file")

    return parser


COMMANDS = {
    "resolve": cmd_resolve,
    "explain": cmd_explain,
    "lock": cmd_lock,
    "validate": cmd_validate,
    "plan": cmd_plan,
    "run": cmd_run,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(level=args.log_level, json_output=False if args.plain_logs else None)

    try:
        return COMMANDS[args.command](args)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
