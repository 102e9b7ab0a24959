"""CLI entry point that drives the onboarding wizard from a terminal."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from tuttiud.logging_config import configure_logging
from tuttiud.models.enums import ChecklistItem, StepStatus
from tuttiud.onboarding.gateway import GatewayError, HttpSetupGateway
from tuttiud.onboarding.orchestrator import OnboardingOrchestrator
from tuttiud.onboarding.state import WizardSnapshot

_STATUS_MARK = {
    StepStatus.IDLE: "-",
    StepStatus.LOADING: "~",
    StepStatus.SUCCESS: "ok",
    StepStatus.WARNING: "!",
    StepStatus.ERROR: "x",
}


def _print_step(label: str, state, show_details: bool) -> None:
    line = f"  [{_STATUS_MARK[state.status]:>2}] {label}"
    if state.message:
        line += f": {state.message}"
    print(line)
    if show_details and state.error:
        for detail_line in state.error.splitlines():
            print(f"         {detail_line}")


def _print_snapshot(snapshot: WizardSnapshot, show_details: bool = False) -> None:
    print(f"Connection status: {snapshot.connection_status or 'not connected'}")
    print(f"Stored application key: {'yes' if snapshot.has_dedicated_key else 'no'}")
    if snapshot.preparation_visible:
        print("Preparation required: run `tuttiud-wizard script` in the data store, then save the key.")
    _print_step("Preparation", snapshot.preparation, show_details)
    if snapshot.credential_step_visible:
        _print_step("Application key", snapshot.credential, show_details)
    _print_step("Connection", snapshot.connection, show_details)
    _print_step("Schema", snapshot.schema, show_details)
    _print_step("Diagnostics", snapshot.diagnostics, show_details)
    if snapshot.diagnostics.diagnostics:
        for issue in snapshot.diagnostics.diagnostics.issues:
            print(f"         - ({issue.type.value}) {issue.description}")
    _print_step("Connection flag", snapshot.commit, show_details)
    if show_details and snapshot.preparation_details:
        print("Technical details:")
        print(snapshot.preparation_details)


def _confirm_preparation(orchestrator: OnboardingOrchestrator) -> None:
    for item in ChecklistItem:
        orchestrator.set_checklist_item(item, True)
    orchestrator.acknowledge_preparation()


def _exit_code(snapshot: WizardSnapshot) -> int:
    steps = (snapshot.credential, snapshot.connection, snapshot.schema, snapshot.diagnostics, snapshot.commit)
    return 1 if any(step.status == StepStatus.ERROR for step in steps) else 0


async def _run_status(orchestrator: OnboardingOrchestrator, args: argparse.Namespace) -> int:
    snapshot = await orchestrator.load()
    _print_snapshot(snapshot, args.verbose)
    return _exit_code(snapshot)


async def _run_store_key(orchestrator: OnboardingOrchestrator, args: argparse.Namespace) -> int:
    key = args.key or os.environ.get("TUTTIUD_APP_KEY", "")
    await orchestrator.load()
    _confirm_preparation(orchestrator)
    snapshot = await orchestrator.submit_credential(key)
    if snapshot.credential.status == StepStatus.SUCCESS:
        snapshot = await orchestrator.request_validation()
    _print_snapshot(snapshot, args.verbose)
    return _exit_code(snapshot)


async def _run_validate(orchestrator: OnboardingOrchestrator, args: argparse.Namespace) -> int:
    snapshot = await orchestrator.load()
    if snapshot.auto_verify_pending:
        snapshot = await orchestrator.run_pending()
    else:
        if args.prepared:
            _confirm_preparation(orchestrator)
        snapshot = await orchestrator.request_validation()
    _print_snapshot(snapshot, args.verbose)
    return _exit_code(snapshot)


async def _run_bootstrap(orchestrator: OnboardingOrchestrator, args: argparse.Namespace) -> int:
    await orchestrator.load()
    snapshot = await orchestrator.bootstrap_schema()
    _print_snapshot(snapshot, args.verbose)
    return _exit_code(snapshot)


async def _dispatch(args: argparse.Namespace, gateway_factory=HttpSetupGateway) -> int:
    """Route to the correct subcommand handler."""
    if args.command is None:
        print("Error: No command specified. Use --help for usage.", file=sys.stderr)
        return 1

    token = args.token or os.environ.get("TUTTIUD_ACCESS_TOKEN", "")
    if args.command != "script" and not token:
        print("Error: an access token is required (--token or TUTTIUD_ACCESS_TOKEN).", file=sys.stderr)
        return 1

    async with gateway_factory(args.api_url, token, provider=args.provider) as gateway:
        if args.command == "script":
            try:
                print(await gateway.fetch_setup_script())
            except GatewayError as exc:
                print(f"Error: {exc.message}", file=sys.stderr)
                return 1
            return 0

        handlers = {
            "status": _run_status,
            "store-key": _run_store_key,
            "validate": _run_validate,
            "bootstrap": _run_bootstrap,
        }
        handler = handlers[args.command]
        orchestrator = OnboardingOrchestrator(gateway, args.org, provider=args.provider)
        try:
            return await handler(orchestrator, args)
        finally:
            orchestrator.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for tuttiud-wizard."""
    parser = argparse.ArgumentParser(
        prog="tuttiud-wizard",
        description="Tuttiud onboarding wizard: prepare, connect and verify an organization's data store",
    )
    parser.add_argument(
        "--api-url",
        default=os.environ.get("TUTTIUD_API_URL", "http://localhost:8080/api"),
        help="Gateway base URL including /api",
    )
    parser.add_argument("--token", help="Bearer token (default: $TUTTIUD_ACCESS_TOKEN)")
    parser.add_argument("--provider", default="tuttiud", help="Provider key in the settings metadata")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show technical details")
    sub = parser.add_subparsers(dest="command")

    p_status = sub.add_parser("status", help="Show the current onboarding state")
    p_store = sub.add_parser("store-key", help="Store the application key and run the connection check")
    p_store.add_argument("--key", help="Application key (default: $TUTTIUD_APP_KEY)")
    p_validate = sub.add_parser("validate", help="Run the connection check, schema check and diagnostics")
    p_validate.add_argument(
        "--prepared",
        action="store_true",
        help="Confirm the manual preparation steps are done",
    )
    p_bootstrap = sub.add_parser("bootstrap", help="Create the data schema and re-run the checks")
    sub.add_parser("script", help="Print the tenant preparation SQL script")

    for p in [p_status, p_store, p_validate, p_bootstrap]:
        p.add_argument("--org", required=True, help="Organization ID")

    args = parser.parse_args(argv)
    configure_logging(log_level="warning")
    sys.exit(asyncio.run(_dispatch(args)))


if __name__ == "__main__":
    main()
