"""Fleet diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import time

from fleet_mcp.config import FleetSettings, get_settings
from fleet_mcp.facade import FleetFacade
from fleet_mcp.proxy import ProxyError
from fleet_mcp.storage import PersistedAgentState, StateStore, StateStoreError
from fleet_mcp.tmux import format_session_activity

WATCH_INTERVAL = 2.0


def load_facade(settings: FleetSettings) -> FleetFacade:
    return FleetFacade.from_settings(settings)


def load_states(settings: FleetSettings) -> dict[str, PersistedAgentState]:
    try:
        return StateStore(settings.state_path).load_states()
    except StateStoreError as exc:
        print(f"State unavailable: {exc}")
        raise SystemExit(1)


def _print_sessions(facade: FleetFacade, *, as_json: bool) -> None:
    try:
        sessions, live = asyncio.run(facade.get_sessions_with_multiplexer_info())
    except ProxyError as exc:
        print(f"Sessions unavailable: {exc}")
        raise SystemExit(1)

    if as_json:
        print(json.dumps([record.to_dict() for record in sessions], indent=2))
        return
    if not sessions:
        print("No agent sessions")
        return
    for record in sessions:
        indicator = format_session_activity(live[record.name].activity) if record.name in live else "?"
        port = f":{record.port}" if record.port else "-"
        print(
            f"{indicator} {record.name} [{record.status}] {record.model} {port} "
            f"+{record.insertions}/-{record.deletions}"
        )


def cmd_sessions(args: argparse.Namespace) -> None:
    _print_sessions(load_facade(get_settings()), as_json=args.json)


def cmd_state(args: argparse.Namespace) -> None:
    states = load_states(get_settings())
    if args.session:
        state = states.get(args.session)
        if state is None:
            print(f"Session not found: {args.session}")
            raise SystemExit(1)
        states = {args.session: state}
    print(json.dumps({name: state.model_dump(mode="json") for name, state in states.items()}, indent=2))


def cmd_ports(args: argparse.Namespace) -> None:
    states = load_states(get_settings())
    ports = {name: state.port for name, state in states.items() if state.port > 0}
    print(json.dumps(dict(sorted(ports.items(), key=lambda item: item[1])), indent=2))


def cmd_watch(args: argparse.Namespace) -> None:
    facade = load_facade(get_settings())
    remaining = args.iterations
    try:
        while remaining is None or remaining > 0:
            facade.refresh_sessions()
            print(f"--- {time.strftime('%H:%M:%S')} ---")
            _print_sessions(facade, as_json=False)
            if remaining is not None:
                remaining -= 1
                if remaining == 0:
                    break
            time.sleep(args.interval)
    except KeyboardInterrupt:
        pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fleet MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List agent sessions with live status")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_state = sub.add_parser("state", help="Dump the persisted state file")
    p_state.add_argument("--session")
    p_state.set_defaults(func=cmd_state)

    p_ports = sub.add_parser("ports", help="Show dev server ports assigned to sessions")
    p_ports.set_defaults(func=cmd_ports)

    p_watch = sub.add_parser("watch", help="Refresh the session list periodically")
    p_watch.add_argument("--interval", type=float, default=WATCH_INTERVAL)
    p_watch.add_argument(
        "--iterations",
        type=int,
        default=None,
        help="Stop after N refreshes instead of running until interrupted",
    )
    p_watch.set_defaults(func=cmd_watch)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
