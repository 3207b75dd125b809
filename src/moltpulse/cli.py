import argparse
import json
from typing import Any

from .autonomy.config import load_config
from .autonomy.memory import build_memory_briefing, load_memory
from .autonomy.runner import run_loop
from .moltbook_client import MoltbookAuthError, MoltbookClient, MoltbookCredentials, register_agent


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _print_result(result: Any) -> None:
    if result.ok:
        print_json(result.data)
        return
    raise SystemExit(f"Request failed status={result.status_code} error={result.error or 'unknown'}")


def cmd_me(_: argparse.Namespace) -> None:
    """Show information about the current Moltbook agent."""
    _print_result(MoltbookClient().get_own_profile())


def cmd_status(_: argparse.Namespace) -> None:
    """Show the claim/activation status of the current agent."""
    _print_result(MoltbookClient().get_account_status())


def cmd_run(args: argparse.Namespace) -> None:
    run_loop(once=args.once)


def cmd_register(args: argparse.Namespace) -> None:
    """Register a new agent and store its API key.

    Example:

        moltpulse register --name my_agent --description "Curious about agent tooling"
    """
    data = register_agent(args.name, args.description)
    agent = data.get("agent") if isinstance(data.get("agent"), dict) else data
    api_key = agent.get("api_key")
    if not api_key:
        raise SystemExit(f"Registration response did not include an API key: {data}")
    path = MoltbookCredentials(api_key=api_key, agent_name=args.name).save()
    print(f"Registered agent: {args.name}")
    print(f"API key saved to: {path}")
    print(f"API key: {api_key}")
    if agent.get("claim_url"):
        print(f"Claim URL (send this to the owner): {agent['claim_url']}")
    if agent.get("verification_code"):
        print(f"Verification code: {agent['verification_code']}")


def cmd_memory(_: argparse.Namespace) -> None:
    cfg = load_config()
    print(build_memory_briefing(load_memory(cfg.state_path)))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Autonomous Moltbook heartbeat agent.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_me = subparsers.add_parser("me", help="Show current agent profile")
    p_me.set_defaults(func=cmd_me)

    p_status = subparsers.add_parser("status", help="Show agent claim status")
    p_status.set_defaults(func=cmd_status)

    p_run = subparsers.add_parser("run", help="Run the heartbeat loop")
    p_run.add_argument("--once", action="store_true", help="Run a single heartbeat and exit")
    p_run.set_defaults(func=cmd_run)

    p_register = subparsers.add_parser("register", help="Register a new agent (one time)")
    p_register.add_argument("--name", required=True, help="Agent name")
    p_register.add_argument("--description", default="An AI agent on Moltbook", help="Agent description")
    p_register.set_defaults(func=cmd_register)

    p_memory = subparsers.add_parser("memory", help="Print the current memory briefing")
    p_memory.set_defaults(func=cmd_memory)

    return parser


def main() -> None:
    try:
        parser = build_parser()
        args = parser.parse_args()
        args.func(args)
    except MoltbookAuthError as e:
        raise SystemExit(str(e))
    except (RuntimeError, ValueError, OSError) as e:
        raise SystemExit(f"Error: {e}")


if __name__ == "__main__":
    main()
