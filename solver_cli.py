#!/usr/bin/env python3
"""Command-line interface for solving and balancing production networks."""

import argparse
import json
import logging
import sys

from balancer import compute_machines
from optimize import optimize_machine_counts
from production_solver import solve
from recipes import edge_from_dict, node_from_dict


def parse_target_list(text):
    """Parse comma-separated node ids.

    Precondition:
        text is a string (may be empty or whitespace-only) or None

    Postcondition:
        returns node ids in order with whitespace stripped
        empty items and duplicates are dropped

    Args:
        text: String like "smelter, assembler"

    Returns:
        list of node ids
    """
    if not text or not text.strip():
        return []
    return list(dict.fromkeys(stripped for item in text.split(",") if (stripped := item.strip())))


def load_snapshot(path: str) -> tuple[list, list]:
    """Read nodes and edges from a JSON file of the form {"nodes": [...], "edges": [...]}.

    Raises:
        ValueError: if the file is not valid JSON or a record is malformed
        OSError: if the file cannot be read
    """
    with open(path, encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain an object with 'nodes' and 'edges'")
    nodes = [node_from_dict(item) for item in data.get("nodes", [])]
    edges = [edge_from_dict(item) for item in data.get("edges", [])]
    return nodes, edges


def _print_solution(solution) -> None:
    summary = solution.summary
    print(f"Health: {summary.health_score:g}")
    if summary.is_balanced:
        print("Network is balanced")
    for item in solution.excess:
        print(f"Excess {item.product_id}: {item.excess_rate:g}/s ({item.percentage:.1f}%)")
    for item in solution.deficiency:
        nodes = ", ".join(port.node_id for port in item.affected_nodes)
        print(f"Deficiency {item.product_id}: {item.deficiency_rate:g}/s ({item.percentage:.1f}%) at {nodes}")
    for suggestion in solution.suggestions:
        print(
            f"Suggest {suggestion.adjustment} {suggestion.node_id} "
            f"{suggestion.current_machine_count:g} -> {suggestion.suggested_machine_count:g} "
            f"({suggestion.reason}, {suggestion.product_id})"
        )


def _print_balance(result) -> None:
    print(f"{result.message} after {result.iterations} iterations ({result.stopped_reason})")
    for node_id, count in result.updates.items():
        print(f"Set {node_id} to {count:g} machines")
    if result.deficient_nodes:
        print(f"Deficient: {', '.join(result.deficient_nodes)}")


def _create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser.

    Postcondition:
        returns a parser with "solve" and "balance" subcommands

    Returns:
        ArgumentParser instance ready to parse command-line arguments
    """
    parser = argparse.ArgumentParser(
        description="Solve and balance production networks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Report excess, deficiency and suggestions
  %(prog)s solve factory.json

  # Balance the suppliers of two target nodes
  %(prog)s balance factory.json --targets "assembler_1, assembler_2"

  # Balance with the integer program, accepting shortages
  %(prog)s balance factory.json --targets assembler_1 --method milp --allow-deficiency
        """,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    solve_parser = commands.add_parser("solve", help="Report flows, excess and deficiency")
    solve_parser.add_argument("snapshot", help='JSON file with "nodes" and "edges"')

    balance_parser = commands.add_parser("balance", help="Compute machine counts for target nodes")
    balance_parser.add_argument("snapshot", help='JSON file with "nodes" and "edges"')
    balance_parser.add_argument(
        "--targets", "-t", required=True, help='Target node ids as "id, id, ..."'
    )
    balance_parser.add_argument(
        "--allow-deficiency", action="store_true", help="Accept results that leave inputs short"
    )
    balance_parser.add_argument(
        "--method", choices=("heuristic", "milp"), default="heuristic",
        help="Balancing method (default: heuristic)",
    )
    return parser


def main():
    """Main CLI function.

    Postcondition:
        returns 0 on success, 1 on error or when balancing fails
        errors are printed to stderr

    Returns:
        exit code (0=success, 1=error)
    """
    parser = _create_argument_parser()
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(message)s')

    try:
        nodes, edges = load_snapshot(args.snapshot)

        if args.command == "solve":
            _print_solution(solve(nodes, edges))
            return 0

        targets = parse_target_list(args.targets)
        if not targets:
            print("Error: No targets specified", file=sys.stderr)
            return 1
        if args.method == "milp":
            result = optimize_machine_counts(nodes, edges, targets, args.allow_deficiency)
        else:
            result = compute_machines(nodes, edges, targets, args.allow_deficiency)
        _print_balance(result)
        return 0 if result.success else 1

    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
