"""
Markdown Authority — operator command line.

Usage:
    python -m markdown_authority.cli limits
    python -m markdown_authority.cli check --tier ASSOCIATE --type PERCENTAGE \\
        --value 20 --price 50 --reason PRICE_MATCH
"""

from __future__ import annotations

import argparse
import sys
from decimal import Decimal, InvalidOperation

from rich.console import Console
from rich.table import Table

from markdown_authority.logging_config import configure_logging
from markdown_authority.policy.calculations import calculate_discount, max_discount
from markdown_authority.policy.schema import (
    MARKDOWN_REASON_LABELS,
    MARKDOWN_TYPE_LABELS,
    MarkdownInput,
    MarkdownType,
    PermissionTier,
    ReasonCode,
    TIER_LIMITS,
    limits_for,
    reason_minimum_tier,
)
from markdown_authority.policy.validation import validate

console = Console()


def _decimal_arg(text: str) -> str:
    try:
        number = Decimal(text)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from exc
    if not number.is_finite():
        raise argparse.ArgumentTypeError(f"not a finite number: {text!r}")
    return text


def show_limits() -> None:
    """Print the tier policy table and the reason minimum tiers."""
    table = Table(title="Markdown Tier Limits", show_lines=True)
    table.add_column("Tier", style="cyan")
    table.add_column("Max %", justify="right")
    table.add_column("Max Fixed", justify="right")
    table.add_column("Set Price", width=9)
    table.add_column("Types", style="green")
    table.add_column("Reasons", style="yellow")

    for tier, limits in TIER_LIMITS.items():
        table.add_row(
            tier.value,
            f"{limits.max_percentage}%",
            f"${limits.max_fixed_amount:,.2f}",
            "yes" if limits.can_override_price else "no",
            "\n".join(MARKDOWN_TYPE_LABELS[t] for t in MarkdownType if t in limits.allowed_types),
            "\n".join(MARKDOWN_REASON_LABELS[r] for r in ReasonCode if r in limits.allowed_reasons),
        )
    console.print(table)

    reasons = Table(title="Reason Minimum Tier")
    reasons.add_column("Reason", style="yellow")
    reasons.add_column("Minimum Tier", style="cyan")
    for reason in ReasonCode:
        reasons.add_row(MARKDOWN_REASON_LABELS[reason], reason_minimum_tier(reason).value)
    console.print(reasons)


def check_markdown(
    tier: PermissionTier,
    markdown_type: MarkdownType,
    value: str,
    price: str,
    reason: ReasonCode,
) -> bool:
    """
    Evaluate one markdown for a tier and print the verdict.

    Returns:
        True if the tier may apply the markdown without an override.
    """
    limits = limits_for(tier)
    markdown = MarkdownInput(type=markdown_type, value=value, reason=reason)
    result = validate(markdown, limits, price)

    console.print(
        f"\n[bold]{tier.value}[/bold]: {MARKDOWN_TYPE_LABELS[markdown_type]} "
        f"{value} on ${price} ({MARKDOWN_REASON_LABELS[reason]})"
    )
    if markdown.value is not None and markdown.value > 0:
        outcome = calculate_discount(markdown_type, value, price)
        console.print(
            f"  Discount: [bold]${outcome.amount:,.2f}[/bold] ({outcome.percent:.2f}%)"
        )
    console.print(f"  Tier maximum: {max_discount(markdown_type, price, limits)}")

    for error in result.errors:
        console.print(f"  [red]✗ {error}[/red]")
    for warning in result.warnings:
        console.print(f"  [yellow]⚠ {warning}[/yellow]")

    if result.is_valid:
        console.print("  [bold green]✓ ALLOWED[/bold green]")
    elif result.requires_override and not result.errors:
        console.print("  [bold yellow]● MANAGER OVERRIDE REQUIRED[/bold yellow]")
    else:
        console.print("  [bold red]✗ REJECTED[/bold red]")
    return result.is_valid


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Markdown authorization policy tool")
    parser.add_argument("--log-level", default=None, help="Override MARKDOWN_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("limits", help="Show the tier policy table")

    check = sub.add_parser("check", help="Evaluate a markdown for a tier")
    check.add_argument("--tier", required=True, choices=[t.value for t in PermissionTier])
    check.add_argument("--type", required=True, choices=[t.value for t in MarkdownType])
    check.add_argument("--value", required=True, type=_decimal_arg)
    check.add_argument("--price", required=True, type=_decimal_arg)
    check.add_argument("--reason", required=True, choices=[r.value for r in ReasonCode])

    args = parser.parse_args(argv)
    configure_logging(log_level=args.log_level, log_format="console")

    if args.command == "limits":
        show_limits()
        sys.exit(0)

    allowed = check_markdown(
        PermissionTier(args.tier),
        MarkdownType(args.type),
        args.value,
        args.price,
        ReasonCode(args.reason),
    )
    sys.exit(0 if allowed else 1)


if __name__ == "__main__":
    main()
