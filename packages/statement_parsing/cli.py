"""CLI for the ``statement_parsing`` package.

This module exposes callable command handlers (``cmd_extract``,
``cmd_cache_list``, ``cmd_cache_clear``, ``cmd_categorize``) and a
Typer-based console interface. Environment variables (notably
``OPENAI_API_KEY`` and ``DATABASE_URL``) are loaded from a local ``.env``
using ``python-dotenv`` before delegating to command logic.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .logging_setup import configure_logging
from .models import Expected, ExpectedHoldingSummary, ExpectedSummary, ParsingMode

console = Console()
err_console = Console(stderr=True)

_MODES: tuple[str, ...] = ("transaction", "holding")


def _check_mode(mode: str) -> ParsingMode | None:
    if mode not in _MODES:
        err_console.print(f"[red]Error:[/red] --mode must be one of: {', '.join(_MODES)}")
        return None
    return mode  # type: ignore[return-value]


def _load_expected(path: Path | None, mode: ParsingMode) -> Expected | None:
    if path is None:
        return None
    raw = path.read_text(encoding="utf-8")
    if mode == "holding":
        return ExpectedHoldingSummary.model_validate_json(raw)
    return ExpectedSummary.model_validate_json(raw)


def cmd_extract(
    text_path: Path,
    *,
    institution: str,
    account_type: str,
    mode: str = "transaction",
    expected_path: Path | None = None,
    database_url: str | None = None,
    account_id: str | None = None,
    statement_id: str | None = None,
    currency: str = "USD",
) -> int:
    """Extract records from a statement text file and print them as JSON lines.

    When both ``account_id`` and ``statement_id`` are given, extracted
    transactions are also inserted into the ``transactions`` table.
    Errors are written to stderr and a non-zero status is returned.
    """

    from db.client import session_scope

    from .errors import ExtractionExhaustedError
    from .models import StatementContext
    from .persistence import insert_raw_transactions
    from .pipeline import extract_statement

    parsing_mode = _check_mode(mode)
    if parsing_mode is None:
        return 2
    persist = account_id is not None and statement_id is not None
    if persist and parsing_mode != "transaction":
        err_console.print("[red]Error:[/red] only transactions can be inserted")
        return 2

    try:
        text = text_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        err_console.print(f"[red]Error:[/red] File not found: {text_path}")
        return 1
    except (OSError, UnicodeDecodeError) as e:
        err_console.print(f"[red]Error:[/red] could not read '{text_path}': {e}")
        return 1

    try:
        expected = _load_expected(expected_path, parsing_mode)
    except (OSError, ValidationError) as e:
        err_console.print(f"[red]Error:[/red] invalid expected summary: {e}")
        return 1

    if not os.getenv("OPENAI_API_KEY"):
        # Cached parsers work offline; generation will fail without a key.
        err_console.print("[yellow]Warning:[/yellow] OPENAI_API_KEY is not set")

    exhausted: ExtractionExhaustedError | None = None
    inserted = None
    try:
        with session_scope(database_url=database_url) as session:
            try:
                extraction = extract_statement(
                    session,
                    text,
                    institution_id=institution,
                    account_type=account_type,
                    mode=parsing_mode,
                    expected=expected,
                )
            except ExtractionExhaustedError as e:
                # Leave the scope normally so failure counters are committed.
                exhausted = e
            if exhausted is None and account_id is not None and statement_id is not None:
                inserted = insert_raw_transactions(
                    session,
                    extraction.records,
                    StatementContext(
                        account_id=account_id,
                        statement_id=statement_id,
                        currency=currency.upper(),
                    ),
                )
    except (RuntimeError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] extraction failed: {e}")
        return 1

    if exhausted is not None:
        err_console.print(
            f"[red]Error:[/red] {exhausted} (tried versions: "
            f"{', '.join(str(v) for v in exhausted.tried_versions) or 'none'}; "
            f"generation attempts: {exhausted.generation_attempts})"
        )
        return 1

    for rec in extraction.records:
        print(json.dumps(rec, ensure_ascii=False))
    err_console.print(
        f"[cyan]{len(extraction.records)}[/cyan] records from {extraction.source} "
        f"parser {extraction.bank_key} v{extraction.version} "
        f"(validated: {'yes' if extraction.validation_passed else 'no'})"
    )
    if inserted is not None:
        err_console.print(
            f"inserted {inserted.inserted_count}, "
            f"skipped {inserted.skipped_duplicates} duplicates"
        )
    return 0


def cmd_cache_list(*, mode: str = "transaction", database_url: str | None = None) -> int:
    """Print cached parser keys with their version counts."""

    from db.client import session_scope

    from .parser_cache import list_cached_banks

    parsing_mode = _check_mode(mode)
    if parsing_mode is None:
        return 2
    try:
        with session_scope(database_url=database_url) as session:
            summaries = list_cached_banks(session, mode=parsing_mode)
    except RuntimeError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1

    if not summaries:
        console.print("No cached parsers.")
        return 0
    table = Table(title=f"Cached parsers ({parsing_mode})")
    table.add_column("Key", style="cyan")
    table.add_column("Versions", justify="right")
    table.add_column("Latest", justify="right")
    for s in summaries:
        table.add_row(s.bank_key, str(s.version_count), f"v{s.latest_version}")
    console.print(table)
    return 0


def cmd_cache_clear(
    bank_key: str, *, mode: str = "transaction", database_url: str | None = None
) -> int:
    """Delete every cached version for ``bank_key``."""

    from db.client import session_scope

    from .parser_cache import clear_parser_cache

    parsing_mode = _check_mode(mode)
    if parsing_mode is None:
        return 2
    try:
        with session_scope(database_url=database_url) as session:
            removed = clear_parser_cache(session, bank_key, mode=parsing_mode)
    except RuntimeError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        return 1
    console.print(f"Removed {removed} cached version(s) for {bank_key}")
    return 0


def cmd_categorize(
    statement_id: str,
    *,
    country: str | None = None,
    account_type: str | None = None,
    include_categorized: bool = False,
    database_url: str | None = None,
) -> int:
    """Categorize a stored statement and print ``<id>\\t<category>\\t<summary>`` lines."""

    from db.client import session_scope

    from .categorize import categorize_statement_transactions

    if not os.getenv("OPENAI_API_KEY"):
        print("Error: OPENAI_API_KEY is not set in the environment.", file=sys.stderr)
        return 1

    try:
        with session_scope(database_url=database_url) as session:
            decisions = categorize_statement_transactions(
                session,
                statement_id,
                country=country,
                account_type=account_type,
                only_uncategorized=not include_categorized,
            )
    except RuntimeError as e:
        print(f"Error: categorization failed: {e}", file=sys.stderr)
        return 1

    for d in decisions:
        print(f"{d.id}\t{d.category}\t{d.summary}")
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Extract transactions and holdings from statement text with cached, "
        "LLM-generated parsers. Loads OPENAI_API_KEY and DATABASE_URL from a local .env."
    ),
)

ModeOption = Annotated[str, typer.Option(help="Record kind: transaction or holding.")]
DatabaseUrlOption = Annotated[
    str | None, typer.Option(help="Override DATABASE_URL (falls back to env var).")
]


@app.command("extract")
def extract_cmd(
    text_path: Annotated[
        Path,
        typer.Option(
            "--text-path", help="Plain-text statement file.", dir_okay=False, readable=True
        ),
    ],
    institution: Annotated[
        str, typer.Option(help="Institution (or investment source) name, e.g. 'HDFC Bank'.")
    ],
    account_type: Annotated[
        str,
        typer.Option(help="Account type (transaction mode) or file type (holding mode)."),
    ],
    mode: ModeOption = "transaction",
    expected_path: Annotated[
        Path | None,
        typer.Option("--expected-path", help="JSON file with the statement's declared totals."),
    ] = None,
    account_id: Annotated[
        str | None, typer.Option(help="Insert transactions for this account id.")
    ] = None,
    statement_id: Annotated[
        str | None, typer.Option(help="Statement id recorded on inserted transactions.")
    ] = None,
    currency: Annotated[str, typer.Option(help="ISO currency of inserted rows.")] = "USD",
    database_url: DatabaseUrlOption = None,
) -> None:
    """Extract records from a statement, reusing cached parsers when possible."""

    code = cmd_extract(
        text_path,
        institution=institution,
        account_type=account_type,
        mode=mode,
        expected_path=expected_path,
        database_url=database_url,
        account_id=account_id,
        statement_id=statement_id,
        currency=currency,
    )
    if code:
        raise typer.Exit(code)


@app.command("cache-list")
def cache_list_cmd(
    mode: ModeOption = "transaction",
    database_url: DatabaseUrlOption = None,
) -> None:
    """List cached parser keys, version counts and latest versions."""

    code = cmd_cache_list(mode=mode, database_url=database_url)
    if code:
        raise typer.Exit(code)


@app.command("cache-clear")
def cache_clear_cmd(
    bank_key: Annotated[str, typer.Argument(help="Cache key, e.g. hdfc_bank_savings.")],
    mode: ModeOption = "transaction",
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Delete every cached parser version for a key."""

    if not yes:
        typer.confirm(f"Delete all cached parser versions for {bank_key}?", abort=True)
    code = cmd_cache_clear(bank_key, mode=mode, database_url=database_url)
    if code:
        raise typer.Exit(code)


@app.command("categorize")
def categorize_cmd(
    statement_id: Annotated[str, typer.Argument(help="Statement whose rows are categorized.")],
    country: Annotated[str | None, typer.Option(help="ISO country code (IN, US).")] = None,
    account_type: Annotated[
        str | None, typer.Option(help="credit_card, savings_account, checking_account ...")
    ] = None,
    include_categorized: Annotated[
        bool, typer.Option(help="Also re-categorize rows that already have a summary.")
    ] = False,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Categorize a stored statement's transactions in a single model call."""

    code = cmd_categorize(
        statement_id,
        country=country,
        account_type=account_type,
        include_categorized=include_categorized,
        database_url=database_url,
    )
    if code:
        raise typer.Exit(code)


@app.callback()
def _root() -> None:
    """Load ``.env`` from the current directory and configure logging."""

    # override=False keeps already-set environment variables
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    app()
