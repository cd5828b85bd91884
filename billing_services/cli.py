"""
Command-line front end for the billing service.

Usage:
  billing [--config PATH] init-db
  billing create-invoice [--file invoice.json]      # JSON body, '-' = stdin
  billing get-invoice 12
  billing delete-invoice 12
  billing list-invoices [--from 2024-03-01 --to 2024-03-31] [--q acme]
  billing add-transaction --type expense --amount 42.50 [--category rent]
  billing list-transactions [--from ... --to ...] [--type income]
  billing summary [--from ... --to ...]
  billing export {invoices,transactions,backup} [--output PATH]
  billing reset --confirm RESET [--secret S]

Every command except ``export`` prints one JSON document on stdout.  Exit
status is 0 on success, 1 on a handled error and 2 on a usage error.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import IO, Any

import yaml

from billing_config import BillingConfig, get_active_config
from billing_kernel.db.engine import session_scope
from billing_kernel.domain.validation import parse_optional_date
from billing_kernel.exceptions import BillingKernelError
from billing_services import invoice_api
from billing_services.export_service import ExportService
from billing_services.invoice_api import ApiResponse, error_response

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="billing",
        description="Invoices, ledger transactions and reports for a small business.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings YAML (default: $BILLING_CONFIG or the packaged default)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create missing tables")

    p = sub.add_parser("create-invoice", help="Create an invoice from a JSON body")
    p.add_argument("--file", default="-", help="JSON file, '-' for stdin (default)")

    p = sub.add_parser("get-invoice", help="Show one invoice with its items")
    p.add_argument("invoice_id", type=int)

    p = sub.add_parser("delete-invoice", help="Delete an invoice and its income entry")
    p.add_argument("invoice_id", type=int)

    p = sub.add_parser("list-invoices", help="List invoice headers, newest first")
    p.add_argument("--from", dest="date_from")
    p.add_argument("--to", dest="date_to")
    p.add_argument("--q", help="Match invoice number or customer name")

    p = sub.add_parser("add-transaction", help="Record an income or expense entry")
    p.add_argument("--type", required=True, choices=("income", "expense"))
    p.add_argument("--amount", required=True)
    p.add_argument("--date")
    p.add_argument("--category")
    p.add_argument("--reference")
    p.add_argument("--notes")

    p = sub.add_parser("list-transactions", help="List ledger transactions, newest first")
    p.add_argument("--from", dest="date_from")
    p.add_argument("--to", dest="date_to")
    p.add_argument("--type", choices=("income", "expense"))

    p = sub.add_parser("summary", help="Income, expense and profit")
    p.add_argument("--from", dest="date_from")
    p.add_argument("--to", dest="date_to")

    p = sub.add_parser("export", help="Export as CSV or a JSON backup")
    p.add_argument("what", choices=("invoices", "transactions", "backup"))
    p.add_argument("--from", dest="date_from")
    p.add_argument("--to", dest="date_to")
    p.add_argument("--output", type=Path, help="Write here instead of stdout")

    p = sub.add_parser("reset", help="Delete every invoice and transaction")
    p.add_argument("--confirm", required=True, help="Must be RESET")
    p.add_argument("--secret")

    return parser


def _read_json(source: str, stdin: IO[str]) -> Any:
    if source == "-":
        return json.load(stdin)
    with open(source) as f:
        return json.load(f)


def _range(args: argparse.Namespace) -> dict[str, Any]:
    return {"from": args.date_from, "to": args.date_to}


def _export(args: argparse.Namespace, out: IO[str]) -> None:
    with session_scope() as session:
        service = ExportService(session)
        date_from = parse_optional_date(args.date_from, "from")
        date_to = parse_optional_date(args.date_to, "to")
        if args.what == "invoices":
            service.export_invoices_csv(out, date_from, date_to)
        elif args.what == "transactions":
            service.export_transactions_csv(out, date_from, date_to)
        else:
            service.export_backup(out)


def _dispatch(args: argparse.Namespace, config: BillingConfig, stdin: IO[str]) -> ApiResponse:
    command = args.command
    if command == "init-db":
        return ApiResponse(200, {"success": True, "database_url": config.database_url})
    if command == "create-invoice":
        try:
            payload = _read_json(args.file, stdin)
        except (OSError, json.JSONDecodeError) as exc:
            return ApiResponse(400, {"success": False, "error": str(exc), "code": "BAD_INPUT"})
        return invoice_api.create_invoice(payload, config=config)
    if command == "get-invoice":
        return invoice_api.get_invoice(args.invoice_id, config=config)
    if command == "delete-invoice":
        return invoice_api.delete_invoice(args.invoice_id, config=config)
    if command == "list-invoices":
        return invoice_api.list_invoices({**_range(args), "q": args.q}, config=config)
    if command == "add-transaction":
        payload = {
            "type": args.type,
            "amount": args.amount,
            "date": args.date,
            "category": args.category,
            "reference": args.reference,
            "notes": args.notes,
        }
        return invoice_api.create_transaction(payload)
    if command == "list-transactions":
        return invoice_api.list_transactions({**_range(args), "type": args.type})
    if command == "summary":
        return invoice_api.report_summary(_range(args))
    if command == "reset":
        return invoice_api.reset_store(
            {"confirm": args.confirm, "secret": args.secret}, config=config
        )
    raise ValueError(f"Unhandled command {command!r}")


def main(
    argv: list[str] | None = None,
    *,
    stdin: IO[str] | None = None,
    stdout: IO[str] | None = None,
) -> int:
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return EXIT_OK if exc.code == 0 else EXIT_USAGE

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"billing: configuration error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    invoice_api.bootstrap(config)

    if args.command == "export":
        try:
            if args.output is not None:
                with open(args.output, "w", newline="") as f:
                    _export(args, f)
            else:
                _export(args, stdout)
        except BillingKernelError as exc:
            json.dump(error_response(exc).body, stdout)
            stdout.write("\n")
            return EXIT_ERROR
        return EXIT_OK

    response = _dispatch(args, config, stdin)
    json.dump(response.body, stdout, indent=2)
    stdout.write("\n")
    return EXIT_OK if response.ok else EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
