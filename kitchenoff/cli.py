"""Command-line interface for KitchenOff billing."""

import argparse
import json
import sys
from contextlib import contextmanager
from pathlib import Path

import psycopg2

from . import __version__
from .errors import GatewayError, KitchenOffError
from .models import PaymentEvent
from .services import InvoiceService, PostgresDataGateway, SamedayClient
from .utils.config import Settings, configure_logging, load_settings
from .utils.database import Database


def connect_database(settings: Settings) -> Database:
    try:
        return Database(settings.DATABASE_URL, settings.DB_POOL_MAX)
    except psycopg2.Error as e:
        raise GatewayError(f"Cannot connect to the database: {e}") from e


@contextmanager
def open_invoice_service(settings: Settings):
    """
    Wire the invoice service to the configured database and Smartbill account.

    The database pool and the Smartbill HTTP client are closed on exit.
    """
    db = connect_database(settings)
    service = None
    try:
        gateway = PostgresDataGateway(db, default_currency=settings.DEFAULT_CURRENCY)
        service = InvoiceService(settings.invoice_service_config(), gateway)
        yield service
    finally:
        if service is not None and service.smartbill is not None:
            service.smartbill.close()
        db.close()


def build_sameday_client(settings: Settings) -> SamedayClient:
    return SamedayClient(settings.sameday_config())


def _print_invoice(invoice) -> None:
    print(f"Invoice {invoice.invoice_number} (id {invoice.id})")
    print(f"  Order:  {invoice.order_id}")
    print(f"  Total:  {invoice.total_amount} {invoice.currency} (VAT {invoice.tax_amount})")
    print(f"  Status: {invoice.status.value}")
    if invoice.is_provider_backed:
        print(f"  Smartbill: {invoice.provider_series}-{invoice.provider_number}")
    if invoice.payment_link:
        print(f"  Payment link: {invoice.payment_link}")


def cmd_generate(args: argparse.Namespace, settings: Settings) -> int:
    """Issue an invoice for an order after a payment event."""
    try:
        event = PaymentEvent(
            status=args.status,
            payment_method=args.payment_method,
            processor="cli",
        )
        with open_invoice_service(settings) as service:
            invoice = service.generate_invoice_after_payment(args.order_id, event)
        _print_invoice(invoice)
        return 0

    except KitchenOffError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_issue(args: argparse.Namespace, settings: Settings) -> int:
    """Issue an invoice for an order without recording a payment."""
    try:
        with open_invoice_service(settings) as service:
            invoice = service.create_invoice_for_order(args.order_id, payment_method=args.payment_method)
        _print_invoice(invoice)
        return 0

    except KitchenOffError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_pdf(args: argparse.Namespace, settings: Settings) -> int:
    """Save the Smartbill PDF of an invoice."""
    try:
        with open_invoice_service(settings) as service:
            pdf = service.get_invoice_pdf(args.invoice_id)
        if pdf is None:
            print(f"Invoice {args.invoice_id} has no Smartbill PDF", file=sys.stderr)
            return 1

        output = Path(args.output or f"invoice-{args.invoice_id}.pdf")
        try:
            output.write_bytes(pdf)
        except OSError as e:
            print(f"Error: cannot write {output}: {e}", file=sys.stderr)
            return 1
        print(f"Saved {len(pdf)} bytes to {output}")
        return 0

    except KitchenOffError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_email(args: argparse.Namespace, settings: Settings) -> int:
    """Have Smartbill e-mail an invoice."""
    try:
        with open_invoice_service(settings) as service:
            sent = service.send_invoice_by_email(args.invoice_id, recipient=args.to)
        if not sent:
            print(f"Invoice {args.invoice_id} was not sent", file=sys.stderr)
            return 1
        print(f"Invoice {args.invoice_id} sent")
        return 0

    except KitchenOffError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Show whether an invoice is paid."""
    try:
        with open_invoice_service(settings) as service:
            paid = service.check_invoice_payment_status(args.invoice_id)
        print(f"Invoice {args.invoice_id}: {'paid' if paid else 'unpaid'}")
        return 0

    except KitchenOffError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cancel(args: argparse.Namespace, settings: Settings) -> int:
    """Cancel an invoice."""
    try:
        with open_invoice_service(settings) as service:
            invoice = service.cancel_invoice(args.invoice_id)
        print(f"Invoice {invoice.invoice_number} cancelled")
        return 0

    except KitchenOffError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_test_connection(args: argparse.Namespace, settings: Settings) -> int:
    """Check the Smartbill credentials."""
    try:
        with open_invoice_service(settings) as service:
            connected = service.test_connection()
        if connected:
            print("Smartbill connection OK")
            return 0
        print("Smartbill connection failed or integration disabled", file=sys.stderr)
        return 1

    except KitchenOffError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_init_db(args: argparse.Namespace, settings: Settings) -> int:
    """Create the database constraints invoicing relies on."""
    try:
        db = connect_database(settings)
        try:
            PostgresDataGateway(db).ensure_invoice_constraints()
        finally:
            db.close()
        print("Invoice constraints in place")
        return 0

    except KitchenOffError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_track(args: argparse.Namespace, settings: Settings) -> int:
    """Print the status history of a waybill."""
    try:
        with build_sameday_client(settings) as client:
            history = client.track_awb(args.awb)

        if args.json:
            print(json.dumps([entry.model_dump(mode="json") for entry in history], indent=2))
            return 0

        if not history:
            print(f"No tracking events for {args.awb}")
        for entry in history:
            print(f"{entry.status_date or '-'}  {entry.status}")
        return 0

    except KitchenOffError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_discover(args: argparse.Namespace, settings: Settings) -> int:
    """Find which Sameday base URL accepts the configured credentials."""
    try:
        with build_sameday_client(settings) as client:
            base_url = client.discover_endpoint(args.urls)
        print(f"Working endpoint: {base_url}")
        return 0

    except KitchenOffError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="kitchenoff-billing",
        description="Issue and manage KitchenOff invoices and shipments.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--env-file", default=".env", help="Settings file (default: .env)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # generate
    generate_parser = subparsers.add_parser("generate", help="Invoice an order after payment")
    generate_parser.add_argument("order_id", type=int, help="Order ID")
    generate_parser.add_argument(
        "--status", default="completed", help="Payment status (default: completed)"
    )
    generate_parser.add_argument("--payment-method", help="Payment method, e.g. card")

    # issue
    issue_parser = subparsers.add_parser("issue", help="Invoice an order manually")
    issue_parser.add_argument("order_id", type=int, help="Order ID")
    issue_parser.add_argument(
        "--payment-method", default="wire_transfer",
        help="Payment method (default: wire_transfer)"
    )

    # pdf
    pdf_parser = subparsers.add_parser("pdf", help="Download the invoice PDF")
    pdf_parser.add_argument("invoice_id", type=int, help="Invoice ID")
    pdf_parser.add_argument(
        "--output", "-o", help="Output file (default: invoice-<id>.pdf)"
    )

    # email
    email_parser = subparsers.add_parser("email", help="E-mail the invoice")
    email_parser.add_argument("invoice_id", type=int, help="Invoice ID")
    email_parser.add_argument("--to", help="Recipient (default: the customer's e-mail)")

    # status
    status_parser = subparsers.add_parser("status", help="Show invoice payment status")
    status_parser.add_argument("invoice_id", type=int, help="Invoice ID")

    # cancel
    cancel_parser = subparsers.add_parser("cancel", help="Cancel an invoice")
    cancel_parser.add_argument("invoice_id", type=int, help="Invoice ID")

    # test-connection
    subparsers.add_parser("test-connection", help="Check the Smartbill credentials")

    # init-db
    subparsers.add_parser("init-db", help="Create the one-active-invoice-per-order index")

    # track
    track_parser = subparsers.add_parser("track", help="Track a Sameday waybill")
    track_parser.add_argument("awb", help="AWB number")
    track_parser.add_argument(
        "--json", action="store_true", help="Output as JSON"
    )

    # discover
    discover_parser = subparsers.add_parser(
        "discover", help="Find the Sameday endpoint that accepts the credentials"
    )
    discover_parser.add_argument("urls", nargs="+", help="Candidate base URLs")

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        settings = load_settings(args.env_file)
    except ValueError as e:
        print(f"Error: invalid settings: {e}", file=sys.stderr)
        return 1
    configure_logging(settings)

    commands = {
        "generate": cmd_generate,
        "issue": cmd_issue,
        "pdf": cmd_pdf,
        "email": cmd_email,
        "status": cmd_status,
        "cancel": cmd_cancel,
        "test-connection": cmd_test_connection,
        "init-db": cmd_init_db,
        "track": cmd_track,
        "discover": cmd_discover,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args, settings)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
