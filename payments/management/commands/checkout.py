import os
from decimal import Decimal, InvalidOperation

from django.core.management.base import BaseCommand, CommandError

from payments.client import CheckoutClient, CheckoutError
from payments.poller import (
    CANCELLED,
    DEFAULT_INTERVAL,
    DEFAULT_TIMEOUT,
    SUCCESS,
    PaymentPoller,
)


class Command(BaseCommand):
    help = "Starts an M-Pesa checkout against the payments API and waits for the outcome"

    def add_arguments(self, parser):
        parser.add_argument("--phone", required=True, help="e.g. 0712345678 or 254712345678")
        parser.add_argument("--amount", required=True, help="Amount in KES")
        parser.add_argument("--email", required=True)
        parser.add_argument("--reference", default=None, help="Defaults to PAY<timestamp>")
        parser.add_argument(
            "--url",
            default=os.environ.get("CHECKOUT_API_URL", "http://localhost:8000/api/v1/payments"),
            help="Base URL of the payments API",
        )
        parser.add_argument("--interval", type=float, default=DEFAULT_INTERVAL)
        parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT)

    def handle(self, *args, **options):
        try:
            amount = Decimal(options["amount"])
        except InvalidOperation:
            raise CommandError("Amount must be a number.")

        client = CheckoutClient(options["url"])

        try:
            ack = client.initiate(
                phone=options["phone"],
                amount=amount,
                email=options["email"],
                reference=options["reference"],
            )
        except CheckoutError as e:
            raise CommandError(e.message)

        request_id = ack.get("request_id") or ack.get("transaction_request_id")
        if not request_id:
            raise CommandError("The checkout service did not return a request id.")

        self.stdout.write(
            self.style.SUCCESS(
                f"STK push sent (ref: {ack.get('reference')}, request: {request_id}). "
                "Enter your M-Pesa PIN on your phone."
            )
        )

        poller = PaymentPoller(
            client.status,
            request_id,
            interval=options["interval"],
            timeout=options["timeout"],
            on_update=self.report,
        )

        try:
            state = poller.run()
        except KeyboardInterrupt:
            poller.stop()
            raise CommandError("Stopped waiting for the payment.")

        if state == SUCCESS:
            receipt = f" Receipt: {poller.receipt}" if poller.receipt else ""
            self.stdout.write(self.style.SUCCESS(f"{poller.message}{receipt}"))
        elif state == CANCELLED:
            self.stdout.write(self.style.WARNING(poller.message))
        else:
            self.stdout.write(self.style.ERROR(poller.message))

    def report(self, poller):
        if not poller.is_terminal:
            self.stdout.write(f"Waiting for confirmation... {poller.remaining}s")
