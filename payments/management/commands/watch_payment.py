import asyncio

from django.core.management.base import BaseCommand, CommandError

from payments.poller import (
    HttpStatusFetcher,
    LocalStatusFetcher,
    PollBudget,
    PollOutcome,
    StatusPoller,
)


class Command(BaseCommand):
    help = "Poll an M-Pesa transaction until it completes, fails or the attempt budget runs out."

    def add_arguments(self, parser):
        defaults = PollBudget.from_settings()
        parser.add_argument("checkout_request_id")
        parser.add_argument("--attempts", type=int, default=defaults.max_attempts,
                            help=f"Maximum status checks (default: {defaults.max_attempts})")
        parser.add_argument("--interval", type=float, default=defaults.interval,
                            help=f"Seconds between checks (default: {defaults.interval})")
        parser.add_argument("--url", default=None,
                            help="Base URL of a running API; reads the local database when omitted")

    def handle(self, *args, **options):
        try:
            budget = PollBudget(max_attempts=options["attempts"], interval=options["interval"])
        except ValueError as e:
            raise CommandError(str(e)) from e

        fetcher = HttpStatusFetcher(options["url"]) if options["url"] else LocalStatusFetcher()
        poller = StatusPoller(fetcher, budget=budget)

        checkout_request_id = options["checkout_request_id"]
        self.stdout.write(
            f"Watching {checkout_request_id} "
            f"(up to {budget.max_attempts} checks every {budget.interval}s)..."
        )
        result = asyncio.run(poller.poll(checkout_request_id))

        if result.outcome is PollOutcome.COMPLETED:
            self.stdout.write(self.style.SUCCESS(result.message))
        elif result.outcome is PollOutcome.FAILED:
            self.stdout.write(self.style.ERROR(f"Payment failed: {result.message}"))
        else:
            self.stdout.write(self.style.WARNING(result.message))
