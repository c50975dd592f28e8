# payments/management/commands/reverify_payments.py
from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from core.logging import make_gateway_logger
from payments.models import PaymentRecord
from payments.payu import GatewayConfig, GatewayConfigError, verify_with_gateway


class Command(BaseCommand):
    help = "Re-run PayU server verification for successful payments that are not yet confirmed."

    def add_arguments(self, parser):
        parser.add_argument("--age-mins", type=int, default=2,
                            help="Only check payments settled more than N minutes ago (default: 2)")
        parser.add_argument("--max", type=int, default=200,
                            help="Max payments to process (default: 200)")

    def handle(self, *args, **opts):
        try:
            config = GatewayConfig.from_settings()
        except GatewayConfigError as e:
            raise CommandError(str(e))

        cutoff = timezone.now() - timedelta(minutes=opts["age_mins"])
        payments = PaymentRecord.objects.filter(
            status=PaymentRecord.STATUS_SUCCESS,
            server_verification__in=[PaymentRecord.VERIFICATION_UNCHECKED, PaymentRecord.VERIFICATION_UNCONFIRMED],
            settled_at__lte=cutoff,
        ).order_by("settled_at")[: opts["max"]]

        tally = {}
        for payment in payments:
            result = verify_with_gateway(config, payment.txn_id, log_fn=make_gateway_logger(payment.user))
            outcome = payment.record_server_verification(result)
            tally[outcome] = tally.get(outcome, 0) + 1
            if outcome == PaymentRecord.VERIFICATION_REJECTED:
                self.stderr.write(f"{payment.txn_id}: gateway does not report success")

        summary = ", ".join(f"{k} {v}" for k, v in sorted(tally.items())) or "nothing to do"
        self.stdout.write(self.style.SUCCESS(f"Done. Checked {sum(tally.values())} payment(s): {summary}."))
