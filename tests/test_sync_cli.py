import json

import stripe

import sync_subscriptions
from app.services import subscription_sync
from conftest import FakeBillingClient, billing_subscription, make_customer


def run_cli(db, billing, *argv):
    return sync_subscriptions.main(list(argv), session_factory=lambda: db, billing=billing)


class TestSyncCli:
    def test_prints_summary(self, db, client_user, capsys):
        make_customer(db, client_user, "cus_1")
        billing = FakeBillingClient([billing_subscription(f"sub_{i}", "cus_1") for i in range(3)])

        exit_code = run_cli(db, billing, "--page-size", "2")

        assert exit_code == sync_subscriptions.EXIT_OK
        summary = json.loads(capsys.readouterr().out)
        assert summary["synced_count"] == 3
        assert summary["error_count"] == 0
        assert len(billing.list_calls) == 2

    def test_customer_option(self, db, billing):
        run_cli(db, billing, "--customer", "cus_9")

        assert billing.list_calls[0]["customer_id"] == "cus_9"

    def test_stripe_unavailable_exit_code(self, db):
        billing = FakeBillingClient()
        billing.listing_error = stripe.APIConnectionError("Could not connect")

        assert run_cli(db, billing) == sync_subscriptions.EXIT_BILLING_UNAVAILABLE

    def test_already_running_exit_code(self, db, billing):
        subscription_sync._local_sync_lock.acquire()
        try:
            assert run_cli(db, billing) == sync_subscriptions.EXIT_ALREADY_RUNNING
        finally:
            subscription_sync._local_sync_lock.release()
