import json
import unittest
from types import SimpleNamespace
from unittest.mock import patch

import stripe

import billing
import config
import db
from tests.support import AppTestCase, run, sign_stripe_payload

WEBHOOK_SECRET = "whsec_test"


def _completed_event(session_id: str = "cs_test_1", email: str = "amal@example.com", credits: str = "30") -> str:
    return json.dumps({
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "metadata": {"userEmail": email, "credits": credits}}},
    })


class PackageTests(unittest.TestCase):
    def test_format_price(self) -> None:
        self.assertEqual(billing.format_price(499), "4,99 €")
        self.assertEqual(billing.format_price(2499), "24,99 €")
        self.assertEqual(billing.format_price(123456), "1.234,56 €")
        self.assertEqual(billing.format_price(500, "usd"), "5,00 $")

    def test_lookup(self) -> None:
        self.assertEqual(billing.get_package_by_id("popular")["credits"], 30)
        self.assertIsNone(billing.get_package_by_id("enterprise"))
        self.assertIsNone(billing.get_package_by_id(None))

    def test_completed_checkout_credits(self) -> None:
        event = json.loads(_completed_event())
        self.assertEqual(
            billing.completed_checkout_credits(event),
            {"sessionId": "cs_test_1", "email": "amal@example.com", "credits": 30},
        )
        self.assertIsNone(billing.completed_checkout_credits({"type": "invoice.paid"}))
        self.assertIsNone(billing.completed_checkout_credits(json.loads(_completed_event(credits="lots"))))

    def test_webhook_needs_secret(self) -> None:
        with patch.object(config, "STRIPE_WEBHOOK_SECRET", None):
            with self.assertRaises(billing.BillingNotConfigured):
                billing.parse_webhook_event(b"{}", "t=1,v1=x")


class PackageRouteTests(AppTestCase):
    def test_packages(self) -> None:
        packages = self.client.get("/api/payments/packages").json()["packages"]
        self.assertEqual([p["id"] for p in packages], ["starter", "popular", "pro"])
        self.assertEqual(packages[1]["formattedPrice"], "9,99 €")
        self.assertTrue(packages[1]["popular"])


class CheckoutTests(AppTestCase):
    def test_requires_cookie(self) -> None:
        response = self.client.post("/api/payments/checkout", json={"packageId": "starter"}, headers={"Accept-Language": "de"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Bitte zuerst anmelden")

    def test_invalid_session(self) -> None:
        self.client.cookies.set(config.AUTH_COOKIE_NAME, "garbage")
        response = self.client.post("/api/payments/checkout", json={"packageId": "starter"}, headers={"Accept-Language": "de"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Ungültige Sitzung")

    def test_unknown_package(self) -> None:
        self.signed_in_user()
        response = self.client.post("/api/payments/checkout", json={"packageId": "gold"})
        self.assertEqual(response.status_code, 400)

    def test_payments_disabled(self) -> None:
        self.signed_in_user()
        response = self.client.post("/api/payments/checkout", json={"packageId": "starter"})
        self.assertEqual(response.status_code, 503)

    def test_creates_session_with_metadata(self) -> None:
        user = self.signed_in_user()
        session = SimpleNamespace(id="cs_test_9", url="https://checkout.stripe.com/c/pay/cs_test_9")
        with patch.object(config, "STRIPE_SECRET_KEY", "sk_test_123"), \
                patch.object(billing.stripe.checkout.Session, "create", return_value=session) as create:
            response = self.client.post("/api/payments/checkout", json={"packageId": "popular"})

        self.assertEqual(response.json(), {"success": True, "url": session.url})
        kwargs = create.call_args.kwargs
        self.assertEqual(kwargs["api_key"], "sk_test_123")
        self.assertEqual(kwargs["line_items"][0]["price_data"]["unit_amount"], 999)
        self.assertEqual(
            kwargs["metadata"],
            {"userId": user["id"], "userEmail": "amal@example.com", "packageId": "popular", "credits": "30"},
        )
        self.assertTrue(kwargs["success_url"].endswith("/?payment=success&credits=30"))

    def test_stripe_error(self) -> None:
        self.signed_in_user()
        with patch.object(config, "STRIPE_SECRET_KEY", "sk_test_123"), \
                patch.object(billing.stripe.checkout.Session, "create", side_effect=stripe.StripeError("down")):
            response = self.client.post("/api/payments/checkout", json={"packageId": "pro"})
        self.assertEqual(response.status_code, 500)


class WebhookTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        patcher = patch.object(config, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _post(self, payload: str, signature=None):
        headers = {"Content-Type": "application/json"}
        if signature is not None:
            headers["Stripe-Signature"] = signature
        return self.client.post("/api/payments/webhook", content=payload.encode("utf-8"), headers=headers)

    def test_missing_signature(self) -> None:
        response = self._post(_completed_event())
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing signature")

    def test_bad_signature(self) -> None:
        payload = _completed_event()
        response = self._post(payload, sign_stripe_payload(payload, "whsec_other"))
        self.assertEqual(response.json()["error"], "Invalid signature")

    def test_invalid_payload(self) -> None:
        response = self._post("not json", sign_stripe_payload("not json", WEBHOOK_SECRET))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid payload")

    def test_credits_added_once_per_session(self) -> None:
        self.create_user()
        payload = _completed_event()
        signature = sign_stripe_payload(payload, WEBHOOK_SECRET)

        self.assertEqual(self._post(payload, signature).json(), {"received": True})
        self.assertEqual(self._post(payload, signature).json(), {"received": True})

        user = run(db.get_user_by_email("amal@example.com"))
        self.assertEqual(user["credits"], config.INITIAL_CREDITS + 30)

    def test_unknown_user_is_acknowledged(self) -> None:
        payload = _completed_event(email="ghost@example.com")
        response = self._post(payload, sign_stripe_payload(payload, WEBHOOK_SECRET))
        self.assertEqual(response.json(), {"received": True})
        row = run(db._fetchone("SELECT COUNT(*) AS n FROM payments WHERE session_id = ?", "cs_test_1"))
        self.assertEqual(row["n"], 0)

    def test_other_events_ignored(self) -> None:
        self.create_user()
        payload = json.dumps({"id": "evt_2", "type": "payment_intent.created", "data": {"object": {}}})
        self.assertEqual(self._post(payload, sign_stripe_payload(payload, WEBHOOK_SECRET)).status_code, 200)
        self.assertEqual(run(db.get_user_by_email("amal@example.com"))["credits"], config.INITIAL_CREDITS)


if __name__ == "__main__":
    unittest.main()
