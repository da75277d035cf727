"""
Billing error taxonomy.

Terminal errors (bad input that will never succeed) are acknowledged or rejected
without redelivery; transient errors propagate so Stripe redelivers the event.
"""


class BillingError(Exception):
    """Base class for billing failures."""


class SignatureInvalid(BillingError):
    """Webhook payload could not be authenticated against the signing secret."""


class MalformedEvent(BillingError):
    """Webhook payload authenticated but is not a usable event body."""


class UnresolvedOwner(BillingError):
    """A Stripe subscription could not be tied to a local user."""

    def __init__(self, subscription_id: str | None, customer_id: str | None = None):
        self.subscription_id = subscription_id
        self.customer_id = customer_id
        super().__init__(
            f"No user_id for subscription {subscription_id} (customer {customer_id})"
        )


class PersistenceFailure(BillingError):
    """Reading or writing the subscriptions table failed."""


class UpstreamRetrievalFailure(BillingError):
    """A call back to Stripe failed."""
