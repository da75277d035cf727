from saas_billing.models.subscription import Subscription, SubscriptionStatus

__all__ = [
    "Subscription",
    "SubscriptionStatus",
]
