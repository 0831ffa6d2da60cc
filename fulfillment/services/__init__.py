# One instance of each long-lived component per process, built on first use.
# Tests and alternative wiring construct the classes directly instead.
_payment_provider = None
_order_lifecycle = None
_checkout_service = None
_payment_service = None
_payment_reconciler = None
_expiration_sweeper = None
_ownership_service = None
_order_service = None


def get_payment_provider():
    """Get the configured payment provider instance"""
    global _payment_provider
    if _payment_provider is None:
        from fulfillment.services.payment_providers.stripe_provider import StripePaymentProvider
        _payment_provider = StripePaymentProvider()
    return _payment_provider


def get_order_lifecycle():
    global _order_lifecycle
    if _order_lifecycle is None:
        from fulfillment.services.order_lifecycle import OrderLifecycle
        from fulfillment.services.cache import get_cache_invalidator
        from fulfillment.kafka.producer import event_producer
        _order_lifecycle = OrderLifecycle(notifier=event_producer, cache=get_cache_invalidator())
    return _order_lifecycle


def get_checkout_service():
    global _checkout_service
    if _checkout_service is None:
        from fulfillment.services.checkout_service import CheckoutService
        _checkout_service = CheckoutService()
    return _checkout_service


def get_payment_service():
    global _payment_service
    if _payment_service is None:
        from fulfillment.services.payment_service import PaymentService
        _payment_service = PaymentService(get_payment_provider())
    return _payment_service


def get_payment_reconciler():
    global _payment_reconciler
    if _payment_reconciler is None:
        from fulfillment.services.payment_service import PaymentReconciler
        _payment_reconciler = PaymentReconciler(get_payment_provider(), get_order_lifecycle())
    return _payment_reconciler


def get_expiration_sweeper():
    global _expiration_sweeper
    if _expiration_sweeper is None:
        from fulfillment.services.expiration_sweeper import ExpirationSweeper
        _expiration_sweeper = ExpirationSweeper(get_order_lifecycle())
    return _expiration_sweeper


def get_ownership_service():
    global _ownership_service
    if _ownership_service is None:
        from fulfillment.services.ownership_service import OwnershipService
        from fulfillment.services.cache import get_cache_invalidator
        _ownership_service = OwnershipService(cache=get_cache_invalidator())
    return _ownership_service


def get_order_service():
    global _order_service
    if _order_service is None:
        from fulfillment.services.order_service import OrderService
        _order_service = OrderService(get_order_lifecycle())
    return _order_service
