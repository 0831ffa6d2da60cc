from fulfillment.services.payment_providers.base import PaymentProvider, CheckoutSession, ProviderEvent
