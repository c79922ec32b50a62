"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY

# Checkout metrics
try:
    checkout_sessions_counter = Counter(
        'booking_payments_checkout_sessions_total',
        'Total number of checkout session creation attempts',
        ['status']
    )
except ValueError:
    checkout_sessions_counter = REGISTRY._names_to_collectors.get('booking_payments_checkout_sessions_total')

# Webhook metrics
try:
    webhook_events_counter = Counter(
        'booking_payments_webhook_events_total',
        'Total number of verified payment webhook events by outcome',
        ['event_type', 'outcome']
    )
except ValueError:
    webhook_events_counter = REGISTRY._names_to_collectors.get('booking_payments_webhook_events_total')

# Refund metrics
try:
    refunds_counter = Counter(
        'booking_payments_refunds_total',
        'Total number of refund requests',
        ['status']
    )
except ValueError:
    refunds_counter = REGISTRY._names_to_collectors.get('booking_payments_refunds_total')

# Reconciliation alerts (gateway state and booking state diverged)
try:
    reconciliation_alerts_counter = Counter(
        'booking_payments_reconciliation_alerts_total',
        'Number of times a gateway side effect could not be persisted locally',
        ['path']
    )
except ValueError:
    reconciliation_alerts_counter = REGISTRY._names_to_collectors.get('booking_payments_reconciliation_alerts_total')
