"""
FLEETWATCH Services Package

Service modules grouped by function:

Alerting (services.alerts)
--------------------------
- ThresholdTracker: temperature streak debounce
- ConnectionStateStore: online/offline transitions and incident dedup
- HourlyAlertBuckets: per-hour event queues
- HourlyProcessor: drains closed hours through the working-hours gate
- Dispatcher: renders batches and fans out to every transport

Notification transports (services.notify)
-----------------------------------------
- EmailChannel: SMTP
- SmsChannel: cellular modem HTTP/XML API

Persistence (services.persistence)
----------------------------------
- StateDatabase: channel catalog, connection state, dispatch audit trail
"""
