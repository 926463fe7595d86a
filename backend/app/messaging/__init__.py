"""
messaging - Admin broadcast messaging across inbox, email and SMS.

Sub-modules:
    channels/           - Delivery transports (inbox writer, email, SMS)
    broadcast_service   - Orchestration: validation, fan-out, per-channel report
    recipient_resolver  - Category selectors + direct emails → recipients
    directory           - Read-only record stores the resolver consumes
    models              - Data structures shared across the system
"""
