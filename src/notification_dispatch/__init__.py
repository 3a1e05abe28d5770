"""
Notification Dispatch.

Template resolution, personalization and multi-channel dispatch for user
notifications over email, SMS and push.

Architecture:
    - Domain Layer: template store and resolver, personalization,
      user preferences, channel transports, dispatch and orchestration
    - Infrastructure Layer: configuration, logging, audit events

Usage:
    from notification_dispatch.domain import create_notification_service
    service = create_notification_service()
    result = await service.process_notification("user@example.com", "welcome")
"""
__version__ = "1.0.0"
