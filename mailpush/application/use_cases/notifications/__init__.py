from mailpush.application.use_cases.notifications.notification_pipeline import (
    NotificationPipeline, message_id_from_resource)

__all__ = ["NotificationPipeline", "message_id_from_resource"]
