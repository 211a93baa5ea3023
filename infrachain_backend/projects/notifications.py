from .models import Notification


def notify(user, type, title, message, link="", **metadata):
    return Notification.objects.create(
        user=user, type=type, title=title, message=message, link=link, metadata=metadata
    )


def notify_many(user_ids, type, title, message, link="", **metadata):
    return Notification.objects.bulk_create(
        Notification(user_id=user_id, type=type, title=title, message=message, link=link, metadata=metadata)
        for user_id in user_ids
    )
