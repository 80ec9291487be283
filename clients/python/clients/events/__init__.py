from .broadcaster import Broadcaster, Event, Subscription, get_broadcaster, publish

__all__ = [
    "Broadcaster",
    "Event",
    "Subscription",
    "get_broadcaster",
    "publish",
]
