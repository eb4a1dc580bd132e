"""social-dispatch: publish one post to many social platforms.

Token lifecycle, per-platform publishers, retry policy, concurrent
dispatch and post state reduction for scheduled social posting.
"""

__version__ = "0.1.0"

from social_dispatch.config import DispatchConfig, load_config
from social_dispatch.delivery_log import DeliveryLog, DeliveryRecord
from social_dispatch.dispatcher import PublishDispatcher
from social_dispatch.factory import build_dispatcher, build_scheduler
from social_dispatch.models import Connection, Platform, Post, PostState, PublishResult
from social_dispatch.scheduler import ScheduledPublisher
from social_dispatch.tokens import TokenLifecycleManager

__all__ = [
    "Connection",
    "DeliveryLog",
    "DeliveryRecord",
    "DispatchConfig",
    "Platform",
    "Post",
    "PostState",
    "PublishDispatcher",
    "PublishResult",
    "ScheduledPublisher",
    "TokenLifecycleManager",
    "build_dispatcher",
    "build_scheduler",
    "load_config",
]
