from robojs.models.base import Base
from robojs.models.collection import Collection
from robojs.models.notification import Notification
from robojs.models.result import Result
from robojs.models.task import Task
from robojs.models.user import User

__all__ = [
    "Base",
    "User",
    "Collection",
    "Task",
    "Result",
    "Notification",
]
