from . import courses, stages, webhooks

__all__ = ["courses", "stages", "webhooks"]
