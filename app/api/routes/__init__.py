from . import chat, jobs, webhooks

__all__ = ["chat", "jobs", "webhooks"]
