from . import notifications, push

__all__ = ["notifications", "push"]
