from typing import Callable, Dict, List, Optional


class ActivityRegistry:
    """Activities keyed by ``"<category>:<name>"`` for worker registration."""

    _activities: Dict[str, Callable] = {}

    @classmethod
    def register(cls, category: str, name: Optional[str] = None):
        def decorator(activity_func):
            key = f"{category}:{name or activity_func.__name__}"
            registered = cls._activities.get(key)
            if registered is not None and registered is not activity_func:
                raise ValueError(f"Activity {key} is already registered")
            cls._activities[key] = activity_func
            return activity_func
        return decorator

    @classmethod
    def get_all_activities(cls) -> Dict[str, Callable]:
        return cls._activities

    @classmethod
    def get_by_category(cls, category: str) -> List[Callable]:
        prefix = f"{category}:"
        return [fn for key, fn in cls._activities.items() if key.startswith(prefix)]
