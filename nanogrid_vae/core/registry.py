"""
Component Registry System

Maps config strings to classes so that optimizers, learning-rate schedules
and sub-network architectures can be selected from the YAML config without
touching the training code.
"""

import logging
from typing import TypeVar, Generic, Callable, Any

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ComponentRegistry(Generic[T]):
    """
    Registry for swappable components.

    Example:
        schedule_registry = ComponentRegistry[LearningRateSchedule]("schedule")

        @schedule_registry.register("cosine")
        class CosineSchedule(LearningRateSchedule):
            ...

        schedule = schedule_registry.create("cosine", warmup_epochs=2, ...)
    """

    def __init__(self, component_type: str):
        """
        Args:
            component_type: Human-readable name used in error messages
        """
        self._component_type = component_type
        self._registry: dict[str, type[T]] = {}

    def register(self, name: str) -> Callable[[type[T]], type[T]]:
        """Decorator form of register_class."""
        def decorator(cls: type[T]) -> type[T]:
            self.register_class(name, cls)
            return cls
        return decorator

    def register_class(self, name: str, cls: type[T]) -> None:
        """
        Register a class under a config name.

        Raises:
            ValueError: If the name is already taken
        """
        if name in self._registry:
            raise ValueError(
                f"[{self._component_type}] Name '{name}' already registered "
                f"to {self._registry[name].__name__}. Cannot register {cls.__name__}."
            )
        self._registry[name] = cls
        logger.debug(f"[{self._component_type}] Registered '{name}' -> {cls.__name__}")

    def get(self, name: str) -> type[T]:
        """
        Look up a registered class.

        Raises:
            KeyError: If the name is unknown (message lists what is available)
        """
        if name not in self._registry:
            raise KeyError(
                f"[{self._component_type}] Unknown type: '{name}'. "
                f"Available: {self.list_registered()}"
            )
        return self._registry[name]

    def create(self, name: str, **kwargs: Any) -> T:
        """Instantiate the class registered under name with kwargs."""
        return self.get(name)(**kwargs)

    def list_registered(self) -> list[str]:
        return sorted(self._registry)

    def __contains__(self, name: str) -> bool:
        return name in self._registry

    def __len__(self) -> int:
        return len(self._registry)
