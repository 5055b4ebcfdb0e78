from typing import Dict, Iterator, List, Protocol, Sequence, Tuple, TypeVar, Generic

class HasDependencies(Protocol):
    name: str
    depends_on: Tuple[str, ...]

T = TypeVar("T", bound=HasDependencies)

class Registry(Generic[T]):
    """
    An ordered repository of named items whose registration order is a valid
    dependency order.
    """
    def __init__(self):
        self._items: Dict[str, T] = {}

    def register(self, item: T) -> None:
        """
        Register an item. Raises ValueError if the name already exists or if a
        predecessor has not been registered yet.
        """
        if item.name in self._items:
            raise ValueError(f"Item with name '{item.name}' is already registered.")

        missing = [dep for dep in item.depends_on if dep not in self._items]
        if missing:
            raise ValueError(
                f"Item '{item.name}' depends on unregistered predecessor(s): {', '.join(missing)}"
            )

        self._items[item.name] = item

    def register_all(self, items: Sequence[T]) -> None:
        for item in items:
            self.register(item)

    def get(self, name: str) -> T:
        """
        Retrieve an item by name. Raises KeyError if not found.
        """
        if name not in self._items:
            raise KeyError(f"'{name}' not found in registry.")
        return self._items[name]

    def start_order(self) -> List[T]:
        return list(self._items.values())

    def stop_order(self) -> List[T]:
        return list(reversed(self._items.values()))

    def names(self) -> List[str]:
        return list(self._items)

    def __contains__(self, name: str) -> bool:
        return name in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items.values())
