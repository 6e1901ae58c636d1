"""Entity/component store used by the ENTITY and COMP statements."""

from typing import Any, Dict


class EntityStore:
    """Integer entity ids mapped to component tables.

    Ids are allocated monotonically from 1 and never reclaimed. Operations on
    an id that has no table behave as if the table were empty.
    """

    def __init__(self):
        self.next_id = 1
        self.components: Dict[int, Dict[str, Any]] = {}

    def new_entity(self) -> int:
        entity_id = self.next_id
        self.next_id += 1
        self.components[entity_id] = {}
        return entity_id

    def set_component(self, entity_id: int, name: str, value: Any) -> None:
        self.components.setdefault(entity_id, {})[name] = value

    def get_component(self, entity_id: int, name: str) -> Any:
        return self.components.get(entity_id, {}).get(name)

    def has_component(self, entity_id: int, name: str) -> bool:
        return name in self.components.get(entity_id, {})

    def delete_component(self, entity_id: int, name: str) -> None:
        self.components.get(entity_id, {}).pop(name, None)
