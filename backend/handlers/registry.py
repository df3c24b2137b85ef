"""
Handler Registry — maps node types to their handler instances.

Built once per engine with the shared HandlerServices. Adding a subtype to
an existing category needs no change here; a new category registers its
handler class against its type key.
"""

from typing import Dict, Optional, Type

from handlers.base_handler import HandlerServices, NodeHandler
from handlers.implementations.approval_handler import APPROVAL_HANDLERS
from handlers.implementations.collection_handler import COLLECTION_HANDLERS
from handlers.implementations.communication_handler import COMMUNICATION_HANDLERS
from handlers.implementations.condition_handler import CONDITION_HANDLERS
from handlers.implementations.data_handler import DATA_HANDLERS
from handlers.implementations.delay_handler import DELAY_HANDLERS
from handlers.implementations.error_handler import ERROR_HANDLERS
from handlers.implementations.integration_handler import INTEGRATION_HANDLERS
from handlers.implementations.list_handler import LIST_HANDLERS
from handlers.implementations.task_handler import TASK_HANDLERS
from handlers.implementations.trigger_handler import TRIGGER_HANDLERS


class HandlerRegistry:
    """Central registry for all node handler implementations."""

    def __init__(self, services: Optional[HandlerServices] = None):
        self.services = services or HandlerServices.default()
        self._handlers: Dict[str, NodeHandler] = {}
        self._register_builtin_handlers()

    def _register_builtin_handlers(self):
        """Register all built-in node categories."""
        for group in (
            TRIGGER_HANDLERS,
            CONDITION_HANDLERS,
            DATA_HANDLERS,
            COMMUNICATION_HANDLERS,
            TASK_HANDLERS,
            APPROVAL_HANDLERS,
            DELAY_HANDLERS,
            INTEGRATION_HANDLERS,
            LIST_HANDLERS,
            ERROR_HANDLERS,
            COLLECTION_HANDLERS,
        ):
            for node_type, handler_class in group.items():
                self.register(node_type, handler_class)

    def register(self, node_type: str, handler_class: Type[NodeHandler]) -> NodeHandler:
        """Instantiate handler_class with the shared services and bind it to node_type."""
        handler = handler_class(self.services)
        self._handlers[node_type] = handler
        return handler

    def get(self, node_type: str) -> Optional[NodeHandler]:
        """Get the handler for a node type."""
        return self._handlers.get(node_type)

    def list_all(self) -> list:
        """List all registered node types with their subtypes."""
        return [
            {
                "node_type": node_type,
                "display_name": handler.display_name,
                "subtypes": list(handler.subtypes),
            }
            for node_type, handler in self._handlers.items()
        ]

    @property
    def available_types(self) -> list:
        return list(self._handlers.keys())
