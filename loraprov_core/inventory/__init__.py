from loraprov_core.inventory.store import (
    entity_from_dict,
    import_entities,
    inventory_uri,
    load_entities,
    load_registry_config,
    load_registry_configs,
    registry_config_from_dict,
    registry_configs_uri,
    save_entities,
    save_registry_config,
)
from loraprov_core.inventory.types import (
    CLUSTERS,
    ENTITY_KINDS,
    KIND_DEVICE,
    KIND_GATEWAY,
    OWNER_ORGANIZATION,
    OWNER_USER,
    Entity,
    RegistryConfig,
)

__all__ = [
    "CLUSTERS",
    "ENTITY_KINDS",
    "Entity",
    "KIND_DEVICE",
    "KIND_GATEWAY",
    "OWNER_ORGANIZATION",
    "OWNER_USER",
    "RegistryConfig",
    "entity_from_dict",
    "import_entities",
    "inventory_uri",
    "load_entities",
    "load_registry_config",
    "load_registry_configs",
    "registry_config_from_dict",
    "registry_configs_uri",
    "save_entities",
    "save_registry_config",
]
