from whatsapp_crm.storage.object_store import (
    ObjectStore,
    ObjectStoreError,
    S3ObjectStore,
    get_object_store,
)

__all__ = ["ObjectStore", "ObjectStoreError", "S3ObjectStore", "get_object_store"]
