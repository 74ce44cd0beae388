from whatsapp_crm.media.fetcher import MediaFetcher, StoredMedia, extension_for, storage_key

__all__ = ["MediaFetcher", "StoredMedia", "extension_for", "storage_key"]
