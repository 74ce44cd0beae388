from whatsapp_crm.content.extractor import (
    ExtractedContent,
    ProviderMessageKind,
    build_preview,
    extract_content,
)

__all__ = [
    "ExtractedContent",
    "ProviderMessageKind",
    "build_preview",
    "extract_content",
]
