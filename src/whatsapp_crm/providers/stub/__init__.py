from whatsapp_crm.providers.stub.client import StubWhatsAppProvider

__all__ = ["StubWhatsAppProvider"]
