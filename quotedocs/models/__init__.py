from quotedocs.models.template import QuotationTemplate

__all__ = ["QuotationTemplate"]
