class InvoiceError(Exception):
    """Base class for invoice reconciliation failures."""


class ExtractionFailure(InvoiceError):
    """Document could not be read or produced no usable text."""


class NotFoundError(InvoiceError):
    """No persisted invoice metadata for the requested invoice number."""


class ValidationError(InvoiceError, ValueError):
    """Operator input rejected before any state was touched."""


class DuplicateInvoiceError(InvoiceError, ValueError):
    pass


class LockedError(InvoiceError):
    """Another process currently holds the lock for this invoice."""
