class DynaprovException(Exception):
    pass


class ValidationError(DynaprovException):
    pass


class ConfigurationError(DynaprovException):
    pass


class RegistryError(DynaprovException):
    pass


class UnsupportedServiceError(DynaprovException):
    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"unsupported service tag: {tag}")


class ProvisioningFailure(DynaprovException):
    """Raised by a routine to signal that its tag could not be provisioned."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class DuplicateRequestError(DynaprovException):
    pass


class RecordNotFoundError(DynaprovException):
    pass


class PersistenceWarning(DynaprovException):
    """The final outcome write failed after provisioning completed."""

    def __init__(self, request_id: str, detail: str) -> None:
        self.request_id = request_id
        self.detail = detail
        super().__init__(f"outcome for request {request_id} was not persisted: {detail}")


class InternalError(DynaprovException):
    def __init__(self, message: str, *, request_id: str | None = None) -> None:
        self.request_id = request_id
        super().__init__(message)
