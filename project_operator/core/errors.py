"""
Error taxonomy for the project operator.

Connectors raise these at the call site; the reconciler is the only place that
decides whether an error is retried or surfaced as terminal.
"""


class OperatorError(Exception):
    """Base class for every error a reconciliation step can raise."""

    kind: str = "operator"
    permanent: bool = False

    @property
    def metric_label(self) -> str:
        return self.kind


class ConfigurationError(OperatorError):
    """Required process configuration is missing or inconsistent. Fatal at startup."""

    kind = "configuration"
    permanent = True


class UserInputError(OperatorError):
    """The Project resource itself is unusable (e.g. no namespace, missing spec fields)."""

    kind = "user_input"
    permanent = True


class PlatformApiError(OperatorError):
    """A Kubernetes API call failed."""

    kind = "platform_api"


class IdentityApiError(OperatorError):
    """A call to the identity provider's REST API failed."""

    kind = "identity_api"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GitTransactionError(OperatorError):
    """Clone, commit or push against a remote repository failed."""

    kind = "git_transaction"


class DocumentFormatError(OperatorError):
    """The access-control document does not have the expected shape. Never repaired automatically."""

    kind = "document_format"
    permanent = True
