"""Domain errors raised by the linking workflow.

Each error carries a stable ``code`` and, where the caller can fix the
situation, the ``action_required`` it should take before retrying.
"""


class LinkingError(Exception):
    """Base class for linking errors."""

    code = "LINKING_ERROR"
    action_required: str | None = None

    def __init__(self, message: str, action_required: str | None = None):
        super().__init__(message)
        self.message = message
        if action_required is not None:
            self.action_required = action_required


class AgentNotLinkedError(LinkingError):
    """The partner agent id has no linked account yet."""

    code = "AGENT_NOT_LINKED"
    action_required = "create_agent"

    def __init__(self, partner_agent_id: str):
        super().__init__(
            f"Agent {partner_agent_id} is not linked. "
            "Call POST /v1/partner/create-agent, then retry."
        )
        self.partner_agent_id = partner_agent_id


class ClientNotLinkedError(LinkingError):
    """The partner client id has no linked account yet."""

    code = "CLIENT_NOT_LINKED"
    action_required = "verify_customer"

    def __init__(self, partner_client_id: str, pending: bool = False):
        if pending:
            message = (
                f"Client {partner_client_id} is awaiting disambiguation. "
                "Call POST /v1/partner/resolve-customer, then retry."
            )
        else:
            message = (
                f"Client {partner_client_id} is not linked. "
                "Call POST /v1/partner/verify-customer, then retry."
            )
        super().__init__(
            message,
            action_required="resolve_customer" if pending else None,
        )
        self.partner_client_id = partner_client_id
        self.pending = pending


class DisambiguationNotFoundError(LinkingError):
    """resolve-customer was called for a client with nothing pending."""

    code = "DISAMBIGUATION_NOT_FOUND"
    action_required = "verify_customer"

    def __init__(self, partner_client_id: str):
        super().__init__(
            f"No pending disambiguation for client {partner_client_id}"
        )
        self.partner_client_id = partner_client_id


class InvalidCandidateError(LinkingError):
    """The chosen account was not among the offered candidates."""

    code = "INVALID_CANDIDATE"

    def __init__(self, message: str):
        super().__init__(message)


class LinkConflictError(LinkingError):
    """A follow-up call contradicts a link that is already committed."""

    code = "LINK_CONFLICT"

    def __init__(self, message: str):
        super().__init__(message)


class AgentAccountConflictError(LinkingError):
    """The account is already claimed by another agent of the same partner."""

    code = "AGENT_ACCOUNT_CONFLICT"

    def __init__(self, partner_agent_id: str, other_agent_id: str):
        super().__init__(
            f"Account for agent {partner_agent_id} is already linked "
            f"to agent {other_agent_id}"
        )
        self.partner_agent_id = partner_agent_id
        self.other_agent_id = other_agent_id
