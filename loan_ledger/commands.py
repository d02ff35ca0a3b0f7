"""
Capability-Checked Commands

Role-based gate in front of the accounting core. Every state-changing or
reporting operation is a named command that requires one capability; an
actor may run a command only if their role holds that capability. The core
modules themselves never check roles.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Tuple
import logging

from .exceptions import PermissionDenied
from .logging_config import log_action


logger = logging.getLogger(__name__)


class Capability(Enum):
    """What a role is allowed to do"""
    # Loan permissions
    PREVIEW_SCHEDULE = "preview_schedule"
    CREATE_LOAN = "create_loan"
    APPROVE_LOAN = "approve_loan"
    DEFAULT_LOAN = "default_loan"
    ASSESS_PENALTY = "assess_penalty"
    VIEW_LOAN = "view_loan"

    # Repayment permissions
    RECORD_REPAYMENT = "record_repayment"
    REVERSE_REPAYMENT = "reverse_repayment"

    # Ledger permissions
    MANAGE_ACCOUNTS = "manage_accounts"
    POST_EXPENSE = "post_expense"
    POST_EQUITY = "post_equity"
    POST_ADJUSTMENT = "post_adjustment"
    VIEW_LEDGER = "view_ledger"

    # Period permissions
    CLOSE_BOOKS = "close_books"
    VIEW_STATEMENTS = "view_statements"
    RECONCILE = "reconcile"
    VIEW_AUDIT_LOG = "view_audit_log"


class Role(Enum):
    OFFICER = "officer"
    ACCOUNTANT = "accountant"
    CEO = "ceo"
    ADMIN = "admin"


_OFFICER = frozenset({
    Capability.PREVIEW_SCHEDULE,
    Capability.CREATE_LOAN,
    Capability.VIEW_LOAN,
    Capability.RECORD_REPAYMENT,
})

_ACCOUNTANT = _OFFICER | frozenset({
    Capability.ASSESS_PENALTY,
    Capability.MANAGE_ACCOUNTS,
    Capability.POST_EXPENSE,
    Capability.VIEW_LEDGER,
    Capability.VIEW_STATEMENTS,
    Capability.RECONCILE,
})

_CEO = _ACCOUNTANT | frozenset({
    Capability.APPROVE_LOAN,
    Capability.DEFAULT_LOAN,
    Capability.REVERSE_REPAYMENT,
    Capability.POST_EQUITY,
    Capability.POST_ADJUSTMENT,
    Capability.CLOSE_BOOKS,
    Capability.VIEW_AUDIT_LOG,
})

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.OFFICER: _OFFICER,
    Role.ACCOUNTANT: _ACCOUNTANT,
    Role.CEO: _CEO,
    Role.ADMIN: frozenset(Capability),
}


@dataclass(frozen=True)
class Actor:
    """The authenticated caller; identity and role come from outside the core"""
    user_id: str
    role: Role

    def has_capability(self, capability: Capability) -> bool:
        return capability in ROLE_CAPABILITIES[self.role]


class CommandDispatcher:
    """
    Maps command names to (capability, handler) and runs a handler only
    after the actor's role has been checked

    Handlers receive ``actor=<user id>`` plus the command's own keyword
    arguments.
    """

    def __init__(self):
        self._commands: Dict[str, Tuple[Capability, Callable[..., Any]]] = {}

    def register(self, name: str, capability: Capability, handler: Callable[..., Any]) -> None:
        if name in self._commands:
            raise ValueError(f"Command {name} is already registered")
        self._commands[name] = (capability, handler)

    def commands(self) -> Dict[str, Capability]:
        return {name: capability for name, (capability, _) in self._commands.items()}

    def authorize(self, actor: Actor, capability: Capability) -> None:
        """Raise PermissionDenied unless the actor's role holds the capability"""
        if not actor.has_capability(capability):
            logger.warning(
                "Denied %s to %s (%s)", capability.value, actor.user_id, actor.role.value,
                extra={"actor": actor.user_id, "action": capability.value}
            )
            raise PermissionDenied(
                f"Role {actor.role.value} may not {capability.value.replace('_', ' ')}"
            )

    def dispatch(self, actor: Actor, name: str, /, **kwargs) -> Any:
        """
        Run a registered command as an actor

        Raises:
            KeyError: For unknown command names
            PermissionDenied: If the actor lacks the command's capability
        """
        if name not in self._commands:
            raise KeyError(f"Unknown command: {name}")
        capability, handler = self._commands[name]
        self.authorize(actor, capability)
        log_action(logger, "info", f"Running command {name}",
                   actor=actor.user_id, action=name, extra={"role": actor.role.value})
        return handler(actor=actor.user_id, **kwargs)
