"""Access-level capabilities for resource shares.

Each access level maps to an explicit capability set. Actions are classified
by the leading word of their verb (the segment after the last ``:``):

    blog:delete        -> delete
    iam:DeleteUser     -> delete
    docs:share_link    -> share
    blog:read          -> read

Shares only ever grant; there is no deny capability.
"""

import re
from dataclasses import dataclass, field
from typing import Mapping

from iamcore.authz.models import AccessLevel

_LEADING_WORD = re.compile(r"[A-Za-z][a-z0-9]*")

READ_VERBS = frozenset({"read", "list", "view", "get", "describe"})
PRIVILEGED_VERBS = frozenset({"delete", "share"})


def classify_verb(action: str) -> str:
    """Return the lowercase leading word of an action's verb."""
    verb = action.rsplit(":", 1)[-1]
    if verb.isupper():
        verb = verb.lower()
    match = _LEADING_WORD.match(verb)
    return match.group(0).lower() if match else ""


@dataclass(frozen=True)
class CapabilitySet:
    """Verbs an access level may perform."""

    allow_all: bool = False
    verbs: frozenset[str] = field(default_factory=frozenset)
    except_verbs: frozenset[str] = field(default_factory=frozenset)

    def permits(self, verb: str) -> bool:
        if verb in self.except_verbs:
            return False
        return self.allow_all or verb in self.verbs


DEFAULT_CAPABILITIES: dict[AccessLevel, CapabilitySet] = {
    AccessLevel.OWNER: CapabilitySet(allow_all=True),
    AccessLevel.EDITOR: CapabilitySet(allow_all=True, except_verbs=PRIVILEGED_VERBS),
    AccessLevel.VIEWER: CapabilitySet(verbs=READ_VERBS),
}


class ShareCapabilities:
    """Capability table consulted for resource shares."""

    def __init__(self, table: Mapping[AccessLevel, CapabilitySet] | None = None):
        self.table = dict(table or DEFAULT_CAPABILITIES)

    def authorizes(self, access_level: AccessLevel, action: str) -> bool:
        """Check whether an access level covers an action."""
        capabilities = self.table.get(access_level)
        if capabilities is None:
            return False
        return capabilities.permits(classify_verb(action))
