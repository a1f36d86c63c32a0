"""Policy statement evaluation.

Evaluates one policy document against (action, resource, context).
Within a document Deny beats Allow beats NotApplicable.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import ValidationError

from iamcore.authz.conditions import ConditionEvaluator, UnknownOperatorError
from iamcore.authz.errors import MalformedPolicyError
from iamcore.authz.matcher import matches_any
from iamcore.authz.models import (
    CompiledPolicy,
    Decision,
    Effect,
    Policy,
    PolicyDocument,
    Statement,
)

logger = logging.getLogger(__name__)

RawDocument = PolicyDocument | Mapping[str, Any] | str | bytes


@dataclass(frozen=True)
class DocumentResult:
    """Decision for one document plus the statement that produced it."""

    decision: Decision
    statement: Statement | None = None

    @property
    def sid(self) -> str | None:
        return self.statement.sid if self.statement else None


class PolicyEvaluator:
    """Parses and evaluates policy documents.

    Usage:
        evaluator = PolicyEvaluator()
        document = evaluator.parse(raw_json)
        decision = evaluator.evaluate(document, "blog:update", "blog/123", {})
    """

    def __init__(self, conditions: ConditionEvaluator | None = None):
        self.conditions = conditions or ConditionEvaluator()

    def parse(self, raw: RawDocument, policy_id: str | None = None) -> PolicyDocument:
        """Parse and validate a document.

        Raises:
            MalformedPolicyError: invalid JSON, schema violation or an
                unsupported condition operator
        """
        try:
            if isinstance(raw, PolicyDocument):
                document = raw
            elif isinstance(raw, (str, bytes)):
                document = PolicyDocument.model_validate_json(raw)
            else:
                document = PolicyDocument.model_validate(raw)
        except ValidationError as e:
            raise MalformedPolicyError(
                f"Invalid policy document: {e.error_count()} validation error(s): "
                f"{e.errors()[0]['msg']}",
                policy_id=policy_id,
            ) from e

        for statement in document.statements:
            if statement.condition:
                try:
                    self.conditions.validate(statement.condition)
                except UnknownOperatorError as e:
                    raise MalformedPolicyError(str(e), policy_id=policy_id) from e

        return document

    def compile(self, policy: Policy) -> CompiledPolicy:
        """Parse a stored policy once into its evaluable form."""
        return CompiledPolicy(
            policy_id=policy.id,
            organization_id=policy.organization_id,
            name=policy.name,
            document=self.parse(policy.document, policy_id=policy.id),
        )

    def statement_applies(
        self,
        statement: Statement,
        action: str,
        resource: str,
        context: Mapping[str, Any],
    ) -> bool:
        if not matches_any(statement.actions, action):
            return False
        if not matches_any(statement.resources, resource):
            return False
        return self.conditions.evaluate(statement.condition, context)

    def evaluate_detailed(
        self,
        document: RawDocument,
        action: str,
        resource: str,
        context: Mapping[str, Any] | None = None,
    ) -> DocumentResult:
        """Evaluate a document and report the deciding statement.

        Compiled documents are used as-is; raw documents are parsed first.
        """
        parsed = document if isinstance(document, PolicyDocument) else self.parse(document)
        context = context or {}

        allowed_by: Statement | None = None
        for statement in parsed.statements:
            try:
                applies = self.statement_applies(statement, action, resource, context)
            except UnknownOperatorError as e:
                raise MalformedPolicyError(str(e)) from e
            except Exception as e:
                raise MalformedPolicyError(
                    f"Condition evaluation failed in statement {statement.sid or '<unnamed>'}: {e}"
                ) from e
            if not applies:
                continue

            if statement.effect == Effect.DENY:
                return DocumentResult(Decision.DENY, statement)

            if allowed_by is None:
                allowed_by = statement

        if allowed_by is not None:
            return DocumentResult(Decision.ALLOW, allowed_by)

        return DocumentResult(Decision.NOT_APPLICABLE)

    def evaluate(
        self,
        document: RawDocument,
        action: str,
        resource: str,
        context: Mapping[str, Any] | None = None,
    ) -> Decision:
        """Evaluate a document against one request."""
        return self.evaluate_detailed(document, action, resource, context).decision
