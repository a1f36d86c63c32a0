"""Policy simulation.

Dry-runs a candidate policy document before it is stored: validation
problems are collected instead of raised, and each test case reports the
decision the document alone would produce.
"""

import logging
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from iamcore.authz.conditions import UnknownOperatorError
from iamcore.authz.errors import MalformedPolicyError
from iamcore.authz.evaluator import PolicyEvaluator, RawDocument
from iamcore.authz.models import (
    Decision,
    PolicyDocument,
    SimulationResult,
    SimulationTestCase,
    SimulationTestResult,
)

logger = logging.getLogger(__name__)


class PolicySimulator:
    """Validates and exercises policy documents without touching storage.

    Usage:
        simulator = PolicySimulator()
        result = simulator.simulate(document, [
            SimulationTestCase(name="editor can update", action="blog:update",
                               resource="blog/1", expected=Decision.ALLOW),
        ])
        if not result.passed:
            ...
    """

    def __init__(self, evaluator: PolicyEvaluator | None = None):
        self.evaluator = evaluator or PolicyEvaluator()

    def validate(self, document: RawDocument) -> list[str]:
        """Return every validation problem in a document (empty when valid)."""
        try:
            if isinstance(document, PolicyDocument):
                parsed = document
            elif isinstance(document, (str, bytes)):
                parsed = PolicyDocument.model_validate_json(document)
            else:
                parsed = PolicyDocument.model_validate(document)
        except ValidationError as e:
            return [
                f"{'.'.join(str(part) for part in error['loc']) or 'document'}: {error['msg']}"
                for error in e.errors()
            ]

        errors = []
        for index, statement in enumerate(parsed.statements):
            if not statement.condition:
                continue
            try:
                self.evaluator.conditions.validate(statement.condition)
            except UnknownOperatorError as e:
                errors.append(f"Statement.{index}.Condition: {e}")
        return errors

    def simulate(
        self,
        document: RawDocument,
        test_cases: Iterable[SimulationTestCase | Mapping[str, Any]],
    ) -> SimulationResult:
        errors = self.validate(document)
        if errors:
            logger.info("Policy simulation rejected document: %d error(s)", len(errors))
            return SimulationResult(valid=False, errors=errors)

        try:
            parsed = self.evaluator.parse(document)
        except MalformedPolicyError as e:
            return SimulationResult(valid=False, errors=[str(e)])

        results = []
        for case in test_cases:
            if not isinstance(case, SimulationTestCase):
                case = SimulationTestCase.model_validate(case)

            try:
                outcome = self.evaluator.evaluate_detailed(parsed, case.action, case.resource, case.context)
            except MalformedPolicyError as e:
                logger.info("Policy simulation failed on case %r: %s", case.name, e)
                return SimulationResult(valid=False, errors=[str(e)])
            results.append(SimulationTestResult(
                name=case.name or f"{case.action} on {case.resource}",
                action=case.action,
                resource=case.resource,
                decision=outcome.decision,
                matched_statement_sid=outcome.sid,
                expected=case.expected,
                passed=case.expected is None or case.expected == outcome.decision,
            ))

        logger.debug(
            "Policy simulation: %d case(s), %d failed",
            len(results),
            sum(1 for r in results if not r.passed),
        )
        return SimulationResult(valid=True, results=results)
