"""Shared fixtures for authorization tests."""

import pytest

from iamcore.authz.models import Policy, PrincipalType
from iamcore.grants.store import InMemoryGrantStore


def statement(effect, action, resource, condition=None, sid=None):
    result = {"Effect": effect, "Action": action, "Resource": resource}
    if condition is not None:
        result["Condition"] = condition
    if sid is not None:
        result["Sid"] = sid
    return result


def document(*statements):
    return {"Version": "2012-10-17", "Statement": list(statements)}


@pytest.fixture
def make_document():
    """Factory for policy documents: make_document(("Allow", "blog:*", "*"), ...)."""

    def factory(*rows):
        return document(*(statement(*row) for row in rows))

    return factory


@pytest.fixture
def store() -> InMemoryGrantStore:
    return InMemoryGrantStore()


@pytest.fixture
def attach(store):
    """Attach a policy document directly to a user: attach(org, user, policy_id, doc)."""

    def factory(organization_id, principal_id, policy_id, doc, principal_type=PrincipalType.USER):
        store.put_policy(Policy(id=policy_id, organization_id=organization_id, name=policy_id, document=doc))
        store.attach_policy(organization_id, policy_id, principal_id, principal_type)

    return factory
