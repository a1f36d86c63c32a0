"""Tests for the share capability table."""

import pytest

from iamcore.authz.models import AccessLevel
from iamcore.authz.shares import CapabilitySet, ShareCapabilities, classify_verb


class TestClassifyVerb:
    """Test verb extraction from actions."""

    @pytest.mark.parametrize(
        "action,verb",
        [
            ("blog:delete", "delete"),
            ("iam:DeleteUser", "delete"),
            ("docs:share_link", "share"),
            ("blog:read", "read"),
            ("iam:ListUsers", "list"),
            ("s3:GET", "get"),
        ],
    )
    def test_leading_word(self, action, verb):
        assert classify_verb(action) == verb

    def test_substring_is_not_a_verb(self):
        """Only the leading word counts."""
        assert classify_verb("blog:undelete") == "undelete"
        assert classify_verb("docs:reshare") == "reshare"


class TestShareCapabilities:
    """Test access level coverage."""

    @pytest.fixture
    def shares(self) -> ShareCapabilities:
        return ShareCapabilities()

    def test_owner_may_do_anything(self, shares):
        for action in ("blog:read", "blog:update", "blog:delete", "blog:share"):
            assert shares.authorizes(AccessLevel.OWNER, action)

    def test_editor_excludes_privileged_verbs(self, shares):
        assert shares.authorizes(AccessLevel.EDITOR, "blog:update")
        assert shares.authorizes(AccessLevel.EDITOR, "blog:read")
        assert not shares.authorizes(AccessLevel.EDITOR, "blog:delete")
        assert not shares.authorizes(AccessLevel.EDITOR, "blog:share")
        assert not shares.authorizes(AccessLevel.EDITOR, "iam:DeleteUser")

    def test_editor_allows_verbs_containing_privileged_words(self, shares):
        assert shares.authorizes(AccessLevel.EDITOR, "blog:undelete")

    def test_viewer_reads_only(self, shares):
        assert shares.authorizes(AccessLevel.VIEWER, "blog:read")
        assert shares.authorizes(AccessLevel.VIEWER, "blog:list")
        assert not shares.authorizes(AccessLevel.VIEWER, "blog:update")

    def test_custom_table(self):
        shares = ShareCapabilities({AccessLevel.VIEWER: CapabilitySet(verbs=frozenset({"read", "comment"}))})

        assert shares.authorizes(AccessLevel.VIEWER, "blog:comment")
        assert not shares.authorizes(AccessLevel.OWNER, "blog:read")
