"""
Tests for resource identifiers and subdomains.
"""

import random
import re
import string

import pytest

from envstack import rid
from envstack.errors import ValidationError
from envstack.models import Environment


class TestGenerateRid:
    """Identifier construction."""

    def test_deterministic(self):
        """Test identifiers are deterministic."""
        a = rid.generate_rid("proj1", "feature-x", "abc1234")
        b = rid.generate_rid("proj1", "feature-x", "abc1234")
        assert a == b

    def test_shape(self):
        """Test the identifier layout."""
        assert rid.generate_rid("proj1", "feature-x", "abc1234") == "p5-proj1--d9-feature-x--r7-abc1234"
        assert rid.generate_rid("proj1", "42", env_type=rid.PULL_REQUEST) == "p5-proj1--q2-42"

    def test_revision_distinguishes(self):
        """Test revisions give distinct identifiers."""
        assert rid.generate_rid("p", "n") != rid.generate_rid("p", "n", "r1")
        assert rid.generate_rid("p", "n", "r1") != rid.generate_rid("p", "n", "r2")

    def test_type_distinguishes(self):
        """Test environment types give distinct identifiers."""
        assert (rid.generate_rid("p", "7", env_type=rid.DEPLOYMENT)
                != rid.generate_rid("p", "7", env_type=rid.PULL_REQUEST))

    def test_boundary_shift_does_not_collide(self):
        """Test shifted field boundaries do not collide."""
        # naive "project-name" joining would map both to "a-b-c"
        assert rid.generate_rid("a-b", "c") != rid.generate_rid("a", "b-c")
        assert rid.generate_rid("a--d1-x", "y") != rid.generate_rid("a", "x--y")

    def test_escapes_unsafe_characters(self):
        """Test unsafe characters are escaped."""
        value = rid.generate_rid("proj", "feature/login")
        assert "/" not in value
        assert set(value) <= set(string.ascii_letters + string.digits + "-_")

    @pytest.mark.parametrize("project_id,name", [("", "x"), (None, "x"), ("p", ""), ("p", None)])
    def test_missing_ids(self, project_id, name):
        """Test empty ids are rejected."""
        with pytest.raises(ValidationError):
            rid.generate_rid(project_id, name)

    def test_unknown_type(self):
        """Test an unknown environment type is rejected."""
        with pytest.raises(ValidationError, match="unknown environment type"):
            rid.generate_rid("p", "n", env_type="preview")

    def test_no_collisions_fuzzed(self):
        """Test random inputs never collide."""
        rng = random.Random(1234)
        alphabet = string.ascii_lowercase + string.digits + "-_/."

        def word():
            return "".join(rng.choice(alphabet) for _ in range(rng.randint(1, 6)))

        seen = {}
        for _ in range(12000):
            key = (word(), word())
            value = rid.generate_rid(*key)
            assert seen.setdefault(value, key) == key, f"{key} collides with {seen[value]}"
        assert len(seen) > 10000


class TestParseRid:
    """Parsing recovers the original fields."""

    def test_parse(self):
        """Test parsing a deployment identifier."""
        fields = rid.parse_rid(rid.generate_rid("proj1", "feature/x", "abc"))
        assert fields == {
            "project_id": "proj1",
            "env_type": rid.DEPLOYMENT,
            "env_name": "feature/x",
            "revision": "abc",
        }

    def test_parse_pr_without_revision(self):
        """Test parsing a pull request identifier."""
        fields = rid.parse_rid(rid.generate_rid("proj1", "17", env_type=rid.PULL_REQUEST))
        assert fields["env_type"] == rid.PULL_REQUEST
        assert fields["revision"] is None

    @pytest.mark.parametrize("value", ["", "proj1-feature", "p9-short", "p1-a--x1-b", "p1-a-d1-b"])
    def test_malformed(self, value):
        """Test malformed identifiers are rejected."""
        with pytest.raises(ValidationError):
            rid.parse_rid(value)

    @pytest.mark.parametrize("value", ["p3-_zz--d1-x", "p2-a_--d1-x", "p2-\u00e9\u00e9--d1-x", "p3-_ff--d1-x"])
    def test_malformed_escapes(self, value):
        """Bad escapes and non-ASCII text are rejected as invalid identifiers."""
        with pytest.raises(ValidationError, match="malformed escape"):
            rid.parse_rid(value)


class TestShortName:
    def test_length_and_stability(self):
        """Test short names are bounded and stable."""
        long_rid = rid.generate_rid("p" * 60, "n" * 60, "r" * 40)
        name = rid.short_name(long_rid)
        assert len(name) <= 32
        assert name == rid.short_name(long_rid)
        assert name.startswith("es-")

    def test_distinct(self):
        """Test distinct identifiers give distinct short names."""
        assert rid.short_name(rid.generate_rid("p", "a")) != rid.short_name(rid.generate_rid("p", "b"))


class TestSubdomain:
    def test_deployment(self):
        """Test a deployment subdomain."""
        assert rid.deployment_subdomain("proj1", "feature-x") == "feature-x-proj1"

    def test_master_owns_project_subdomain(self):
        """Test master gets the bare project subdomain."""
        assert rid.deployment_subdomain("proj1", "master") == "proj1"

    def test_pr(self):
        """Test a pull request subdomain."""
        assert rid.pr_subdomain("proj1", "42") == "pr-42-proj1"
        assert rid.subdomain("proj1", "42", rid.PULL_REQUEST) == "pr-42-proj1"

    def test_labels_are_dns_safe(self):
        """Sanitized labels keep the readable prefix and gain a hash suffix."""
        label = rid.deployment_subdomain("Proj_1", "feature/Login")
        assert re.fullmatch(r"feature-login-proj-1-[0-9a-f]{6}", label)

    def test_sanitized_names_do_not_collide(self):
        """Branches that sanitize to the same label still get distinct subdomains."""
        assert rid.deployment_subdomain("proj1", "feature/x") != rid.deployment_subdomain("proj1", "feature-x")
        assert rid.deployment_subdomain("proj1", "Feature-X") != rid.deployment_subdomain("proj1", "feature-x")
        assert rid.pr_subdomain("proj1", "7") != rid.pr_subdomain("proj1", "7/")

    def test_sanitized_subdomain_is_stable(self):
        """The suffix ignores the revision, so updates keep the DNS record."""
        assert (Environment("proj1", "feature/x", revision="a").subdomain
                == Environment("proj1", "feature/x", revision="b").subdomain)

    def test_missing_ids(self):
        """Test empty ids are rejected."""
        with pytest.raises(ValidationError):
            rid.pr_subdomain("proj1", "")
