import time
import unittest

import jwt

from backoffice.auth import (
    AuthorizationResolver,
    IdentityError,
    InMemoryIdentityVerifier,
    JwtIdentityVerifier,
    StoreUserDirectory,
    Subject,
    extract_bearer_token,
)
from backoffice.db import InMemoryResourceStore

SECRET = "backoffice-test-signing-secret-0123456789"


def admin_claims(section="app_metadata"):
    return {section: {"role": "admin"}}


class BrokenVerifier:
    async def verify(self, token):
        raise RuntimeError("key server unreachable")


class CaseSensitiveOnlyDirectory:
    """Directory whose case-insensitive lookup is unsupported."""

    def __init__(self, roles):
        self.roles = roles
        self.lookups = []

    async def role_for_email(self, email, *, case_insensitive):
        self.lookups.append(case_insensitive)
        if case_insensitive:
            raise RuntimeError("ilike not supported")
        return self.roles.get(email)


def make_token(secret=SECRET, **overrides):
    claims = {
        "sub": "user-1",
        "email": "ops@example.com",
        "aud": "authenticated",
        "exp": int(time.time()) + 300,
        "app_metadata": {"role": "admin"},
    }
    claims.update(overrides)
    return jwt.encode(claims, secret, algorithm="HS256")


class ExtractBearerTokenTests(unittest.TestCase):
    def test_extracts_token(self):
        self.assertEqual(extract_bearer_token("Bearer abc"), "abc")
        self.assertEqual(extract_bearer_token("bearer  abc "), "abc")

    def test_rejects_other_shapes(self):
        for header in (None, "", "Bearer", "Bearer   ", "Basic abc", "abc"):
            with self.subTest(header=header):
                self.assertIsNone(extract_bearer_token(header))


class SubjectTests(unittest.TestCase):
    def test_roles_from_both_metadata_sections(self):
        subject = Subject(
            id="1",
            claims={"app_metadata": {"role": "editor"}, "user_metadata": {"role": "Admin"}},
        )
        self.assertEqual(subject.roles, ("editor", "Admin"))
        self.assertTrue(subject.has_role("admin"))

    def test_no_roles(self):
        self.assertEqual(Subject(id="1").roles, ())
        self.assertFalse(Subject(id="1", claims={"app_metadata": "admin"}).has_role("admin"))


class AuthorizationResolverTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.users = InMemoryResourceStore(
            "users",
            [
                {"email": "Boss@Example.com", "role": "admin"},
                {"email": "staff@example.com", "role": "user"},
            ],
        )
        self.verifier = InMemoryIdentityVerifier(
            {
                "claims-admin": Subject(id="1", email="staff@example.com", claims=admin_claims()),
                "user-meta-admin": Subject(id="2", claims=admin_claims("user_metadata")),
                "directory-admin": Subject(id="3", email="boss@example.com"),
                "plain": Subject(id="4", email="staff@example.com"),
                "no-email": Subject(id="5"),
            }
        )

    def resolver(self, **kwargs):
        return AuthorizationResolver(self.verifier, StoreUserDirectory(self.users), **kwargs)

    async def test_missing_credential(self):
        decision = await self.resolver().resolve(None)
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.status_hint, 401)
        self.assertEqual(decision.message, "Missing Authorization bearer token")

    async def test_malformed_header_is_missing_credential(self):
        decision = await self.resolver().resolve("Token claims-admin")
        self.assertEqual(decision.status_hint, 401)
        self.assertEqual(decision.message, "Missing Authorization bearer token")

    async def test_unverifiable_token(self):
        decision = await self.resolver().resolve("Bearer nope")
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.status_hint, 401)
        self.assertEqual(decision.message, "Invalid token")

    async def test_verifier_crash_is_invalid_token(self):
        resolver = AuthorizationResolver(BrokenVerifier())
        decision = await resolver.resolve("Bearer anything")
        self.assertEqual((decision.allowed, decision.status_hint), (False, 401))

    async def test_role_claim_wins_over_directory(self):
        # The directory says "user" for this email; the claim still grants.
        decision = await self.resolver().resolve("Bearer claims-admin")
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.source, "claims")

    async def test_user_metadata_role_claim(self):
        decision = await self.resolver().resolve("Bearer user-meta-admin")
        self.assertEqual(decision.source, "claims")

    async def test_directory_lookup_ignores_email_case(self):
        decision = await self.resolver().resolve("Bearer directory-admin")
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.source, "directory")
        self.assertEqual(decision.subject.id, "3")

    async def test_directory_falls_back_to_exact_match(self):
        directory = CaseSensitiveOnlyDirectory({"boss@example.com": "admin"})
        resolver = AuthorizationResolver(self.verifier, directory)
        decision = await resolver.resolve("Bearer directory-admin")
        self.assertTrue(decision.allowed)
        self.assertEqual(directory.lookups, [True, False])

    async def test_non_admin_is_forbidden(self):
        decision = await self.resolver().resolve("Bearer plain")
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.status_hint, 403)
        self.assertEqual(decision.message, "Forbidden")

    async def test_subject_without_email_skips_directory(self):
        decision = await self.resolver().resolve("Bearer no-email")
        self.assertEqual(decision.status_hint, 403)

    @unittest.skipUnless(__debug__, "development bypass is compiled out under -O")
    async def test_development_bypass(self):
        decision = await self.resolver(development_bypass=True).resolve("Bearer plain")
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.source, "development")

    async def test_development_bypass_still_needs_a_valid_token(self):
        resolver = self.resolver(development_bypass=True)
        self.assertEqual((await resolver.resolve(None)).status_hint, 401)
        self.assertEqual((await resolver.resolve("Bearer nope")).status_hint, 401)


class JwtIdentityVerifierTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.verifier = JwtIdentityVerifier(SECRET)

    async def test_valid_token(self):
        subject = await self.verifier.verify(make_token())
        self.assertEqual(subject.id, "user-1")
        self.assertEqual(subject.email, "ops@example.com")
        self.assertTrue(subject.has_role("admin"))

    async def test_rejects_bad_tokens(self):
        cases = {
            "wrong secret": make_token(secret="another-signing-secret-9876543210abcdef"),
            "expired": make_token(exp=int(time.time()) - 60),
            "wrong audience": make_token(aud="anon"),
            "garbage": "not-a-jwt",
        }
        for label, token in cases.items():
            with self.subTest(label):
                with self.assertRaises(IdentityError):
                    await self.verifier.verify(token)

    async def test_requires_subject(self):
        claims = {"aud": "authenticated", "exp": int(time.time()) + 300}
        token = jwt.encode(claims, SECRET, algorithm="HS256")
        with self.assertRaises(IdentityError):
            await self.verifier.verify(token)

    def test_secret_is_required(self):
        with self.assertRaises(ValueError):
            JwtIdentityVerifier("")


if __name__ == "__main__":
    unittest.main()
