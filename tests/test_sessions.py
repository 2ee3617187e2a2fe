from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from db_case import DatabaseTestCase
from sqlalchemy import select

from oficina.models import UserProfile, UserRole, WebSession
from oficina.security.passwords import hash_password, validate_new_password
from oficina.security.sessions import create_web_session, load_principal_from_token, revoke_web_session


class WebSessionTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = UserProfile(
            workshop_id=self.workshop.id,
            username='balcao',
            display_name='Balcão',
            password_hash=hash_password('senha123'),
            role=UserRole.OFICINA,
            active=True,
        )
        self.db.add(self.user)
        self.db.flush()

    def test_token_resolves_to_principal_with_workshop_scope(self) -> None:
        token = create_web_session(self.db, self.user.id, ip='10.0.0.1', user_agent='test')
        principal = load_principal_from_token(self.db, token)
        self.assertIsNotNone(principal)
        self.assertEqual(principal.workshop_id, self.workshop.id)
        self.assertEqual(principal.role, UserRole.OFICINA)
        self.assertIsNotNone(principal.created_at)

    def test_revoked_token_is_rejected(self) -> None:
        token = create_web_session(self.db, self.user.id, ip=None, user_agent=None)
        revoke_web_session(self.db, token)
        self.db.flush()
        self.assertIsNone(load_principal_from_token(self.db, token))

    def test_expired_token_is_rejected(self) -> None:
        token = create_web_session(self.db, self.user.id, ip=None, user_agent=None)
        session = self.db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one()
        session.expires_at = datetime.now(tz=timezone.utc) - timedelta(minutes=1)
        self.db.flush()
        self.assertIsNone(load_principal_from_token(self.db, token))

    def test_unknown_token(self) -> None:
        self.assertIsNone(load_principal_from_token(self.db, 'nope'))
        self.assertIsNone(load_principal_from_token(self.db, None))


class PasswordPolicyTests(unittest.TestCase):
    def test_short_password_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            validate_new_password('123')

    def test_confirmation_must_match(self) -> None:
        with self.assertRaises(ValueError):
            validate_new_password('segredo1', 'segredo2')
        validate_new_password('segredo1', 'segredo1')


if __name__ == '__main__':
    unittest.main()
