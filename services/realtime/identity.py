"""Resolve connect-time credentials to a user identity."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import jwt
from jwt import InvalidTokenError

from dal.chat_dal import ChatDAL
from models.session_models import Identity
from utils.errors import AuthenticationError

LOGGER = logging.getLogger(__name__)

ALGORITHM = "HS256"


def encode_token(user_id: str, secret: str, expires_in: int = 7 * 24 * 3600) -> str:
	"""Issue an access token in the shape `IdentityVerifier` accepts."""
	now = int(time.time())
	body: Dict[str, Any] = {"userId": user_id, "iat": now, "exp": now + expires_in}
	return jwt.encode(body, secret, algorithm=ALGORITHM)


class IdentityVerifier:
	"""Validate a bearer token and load the user it names."""

	def __init__(self, secret: str, chat_dal: ChatDAL) -> None:
		if not secret:
			raise ValueError("JWT secret is required.")
		self._secret = secret
		self._chat_dal = chat_dal

	async def verify(self, token: Optional[str]) -> Identity:
		"""Return the identity for `token`.

		Raises:
			AuthenticationError: token absent, invalid, expired, or user unknown.
		"""
		token = (token or "").strip()
		if not token:
			raise AuthenticationError("Authentication token is required.")
		try:
			claims = jwt.decode(token, self._secret, algorithms=[ALGORITHM], leeway=5)
		except InvalidTokenError as exc:
			raise AuthenticationError("Authentication error") from exc
		user_id = claims.get("userId") or claims.get("sub")
		if not user_id:
			raise AuthenticationError("Authentication error")
		user = await self._chat_dal.get_user(str(user_id))
		if user is None:
			LOGGER.info("Token for unknown user %s rejected", user_id)
			raise AuthenticationError("User not found")
		return Identity(user_id=user.id, username=user.username, team=user.team)
