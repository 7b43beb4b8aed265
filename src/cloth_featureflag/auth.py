"""コントロールプレーン用の認可"""

from __future__ import annotations

import hmac
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import jwt
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Credentials:
    """リクエストから取り出した資格情報。"""

    api_key: str | None = None
    bearer_token: str | None = None

    @classmethod
    def from_headers(cls, api_key: str | None, authorization: str | None) -> Credentials:
        """X-API-Key ヘッダーと Authorization ヘッダーから生成する。"""
        token = None
        if authorization:
            scheme, _, value = authorization.partition(" ")
            if scheme.lower() == "bearer" and value.strip():
                token = value.strip()
        return cls(api_key=api_key or None, bearer_token=token)


class Authorizer(ABC):
    """認可チェッカー抽象基底クラス。"""

    @abstractmethod
    def authorize(self, credentials: Credentials) -> bool:
        """資格情報が有効なら True。"""
        ...


class DenyAllAuthorizer(Authorizer):
    """全リクエストを拒否する。認証方式が未設定の場合に使う。"""

    def authorize(self, credentials: Credentials) -> bool:
        return False


class StaticCredentialAuthorizer(Authorizer):
    """固定 API キーとの比較による認可。"""

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def authorize(self, credentials: Credentials) -> bool:
        if not self._api_key or not credentials.api_key:
            return False
        return hmac.compare_digest(
            credentials.api_key.encode("utf-8"), self._api_key.encode("utf-8")
        )


class BearerTokenAuthorizer(Authorizer):
    """共有シークレットで署名された Bearer アサーション（JWT）による認可。

    Args:
        secret: 署名検証用シークレット
        audience: 期待する aud（省略時は検証しない）
        issuer: 期待する iss（省略時は検証しない）
        algorithms: 許可する署名アルゴリズム
        required_role: roles クレームに必要なロール（省略時は検証しない）
    """

    def __init__(
        self,
        secret: str,
        *,
        audience: str | None = None,
        issuer: str | None = None,
        algorithms: Sequence[str] = ("HS256",),
        required_role: str | None = None,
    ) -> None:
        self._secret = secret
        self._audience = audience or None
        self._issuer = issuer or None
        self._algorithms = list(algorithms)
        self._required_role = required_role or None

    def _decode(self, token: str) -> dict[str, Any]:
        options = {"require": ["exp"], "verify_aud": self._audience is not None}
        payload: dict[str, Any] = jwt.decode(
            token,
            self._secret,
            algorithms=self._algorithms,
            audience=self._audience,
            issuer=self._issuer,
            options=options,
        )
        return payload

    def authorize(self, credentials: Credentials) -> bool:
        if not self._secret or not credentials.bearer_token:
            return False
        try:
            payload = self._decode(credentials.bearer_token)
        except jwt.InvalidTokenError as e:
            logger.warning("bearer_token_rejected", reason=str(e))
            return False
        if self._required_role is not None:
            roles = payload.get("roles") or []
            if self._required_role not in roles:
                logger.warning("bearer_token_rejected", reason="missing role")
                return False
        return True


class AnyOfAuthorizer(Authorizer):
    """いずれかの Authorizer が許可すれば許可する。"""

    def __init__(self, *authorizers: Authorizer) -> None:
        self._authorizers = authorizers

    def authorize(self, credentials: Credentials) -> bool:
        return any(a.authorize(credentials) for a in self._authorizers)
