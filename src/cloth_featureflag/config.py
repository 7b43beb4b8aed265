"""設定型定義（pydantic BaseModel）と設定ファイル読み込み"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes


class AppSection(BaseModel):
    """アプリケーション基本設定。"""

    name: str = "cloth"
    version: str = "0.1.0"
    environment: str = "development"


class ServerSection(BaseModel):
    """HTTP サーバー設定。"""

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)


class JwtSection(BaseModel):
    """Bearer アサーション検証設定。secret が空なら無効。"""

    secret: str = ""
    issuer: str = ""
    audience: str = ""
    algorithm: str = "HS256"
    required_role: str = ""


class AuthSection(BaseModel):
    """コントロールプレーン認証設定。"""

    api_key: str = ""
    jwt: JwtSection = Field(default_factory=JwtSection)


class LogSection(BaseModel):
    """ログ設定。"""

    level: str = "INFO"
    format: Literal["json", "text"] = "json"


class ObservabilitySection(BaseModel):
    """可観測性設定。"""

    log: LogSection = Field(default_factory=LogSection)


class AppConfig(BaseModel):
    """アプリケーション設定全体。

    flags は起動時に登録するフラグ定義（Flag.to_dict と同じ形式）。
    """

    app: AppSection = Field(default_factory=AppSection)
    server: ServerSection = Field(default_factory=ServerSection)
    auth: AuthSection = Field(default_factory=AuthSection)
    observability: ObservabilitySection = Field(default_factory=ObservabilitySection)
    flags: list[dict[str, Any]] = Field(default_factory=list)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """base と override をディープマージして新しい辞書を返す。

    override の値が優先される。リストは置換（マージしない）。
    """
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    """YAML ファイルを読み込む。"""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"Failed to read config file: {path}",
            cause=e,
        ) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"Config root must be a mapping: {path}",
        )
    return data


def _validate(data: dict[str, Any]) -> AppConfig:
    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e


def load(base_path: Path, env_path: Path | None = None) -> AppConfig:
    """設定ファイルを読み込んで AppConfig を返す。

    base_path: ベース設定ファイルパス（必須）
    env_path: 環境別設定ファイルパス（オプション）。存在する場合はベースにマージ。
    """
    data = _read_yaml(base_path)
    if env_path is not None and env_path.exists():
        data = deep_merge(data, _read_yaml(env_path))
    return _validate(data)


def merge_secrets(config: AppConfig, secrets: Mapping[str, str]) -> AppConfig:
    """シークレットを設定にマージして新しい AppConfig を返す。

    secrets のキーは設定パス（ドット区切り）。
    例: {"auth.api_key": "secret123", "auth.jwt.secret": "jwt-secret"}
    """
    data = config.model_dump()
    for key_path, value in secrets.items():
        parts = key_path.split(".")
        node: dict[str, Any] = data
        for part in parts[:-1]:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[parts[-1]] = value
    return _validate(data)


def secrets_from_env(environ: Mapping[str, str], prefix: str = "CLOTH_") -> dict[str, str]:
    """環境変数から設定パス形式のシークレットを取り出す。

    CLOTH_AUTH__API_KEY → auth.api_key（"__" が階層区切り）。
    """
    secrets: dict[str, str] = {}
    for name, value in environ.items():
        if not name.startswith(prefix) or name == prefix:
            continue
        path = name[len(prefix):].lower().replace("__", ".")
        secrets[path] = value
    return secrets
