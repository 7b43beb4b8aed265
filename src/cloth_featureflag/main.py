"""設定からアプリケーションを組み立てて起動する"""

from __future__ import annotations

import argparse
import os
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from .api import create_app
from .auth import (
    AnyOfAuthorizer,
    Authorizer,
    BearerTokenAuthorizer,
    DenyAllAuthorizer,
    StaticCredentialAuthorizer,
)
from .config import AppConfig, load, merge_secrets, secrets_from_env
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .logger import new_logger
from .models import Flag
from .registry import InMemoryFlagRegistry
from .service import FlagService


def build_authorizer(config: AppConfig) -> Authorizer:
    """設定済みの認証方式から Authorizer を組み立てる。未設定なら全拒否。"""
    authorizers: list[Authorizer] = []
    if config.auth.api_key:
        authorizers.append(StaticCredentialAuthorizer(config.auth.api_key))
    jwt_config = config.auth.jwt
    if jwt_config.secret:
        authorizers.append(
            BearerTokenAuthorizer(
                jwt_config.secret,
                audience=jwt_config.audience or None,
                issuer=jwt_config.issuer or None,
                algorithms=(jwt_config.algorithm,),
                required_role=jwt_config.required_role or None,
            )
        )
    if not authorizers:
        return DenyAllAuthorizer()
    if len(authorizers) == 1:
        return authorizers[0]
    return AnyOfAuthorizer(*authorizers)


def build_app(config: AppConfig) -> FastAPI:
    """設定から FastAPI アプリケーションを生成する。seed フラグも登録する。

    Raises:
        FeatureFlagError: seed フラグ定義が不正な場合（CONFIG_ERROR）
    """
    seed: list[Flag] = []
    for index, data in enumerate(config.flags):
        try:
            seed.append(Flag.from_dict(data))
        except FeatureFlagError as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.CONFIG_ERROR,
                message=f"Invalid seed flag at flags[{index}]: {e}",
                cause=e,
            ) from e
    service = FlagService(InMemoryFlagRegistry())
    return create_app(
        service,
        build_authorizer(config),
        seed_flags=seed,
        service_name=config.app.name,
        version=config.app.version,
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="cloth-featureflag")
    parser.add_argument("--config", type=Path, help="base config YAML")
    parser.add_argument("--env-config", type=Path, help="environment override YAML")
    args = parser.parse_args(argv)

    config = load(args.config, args.env_config) if args.config else AppConfig()
    config = merge_secrets(config, secrets_from_env(os.environ))

    logger = new_logger(
        config.observability.log.level,
        config.observability.log.format,
        service=config.app.name,
        version=config.app.version,
        environment=config.app.environment,
    )
    app = build_app(config)
    logger.info(
        "server_starting",
        host=config.server.host,
        port=config.server.port,
        seeded_flags=len(config.flags),
    )
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.observability.log.level.lower(),
    )
