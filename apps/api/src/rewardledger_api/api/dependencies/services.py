"""Overridable collaborators for reward and claim endpoints."""

from __future__ import annotations

from rewardledger_api.services.rewards import OnChainStateReader, build_default_chain_reader
from rewardledger_api.services.secrets.signing_keys import (
    SigningKeyResolver,
    build_default_signing_key_resolver,
)


def get_chain_reader() -> OnChainStateReader:
    return build_default_chain_reader()


def get_signing_key_resolver() -> SigningKeyResolver:
    return build_default_signing_key_resolver()
