"""Service construction for CLI commands."""

import os

import click

from banksync.bank.client import UpBankClient
from banksync.domain.settings import SettingsService
from banksync.services import Services, build_services

TOKEN_ENV_VAR = "BANKSYNC_UP_TOKEN"


def get_services(ctx: click.Context) -> Services:
    """Build services once per invocation.

    A bank client is attached when a token is available from
    BANKSYNC_UP_TOKEN or the owner's up_bank_token setting.
    """
    obj = ctx.find_root().obj
    if "services" not in obj:
        db = obj["db"]
        config = obj["config"]
        token = os.environ.get(TOKEN_ENV_VAR)
        if not token:
            token = SettingsService(db).api_token(config.owner_id)
        client = UpBankClient(db, token, config) if token else None
        obj["services"] = build_services(db, config, client)
    return obj["services"]
