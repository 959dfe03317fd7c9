"""Organization currency configuration.

A config row is created lazily the first time an organization is seen: the
base currency is the organization's home currency (settings default when the
caller does not know it) and the supported set holds just that currency.

Also supplies the conversion defaults (rounding method, decimal places) and
the triangulation pivot to the conversion engine and resolver.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from payroll_fx.core.config import Settings
from payroll_fx.core.errors import ConfigurationError, ValidationError
from payroll_fx.db.dal import Database
from payroll_fx.models.constants import MAX_CONFIG_DECIMAL_PLACES
from .validation import normalize_currency, validate_rounding

logger = logging.getLogger("payroll_fx.org_config")


class OrgCurrencyConfigService:
    def __init__(self, db: Database, settings: Settings):
        self._db = db
        self._settings = settings

    def get_or_create(
        self, organization_id: str, home_currency: Optional[str] = None
    ) -> Dict[str, Any]:
        config = self._db.get_org_config(organization_id)
        if config:
            return config
        base = normalize_currency(home_currency or self._settings.default_base_currency)
        config = self._db.insert_org_config_if_missing(
            organization_id,
            base_currency=base,
            supported_currencies=[base],
            default_rounding_method=self._settings.default_rounding_method,
            default_decimal_places=min(
                self._settings.default_decimal_places, MAX_CONFIG_DECIMAL_PLACES
            ),
        )
        if not config:
            raise ConfigurationError(
                f"Currency config for organization {organization_id} could not be created"
            )
        logger.info(
            "created default currency config",
            extra={"fields": {"organization_id": organization_id, "base_currency": base}},
        )
        return config

    def get_base_currency(self, organization_id: str) -> str:
        return self.get_or_create(organization_id)["base_currency"]

    def get_conversion_defaults(self, organization_id: str) -> tuple[str, int]:
        config = self.get_or_create(organization_id)
        return config["default_rounding_method"], config["default_decimal_places"]

    def update(
        self,
        organization_id: str,
        changes: Mapping[str, Any],
        updated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        current = self.get_or_create(organization_id)
        fields: Dict[str, Any] = {}

        base = current["base_currency"]
        if changes.get("base_currency") is not None:
            base = normalize_currency(changes["base_currency"])
            fields["base_currency"] = base

        supported = None
        if changes.get("supported_currencies") is not None:
            supported = []
            for code in changes["supported_currencies"]:
                code = normalize_currency(code)
                if code not in supported:
                    supported.append(code)
        elif "base_currency" in fields:
            supported = list(current["supported_currencies"])
        if supported is not None:
            if base not in supported:
                supported.insert(0, base)
            fields["supported_currencies"] = supported

        method = changes.get("default_rounding_method")
        places = changes.get("default_decimal_places")
        if method is not None or places is not None:
            method = method or current["default_rounding_method"]
            places = current["default_decimal_places"] if places is None else places
            validate_rounding(method, places, max_places=MAX_CONFIG_DECIMAL_PLACES)
            fields["default_rounding_method"] = method
            fields["default_decimal_places"] = places

        if not fields:
            raise ValidationError("at least one configuration field must be provided")

        updated = self._db.update_org_config(organization_id, fields, updated_by=updated_by)
        if not updated:
            raise ConfigurationError(
                f"Currency config for organization {organization_id} not found"
            )
        logger.info(
            "updated currency config",
            extra={"fields": {"organization_id": organization_id, "changed": sorted(fields)}},
        )
        return updated
