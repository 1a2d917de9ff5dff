from __future__ import annotations

import logging

from warebill.constants import NO_CLASS_ERROR, SERVICE_NOT_FOUND_ERROR, to_money
from warebill.models.rate import BillingUnit, RateResolution, ServiceRate
from warebill.repositories.base import ServiceRateRepository

logger = logging.getLogger(__name__)


def _resolution(rate: ServiceRate, error_message: str | None = None) -> RateResolution:
    return RateResolution(
        rate=to_money(rate.rate),
        service_name=rate.service_name,
        billing_unit=rate.billing_unit,
        service_time_minutes=rate.service_time_minutes,
        taxable=rate.taxable,
        has_error=error_message is not None,
        error_message=error_message,
    )


class RateResolver:
    """Resolves the effective price of a service for an optional item class.

    Used by storage accrual, service-scan charges and the billing preview so
    all three price identically.
    """

    def __init__(self, repo: ServiceRateRepository) -> None:
        self.repo = repo

    def resolve(self, tenant_id: str, service_code: str, class_code: str | None = None) -> RateResolution:
        """Return the rate for ``service_code``; never raises for a missing rate.

        Lookup order: the active class-specific row, then the active default
        row. A default row flagged ``uses_class_pricing`` used without a class
        is a soft error, as is a service with no active row at all (rate 0).
        """
        if class_code is not None:
            class_rate = self.repo.find_active(tenant_id, service_code, class_code)
            if class_rate is not None:
                logger.debug("Resolved %s/%s to class rate %s", service_code, class_code, class_rate.rate)
                return _resolution(class_rate)

        default_rate = self.repo.find_active(tenant_id, service_code, None)
        if default_rate is not None:
            if default_rate.uses_class_pricing and class_code is None:
                logger.info("Service %s priced by class but no class given; using default rate", service_code)
                return _resolution(default_rate, NO_CLASS_ERROR)
            logger.debug("Resolved %s/%s to default rate %s", service_code, class_code, default_rate.rate)
            return _resolution(default_rate)

        logger.warning("No active rate for service %s (tenant=%s)", service_code, tenant_id)
        return RateResolution(
            rate=to_money(0),
            service_name=service_code,
            billing_unit=BillingUnit.ITEM,
            taxable=True,
            has_error=True,
            error_message=SERVICE_NOT_FOUND_ERROR.format(service_code=service_code),
        )

    def list_rates(self, tenant_id: str, active_only: bool = True) -> list[ServiceRate]:
        result = self.repo.list_by_tenant(tenant_id, active_only=active_only)
        logger.debug("Listed %d rates for tenant=%s", len(result), tenant_id)
        return result

    def create_rate(self, rate: ServiceRate) -> ServiceRate:
        result = self.repo.create(rate)
        logger.info(
            "Service rate created: id=%s service=%s class=%s rate=%s",
            result.id,
            result.service_code,
            result.class_code,
            result.rate,
        )
        return result

    def update_rate(self, rate: ServiceRate) -> ServiceRate:
        result = self.repo.update(rate)
        logger.info("Service rate updated: id=%s rate=%s active=%s", result.id, result.rate, result.is_active)
        return result

    def deactivate_rate(self, tenant_id: str, rate_id: int) -> None:
        self.repo.deactivate(tenant_id, rate_id)
        logger.info("Service rate %s deactivated", rate_id)
