"""
Company Reconciliation

Corrective job run when a lead's underlying company reference changes.
A lead classified as filtered_hr_provider only keeps that classification
while its company is the one that matched: once the company changes, the
HR-provider match is cleared and the lead goes back to "completed".

Matched-client references are left untouched: whether a stale client match
must be cleared the same way is undecided.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from leadgen.common.errors import NotFoundError
from leadgen.common.models import utc_now
from leadgen.common.repositories.base import LeadRepositoryInterface
from leadgen.common.state import LeadStatus

logger = logging.getLogger(__name__)

HR_PROVIDER_FIELDS = ("matched_hr_provider_id", "matched_hr_provider_name")


class ReconciliationAction(str, Enum):
    CLEARED_HR_PROVIDER = "cleared_hr_provider"
    UNCHANGED = "unchanged"
    NOT_APPLICABLE = "not_applicable"


@dataclass
class ReconciliationResult:
    lead_id: str
    action: ReconciliationAction
    status: LeadStatus

    def to_dict(self) -> Dict[str, Any]:
        return {"lead_id": self.lead_id, "action": self.action.value, "status": self.status.value}


def company_changed(
    old_company_id: Optional[str],
    old_company_name: Optional[str],
    new_company_id: Optional[str],
    new_company_name: Optional[str],
) -> bool:
    """A different id, or a different name, counts as a change."""
    if new_company_id and new_company_id != old_company_id:
        return True
    if new_company_name and new_company_name.strip() != (old_company_name or "").strip():
        return True
    return False


class CompanyReconciliationService:
    def __init__(self, leads: LeadRepositoryInterface):
        self.leads = leads

    def reconcile(
        self,
        lead_id: str,
        new_company_id: Optional[str] = None,
        new_company_name: Optional[str] = None,
    ) -> ReconciliationResult:
        """
        Apply a company change to one lead.

        Raises:
            NotFoundError: Unknown lead id
        """
        lead = self.leads.get(lead_id)
        if lead is None:
            raise NotFoundError("Lead", lead_id)

        if lead.status != LeadStatus.FILTERED_HR_PROVIDER or not lead.matched_hr_provider_id:
            return ReconciliationResult(lead.id, ReconciliationAction.NOT_APPLICABLE, lead.status)

        if not company_changed(lead.company_id, lead.company_name, new_company_id, new_company_name):
            return ReconciliationResult(lead.id, ReconciliationAction.UNCHANGED, lead.status)

        fields: Dict[str, Any] = {
            "status": LeadStatus.COMPLETED,
            "last_updated_at": utc_now(),
        }
        if new_company_id:
            fields["company_id"] = new_company_id
        if new_company_name:
            fields["company_name"] = new_company_name

        written = self.leads.update_if_status(
            lead.id, LeadStatus.FILTERED_HR_PROVIDER, fields, unset=HR_PROVIDER_FIELDS
        )
        if not written:
            current = self.leads.get(lead.id)
            return ReconciliationResult(
                lead.id, ReconciliationAction.UNCHANGED, current.status if current else lead.status
            )

        logger.info(
            f"Lead {lead.id}: company changed ({lead.company_name} -> {new_company_name or new_company_id}), "
            f"HR provider match {lead.matched_hr_provider_name} cleared"
        )
        return ReconciliationResult(lead.id, ReconciliationAction.CLEARED_HR_PROVIDER, LeadStatus.COMPLETED)
