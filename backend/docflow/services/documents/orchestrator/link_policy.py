"""Contact link decision rules.

Two variants, one active per deployment:

* ``VAT_ONLY`` auto-links only on a valid VAT number that matches exactly
  one contact.
* ``VAT_OR_STRONG_SIGNALS`` also auto-links without a VAT match when name
  similarity, IBAN and address all corroborate a single candidate.

Anything short of that is a suggestion (when there is a candidate) or no
link at all.
"""

from __future__ import annotations

import abc

from .contracts import ContactEvidence, ContactLinkPolicyName, LinkDecision, LinkDecisionType

STRONG_NAME_SIMILARITY = 0.93


def _vat_exact(evidence: ContactEvidence) -> bool:
    return evidence.vat_valid is True and evidence.vat_matched is True and evidence.ambiguity_count == 1


def _strong_signals(evidence: ContactEvidence) -> bool:
    return (
        evidence.name_similarity is not None
        and evidence.name_similarity >= STRONG_NAME_SIMILARITY
        and evidence.iban_matched is True
        and evidence.address_matched is True
        and evidence.ambiguity_count == 1
    )


def _suggest_confidence(evidence: ContactEvidence) -> float:
    if evidence.name_similarity is not None:
        return round(evidence.name_similarity, 4)
    if evidence.vat_matched:
        return 0.8
    return 0.5


class ContactLinkPolicy(abc.ABC):
    name: ContactLinkPolicyName

    @abc.abstractmethod
    def allows_auto_link(self, evidence: ContactEvidence) -> bool:
        """Whether *evidence* is enough to link without a human."""

    @abc.abstractmethod
    def prompt_rules(self) -> str:
        """Linking instructions rendered into the orchestrator system prompt."""

    def decide(self, contact_id: str | None, evidence: ContactEvidence | None) -> LinkDecision:
        if contact_id is None:
            return LinkDecision(decision_type=LinkDecisionType.NONE, reason="No candidate contact", evidence=evidence)
        if evidence is not None and self.allows_auto_link(evidence):
            return LinkDecision(
                decision_type=LinkDecisionType.AUTO_LINK,
                contact_id=contact_id,
                reason=self._auto_link_reason(evidence),
                evidence=evidence,
            )
        evidence = evidence or ContactEvidence()
        return LinkDecision(
            decision_type=LinkDecisionType.SUGGEST,
            contact_id=contact_id,
            reason=f"{self.name.value}: evidence insufficient for automatic linking",
            confidence=_suggest_confidence(evidence),
            evidence=evidence,
        )

    def enforce(self, decision: LinkDecision) -> LinkDecision:
        """Downgrade an AUTO_LINK the evidence does not support to a suggestion."""
        if decision.decision_type != LinkDecisionType.AUTO_LINK:
            return decision
        if decision.contact_id is None:
            return LinkDecision(
                decision_type=LinkDecisionType.NONE,
                reason="AUTO_LINK without a contact",
                evidence=decision.evidence,
            )
        if decision.evidence is not None and self.allows_auto_link(decision.evidence):
            return decision
        return self.decide(decision.contact_id, decision.evidence)

    def _auto_link_reason(self, evidence: ContactEvidence) -> str:
        return "VAT number valid and matches exactly one contact"


class VatOnlyLinkPolicy(ContactLinkPolicy):
    name = ContactLinkPolicyName.VAT_ONLY

    def allows_auto_link(self, evidence: ContactEvidence) -> bool:
        return _vat_exact(evidence)

    def prompt_rules(self) -> str:
        return (
            "Contact linking policy: VAT_ONLY.\n"
            "- Use AUTO_LINK only when the counterparty VAT number is valid and lookup_contact "
            "returns exactly one contact with matchType EXACT.\n"
            "- Never AUTO_LINK on name, address or IBAN similarity alone; use SUGGEST with a "
            "confidence between 0 and 1 instead.\n"
            "- Use NONE when there is no candidate contact."
        )


class VatOrStrongSignalsLinkPolicy(ContactLinkPolicy):
    name = ContactLinkPolicyName.VAT_OR_STRONG_SIGNALS

    def allows_auto_link(self, evidence: ContactEvidence) -> bool:
        return _vat_exact(evidence) or _strong_signals(evidence)

    def prompt_rules(self) -> str:
        return (
            "Contact linking policy: VAT_OR_STRONG_SIGNALS.\n"
            "- Use AUTO_LINK when the counterparty VAT number is valid and lookup_contact "
            "returns exactly one contact with matchType EXACT.\n"
            f"- Without a VAT match, AUTO_LINK is allowed only when name similarity is at least "
            f"{STRONG_NAME_SIMILARITY}, the IBAN matches, the address matches and exactly one "
            "candidate exists. Report these signals in linkDecisionEvidence.\n"
            "- Otherwise use SUGGEST with a confidence between 0 and 1, or NONE when there is no candidate."
        )

    def _auto_link_reason(self, evidence: ContactEvidence) -> str:
        if _vat_exact(evidence):
            return super()._auto_link_reason(evidence)
        return "Name, IBAN and address corroborate a single contact"


_POLICIES: dict[ContactLinkPolicyName, type[ContactLinkPolicy]] = {
    ContactLinkPolicyName.VAT_ONLY: VatOnlyLinkPolicy,
    ContactLinkPolicyName.VAT_OR_STRONG_SIGNALS: VatOrStrongSignalsLinkPolicy,
}


def get_link_policy(name: ContactLinkPolicyName | str) -> ContactLinkPolicy:
    return _POLICIES[ContactLinkPolicyName(name)]()
