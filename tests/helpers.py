"""Helpers shared by test modules."""

from screenflow.core.models import Phase

PROJECT_ID = "proj"


def vote(service, actor, study_id, verdict, phase=Phase.TITLE_ABSTRACT, **kwargs):
    """Submit a decision, filling in an exclusion reason for EXCLUDE."""
    if verdict == "EXCLUDE" and "exclusion_reason" not in kwargs:
        kwargs["exclusion_reason"] = "Wrong population"
    return service.submit_decision(actor, study_id, phase, verdict, **kwargs)
