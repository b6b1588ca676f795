import logging

from .models import Contact

logger = logging.getLogger(__name__)

LONG_TENURE_YEARS = 7


def compute_propensity(contact: Contact) -> int:
    """Likelihood-to-transact from tenure, appraisal history, occupancy and CRM class."""
    score = 0
    tenure = contact.tenure_years or 0
    if tenure > LONG_TENURE_YEARS:
        score += 20 + min(20, 2 * (tenure - LONG_TENURE_YEARS))
    if (contact.appraisal_count or 0) > 0:
        score += 30
    if (contact.occupancy or "").lower() == "investor":
        score += 15
    klass = (contact.contact_class or "").lower()
    if "prospective vendor" in klass:
        score += 15
    elif "vendor" in klass:
        score += 25
    return score


def recompute_all(db) -> int:
    """Periodic job: refresh every stored propensity score. Returns rows changed."""
    changed = 0
    try:
        for c in db.query(Contact).all():
            score = compute_propensity(c)
            if score != c.propensity_score:
                c.propensity_score = score
                changed += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("[propensity] recomputed, %d contacts changed", changed)
    return changed
