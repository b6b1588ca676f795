from jinja2 import Template

from .models import Contact, MarketEvent

# =========================
# Intel: what we know about the contact
# =========================
INTEL_TMPL = Template(
    "{{ tenure }} owned | {{ occupancy }}"
    "{% if property_type %} | {{ property_type }}{% endif %}"
    "{% if beds %} | {{ beds }} bed{% endif %}"
    "{% if appraisals %} | {{ appraisals }} past appraisal{{ 's' if appraisals != 1 else '' }}{% endif %}"
)

# =========================
# Angles: why we are calling today
# =========================
EVENT_ANGLE_TMPL = Template(
    "A property nearby at {{ event_address }} just {{ verb }}"
    "{% if price %} ({{ price }}){% endif %}. "
    "Call to give instant market context and validate their equity."
)

PROSPECT_ANGLE_TMPL = Template(
    "{% if tenure_years and tenure_years > 7 %}Owned {{ tenure_years }} years, statistically due for a move. "
    "{% elif occupancy == 'investor' %}Investor, motivated by yield rather than attachment. "
    "{% endif %}"
    "{% if appraisals %}Appraised before, worth revisiting where the market sits now. {% endif %}"
    "Offer a no-pressure market update."
)

EVENT_VERBS = {
    "listing": "listed",
    "sold": "sold",
    "price_change": "changed price",
    "unlisted": "came off the market",
    "relisted": "relisted",
    "rental": "went up for rent",
}


def build_intel(contact: Contact) -> str:
    return INTEL_TMPL.render(
        tenure=f"{contact.tenure_years}yrs" if contact.tenure_years else "Unknown tenure",
        occupancy=contact.occupancy or "unknown",
        property_type=contact.property_type,
        beds=contact.beds,
        appraisals=contact.appraisal_count or 0,
    )


def build_angle(contact: Contact, event: MarketEvent | None = None) -> str:
    if event is not None:
        return EVENT_ANGLE_TMPL.render(
            event_address=event.address,
            verb=EVENT_VERBS.get(event.type, event.type),
            price=event.confirmed_price or event.price,
        )
    return PROSPECT_ANGLE_TMPL.render(
        tenure_years=contact.tenure_years,
        occupancy=contact.occupancy,
        appraisals=contact.appraisal_count or 0,
    )
