from typing import Dict, Optional

# Well-known Common Data Model tables, keyed by the name a diagram would use,
# mapped to the platform logical name.
CDM_ENTITIES: Dict[str, str] = {
    "Account": "account",
    "Contact": "contact",
    "Lead": "lead",
    "Opportunity": "opportunity",
    "Case": "incident",
    "Incident": "incident",
    "Activity": "activitypointer",
    "Email": "email",
    "PhoneCall": "phonecall",
    "Task": "task",
    "Appointment": "appointment",
    "User": "systemuser",
    "SystemUser": "systemuser",
    "Team": "team",
    "BusinessUnit": "businessunit",
    "Product": "product",
    "PriceLevel": "pricelevel",
    "Quote": "quote",
    "Order": "salesorder",
    "Invoice": "invoice",
    "Campaign": "campaign",
    "MarketingList": "list",
    "Competitor": "competitor",
}

_BY_LOWER = {name.lower(): name for name in CDM_ENTITIES}

# Columns every Dataverse table already owns; a diagram column with one of
# these names cannot be created.
RESERVED_COLUMNS = frozenset(
    {
        "ownerid",
        "owninguser",
        "owningteam",
        "owningbusinessunit",
        "statecode",
        "statuscode",
        "versionnumber",
    }
)

# Audit columns Dataverse adds on its own; they are dropped during schema
# generation instead of being reported.
AUDIT_COLUMNS = frozenset({"createdon", "createdby", "modifiedon", "modifiedby"})

# Status is carried by statecode/statuscode; these columns are reported and dropped.
STATUS_COLUMNS = frozenset({"status"})


def match_cdm_entity(name: str) -> Optional[str]:
    """Return the registry spelling of ``name`` when it is a CDM table."""
    return _BY_LOWER.get(name.lower())


def cdm_logical_name(name: str) -> Optional[str]:
    match = match_cdm_entity(name)
    return CDM_ENTITIES[match] if match else None
