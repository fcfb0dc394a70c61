"""crmsync: CRM-agnostic contact synchronization.

Syncs local user records with one active CRM (ActiveCampaign, Mautic,
Salesforce) through a uniform adapter contract, and keeps a capped
activity log of what happened.
"""

__version__ = "0.1.0"
