from crmhub.contacts.models import EntityAddress, EntityEmail, EntityPhone

__all__ = ["EntityEmail", "EntityPhone", "EntityAddress"]
