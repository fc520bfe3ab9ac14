from crmhub.identity.models import Profile, UserOnboarding, UserPreferences, UserSecuritySettings

__all__ = ["Profile", "UserPreferences", "UserSecuritySettings", "UserOnboarding"]
