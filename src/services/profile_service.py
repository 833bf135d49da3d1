"""Profile business logic service.

Profiles are the local users that orders and tickets belong to. This
service also owns the Stripe customer -> profile mapping that the
identity resolver reads and backfills.
"""

import logging
from uuid import UUID

from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client

from src.core.supabase import get_supabase_client, is_unique_violation
from src.models.profile import Profile
from src.services.settlement_ledger import utc_now_iso

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
CUSTOMERS_TABLE = "payment_customers"


def normalize_email(email: str | None) -> str | None:
    """Lowercase and trim an email address for matching."""
    if not email:
        return None
    return email.strip().lower() or None


class ProfileService:
    """Service for managing user profiles and their payment customers."""

    def __init__(self, client: Client | None = None) -> None:
        """Initialize profile service with Supabase client."""
        self.client = client or get_supabase_client()

    async def get_or_create_profile(
        self,
        user_id: UUID,
        email: str | None = None,
        display_name: str | None = None,
    ) -> Profile:
        """Get existing profile or create a new one.

        Args:
            user_id: The auth user ID.
            email: User's email address.
            display_name: User's display name.

        Returns:
            dict: The profile data.
        """
        response = (
            self.client.table(PROFILES_TABLE)
            .select("*")
            .eq("user_id", str(user_id))
            .execute()
        )

        if response.data:
            return response.data[0]

        profile_data = {
            "user_id": str(user_id),
            "email": normalize_email(email),
            "display_name": display_name or email,
        }

        response = (
            self.client.table(PROFILES_TABLE)
            .insert(profile_data)
            .execute()
        )

        return response.data[0]

    async def get_profile_by_id(self, profile_id: str) -> Profile | None:
        """Get a profile by its primary key."""
        response = (
            self.client.table(PROFILES_TABLE)
            .select("*")
            .eq("id", profile_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def find_profile_by_email(self, email: str) -> Profile | None:
        """Find a profile by email, case-insensitively."""
        normalized = normalize_email(email)
        if not normalized:
            return None
        response = (
            self.client.table(PROFILES_TABLE)
            .select("*")
            .eq("email", normalized)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def get_profile_for_customer(self, customer_id: str) -> Profile | None:
        """Resolve a Stripe customer to a profile through the stored mapping."""
        response = (
            self.client.table(CUSTOMERS_TABLE)
            .select("user_id")
            .eq("stripe_customer_id", customer_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return await self.get_profile_by_id(response.data[0]["user_id"])

    async def get_customer_id_for_profile(self, profile_id: str) -> str | None:
        """Stripe customer previously linked to a profile, if any."""
        response = (
            self.client.table(CUSTOMERS_TABLE)
            .select("stripe_customer_id")
            .eq("user_id", profile_id)
            .limit(1)
            .execute()
        )
        return response.data[0]["stripe_customer_id"] if response.data else None

    async def link_customer(self, customer_id: str, profile_id: str) -> None:
        """Store the customer -> profile mapping.

        A concurrent link of the same customer is not an error: the first
        writer wins and later lookups read its row.
        """
        try:
            self.client.table(CUSTOMERS_TABLE).insert(
                {
                    "stripe_customer_id": customer_id,
                    "user_id": profile_id,
                    "created_at": utc_now_iso(),
                }
            ).execute()
            logger.info("Linked Stripe customer %s to profile %s", customer_id, profile_id)
        except PostgrestAPIError as e:
            if not is_unique_violation(e):
                raise
            logger.debug("Stripe customer %s already linked", customer_id)
