"""Supabase client for the scheduling backend."""

import logging
from functools import lru_cache

from supabase import Client, create_client

from ..config import settings


@lru_cache()
def get_supabase_client() -> Client | None:
    """Get cached Supabase client instance.

    Returns:
        Supabase Client instance if configured, None otherwise.
        Note: This does not test the connection - actual queries may fail with network errors.
    """
    if not settings.supabase_url or not settings.supabase_key:
        logging.info("Supabase credentials not configured (missing URL or key)")
        return None

    try:
        return create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logging.error(f"Failed to create Supabase client: {e}")
        return None


# Tables used by SupabaseRepository (schema in supabase/migrations/0001_groupwalk.sql):
#
#   customers, dogs, bookings (dog ids held in a text[] column), walkers,
#   walk_slots, optimization_runs, notifications
#
# Postgres functions (called through rpc) that keep each write set atomic:
#
#   commit_group_slot(payload jsonb)
#   join_walk_slot(p_slot_id, p_booking_id, p_dogs, p_price, p_original_price, p_discount, p_notification)
#   leave_walk_slot(p_slot_id, p_booking_id)
#   transition_walk_slot(p_slot_id, p_action, p_administrative)
