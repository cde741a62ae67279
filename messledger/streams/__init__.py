"""Live record streams feeding the settlement."""

from messledger.streams.listeners import (
    JoinLookupError,
    default_settings,
    join_participant_names,
    on_all_meals_update,
    on_costs_update,
    on_deposits_update,
    on_participant_meals_update,
    on_participants_update,
    on_settings_update,
    parse_records,
)

__all__ = [
    "JoinLookupError",
    "default_settings",
    "join_participant_names",
    "on_all_meals_update",
    "on_costs_update",
    "on_deposits_update",
    "on_participant_meals_update",
    "on_participants_update",
    "on_settings_update",
    "parse_records",
]
